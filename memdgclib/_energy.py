"""
Energy terms of the membrane free energy.

Each function returns one scalar from a geometry snapshot and the fields;
``Energy`` collects them.  The forces in :mod:`memdgclib._forces` are minus
the position gradients of these energies, and the chemical potentials minus
their density derivatives.
"""

from dataclasses import dataclass, fields

import numpy as np

from memdgclib.operators import Geometry

#: Terms that make up the potential energy
POTENTIAL_TERMS = ('bending', 'surface', 'pressure', 'adsorption',
                   'aggregation', 'dirichlet', 'protein_interior_penalty')


@dataclass
class Energy:
    """Decomposed energy of one configuration."""
    bending: float = 0.0
    surface: float = 0.0
    pressure: float = 0.0
    adsorption: float = 0.0
    aggregation: float = 0.0
    dirichlet: float = 0.0
    protein_interior_penalty: float = 0.0
    kinetic: float = 0.0
    external_work: float = 0.0

    @property
    def potential(self) -> float:
        return float(sum(getattr(self, name) for name in POTENTIAL_TERMS))

    @property
    def total(self) -> float:
        return self.potential + self.kinetic - self.external_work

    def as_dict(self) -> dict:
        out = {f.name: float(getattr(self, f.name)) for f in fields(self)}
        out['potential'] = self.potential
        out['total'] = self.total
        return out

    def is_finite(self) -> bool:
        return bool(np.isfinite(list(self.as_dict().values())).all())


def bending_energy(geometry: Geometry, H0: np.ndarray, Kb: np.ndarray) -> float:
    dH = geometry.mean_curvature - H0
    return float(np.sum(Kb * dH * dH * geometry.dual_area))


def surface_energy(area: float, Ksg: float, target_area: float,
                   lambda_SG: float, constant_tension: bool) -> float:
    """``Ksg A`` at constant tension, else the area penalty plus multiplier."""
    if constant_tension:
        return Ksg * area
    excess = area - target_area
    return Ksg * excess * excess / (2.0 * target_area) + lambda_SG * excess


def pressure_energy(volume: float, policy: str, Kv: float, target_volume: float = 1.0,
                    lambda_V: float = 0.0, cam: float = 0.0, n: float = 1.0) -> float:
    """Osmotic energy under the given pressure policy.

    ``policy`` is ``"constant"``, ``"reduced_volume"`` or ``"ideal_gas"``.
    """
    if policy == "constant":
        return -Kv * volume
    if policy == "reduced_volume":
        excess = volume - target_volume
        return Kv * excess * excess / (2.0 * target_volume) + lambda_V * excess
    if policy == "ideal_gas":
        ratio = cam * volume / n
        return Kv * (cam * volume - n - n * np.log(ratio))
    raise KeyError(f"Unknown pressure policy: {policy!r}. "
                   f"Available: ['constant', 'reduced_volume', 'ideal_gas']")


def adsorption_energy(geometry: Geometry, phi: np.ndarray, epsilon: float) -> float:
    return float(epsilon * np.sum(phi * geometry.dual_area))


def aggregation_energy(geometry: Geometry, phi: np.ndarray, chi: float) -> float:
    return float(chi * np.sum(phi * phi * geometry.dual_area))


def dirichlet_energy(geometry: Geometry, phi: np.ndarray, eta: float) -> float:
    """``eta / 2 phi^T L phi``."""
    return float(0.5 * eta * phi @ (geometry.laplacian @ phi))


def protein_interior_penalty(phi: np.ndarray, lambda_phi: float) -> float:
    """Log barrier keeping ``phi`` inside (0, 1)."""
    return float(-lambda_phi * np.sum(np.log(phi) + np.log(1.0 - phi)))


def kinetic_energy(velocity: np.ndarray) -> float:
    return float(0.5 * np.sum(velocity * velocity))
