"""
Initial conditions for membrane simulations.

Each IC is applied to a :class:`~memdgclib._system.MembraneSystem` by
setting its vertex field arrays (``protein_density``, ``velocity``,
``positions``) in place.  ICs can be composed via CompositeIC.

Usage
-----
    from memdgclib.initial_conditions import (
        CompositeIC, GeodesicTanhProteinDensity, ZeroVelocity,
    )

    ic = CompositeIC(
        ZeroVelocity(),
        GeodesicTanhProteinDensity(r1=0.5, r2=0.5, phi_in=0.9, phi_out=0.1),
    )
    ic.apply(system)
"""

from abc import ABC, abstractmethod

import numpy as np

from memdgclib._errors import ConfigurationError


class InitialCondition(ABC):
    """Abstract base for initial conditions on a membrane system."""

    @abstractmethod
    def apply(self, system) -> None:
        """Apply initial condition to all vertices of ``system`` in place."""


class CompositeIC(InitialCondition):
    """Apply multiple ICs in sequence (e.g., velocity IC then protein IC)."""

    def __init__(self, *ics: InitialCondition):
        self.ics = ics

    def apply(self, system) -> None:
        for ic in self.ics:
            ic.apply(system)


# ---------------------------------------------------------------------------
# Protein density ICs
# ---------------------------------------------------------------------------

class UniformProteinDensity(InitialCondition):
    """Set phi = phi0 on all vertices."""

    def __init__(self, phi0: float = 0.5):
        self.phi0 = phi0

    def apply(self, system) -> None:
        system.protein_density = np.full(system.n_vertices, float(self.phi0))


class GeodesicTanhProteinDensity(InitialCondition):
    """Protein disk around the tracked point with a smooth tanh rim.

    ``phi = phi_out + (phi_in - phi_out) (1 + tanh(s (1 - rho))) / 2``
    where ``rho`` is the geodesic distance to the tracked point divided by
    the radius of the ellipse with semi-axes ``r1`` (x) and ``r2`` (y) in
    the direction of the vertex.

    Parameters
    ----------
    r1, r2 : float
        Semi-axes of the disk.
    phi_in, phi_out : float
        Density inside and outside the disk.
    sharpness : float
        Steepness ``s`` of the rim.
    """

    def __init__(self, r1: float, r2: float, phi_in: float, phi_out: float,
                 sharpness: float = 20.0):
        self.r1 = r1
        self.r2 = r2
        self.phi_in = phi_in
        self.phi_out = phi_out
        self.sharpness = sharpness

    def normalized_distance(self, system) -> np.ndarray:
        center = system.positions[system.the_point_index]
        offset = system.positions - center
        theta = np.arctan2(offset[:, 1], offset[:, 0])
        radius = self.r1 * self.r2 / np.sqrt(
            (self.r2 * np.cos(theta)) ** 2 + (self.r1 * np.sin(theta)) ** 2)
        return system.geodesic_distance / radius

    def apply(self, system) -> None:
        rho = self.normalized_distance(system)
        profile = 0.5 * (1.0 + np.tanh(self.sharpness * (1.0 - rho)))
        system.protein_density = self.phi_out + (self.phi_in - self.phi_out) * profile


class PerVertexProteinDensity(InitialCondition):
    """Set phi from an explicit per-vertex array."""

    def __init__(self, values):
        self.values = np.asarray(values, dtype=float)

    def apply(self, system) -> None:
        if len(self.values) != system.n_vertices:
            raise ConfigurationError(
                f"protein density has {len(self.values)} values for "
                f"{system.n_vertices} vertices")
        system.protein_density = self.values.copy()


def protein_initial_condition(protein) -> InitialCondition:
    """Resolve ``ProteinParameters.protein0`` into an IC.

    One value: uniform.  Four values ``[r1, r2, phi_in, phi_out]``: geodesic
    tanh disk.  Anything else: one value per vertex.
    """
    protein0 = np.atleast_1d(np.asarray(protein.protein0, dtype=float))
    if len(protein0) == 1:
        return UniformProteinDensity(protein0[0])
    if len(protein0) == 4:
        r1, r2, phi_in, phi_out = protein0
        return GeodesicTanhProteinDensity(r1, r2, phi_in, phi_out,
                                          sharpness=protein.tanh_sharpness)
    return PerVertexProteinDensity(protein0)


# ---------------------------------------------------------------------------
# Velocity and position ICs
# ---------------------------------------------------------------------------

class ZeroVelocity(InitialCondition):
    """Set v = 0 on all vertices."""

    def apply(self, system) -> None:
        system.velocity = np.zeros((system.n_vertices, 3))


class UniformVelocity(InitialCondition):
    """Set v = v_vec on all vertices."""

    def __init__(self, v_vec):
        self.v_vec = np.asarray(v_vec, dtype=float)

    def apply(self, system) -> None:
        system.velocity = np.tile(self.v_vec, (system.n_vertices, 1))


class RandomPerturbation(InitialCondition):
    """Displace free vertices along their normals by gaussian noise.

    Draws from the system's own generator, so a seeded system gives the
    same perturbation every time.

    Parameters
    ----------
    amplitude : float
        Standard deviation of the normal displacement.
    """

    def __init__(self, amplitude: float):
        self.amplitude = amplitude

    def apply(self, system) -> None:
        noise = system.rng.normal(0.0, self.amplitude, size=system.n_vertices)
        displacement = noise[:, None] * system.geometry.vertex_normal
        system.positions = system.positions + displacement * system.force_mask
        system.update_configurations()
