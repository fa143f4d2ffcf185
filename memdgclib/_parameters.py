"""
Physical parameters of a membrane simulation.

``Parameters`` is a tree of dataclasses, one per energy term or concern,
plus the top-level ``temperature`` and ``protein_mobility``.  It is fixed
during a step; integrators only touch the Lagrange multipliers and penalty
stiffnesses of the area/volume constraints between steps.

Usage
-----
    from memdgclib._parameters import Parameters

    p = Parameters.from_dict({
        'bending': {'Kb': 8.22e-5, 'H0c': -1.0},
        'tension': {'Ksg': 1e-2},
        'osmotic': {'is_preferred_volume': True, 'Kv': 1e-2, 'Vt': 0.7},
        'variation': {'is_protein_variation': True},
        'protein_mobility': 1.0,
    })
    p.check()
    p.to_dict()
"""

import dataclasses
import enum
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from memdgclib._errors import ConfigurationError

#: Boltzmann constant in the simulation unit system (um, nN, s, K)
K_BOLTZMANN = 1.380649e-5


# ---------------------------------------------------------------------------
# Bending-to-density relations
# ---------------------------------------------------------------------------

class BendingRelation(enum.Enum):
    """How spontaneous curvature and bending rigidity follow protein density."""
    LINEAR = "linear"
    HILL = "hill"


class LinearRelation:
    """``h(phi) = phi``."""

    @staticmethod
    def value(phi):
        return phi

    @staticmethod
    def derivative(phi):
        return np.ones_like(phi)


class HillRelation:
    """``h(phi) = phi^2 / (1 + phi^2)`` (Hill coefficient 2)."""

    @staticmethod
    def value(phi):
        phi2 = phi * phi
        return phi2 / (1.0 + phi2)

    @staticmethod
    def derivative(phi):
        return 2.0 * phi / (1.0 + phi * phi) ** 2


_RELATIONS = {
    BendingRelation.LINEAR: LinearRelation,
    BendingRelation.HILL: HillRelation,
}


def relation_strategy(relation: BendingRelation):
    """Resolve a :class:`BendingRelation` into its strategy object."""
    return _RELATIONS[BendingRelation(relation)]()


# ---------------------------------------------------------------------------
# Parameter groups
# ---------------------------------------------------------------------------

@dataclass
class BendingParameters:
    """Helfrich bending.  ``H0 = H0c h(phi)``, ``Kb_i = Kb + Kbc h(phi)``."""
    Kb: float = 0.0
    Kbc: float = 0.0
    H0c: float = 0.0
    relation: BendingRelation = BendingRelation.LINEAR


@dataclass
class TensionParameters:
    """Surface tension.

    With ``is_constant_surface_tension`` (or on an open mesh) the tension is
    ``Ksg``; otherwise it is the area penalty ``Ksg (A - At) / At + lambda_SG``.
    ``At <= 0`` means "the initial area".
    """
    is_constant_surface_tension: bool = False
    Ksg: float = 0.0
    At: float = -1.0
    lambda_SG: float = 0.0


@dataclass
class OsmoticParameters:
    """Osmotic pressure.

    Policies: constant pressure ``Kv`` (also used for open meshes), preferred
    reduced volume ``Vt`` with stiffness ``Kv``, or an ideal-gas relation
    ``Kv (n / V - cam)``.  ``Vt <= 0`` and ``cam <= 0`` mean "from the
    initial configuration".
    """
    is_preferred_volume: bool = False
    is_constant_osmotic_pressure: bool = False
    Kv: float = 0.0
    Vt: float = -1.0
    cam: float = -1.0
    n: float = 1.0
    lambda_V: float = 0.0


@dataclass
class AdsorptionParameters:
    epsilon: float = 0.0


@dataclass
class AggregationParameters:
    chi: float = 0.0


@dataclass
class DirichletParameters:
    """Line tension of protein domains (Dirichlet energy of phi)."""
    eta: float = 0.0


@dataclass
class DPDParameters:
    """Dissipative particle dynamics damping coefficient."""
    gamma: float = 0.0


@dataclass
class ExternalParameters:
    """Gaussian anchor force along +z centred on the tracked point.

    ``F_i = exp(-t / decay_time) Kf exp(-d_i^2 / (2 std^2)) A_i z``.
    """
    Kf: float = 0.0
    std: float = 1.0
    decay_time: float = math.inf


@dataclass
class BoundaryParameters:
    """Names of the boundary conditions applied on open meshes."""
    shape_boundary_condition: str = "none"
    protein_boundary_condition: str = "none"


@dataclass
class ProteinParameters:
    """Initial protein density and its interior penalty.

    ``protein0`` is one value (uniform), four values ``[r1, r2, phi_in,
    phi_out]`` (geodesic disk with a tanh rim) or one value per vertex.
    """
    protein0: Sequence[float] = field(default_factory=lambda: [0.5])
    lambda_phi: float = 1e-9
    tanh_sharpness: float = 20.0


@dataclass
class PointParameters:
    """Tracked point: a vertex index (one value) or coordinates (2 or 3).

    With ``is_float_vertex`` the closest vertex to ``pt`` is looked up again
    at every geodesic update instead of being carried through mutations.
    """
    pt: Sequence[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    is_float_vertex: bool = False


@dataclass
class VariationParameters:
    """Which degrees of freedom evolve.

    ``geodesic_mask > 0`` freezes vertices farther than this geodesic
    distance from the tracked point.
    """
    is_shape_variation: bool = True
    is_protein_variation: bool = False
    geodesic_mask: float = -1.0


_SECTIONS = {
    'bending': BendingParameters,
    'tension': TensionParameters,
    'osmotic': OsmoticParameters,
    'adsorption': AdsorptionParameters,
    'aggregation': AggregationParameters,
    'dirichlet': DirichletParameters,
    'dpd': DPDParameters,
    'external': ExternalParameters,
    'boundary': BoundaryParameters,
    'protein': ProteinParameters,
    'point': PointParameters,
    'variation': VariationParameters,
}


@dataclass
class Parameters:
    """Complete parameter bundle of a membrane system."""
    bending: BendingParameters = field(default_factory=BendingParameters)
    tension: TensionParameters = field(default_factory=TensionParameters)
    osmotic: OsmoticParameters = field(default_factory=OsmoticParameters)
    adsorption: AdsorptionParameters = field(default_factory=AdsorptionParameters)
    aggregation: AggregationParameters = field(default_factory=AggregationParameters)
    dirichlet: DirichletParameters = field(default_factory=DirichletParameters)
    dpd: DPDParameters = field(default_factory=DPDParameters)
    external: ExternalParameters = field(default_factory=ExternalParameters)
    boundary: BoundaryParameters = field(default_factory=BoundaryParameters)
    protein: ProteinParameters = field(default_factory=ProteinParameters)
    point: PointParameters = field(default_factory=PointParameters)
    variation: VariationParameters = field(default_factory=VariationParameters)
    temperature: float = 0.0
    protein_mobility: float = 0.0

    @classmethod
    def from_dict(cls, d: dict) -> 'Parameters':
        """Build from nested dictionaries; unknown keys are an error."""
        kwargs = {}
        for key, value in d.items():
            if key in _SECTIONS:
                section = _SECTIONS[key]
                names = {f.name for f in dataclasses.fields(section)}
                unknown = set(value) - names
                if unknown:
                    raise ConfigurationError(
                        f"Unknown {key} parameter(s): {sorted(unknown)}. "
                        f"Available: {sorted(names)}")
                value = dict(value)
                if 'relation' in value:
                    value['relation'] = _to_relation(value['relation'])
                kwargs[key] = section(**value)
            elif key in ('temperature', 'protein_mobility'):
                kwargs[key] = float(value)
            else:
                raise ConfigurationError(
                    f"Unknown parameter group: {key!r}. "
                    f"Available: {sorted(_SECTIONS) + ['protein_mobility', 'temperature']}")
        return cls(**kwargs)

    def to_dict(self) -> dict:
        """Plain nested dictionaries (JSON serialisable)."""
        out = {}
        for key in _SECTIONS:
            section = {}
            for f in dataclasses.fields(getattr(self, key)):
                value = getattr(getattr(self, key), f.name)
                if isinstance(value, enum.Enum):
                    value = value.value
                elif isinstance(value, np.ndarray):
                    value = value.tolist()
                elif isinstance(value, tuple):
                    value = list(value)
                section[f.name] = value
            out[key] = section
        out['temperature'] = self.temperature
        out['protein_mobility'] = self.protein_mobility
        return out

    def check(self) -> 'Parameters':
        """Validate the bundle; raise :class:`ConfigurationError`.

        Returns self so it can be chained after construction.
        """
        self.bending.relation = _to_relation(self.bending.relation)
        if self.bending.Kb < 0:
            raise ConfigurationError("bending rigidity Kb must be non-negative")
        if self.osmotic.is_preferred_volume and self.osmotic.is_constant_osmotic_pressure:
            raise ConfigurationError(
                "is_preferred_volume and is_constant_osmotic_pressure are "
                "mutually exclusive")
        if self.osmotic.n <= 0:
            raise ConfigurationError("osmotic n must be positive")
        if self.dpd.gamma < 0:
            raise ConfigurationError("DPD gamma must be non-negative")
        if self.temperature < 0:
            raise ConfigurationError("temperature must be non-negative")
        if self.protein.lambda_phi < 0:
            raise ConfigurationError("lambda_phi must be non-negative")
        if self.external.Kf != 0 and self.external.std <= 0:
            raise ConfigurationError("external force std must be positive")
        if self.external.decay_time <= 0:
            raise ConfigurationError("external force decay_time must be positive")
        if not (self.variation.is_shape_variation
                or self.variation.is_protein_variation):
            raise ConfigurationError(
                "at least one of shape or protein variation must be enabled")
        if self.variation.is_protein_variation and self.protein_mobility <= 0:
            raise ConfigurationError(
                "protein variation requires a positive protein_mobility")

        protein0 = np.atleast_1d(np.asarray(self.protein.protein0, dtype=float))
        if len(protein0) == 4:
            r1, r2, phi_in, phi_out = protein0
            if r1 <= 0 or r2 <= 0:
                raise ConfigurationError("protein disk radii must be positive")
            if self.protein.tanh_sharpness <= 0:
                raise ConfigurationError("tanh_sharpness must be positive")
            densities = np.array([phi_in, phi_out])
        else:
            densities = protein0
        if np.any(densities <= 0) or np.any(densities >= 1):
            raise ConfigurationError(
                "protein densities must lie strictly inside (0, 1)")

        if len(np.atleast_1d(self.point.pt)) not in (1, 2, 3):
            raise ConfigurationError(
                "point.pt must be a vertex index or 2/3 coordinates")
        return self


def _to_relation(value) -> BendingRelation:
    if isinstance(value, BendingRelation):
        return value
    try:
        return BendingRelation(str(value).lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown bending relation: {value!r}. "
            f"Available: {[r.value for r in BendingRelation]}") from None
