"""
Force and chemical-potential engine.

Every vector force is assembled per halfedge and scattered onto the tail
vertex (``np.add.at``); all inputs come from one frozen
:class:`~memdgclib.operators.Geometry` snapshot, so the functions here are
pure and calling them twice gives identical arrays.

Sign conventions: a *force* is minus the gradient of the corresponding
energy with respect to vertex positions, and a *potential* is minus the
derivative with respect to protein density.  Masks are applied by the
caller through :meth:`Forces.mask_force` / :meth:`Forces.mask_protein`.

Usage
-----
    from memdgclib._forces import bending_forces, capillary_force

    schlafli, area, gauss = bending_forces(geo, H0, Kb)
    F_cap = capillary_force(geo, tension=1e-2)
"""

import logging
from dataclasses import dataclass, field, fields

import numpy as np

from memdgclib._parameters import K_BOLTZMANN
from memdgclib.operators import Geometry

logger = logging.getLogger(__name__)

#: Terms summed into the mechanical force, in diagnostic order
MECHANICAL_FORCES = ('bending', 'capillary', 'osmotic', 'line_tension',
                     'adsorption', 'aggregation', 'external')
#: Terms summed into the chemical potential
CHEMICAL_POTENTIALS = ('adsorption_potential', 'aggregation_potential',
                       'bending_potential', 'diffusion_potential',
                       'interior_penalty_potential')

#: Line tension acts only where ``LINE_TENSION_BAND[0] < phi < LINE_TENSION_BAND[1]``
LINE_TENSION_BAND = (0.1, 0.9)


def _cross(a, b):
    return np.cross(a, b)


def _scatter(geometry: Geometry, per_halfedge: np.ndarray) -> np.ndarray:
    """Sum a per-halfedge quantity onto the tail vertices."""
    out = np.zeros((geometry.n_vertices,) + per_halfedge.shape[1:])
    np.add.at(out, geometry.he_tail, per_halfedge)
    return out


# ---------------------------------------------------------------------------
# Halfedge variation vectors
# ---------------------------------------------------------------------------

def halfedge_area_gradient(geometry: Geometry) -> np.ndarray:
    """Half of the area gradient of the two faces of each halfedge.

    Summing over the outgoing halfedges of a vertex gives the gradient of
    the total area with respect to that vertex.
    """
    he = np.arange(len(geometry.he_tail))
    nxt = geometry.he_next
    twin = he ^ 1
    e = geometry.halfedge_vector
    n = geometry.halfedge_face_normal
    return 0.25 * (_cross(n, e[nxt]) + _cross(n[twin], e[nxt[nxt[twin]]]))


def halfedge_volume_gradient(geometry: Geometry) -> np.ndarray:
    """Volume gradient contributed by the face of each halfedge."""
    return (geometry.halfedge_face_normal
            * geometry.halfedge_face_area[:, None] / 3.0)


def halfedge_gauss_vector(geometry: Geometry) -> np.ndarray:
    """``0.5 * theta * grad(l)`` of the halfedge's edge at its tail."""
    edge = np.arange(len(geometry.he_tail)) >> 1
    length = geometry.edge_length[edge]
    theta = geometry.dihedral_angle[edge]
    return -0.5 * theta[:, None] * geometry.halfedge_vector / length[:, None]


def halfedge_schlafli_vectors(geometry: Geometry) -> tuple:
    """Schlafli vectors of each halfedge for its tail and tip curvatures.

    ``vec1`` weights the tail's curvature, ``vec2`` the tip's.  At the
    boundary the terms of edges with no dihedral angle are dropped.
    """
    he = np.arange(len(geometry.he_tail))
    nxt = geometry.he_next
    twin = he ^ 1
    c = geometry.halfedge_cotan
    n = geometry.halfedge_face_normal
    interior = geometry.interior_halfedge
    boundary_edge = geometry.boundary_edge[he >> 1]
    boundary_tail = geometry.boundary_vertex[geometry.he_tail]
    boundary_tip = geometry.boundary_vertex[geometry.he_tip]

    hnn = nxt[nxt]
    tn = nxt[twin]
    own = c[hnn, None] * n + c[tn, None] * n[twin]
    vec1 = np.where(boundary_edge[:, None], 0.0, own)

    # tail on the boundary and edge on the boundary: one face only
    along_boundary = np.where(interior[:, None],
                              -(c[he] + c[hnn])[:, None] * n,
                              -(c[twin] + c[tn])[:, None] * n[twin])

    # interior tail, boundary tip: neighbours of the tip may be boundary edges
    tip_on_boundary = own.copy()
    keep_f = ~geometry.boundary_edge[nxt >> 1]
    keep_g = ~geometry.boundary_edge[nxt[nxt[twin]] >> 1]
    tip_on_boundary -= np.where(keep_f[:, None], (c[he] + c[hnn])[:, None] * n, 0.0)
    tip_on_boundary -= np.where(keep_g[:, None],
                                (c[twin] + c[tn])[:, None] * n[twin], 0.0)

    generic = -(c[he, None] * n + c[twin, None] * n[twin])

    vec2 = np.where((boundary_tail & boundary_edge)[:, None], along_boundary,
                    np.where((~boundary_tail & boundary_tip)[:, None],
                             tip_on_boundary, generic))
    return vec1, vec2


# ---------------------------------------------------------------------------
# Mechanical forces
# ---------------------------------------------------------------------------

def bending_forces(geometry: Geometry, H0: np.ndarray, Kb: np.ndarray) -> tuple:
    """Helfrich bending force split into its three variation terms.

    Energy ``sum_i Kb_i (H_i - H0_i)^2 A_i`` with ``H = H_integrated / A``.

    Returns
    -------
    schlafli, area, gauss : ndarray, shape (n, 3)
        Their sum is the bending force.
    """
    H = geometry.mean_curvature
    i, j = geometry.he_tail, geometry.he_tip
    dev_i = Kb[i] * (H[i] - H0[i])
    dev_j = Kb[j] * (H[j] - H0[j])
    area_coef = (Kb[i] * (H0[i] ** 2 - H[i] ** 2) / 3.0
                 + Kb[j] * (H0[j] ** 2 - H[j] ** 2) * 2.0 / 3.0)

    vec1, vec2 = halfedge_schlafli_vectors(geometry)
    schlafli = -(dev_i[:, None] * vec1 + dev_j[:, None] * vec2)
    area = -area_coef[:, None] * halfedge_area_gradient(geometry)
    gauss = -(dev_i + dev_j)[:, None] * halfedge_gauss_vector(geometry)
    return (_scatter(geometry, schlafli), _scatter(geometry, area),
            _scatter(geometry, gauss))


def capillary_force(geometry: Geometry, tension: float) -> np.ndarray:
    """``-tension * grad(A)``."""
    return -tension * _scatter(geometry, halfedge_area_gradient(geometry))


def osmotic_force(geometry: Geometry, pressure: float) -> np.ndarray:
    """``pressure * grad(V)``."""
    return pressure * _scatter(geometry, halfedge_volume_gradient(geometry))


def adsorption_force(geometry: Geometry, phi: np.ndarray, epsilon: float) -> np.ndarray:
    """Force of the adsorption energy ``epsilon sum_i phi_i A_i``."""
    i, j = geometry.he_tail, geometry.he_tip
    coef = (phi[i] / 3.0 + phi[j] * 2.0 / 3.0) * epsilon
    return -_scatter(geometry, coef[:, None] * halfedge_area_gradient(geometry))


def aggregation_force(geometry: Geometry, phi: np.ndarray, chi: float) -> np.ndarray:
    """Force of the aggregation energy ``chi sum_i phi_i^2 A_i``."""
    i, j = geometry.he_tail, geometry.he_tip
    coef = (phi[i] ** 2 / 3.0 + phi[j] ** 2 * 2.0 / 3.0) * chi
    return -_scatter(geometry, coef[:, None] * halfedge_area_gradient(geometry))


def dirichlet_energy_gradient(geometry: Geometry, phi: np.ndarray, eta: float) -> np.ndarray:
    """Position gradient of ``eta / 2 sum_f A_f |grad phi|_f^2``.

    Per face ``(a, b, c)`` the energy is ``eta |u|^2 / (8 A_f)`` with
    ``u = x_a (phi_b - phi_c) + x_b (phi_c - phi_a) + x_c (phi_a - phi_b)``,
    which equals ``eta / 2 phi^T L phi`` summed over faces.
    """
    F = geometry.faces
    x = geometry.positions
    N = geometry.face_normal
    A = geometry.face_area
    p = phi[F]
    u = np.zeros((len(F), 3))
    for k in range(3):
        u += x[F[:, k]] * (p[:, (k + 1) % 3] - p[:, (k + 2) % 3])[:, None]
    u2 = np.einsum('ij,ij->i', u, u)

    grad = np.zeros((geometry.n_vertices, 3))
    for k in range(3):
        a, b, c = F[:, k], F[:, (k + 1) % 3], F[:, (k + 2) % 3]
        grad_area = 0.5 * _cross(N, x[c] - x[b])
        dphi = (p[:, (k + 1) % 3] - p[:, (k + 2) % 3])[:, None]
        term = (2.0 * dphi * u / A[:, None]
                - (u2 / A ** 2)[:, None] * grad_area)
        np.add.at(grad, a, eta / 8.0 * term)
    return grad


def line_tension_force(geometry: Geometry, phi: np.ndarray, eta: float,
                       band: tuple = LINE_TENSION_BAND) -> np.ndarray:
    """Line tension of protein domain boundaries.

    Minus the Dirichlet-energy gradient, kept only on vertices whose density
    lies strictly inside ``band``.
    """
    if eta == 0:
        return np.zeros((geometry.n_vertices, 3))
    active = (phi > band[0]) & (phi < band[1])
    return -dirichlet_energy_gradient(geometry, phi, eta) * active[:, None]


def gaussian(d: np.ndarray, std: float) -> np.ndarray:
    """Unnormalised gaussian ``exp(-d^2 / (2 std^2))``."""
    return np.exp(-d * d / (2.0 * std * std))


def external_force(geometry: Geometry, distance: np.ndarray, Kf: float,
                   std: float, decay_time: float, time: float) -> np.ndarray:
    """Decaying gaussian anchor force along +z centred on the tracked point."""
    if Kf == 0:
        return np.zeros((geometry.n_vertices, 3))
    magnitude = (np.exp(-time / decay_time) * Kf * gaussian(distance, std)
                 * geometry.dual_area)
    out = np.zeros((geometry.n_vertices, 3))
    out[:, 2] = magnitude
    return out


def dpd_forces(geometry: Geometry, velocity: np.ndarray, gamma: float,
               temperature: float, dt: float, rng: np.random.Generator) -> tuple:
    """Pairwise damping and thermal noise along every edge.

    The noise has standard deviation ``sqrt(2 gamma kB T / dt)`` and is drawn
    from ``rng`` (one sample per edge), so a seeded generator gives
    reproducible forces.

    Returns
    -------
    damping, stochastic : ndarray, shape (n, 3)
    """
    n = geometry.n_vertices
    damping = np.zeros((n, 3))
    stochastic = np.zeros((n, 3))
    v1, v2 = geometry.edges[:, 0], geometry.edges[:, 1]
    direction = geometry.positions[v1] - geometry.positions[v2]
    direction /= np.linalg.norm(direction, axis=1)[:, None]

    if gamma != 0:
        dvel = velocity[v1] - velocity[v2]
        df = gamma * np.einsum('ij,ij->i', dvel, direction)[:, None] * direction
        np.add.at(damping, v1, -df)
        np.add.at(damping, v2, df)

    sigma = np.sqrt(2.0 * gamma * K_BOLTZMANN * temperature / dt) if dt > 0 else 0.0
    if sigma != 0:
        noise = rng.normal(0.0, sigma, size=len(v1))[:, None] * direction
        np.add.at(stochastic, v1, noise)
        np.add.at(stochastic, v2, -noise)
    return damping, stochastic


# ---------------------------------------------------------------------------
# Chemical potentials
# ---------------------------------------------------------------------------

def chemical_potentials(geometry: Geometry, phi: np.ndarray, H0: np.ndarray,
                        Kb: np.ndarray, dH0dphi: np.ndarray, dKbdphi: np.ndarray,
                        epsilon: float, chi: float, eta: float,
                        lambda_phi: float) -> dict:
    """Unmasked chemical potentials keyed like :data:`CHEMICAL_POTENTIALS`."""
    A = geometry.dual_area
    dH = geometry.mean_curvature - H0
    return {
        'adsorption_potential': -epsilon * A,
        'aggregation_potential': -2.0 * chi * phi * A,
        'bending_potential': -A * (dH * dH * dKbdphi - 2.0 * Kb * dH * dH0dphi),
        'diffusion_potential': -eta * (geometry.laplacian @ phi),
        'interior_penalty_potential': lambda_phi * (1.0 / phi - 1.0 / (1.0 - phi)),
    }


# ---------------------------------------------------------------------------
# Force record
# ---------------------------------------------------------------------------

def _zeros3(n):
    return np.zeros((n, 3))


@dataclass
class Forces:
    """Masked forces and potentials of one configuration.

    Vector forces are ``(n, 3)``; potentials are ``(n,)``.  ``surface_tension``
    and ``osmotic_pressure`` are the scalars used for the capillary and
    osmotic terms.
    """
    force_mask: np.ndarray
    protein_mask: np.ndarray
    bending_schlafli: np.ndarray = None
    bending_area: np.ndarray = None
    bending_gauss: np.ndarray = None
    bending: np.ndarray = None
    capillary: np.ndarray = None
    osmotic: np.ndarray = None
    line_tension: np.ndarray = None
    adsorption: np.ndarray = None
    aggregation: np.ndarray = None
    external: np.ndarray = None
    damping: np.ndarray = None
    stochastic: np.ndarray = None
    regularization: np.ndarray = None
    adsorption_potential: np.ndarray = None
    aggregation_potential: np.ndarray = None
    bending_potential: np.ndarray = None
    diffusion_potential: np.ndarray = None
    interior_penalty_potential: np.ndarray = None
    surface_tension: float = 0.0
    osmotic_pressure: float = 0.0
    _normals: np.ndarray = field(default=None, repr=False)

    def __post_init__(self):
        n = len(self.protein_mask)
        for f in fields(self):
            if getattr(self, f.name) is None and not f.name.startswith('_'):
                if f.name.endswith('potential'):
                    setattr(self, f.name, np.zeros(n))
                else:
                    setattr(self, f.name, _zeros3(n))

    @property
    def n_vertices(self) -> int:
        return len(self.protein_mask)

    def mask_force(self, vec: np.ndarray) -> np.ndarray:
        return vec * self.force_mask

    def mask_protein(self, values: np.ndarray) -> np.ndarray:
        return values * self.protein_mask

    @property
    def mechanical_force(self) -> np.ndarray:
        """Sum of the conservative mechanical forces (masked)."""
        return sum(getattr(self, name) for name in MECHANICAL_FORCES)

    @property
    def chemical_potential(self) -> np.ndarray:
        return sum(getattr(self, name) for name in CHEMICAL_POTENTIALS)

    @property
    def dpd_force(self) -> np.ndarray:
        return self.damping + self.stochastic

    def set_normals(self, vertex_normal: np.ndarray):
        self._normals = vertex_normal

    def onto_normal(self, vec: np.ndarray) -> np.ndarray:
        """Scalar projection of a vector force onto the vertex normals."""
        return np.einsum('ij,ij->i', vec, self._normals)

    def scalar(self, name: str) -> np.ndarray:
        """Normal component of the named vector force (diagnostics)."""
        return self.onto_normal(getattr(self, name))

    @property
    def mechanical_error_norm(self) -> float:
        return float(np.linalg.norm(self.mechanical_force))

    @property
    def chemical_error_norm(self) -> float:
        return float(np.linalg.norm(self.chemical_potential))
