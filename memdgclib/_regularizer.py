"""
Mesh regularization force.

Drives edge lengths, face areas and the conformal length cross-ratio of
each edge toward reference values stored at setup.  The force is tangential
only (its component along the vertex normal is removed), so it reshapes
triangles without changing the surface.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from memdgclib._errors import ConfigurationError
from memdgclib.operators import Geometry

logger = logging.getLogger(__name__)


def _unit(v):
    return v / np.linalg.norm(v, axis=1)[:, None]


def length_cross_ratio(geometry: Geometry) -> np.ndarray:
    """Length cross-ratio ``l_il l_jk / (l_ki l_lj)`` of every edge.

    For edge ``i -> j`` with ``l`` opposite in the face of halfedge ``2e``
    and ``k`` opposite in the twin's face.  Boundary edges get 1.
    """
    nxt = geometry.he_next
    l = geometry.edge_length
    h = np.arange(0, len(geometry.he_tail), 2)
    t = h + 1
    il = nxt[nxt[h]] >> 1
    lj = nxt[h] >> 1
    ki = nxt[t] >> 1
    jk = nxt[nxt[t]] >> 1
    with np.errstate(divide='ignore', invalid='ignore'):
        lcr = l[il] * l[jk] / (l[ki] * l[lj])
    return np.where(geometry.boundary_edge, 1.0, lcr)


@dataclass
class MeshRegularizer:
    """Stiffnesses and reference values of the regularization force.

    Attributes
    ----------
    Kst : float
        Conformal (length cross-ratio) stiffness.
    Ksl : float
        Local face-area stiffness.
    Kse : float
        Edge-length stiffness.
    exclude_boundary : bool
        Skip boundary vertices entirely.  Otherwise boundary vertices are
        pulled toward their own per-element references.
    """
    Kst: float = 0.0
    Ksl: float = 0.0
    Kse: float = 0.0
    exclude_boundary: bool = True
    ref_lcr: np.ndarray = field(default=None, repr=False)
    ref_edge_length: np.ndarray = field(default=None, repr=False)
    ref_face_area: np.ndarray = field(default=None, repr=False)
    mean_target_edge_length: float = 0.0
    mean_target_face_area: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.Kst != 0 or self.Ksl != 0 or self.Kse != 0

    def set_reference(self, geometry: Geometry, ref_geometry: Geometry = None):
        """Store references from ``ref_geometry`` (default ``geometry``).

        Mean targets come from the reference; per-element references must
        match the current mesh, so they come from ``geometry`` when the two
        differ in size.
        """
        ref = ref_geometry if ref_geometry is not None else geometry
        self.mean_target_edge_length = float(ref.edge_length.mean())
        self.mean_target_face_area = float(ref.face_area.mean())
        self.reset_element_references(
            ref if ref.n_edges == geometry.n_edges else geometry)

    def reset_element_references(self, geometry: Geometry):
        """Per-edge and per-face references after a topology change."""
        self.ref_lcr = length_cross_ratio(geometry)
        self.ref_edge_length = geometry.edge_length.copy()
        self.ref_face_area = geometry.face_area.copy()
        self._check_references()

    def _check_references(self):
        if self.Kse != 0 and (self.mean_target_edge_length <= 0
                              or np.any(self.ref_edge_length <= 0)):
            raise ConfigurationError("degenerate reference edge length")
        if self.Ksl != 0 and (self.mean_target_face_area <= 0
                              or np.any(self.ref_face_area <= 0)):
            raise ConfigurationError("degenerate reference face area")
        if self.Kst != 0 and (not np.all(np.isfinite(self.ref_lcr))
                              or np.any(self.ref_lcr <= 0)):
            raise ConfigurationError("degenerate reference length cross-ratio")

    def compute_force(self, geometry: Geometry) -> np.ndarray:
        """Tangential regularization force, ``(n, 3)`` (unmasked)."""
        n = geometry.n_vertices
        force = np.zeros((n, 3))
        if not self.is_active:
            return force
        if self.ref_edge_length is None:
            raise ConfigurationError("regularizer references are not set")
        if len(self.ref_edge_length) != geometry.n_edges:
            raise ConfigurationError(
                "regularizer references do not match the mesh; call "
                "reset_element_references after mutating the topology")

        he = np.arange(len(geometry.he_tail))
        nxt = geometry.he_next
        tail = geometry.he_tail
        edge = he >> 1
        e = geometry.halfedge_vector
        l = geometry.edge_length
        boundary_tail = geometry.boundary_vertex[tail]
        active = ~boundary_tail if self.exclude_boundary else np.ones(len(he), bool)
        per_he = np.zeros((len(he), 3))

        if self.Kst != 0:
            sel = active & ~geometry.boundary_edge[edge]
            jl = nxt[he]
            li = nxt[jl]
            ik = nxt[he ^ 1]
            kj = nxt[ik]
            lcr = length_cross_ratio(geometry)[edge]
            ref = self.ref_lcr[edge]
            grad_li = _unit(e[li])
            grad_ik = _unit(e[ik ^ 1])
            l_ik, l_li = l[ik >> 1], l[li >> 1]
            term = (-self.Kst * ((lcr - ref) / ref)[:, None]
                    * (l[kj >> 1] / l[jl >> 1])[:, None]
                    * (grad_li * l_ik[:, None] - grad_ik * l_li[:, None])
                    / (l_ik * l_ik)[:, None])
            per_he += np.where(sel[:, None], term, 0.0)

        if self.Ksl != 0:
            sel = active & geometry.interior_halfedge
            base = nxt[he]
            face = geometry.he_face
            grad = -np.cross(e[base], geometry.face_normal[face])
            area = geometry.face_area[face]
            ref = np.where(boundary_tail, self.ref_face_area[face],
                           self.mean_target_face_area)
            per_he += np.where(sel[:, None],
                               -self.Ksl * grad * (area - ref)[:, None], 0.0)

        if self.Kse != 0:
            grad = -_unit(e)
            ref = np.where(boundary_tail, self.ref_edge_length[edge],
                           self.mean_target_edge_length)
            per_he += np.where(active[:, None],
                               -self.Kse * grad * (l[edge] - ref)[:, None], 0.0)

        np.add.at(force, tail, per_he)
        normal = geometry.vertex_normal
        force -= np.einsum('ij,ij->i', force, normal)[:, None] * normal
        return force
