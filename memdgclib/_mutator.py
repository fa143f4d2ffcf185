"""
Topological mesh mutation: vertex shift, edge split/collapse, edge flip and
the smoothing that follows a mutation.

A mutation cycle runs up to three passes in a fixed order:

1. vertex shift (tangential relocation toward the neighbour centroid),
2. split/collapse over the original edges,
3. three flip passes over the original edges.

Within a pass every edge is visited at most once and an edge whose
neighbourhood has already been edited is skipped, so edits never cascade.
After any topology change the mesh is compressed, the vertex fields are
gathered through the returned :class:`~memdgclib._mesh.Reindex` and the
system refreshes its masks and tracked point.

Usage
-----
    from memdgclib._mutator import MeshMutator

    mutator = MeshMutator(flip_non_delaunay=True, split_long=True,
                          max_edge_length=0.3)
    changed = mutator.mutate(system)
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from memdgclib._errors import ConfigurationError, TopologyError
from memdgclib._forces import bending_forces

logger = logging.getLogger(__name__)

#: Number of flip passes per mutation cycle
FLIP_PASSES = 3
#: Edge cotan weight below which an edge counts as non-Delaunay
_DELAUNAY_TOL = 1e-6

SMOOTHING_MODES = ("global", "local", "none")

# per-vertex arrays that are averaged onto split and collapse survivors
_AVERAGED_FIELDS = ('positions', 'velocity', 'protein_density',
                    'protein_velocity', 'geodesic_distance')


def outlier_mask(values: np.ndarray, threshold: float = 0.5) -> np.ndarray:
    """Vertices whose value deviates from the mean by more than
    ``threshold`` standard deviations."""
    values = np.asarray(values, dtype=float)
    std = values.std()
    if std == 0:
        return np.zeros(len(values), dtype=bool)
    return np.abs(values - values.mean()) > threshold * std


def _triangle_area(x, f_vertices):
    a, b, c = (x[k] for k in f_vertices)
    return 0.5 * np.linalg.norm(np.cross(b - a, c - a))


@dataclass
class MeshMutator:
    """Flags and thresholds of the topological mesh mutation.

    Attributes
    ----------
    shift_vertex : bool
        Relocate free vertices toward the centroid of their neighbours.
    flip_non_delaunay : bool
        Flip interior edges whose opposite angles sum above pi.
    flip_require_flat : bool
        Only flip edges whose dihedral angle is below ``flat_dihedral``.
    split_long, split_large, split_curved : bool
        Split edges longer than ``max_edge_length``, next to a face larger
        than ``max_face_area``, or with ``length * max|H|`` above
        ``curvature_tolerance``.
    collapse_short, collapse_small : bool
        Collapse interior edges shorter than ``min_edge_length`` or whose
        adjacent faces are both smaller than ``min_face_area``.
    smoothing : str
        ``"global"``, ``"local"`` or ``"none"``; run after a topology change.
    """
    shift_vertex: bool = False
    flip_non_delaunay: bool = False
    flip_require_flat: bool = False
    flat_dihedral: float = math.pi / 36
    split_long: bool = False
    max_edge_length: float = math.inf
    split_large: bool = False
    max_face_area: float = math.inf
    split_curved: bool = False
    curvature_tolerance: float = math.inf
    collapse_short: bool = False
    min_edge_length: float = 0.0
    collapse_small: bool = False
    min_face_area: float = 0.0
    smoothing: str = "global"
    smoothing_target: float = 0.7
    smoothing_step: float = 1e-3
    smoothing_max_iteration: int = 1000
    outlier_threshold: float = 0.5
    local_smoothing_iterations: int = 10
    local_smoothing_step: float = 0.1

    def __post_init__(self):
        if self.smoothing is None:
            self.smoothing = "none"
        if self.smoothing not in SMOOTHING_MODES:
            raise ConfigurationError(
                f"Unknown smoothing mode: {self.smoothing!r}. "
                f"Available: {list(SMOOTHING_MODES)}")

    @property
    def is_flip(self) -> bool:
        return self.flip_non_delaunay

    @property
    def is_split(self) -> bool:
        return self.split_long or self.split_large or self.split_curved

    @property
    def is_collapse(self) -> bool:
        return self.collapse_short or self.collapse_small

    @property
    def is_active(self) -> bool:
        return self.shift_vertex or self.is_flip or self.is_split or self.is_collapse

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def should_split(self, mesh, positions, e, H) -> bool:
        i, j = mesh.edge_vertices(e)
        length = np.linalg.norm(positions[i] - positions[j])
        if self.split_long and length > self.max_edge_length:
            return True
        if self.split_large:
            for h in (2 * e, 2 * e + 1):
                f = mesh.face(h)
                if f >= 0 and _triangle_area(
                        positions, mesh.face_vertices(f)) > self.max_face_area:
                    return True
        if self.split_curved and i < len(H) and j < len(H):
            if length * max(abs(H[i]), abs(H[j])) > self.curvature_tolerance:
                return True
        return False

    def should_collapse(self, mesh, positions, e) -> bool:
        if mesh.is_boundary_edge(e):
            return False
        i, j = mesh.edge_vertices(e)
        if self.collapse_short:
            if np.linalg.norm(positions[i] - positions[j]) < self.min_edge_length:
                return True
        if self.collapse_small:
            areas = [_triangle_area(positions, mesh.face_vertices(mesh.face(h)))
                     for h in (2 * e, 2 * e + 1)]
            if max(areas) < self.min_face_area:
                return True
        return False

    def should_flip(self, geometry, e) -> bool:
        if geometry.boundary_edge[e]:
            return False
        if geometry.edge_cotan[e] >= -_DELAUNAY_TOL:
            return False
        if self.flip_require_flat:
            return abs(geometry.dihedral_angle[e]) < self.flat_dihedral
        return True

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def mutate(self, system) -> bool:
        """Run one mutation cycle on ``system``; True if topology changed."""
        smoothing_region = set()
        if self.shift_vertex:
            self.vertex_shift(system)
            system.refresh_geometry()

        grown = False
        if self.is_split or self.is_collapse:
            grown = self.grow_mesh(system, smoothing_region)

        flipped = False
        if self.is_flip:
            for _ in range(FLIP_PASSES):
                flipped |= self.flip_pass(system, smoothing_region)

        changed = grown or flipped
        if changed:
            system.global_update_after_mutation()
            region = np.zeros(system.n_vertices, dtype=bool)
            region[list(smoothing_region)] = True
            if self.smoothing == "global":
                self.global_smoothing(system, region)
            elif self.smoothing == "local":
                self.local_smoothing(system, region)
            if self.smoothing != "none":
                system.refresh_geometry()
        return changed

    def vertex_shift(self, system):
        """Move every free vertex to its neighbour centroid, tangentially.

        Interior vertices lose the normal component of the move; boundary
        vertices move to the midpoint of their two boundary neighbours,
        restricted to the plane of the boundary curve.

        Raises
        ------
        TopologyError
            If a free boundary vertex does not have exactly two boundary
            neighbours.
        """
        mesh = system.mesh
        x = system.positions
        normal = system.geometry.vertex_normal
        new = x.copy()
        for v in range(mesh.n_vertices):
            if system.force_mask[v].sum() <= 0.5:
                continue
            neighbors = mesh.vertex_neighbors(v)
            if mesh.is_boundary_vertex(v):
                ends = [u for u in neighbors if mesh.is_boundary_vertex(u)]
                if len(ends) != 2:
                    raise TopologyError(
                        f"vertex shift: boundary vertex {v} has {len(ends)} "
                        f"boundary neighbours, expected 2")
                v1, v2 = ends
                center = 0.5 * (x[v1] + x[v2])
                face_normal = np.cross(x[v1] - x[v], x[v2] - x[v])
                side = np.cross(face_normal, x[v1] - x[v2])
                side_norm = np.linalg.norm(side)
                if side_norm > 0:
                    side /= side_norm
                    center = center - np.dot(side, center - x[v]) * side
                new[v] = center
            else:
                center = x[neighbors].mean(axis=0)
                n = normal[v]
                new[v] = center - np.dot(n, center - x[v]) * n
        system.positions = new

    def grow_mesh(self, system, smoothing_region: set) -> bool:
        """Split/collapse pass over the original edges."""
        mesh = system.mesh
        H = system.geometry.mean_curvature
        n_original = mesh.n_edges
        touched = set()
        n_split = n_collapse = 0

        for e in range(n_original):
            if e in touched or not mesh.edge_alive(e):
                continue
            i, j = mesh.edge_vertices(e)
            if system.force_mask[i].sum() + system.force_mask[j].sum() < 0.5:
                continue

            if self.should_split(mesh, system.positions, e, H):
                m = mesh.split_edge(e)
                _append_split_vertex(system, i, j, m)
                touched.update(mesh.vertex_edges(m))
                smoothing_region.update(_with_neighbors(mesh, m))
                n_split += 1
            elif (self.should_collapse(mesh, system.positions, e)
                  and mesh.can_collapse(e)):
                position = _collapsed_position(system, mesh, i, j)
                the_point = system.the_point[i] or system.the_point[j]
                averaged = {name: 0.5 * (getattr(system, name)[i]
                                         + getattr(system, name)[j])
                            for name in _AVERAGED_FIELDS}
                a = mesh.collapse_edge(e)
                for name, value in averaged.items():
                    getattr(system, name)[a] = value
                system.positions[a] = position
                system.the_point[a] = the_point
                touched.update(mesh.vertex_edges(a))
                smoothing_region.update(_with_neighbors(mesh, a))
                n_collapse += 1

        if n_split == 0 and n_collapse == 0:
            return False
        reindex = mesh.compress()
        system.reindex_fields(reindex)
        _remap_region(smoothing_region, reindex)
        system.refresh_geometry()
        logger.info(f"grow_mesh: {n_split} split(s), {n_collapse} collapse(s), "
                    f"{mesh.n_vertices} vertices")
        return True

    def flip_pass(self, system, smoothing_region: set) -> bool:
        """One flip pass over the original edges.  Indices are preserved."""
        mesh = system.mesh
        geometry = system.geometry
        touched = set()
        n_flip = 0
        for e in range(geometry.n_edges):
            if e in touched:
                continue
            i, j = geometry.edges[e]
            if system.force_mask[i].sum() + system.force_mask[j].sum() < 0.5:
                continue
            if not self.should_flip(geometry, e):
                continue
            h, t = 2 * e, 2 * e + 1
            diamond = [mesh.next(h) >> 1, mesh.next(mesh.next(h)) >> 1,
                       mesh.next(t) >> 1, mesh.next(mesh.next(t)) >> 1]
            if mesh.flip(e):
                touched.add(e)
                touched.update(diamond)
                smoothing_region.update(_with_neighbors(mesh, i))
                smoothing_region.update(_with_neighbors(mesh, j))
                n_flip += 1
        if n_flip:
            system.refresh_geometry()
            logger.debug(f"flip_pass: {n_flip} flip(s)")
        return n_flip > 0

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------

    def global_smoothing(self, system, region: Optional[np.ndarray] = None):
        """Relax bending-force outliers along the vertex normals.

        Gradient descent on the normal bending force restricted to outlier
        vertices (and to ``region`` when given), halving the step whenever
        the L1 residual grows.  Stops once the residual drops below
        ``smoothing_target`` times its initial value.

        Returns
        -------
        int
            Number of iterations run.
        """
        step = self.smoothing_step
        past = np.inf
        tol = None
        n_iter = 0
        while True:
            geometry = system.refresh_geometry()
            gradient = self._smoothing_gradient(system, geometry, region)
            norm = float(np.abs(gradient).sum())
            if tol is None:
                tol = norm * self.smoothing_target
            if norm > past:
                step /= 2.0
            system.positions = (system.positions
                                + step * gradient[:, None] * geometry.vertex_normal)
            past = norm
            n_iter += 1
            if norm <= tol or n_iter >= self.smoothing_max_iteration:
                break
        logger.debug(f"global_smoothing: {n_iter} iteration(s), "
                     f"residual {past:.3e}")
        return n_iter

    def _smoothing_gradient(self, system, geometry, region):
        force = sum(bending_forces(geometry, system.H0, system.Kb))
        force = force * system.force_mask
        scalar = np.einsum('ij,ij->i', force, geometry.vertex_normal)
        selected = outlier_mask(scalar, self.outlier_threshold)
        if region is not None and region.any():
            selected &= region
        return np.where(selected, scalar, 0.0)

    def local_smoothing(self, system, region: np.ndarray):
        """Laplacian-of-curvature relaxation of the vertices in ``region``."""
        free = region & (system.force_mask.sum(axis=1) > 0.5)
        if not free.any():
            return
        for _ in range(self.local_smoothing_iterations):
            geometry = system.refresh_geometry()
            lap_H = geometry.laplacian @ geometry.mean_curvature
            move = (self.local_smoothing_step * geometry.dual_area * lap_H)
            system.positions = (system.positions
                                - np.where(free, move, 0.0)[:, None]
                                * geometry.vertex_normal)


# ---------------------------------------------------------------------------
# Field bookkeeping helpers
# ---------------------------------------------------------------------------

def _with_neighbors(mesh, v):
    return [v] + mesh.vertex_neighbors(v)


def _append_split_vertex(system, i, j, m):
    if m != len(system.positions):
        raise TopologyError(
            f"split vertex {m} does not extend the vertex fields "
            f"({len(system.positions)})")
    for name in _AVERAGED_FIELDS:
        arr = getattr(system, name)
        value = 0.5 * (arr[i] + arr[j])
        setattr(system, name, np.concatenate([arr, [value]]))
    system.the_point = np.concatenate([system.the_point, [False]])
    system.force_mask = np.concatenate([system.force_mask, np.ones((1, 3))])
    system.protein_mask = np.concatenate([system.protein_mask, [1.0]])


def _collapsed_position(system, mesh, i, j):
    """Surviving position of collapsing ``i``-``j``.

    A boundary endpoint keeps its place; otherwise a constrained endpoint
    (mask sum below 2.5) does; two free endpoints meet at the midpoint.
    """
    x = system.positions
    boundary_i, boundary_j = mesh.is_boundary_vertex(i), mesh.is_boundary_vertex(j)
    if boundary_i != boundary_j:
        return x[i].copy() if boundary_i else x[j].copy()
    if system.force_mask[i].sum() < 2.5:
        return x[i].copy()
    if system.force_mask[j].sum() < 2.5:
        return x[j].copy()
    return 0.5 * (x[i] + x[j])


def _remap_region(region: set, reindex):
    mapped = {int(reindex.vertex_map[v]) for v in region
              if v < len(reindex.vertex_map)}
    region.clear()
    region.update(v for v in mapped if v >= 0)
