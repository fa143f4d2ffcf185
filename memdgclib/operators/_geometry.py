"""
Discrete differential geometry of a triangle mesh as a frozen snapshot.

``compute_geometry(mesh, positions)`` is a pure function of topology and
vertex positions.  Nothing is cached on the mesh: after any position or
topology change the caller builds a new snapshot.

Conventions
-----------
- Halfedge ``h`` runs from ``he_tail[h]`` to ``he_tip[h]``; its vector is
  ``x[tip] - x[tail]``.
- Face normals follow the face orientation, ``unit((x1 - x0) x (x2 - x0))``.
- ``halfedge_cotan[h]`` is ``0.5 * cot`` of the corner opposite ``h`` in its
  face (0 for exterior halfedges); ``edge_cotan`` sums both halfedges.
- ``dihedral_angle`` is positive across convex edges of an outward oriented
  surface and 0 on boundary edges.
- Curvatures are stored integrated over the barycentric dual cell:
  ``integrated_mean_curvature = sum(l * theta) / 4`` and
  ``integrated_gaussian_curvature`` is the angle defect.  The pointwise
  values are the integrated ones divided by ``dual_area``.
- ``laplacian`` is the positive semi-definite cotangent Laplacian
  ``L = sum_e w_e (e_i - e_j)(e_i - e_j)^T``.

Usage
-----
    from memdgclib.operators import compute_geometry

    geo = compute_geometry(mesh, positions)
    geo.mean_curvature      # H per vertex
    geo.area, geo.volume
"""

from dataclasses import dataclass

import numpy as np
from scipy import sparse

from memdgclib._mesh import HalfedgeMesh


def _norm(v: np.ndarray) -> np.ndarray:
    return np.linalg.norm(v, axis=-1)


def _unit(v: np.ndarray) -> np.ndarray:
    n = _norm(v)
    return v / np.where(n > 0, n, 1.0)[..., None]


def _dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.einsum('ij,ij->i', a, b)


@dataclass(frozen=True)
class Geometry:
    """Geometric state derived from one set of vertex positions.

    Per-halfedge arrays have length ``2 * n_edges`` and follow the mesh's
    pairing (``twin(h) == h ^ 1``).
    """
    positions: np.ndarray
    faces: np.ndarray
    edges: np.ndarray
    he_tail: np.ndarray
    he_tip: np.ndarray
    he_next: np.ndarray
    he_face: np.ndarray
    boundary_vertex: np.ndarray
    boundary_edge: np.ndarray
    face_area: np.ndarray
    face_normal: np.ndarray
    edge_length: np.ndarray
    halfedge_vector: np.ndarray
    halfedge_cotan: np.ndarray
    edge_cotan: np.ndarray
    corner_angle: np.ndarray
    dihedral_angle: np.ndarray
    integrated_mean_curvature: np.ndarray
    integrated_gaussian_curvature: np.ndarray
    dual_area: np.ndarray
    vertex_normal: np.ndarray
    area: float
    volume: float
    laplacian: sparse.csr_matrix
    mass: sparse.dia_matrix

    @property
    def n_vertices(self) -> int:
        return len(self.positions)

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    @property
    def n_faces(self) -> int:
        return len(self.faces)

    @property
    def mean_curvature(self) -> np.ndarray:
        """Pointwise mean curvature ``H = H_integrated / A_dual``."""
        return self.integrated_mean_curvature / self.dual_area

    @property
    def gaussian_curvature(self) -> np.ndarray:
        return self.integrated_gaussian_curvature / self.dual_area

    @property
    def interior_halfedge(self) -> np.ndarray:
        return self.he_face >= 0

    @property
    def halfedge_face_normal(self) -> np.ndarray:
        """Normal of the face of each halfedge (zero for exterior ones)."""
        return np.where(self.interior_halfedge[:, None],
                        self.face_normal[self.he_face], 0.0)

    @property
    def halfedge_face_area(self) -> np.ndarray:
        return np.where(self.interior_halfedge, self.face_area[self.he_face], 0.0)

    @property
    def is_closed(self) -> bool:
        return not self.boundary_edge.any()

    @property
    def min_edge_length(self) -> float:
        return float(self.edge_length.min())

    @property
    def mean_edge_length(self) -> float:
        return float(self.edge_length.mean())


def compute_geometry(mesh: HalfedgeMesh, positions) -> Geometry:
    """Build a :class:`Geometry` snapshot for ``positions`` on ``mesh``.

    Parameters
    ----------
    mesh : HalfedgeMesh
        Compressed mesh (raises :class:`~memdgclib._errors.TopologyError`
        otherwise).
    positions : array_like, shape (n_vertices, 3)
        Vertex positions.

    Returns
    -------
    Geometry
    """
    mesh.require_compressed()
    x = np.asarray(positions, dtype=float)
    faces = mesh.faces
    edges = mesh.edges
    nv = len(x)

    he_tail = mesh.he_vertex_.copy()
    he_tip = he_tail[np.arange(len(he_tail)) ^ 1]
    he_next = mesh.he_next_.copy()
    he_face = mesh.he_face_.copy()
    interior = he_face >= 0
    boundary_edge = (he_face[0::2] < 0) | (he_face[1::2] < 0)
    boundary_vertex = np.zeros(nv, dtype=bool)
    boundary_vertex[he_tail[~interior]] = True

    # Faces
    p0, p1, p2 = x[faces[:, 0]], x[faces[:, 1]], x[faces[:, 2]]
    cross = np.cross(p1 - p0, p2 - p0)
    double_area = _norm(cross)
    face_area = 0.5 * double_area
    face_normal = cross / double_area[:, None]

    # Halfedges and edges
    he_vec = x[he_tip] - x[he_tail]
    edge_length = _norm(he_vec[0::2])
    opposite = he_tip[he_next]
    u = x[he_tail] - x[opposite]
    v = x[he_tip] - x[opposite]
    cot = _dot(u, v) / np.maximum(_norm(np.cross(u, v)), 1e-300)
    halfedge_cotan = np.where(interior, 0.5 * cot, 0.0)
    edge_cotan = halfedge_cotan[0::2] + halfedge_cotan[1::2]

    a = he_vec
    b = x[opposite] - x[he_tail]
    corner = np.arctan2(_norm(np.cross(a, b)), _dot(a, b))
    corner_angle = np.where(interior, corner, 0.0)

    h0 = np.arange(0, len(he_tail), 2)
    n1 = face_normal[he_face[h0]]
    n2 = face_normal[he_face[h0 + 1]]
    direction = he_vec[h0] / edge_length[:, None]
    theta = np.arctan2(_dot(direction, np.cross(n1, n2)), _dot(n1, n2))
    dihedral_angle = np.where(boundary_edge, 0.0, theta)

    # Vertices
    edge_of = np.arange(len(he_tail)) >> 1
    integrated_h = np.zeros(nv)
    np.add.at(integrated_h, he_tail,
              0.25 * edge_length[edge_of] * dihedral_angle[edge_of])
    angle_sum = np.zeros(nv)
    np.add.at(angle_sum, he_tail[interior], corner_angle[interior])
    integrated_k = np.where(boundary_vertex, np.pi, 2 * np.pi) - angle_sum

    dual_area = np.zeros(nv)
    np.add.at(dual_area, faces.ravel(), np.repeat(face_area / 3.0, 3))

    vertex_normal = np.zeros((nv, 3))
    np.add.at(vertex_normal, he_tail[interior],
              corner_angle[interior, None] * face_normal[he_face[interior]])
    vertex_normal = _unit(vertex_normal)

    volume = float(np.sum(_dot(p0, np.cross(p1, p2))) / 6.0)

    i, j = edges[:, 0], edges[:, 1]
    w = edge_cotan
    laplacian = sparse.coo_matrix(
        (np.concatenate([-w, -w, w, w]),
         (np.concatenate([i, j, i, j]), np.concatenate([j, i, i, j]))),
        shape=(nv, nv)).tocsr()
    mass = sparse.diags(dual_area)

    return Geometry(
        positions=x.copy(),
        faces=faces,
        edges=edges,
        he_tail=he_tail,
        he_tip=he_tip,
        he_next=he_next,
        he_face=he_face,
        boundary_vertex=boundary_vertex,
        boundary_edge=boundary_edge,
        face_area=face_area,
        face_normal=face_normal,
        edge_length=edge_length,
        halfedge_vector=he_vec,
        halfedge_cotan=halfedge_cotan,
        edge_cotan=edge_cotan,
        corner_angle=corner_angle,
        dihedral_angle=dihedral_angle,
        integrated_mean_curvature=integrated_h,
        integrated_gaussian_curvature=integrated_k,
        dual_area=dual_area,
        vertex_normal=vertex_normal,
        area=float(face_area.sum()),
        volume=volume,
        laplacian=laplacian,
        mass=mass,
    )
