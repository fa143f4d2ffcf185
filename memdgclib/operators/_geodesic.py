"""
Geodesic distance from a source vertex.

Two methods are registered in ``geodesic_methods``:

``"heat"``
    The heat method (Crane, Weischedel & Wardetzky 2013): one backward-Euler
    heat step from the source, normalise the negated gradient per face,
    then solve a Poisson problem with the cotangent Laplacian.
``"graph"``
    Shortest paths along mesh edges (Dijkstra), an upper bound on the true
    distance that is exact along edges.

Usage
-----
    from memdgclib.operators import geodesic_distance

    d = geodesic_distance(geo, source=0)                # heat method
    d = geodesic_distance(geo, source=0, method="graph")
"""

import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import dijkstra
from scipy.sparse.linalg import factorized

from memdgclib.operators._geometry import Geometry
from memdgclib.operators._registry import MethodRegistry

geodesic_methods = MethodRegistry("geodesic")


@geodesic_methods.decorate("heat")
def heat_geodesic(geometry: Geometry, source: int, t_scale: float = 1.0) -> np.ndarray:
    """Heat-method distance from vertex ``source``.

    Parameters
    ----------
    geometry : Geometry
        Snapshot of the mesh.
    source : int
        Source vertex.
    t_scale : float
        Multiplier on the diffusion time ``h**2`` (``h`` the mean edge
        length).

    Returns
    -------
    ndarray, shape (n_vertices,)
        Distances, zero at the closest point to the source.
    """
    n = geometry.n_vertices
    L = geometry.laplacian
    M = geometry.mass
    t = t_scale * geometry.mean_edge_length ** 2

    delta = np.zeros(n)
    delta[source] = 1.0
    u = factorized((M + t * L).tocsc())(delta)

    # normalised gradient field per face
    F = geometry.faces
    x = geometry.positions
    N = geometry.face_normal
    A = geometry.face_area
    grad = np.zeros((len(F), 3))
    for k in range(3):
        i, j, l = F[:, k], F[:, (k + 1) % 3], F[:, (k + 2) % 3]
        grad += u[i, None] * np.cross(N, x[l] - x[j])
    grad /= (2.0 * A)[:, None]
    norm = np.linalg.norm(grad, axis=1)
    X = -grad / np.where(norm > 0, norm, 1.0)[:, None]

    # integrated divergence at each vertex
    div = np.zeros(n)
    for k in range(3):
        i, j, l = F[:, k], F[:, (k + 1) % 3], F[:, (k + 2) % 3]
        e1 = x[j] - x[i]
        e2 = x[l] - x[i]
        # cot of the angles opposite e1 (at l) and e2 (at j)
        cot_l = _cot(x[i] - x[l], x[j] - x[l])
        cot_j = _cot(x[i] - x[j], x[l] - x[j])
        np.add.at(div, i, 0.5 * (cot_l * np.einsum('ij,ij->i', e1, X)
                                 + cot_j * np.einsum('ij,ij->i', e2, X)))

    # L is positive semi-definite, so the Poisson problem reads L phi = -div
    shift = 1e-10 * sparse.identity(n) * max(float(M.diagonal().mean()), 1e-300)
    phi = factorized((L + shift).tocsc())(-div)
    return phi - phi.min()


def _cot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return (np.einsum('ij,ij->i', a, b)
            / np.maximum(np.linalg.norm(np.cross(a, b), axis=1), 1e-300))


@geodesic_methods.decorate("graph")
def graph_geodesic(geometry: Geometry, source: int) -> np.ndarray:
    """Shortest edge-path distance from vertex ``source``."""
    n = geometry.n_vertices
    i, j = geometry.edges[:, 0], geometry.edges[:, 1]
    graph = sparse.coo_matrix((geometry.edge_length, (i, j)), shape=(n, n)).tocsr()
    return dijkstra(graph, directed=False, indices=source)


def geodesic_distance(geometry: Geometry, source: int, method: str = "heat",
                      **kwargs) -> np.ndarray:
    """Distance from ``source`` to every vertex using a registered method."""
    return geodesic_methods[method](geometry, source, **kwargs)
