"""
Generators for small test and starter triangulations.

Each function returns ``(faces, positions)`` with faces oriented so the
normals point outward (closed surfaces) or along +z (flat patches).

Usage
-----
    from memdgclib._meshes import icosphere, cylinder, hexagon_patch

    faces, x = icosphere(radius=1.0, subdivisions=1)   # 42 vertices
    faces, x = cylinder(radius=1.0, height=2.0, n_theta=16, n_z=8)
    faces, x = hexagon_patch(radius=1.0, n_rings=4)
"""

import numpy as np
from scipy.spatial import ConvexHull

_PHI = (1.0 + np.sqrt(5.0)) / 2.0

_ICOSAHEDRON = np.array([
    [-1, _PHI, 0], [1, _PHI, 0], [-1, -_PHI, 0], [1, -_PHI, 0],
    [0, -1, _PHI], [0, 1, _PHI], [0, -1, -_PHI], [0, 1, -_PHI],
    [_PHI, 0, -1], [_PHI, 0, 1], [-_PHI, 0, -1], [-_PHI, 0, 1],
], dtype=float)


def sphere_from_points(points) -> np.ndarray:
    """Triangulate points lying on a convex surface by their convex hull.

    Returns outward oriented faces.
    """
    points = np.asarray(points, dtype=float)
    hull = ConvexHull(points)
    faces = hull.simplices.copy()
    p0, p1, p2 = (points[faces[:, k]] for k in range(3))
    normal = np.cross(p1 - p0, p2 - p0)
    centre = points.mean(axis=0)
    inward = np.einsum('ij,ij->i', normal, p0 - centre) < 0
    faces[inward] = faces[inward][:, ::-1]
    return faces


def icosphere(radius: float = 1.0, subdivisions: int = 1):
    """Subdivided icosahedron projected onto a sphere.

    ``subdivisions=0`` gives 12 vertices, 1 gives 42, 2 gives 162.
    """
    points = _ICOSAHEDRON / np.linalg.norm(_ICOSAHEDRON, axis=1)[:, None]
    for _ in range(subdivisions):
        faces = sphere_from_points(points)
        edges = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]],
                                faces[:, [2, 0]]])
        edges = np.unique(np.sort(edges, axis=1), axis=0)
        mid = points[edges[:, 0]] + points[edges[:, 1]]
        mid /= np.linalg.norm(mid, axis=1)[:, None]
        points = np.vstack([points, mid])
    faces = sphere_from_points(points)
    return faces, radius * points


def cylinder(radius: float = 1.0, height: float = 2.0, n_theta: int = 16,
             n_z: int = 8):
    """Open tube around the z axis, from ``z=0`` to ``z=height``."""
    theta = np.linspace(0.0, 2 * np.pi, n_theta, endpoint=False)
    z = np.linspace(0.0, height, n_z + 1)
    T, Z = np.meshgrid(theta, z)
    positions = np.stack([radius * np.cos(T).ravel(),
                          radius * np.sin(T).ravel(), Z.ravel()], axis=1)

    def vid(i, k):
        return k * n_theta + (i % n_theta)

    faces = []
    for k in range(n_z):
        for i in range(n_theta):
            a, b = vid(i, k), vid(i + 1, k)
            c, d = vid(i + 1, k + 1), vid(i, k + 1)
            faces.append([a, b, c])
            faces.append([a, c, d])
    return np.array(faces, dtype=np.int64), positions


def hexagon_patch(radius: float = 1.0, n_rings: int = 4):
    """Flat hexagonal patch of a triangular lattice in the xy plane.

    The patch has ``1 + 3 n (n + 1)`` vertices and circumradius ``radius``.
    """
    index = {}
    xy = []
    for q in range(-n_rings, n_rings + 1):
        for r in range(-n_rings, n_rings + 1):
            if abs(q + r) <= n_rings:
                index[(q, r)] = len(xy)
                xy.append([q + 0.5 * r, 0.5 * np.sqrt(3.0) * r])

    # each rhombus anchored at (q, r) holds an up and a down triangle;
    # anchors outside the patch can still own a down triangle
    faces = []
    anchors = range(-n_rings - 1, n_rings + 1)
    for q in anchors:
        for r in anchors:
            up = [(q, r), (q + 1, r), (q, r + 1)]
            down = [(q + 1, r), (q + 1, r + 1), (q, r + 1)]
            for tri in (up, down):
                if all(k in index for k in tri):
                    faces.append([index[k] for k in tri])

    xy = np.array(xy) * (radius / n_rings)
    positions = np.column_stack([xy, np.zeros(len(xy))])
    return np.array(faces, dtype=np.int64), positions
