"""Discrete differential geometry operators on halfedge meshes."""

from memdgclib.operators._registry import MethodRegistry
from memdgclib.operators._geometry import Geometry, compute_geometry
from memdgclib.operators._geodesic import (
    geodesic_distance,
    geodesic_methods,
    graph_geodesic,
    heat_geodesic,
)

__all__ = [
    'MethodRegistry',
    'Geometry',
    'compute_geometry',
    'geodesic_distance',
    'geodesic_methods',
    'graph_geodesic',
    'heat_geodesic',
]
