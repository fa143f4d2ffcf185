"""
Boundary conditions for membrane simulations, expressed as masks.

A boundary condition zeroes entries of either the per-vertex force mask
(``(n, 3)``, component-wise) or the protein mask (``(n,)``).  Every force and
chemical potential is multiplied by these masks, so masked components stay
exactly zero.

Provides an abstract BoundaryCondition base class, concrete shape and
protein conditions, boundary identification helpers, name registries used
by :class:`~memdgclib._parameters.BoundaryParameters`, and a
BoundaryConditionSet container.

Usage
-----
    from memdgclib._boundary_conditions import (
        BoundaryConditionSet, RollerBC, ProteinPinBC, identify_boundary_vertices,
    )

    bV = identify_boundary_vertices(geo)
    bc_set = BoundaryConditionSet()
    bc_set.add(RollerBC(axis=2), bV).add(ProteinPinBC(), bV)
    force_mask, protein_mask = bc_set.masks(geo)
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from memdgclib.operators import Geometry, MethodRegistry


# ---------------------------------------------------------------------------
# Boundary identification helpers
# ---------------------------------------------------------------------------

def identify_boundary_vertices(geometry: Geometry,
                               criterion_fn: Optional[Callable] = None) -> np.ndarray:
    """Indices of mesh boundary vertices, optionally filtered.

    Parameters
    ----------
    geometry : Geometry
        Current geometry snapshot.
    criterion_fn : callable or None
        ``criterion_fn(x) -> bool`` evaluated on the vertex position.

    Examples
    --------
    >>> bottom = identify_boundary_vertices(geo, lambda x: x[2] < 1e-10)
    """
    idx = np.flatnonzero(geometry.boundary_vertex)
    if criterion_fn is not None:
        idx = np.array([i for i in idx if criterion_fn(geometry.positions[i])],
                       dtype=np.int64)
    return idx


def one_ring(geometry: Geometry, vertices) -> np.ndarray:
    """``vertices`` together with all their edge neighbours."""
    selected = np.zeros(geometry.n_vertices, dtype=bool)
    selected[np.asarray(vertices, dtype=np.int64)] = True
    i, j = geometry.edges[:, 0], geometry.edges[:, 1]
    ring = selected.copy()
    ring[j[selected[i]]] = True
    ring[i[selected[j]]] = True
    return np.flatnonzero(ring)


# ---------------------------------------------------------------------------
# Abstract base class
# ---------------------------------------------------------------------------

class BoundaryCondition(ABC):
    """Base class for mask boundary conditions.

    ``field`` names the mask the condition acts on: ``"force"`` or
    ``"protein"``.
    """

    field = "force"

    @abstractmethod
    def apply(self, geometry: Geometry, mask: np.ndarray, target_vertices=None) -> int:
        """Zero the relevant entries of ``mask`` in place.

        Parameters
        ----------
        geometry : Geometry
            Current geometry snapshot.
        mask : ndarray
            Force mask ``(n, 3)`` or protein mask ``(n,)``.
        target_vertices : array_like or None
            Vertices to constrain.  If None, the mesh boundary.

        Returns
        -------
        int
            Number of vertices affected.
        """

    @staticmethod
    def _targets(geometry, target_vertices):
        if target_vertices is None:
            return identify_boundary_vertices(geometry)
        return np.asarray(target_vertices, dtype=np.int64)


class FreeBC(BoundaryCondition):
    """No constraint."""

    def apply(self, geometry, mask, target_vertices=None):
        return 0


class RollerBC(BoundaryCondition):
    """Freeze one displacement component (default z) on the targets."""

    def __init__(self, axis: int = 2):
        self.axis = axis

    def apply(self, geometry, mask, target_vertices=None):
        idx = self._targets(geometry, target_vertices)
        mask[idx, self.axis] = 0.0
        return len(idx)


class PinBC(BoundaryCondition):
    """Freeze all displacement components on the targets."""

    def apply(self, geometry, mask, target_vertices=None):
        idx = self._targets(geometry, target_vertices)
        mask[idx] = 0.0
        return len(idx)


class FixedBC(BoundaryCondition):
    """Freeze the targets and their one-ring, which also fixes the slope."""

    def apply(self, geometry, mask, target_vertices=None):
        idx = self._targets(geometry, target_vertices)
        if len(idx) == 0:
            return 0
        ring = one_ring(geometry, idx)
        mask[ring] = 0.0
        return len(ring)


class ProteinPinBC(BoundaryCondition):
    """Freeze the protein density on the targets."""

    field = "protein"

    def apply(self, geometry, mask, target_vertices=None):
        idx = self._targets(geometry, target_vertices)
        mask[idx] = 0.0
        return len(idx)


class GeodesicMaskBC(BoundaryCondition):
    """Freeze vertices farther than ``radius`` from the tracked point.

    Parameters
    ----------
    radius : float
        Geodesic radius of the active region.
    distance : ndarray
        Geodesic distance of every vertex to the tracked point.
    field : str
        ``"force"`` or ``"protein"``.
    """

    def __init__(self, radius: float, distance: np.ndarray, field: str = "force"):
        self.radius = radius
        self.distance = np.asarray(distance, dtype=float)
        self.field = field

    def apply(self, geometry, mask, target_vertices=None):
        far = np.flatnonzero(self.distance > self.radius)
        mask[far] = 0.0
        return len(far)


# ---------------------------------------------------------------------------
# Registries used by BoundaryParameters
# ---------------------------------------------------------------------------

shape_boundary_conditions = MethodRegistry("shape boundary condition")
shape_boundary_conditions.register("none", FreeBC)
shape_boundary_conditions.register("roller", RollerBC)
shape_boundary_conditions.register("pin", PinBC)
shape_boundary_conditions.register("fixed", FixedBC)

protein_boundary_conditions = MethodRegistry("protein boundary condition")
protein_boundary_conditions.register("none", FreeBC)
protein_boundary_conditions.register("pin", ProteinPinBC)


# ---------------------------------------------------------------------------
# BoundaryConditionSet container
# ---------------------------------------------------------------------------

class BoundaryConditionSet:
    """Container managing the boundary conditions of a simulation.

    BCs are applied in insertion order, each to its own vertex subset (or to
    the mesh boundary when none is given).

    Usage
    -----
        bc_set = BoundaryConditionSet()
        bc_set.add(PinBC(), bottom).add(ProteinPinBC())
        force_mask, protein_mask = bc_set.masks(geo)
    """

    def __init__(self):
        self._bcs: list[tuple[BoundaryCondition, Optional[np.ndarray]]] = []

    @classmethod
    def from_parameters(cls, boundary) -> 'BoundaryConditionSet':
        """Resolve the named conditions of a ``BoundaryParameters``."""
        bc_set = cls()
        shape = shape_boundary_conditions[boundary.shape_boundary_condition]
        protein = protein_boundary_conditions[boundary.protein_boundary_condition]
        return bc_set.add(shape()).add(protein())

    def add(self, bc: BoundaryCondition, vertices=None) -> 'BoundaryConditionSet':
        """Register a BC. If vertices is None, BC applies to the mesh boundary.

        Returns self for method chaining.
        """
        self._bcs.append((bc, None if vertices is None else np.asarray(vertices)))
        return self

    def __len__(self):
        return len(self._bcs)

    def __iter__(self):
        return iter(bc for bc, _ in self._bcs)

    def masks(self, geometry: Geometry, extra=()) -> tuple:
        """Fresh force and protein masks with all BCs applied.

        Parameters
        ----------
        geometry : Geometry
            Current geometry snapshot.
        extra : iterable of BoundaryCondition
            Additional conditions applied after the registered ones (e.g. a
            :class:`GeodesicMaskBC` built from the latest distances).

        Returns
        -------
        force_mask : ndarray, shape (n, 3)
        protein_mask : ndarray, shape (n,)
        """
        force_mask = np.ones((geometry.n_vertices, 3))
        protein_mask = np.ones(geometry.n_vertices)
        for bc, verts in list(self._bcs) + [(bc, None) for bc in extra]:
            mask = protein_mask if bc.field == "protein" else force_mask
            bc.apply(geometry, mask, target_vertices=verts)
        return force_mask, protein_mask

    def apply_all(self, geometry: Geometry, force_mask: np.ndarray,
                  protein_mask: np.ndarray) -> dict:
        """Apply all BCs in order to existing masks.

        Returns
        -------
        dict
            Number of affected vertices keyed by BC name.
        """
        diagnostics = {}
        for i, (bc, verts) in enumerate(self._bcs):
            mask = protein_mask if bc.field == "protein" else force_mask
            diagnostics[f"bc_{i}_{type(bc).__name__}"] = bc.apply(
                geometry, mask, target_vertices=verts)
        return diagnostics
