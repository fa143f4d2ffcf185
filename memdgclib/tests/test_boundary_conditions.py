"""Tests for memdgclib._boundary_conditions module."""

import numpy as np
import numpy.testing as npt
import pytest

from memdgclib._boundary_conditions import (
    BoundaryConditionSet,
    FixedBC,
    FreeBC,
    GeodesicMaskBC,
    PinBC,
    ProteinPinBC,
    RollerBC,
    identify_boundary_vertices,
    one_ring,
)
from memdgclib._mesh import HalfedgeMesh
from memdgclib._meshes import hexagon_patch
from memdgclib.operators import compute_geometry


# Fixtures

@pytest.fixture
def patch():
    """Flat hexagonal patch with 37 vertices, 18 on the boundary."""
    faces, x = hexagon_patch(radius=1.0, n_rings=3)
    mesh = HalfedgeMesh.from_faces(faces, n_vertices=len(x))
    return compute_geometry(mesh, x)


# Boundary identification tests

class TestIdentifyBoundaryVertices:
    def test_all_boundary(self, patch):
        idx = identify_boundary_vertices(patch)
        assert len(idx) == 18
        radius = np.linalg.norm(patch.positions[idx], axis=1)
        assert np.all(radius >= np.sqrt(3.0) / 2.0 - 1e-12)

    def test_criterion(self, patch):
        idx = identify_boundary_vertices(patch, lambda x: x[0] > 0.9)
        assert len(idx) > 0
        assert np.all(patch.positions[idx, 0] > 0.9)

    def test_empty_for_impossible_criterion(self, patch):
        assert len(identify_boundary_vertices(patch, lambda x: x[0] > 100)) == 0

    def test_one_ring(self, patch):
        center = int(np.argmin(np.linalg.norm(patch.positions, axis=1)))
        ring = one_ring(patch, [center])
        assert len(ring) == 7
        assert center in ring


# Concrete BC tests

class TestShapeBCs:
    def test_free(self, patch):
        mask = np.ones((patch.n_vertices, 3))
        assert FreeBC().apply(patch, mask) == 0
        assert mask.all()

    def test_roller(self, patch):
        mask = np.ones((patch.n_vertices, 3))
        count = RollerBC().apply(patch, mask)
        assert count == 18
        npt.assert_array_equal(mask[patch.boundary_vertex, 2], 0.0)
        npt.assert_array_equal(mask[patch.boundary_vertex, :2], 1.0)
        npt.assert_array_equal(mask[~patch.boundary_vertex], 1.0)

    def test_pin(self, patch):
        mask = np.ones((patch.n_vertices, 3))
        PinBC().apply(patch, mask)
        npt.assert_array_equal(mask[patch.boundary_vertex], 0.0)
        npt.assert_array_equal(mask[~patch.boundary_vertex], 1.0)

    def test_fixed_masks_one_ring(self, patch):
        mask = np.ones((patch.n_vertices, 3))
        count = FixedBC().apply(patch, mask)
        # outer ring of 18 plus the next ring of 12
        assert count == 30
        assert (mask.sum(axis=1) == 0).sum() == 30

    def test_explicit_targets(self, patch):
        mask = np.ones((patch.n_vertices, 3))
        PinBC().apply(patch, mask, target_vertices=[0, 1])
        assert (mask.sum(axis=1) == 0).sum() == 2


class TestProteinBCs:
    def test_protein_pin(self, patch):
        mask = np.ones(patch.n_vertices)
        ProteinPinBC().apply(patch, mask)
        npt.assert_array_equal(mask[patch.boundary_vertex], 0.0)
        assert ProteinPinBC.field == "protein"

    def test_geodesic_mask(self, patch):
        distance = np.linalg.norm(patch.positions, axis=1)
        mask = np.ones((patch.n_vertices, 3))
        count = GeodesicMaskBC(0.5, distance).apply(patch, mask)
        assert count == int((distance > 0.5).sum())
        npt.assert_array_equal(mask[distance > 0.5], 0.0)


# Container tests

class TestBoundaryConditionSet:
    def test_chaining_and_len(self, patch):
        bc_set = BoundaryConditionSet()
        result = bc_set.add(RollerBC()).add(ProteinPinBC())
        assert result is bc_set
        assert len(bc_set) == 2

    def test_masks_split_by_field(self, patch):
        bc_set = BoundaryConditionSet().add(PinBC()).add(ProteinPinBC())
        force_mask, protein_mask = bc_set.masks(patch)
        npt.assert_array_equal(force_mask[patch.boundary_vertex], 0.0)
        npt.assert_array_equal(protein_mask[patch.boundary_vertex], 0.0)
        npt.assert_array_equal(protein_mask[~patch.boundary_vertex], 1.0)

    def test_extra_conditions(self, patch):
        distance = np.linalg.norm(patch.positions, axis=1)
        force_mask, protein_mask = BoundaryConditionSet().masks(
            patch, extra=[GeodesicMaskBC(0.5, distance, field="protein")])
        assert force_mask.all()
        npt.assert_array_equal(protein_mask[distance > 0.5], 0.0)

    def test_from_parameters(self):
        from memdgclib._parameters import BoundaryParameters
        bc_set = BoundaryConditionSet.from_parameters(
            BoundaryParameters(shape_boundary_condition="fixed",
                               protein_boundary_condition="pin"))
        kinds = [type(bc) for bc in bc_set]
        assert kinds == [FixedBC, ProteinPinBC]

    def test_unknown_name(self):
        from memdgclib._parameters import BoundaryParameters
        with pytest.raises(KeyError, match="Available"):
            BoundaryConditionSet.from_parameters(
                BoundaryParameters(shape_boundary_condition="clamped"))

    def test_apply_all_diagnostics(self, patch):
        bc_set = BoundaryConditionSet().add(RollerBC()).add(ProteinPinBC())
        force_mask = np.ones((patch.n_vertices, 3))
        protein_mask = np.ones(patch.n_vertices)
        diag = bc_set.apply_all(patch, force_mask, protein_mask)
        assert diag == {'bc_0_RollerBC': 18, 'bc_1_ProteinPinBC': 18}
