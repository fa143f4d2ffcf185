"""Tests for mesh mutation (memdgclib._mutator) and regularization
(memdgclib._regularizer)."""

import numpy as np
import numpy.testing as npt
import pytest

from memdgclib import (
    ConfigurationError,
    MembraneSystem,
    MeshMutator,
    MeshProcessor,
    MeshRegularizer,
)
from memdgclib._meshes import hexagon_patch, icosphere
from memdgclib._mutator import outlier_mask
from memdgclib._regularizer import length_cross_ratio


def euler_characteristic(mesh):
    return mesh.n_vertices - mesh.n_edges + mesh.n_faces


def assert_consistent(system):
    """Topology is manifold and every vertex field matches the mesh."""
    assert system.mesh.validate()
    n = system.mesh.n_vertices
    for name in ('positions', 'velocity', 'protein_density',
                 'protein_velocity', 'geodesic_distance', 'the_point',
                 'force_mask', 'protein_mask'):
        assert len(getattr(system, name)) == n, name
    assert system.geometry.n_vertices == n
    assert system.the_point.sum() == 1
    assert np.all(np.isfinite(system.positions))


def sphere_system(subdivisions, mutator, **kwargs):
    faces, x = icosphere(radius=1.0, subdivisions=subdivisions)
    phi = 0.2 + 0.6 * (x[:, 2] + 1.0) / 2.0
    return MembraneSystem(
        faces, x, {'bending': {'Kb': 1.0}},
        processor=MeshProcessor(mesh_mutator=mutator),
        protein_density=phi, **kwargs)


class TestMutatorOptions:
    def test_unknown_smoothing(self):
        with pytest.raises(ConfigurationError):
            MeshMutator(smoothing="laplace")

    def test_none_smoothing(self):
        assert MeshMutator(smoothing=None).smoothing == "none"

    def test_activity(self):
        assert not MeshMutator().is_active
        assert MeshMutator(flip_non_delaunay=True).is_active
        assert MeshMutator(split_curved=True).is_split
        assert MeshMutator(collapse_small=True).is_collapse
        assert MeshMutator(shift_vertex=True).is_active

    def test_inactive_mutator_is_noop(self):
        system = sphere_system(1, MeshMutator())
        assert not system.mutate_mesh()
        assert system.n_vertices == 42

    def test_outlier_mask(self):
        values = np.array([0.0, 0.0, 0.0, 0.0, 10.0])
        mask = outlier_mask(values)
        npt.assert_array_equal(mask, [False, False, False, False, True])
        assert not outlier_mask(np.ones(5)).any()


class TestSplitCollapse:
    def test_split_long_edges(self):
        mutator = MeshMutator(split_long=True, max_edge_length=0.5,
                              smoothing="none")
        system = sphere_system(1, mutator)
        assert system.mutate_mesh()
        assert system.n_vertices > 42
        assert euler_characteristic(system.mesh) == 2
        assert_consistent(system)
        phi = system.protein_density
        assert phi.min() >= 0.2 - 1e-12 and phi.max() <= 0.8 + 1e-12

    def test_split_keeps_point(self):
        mutator = MeshMutator(split_long=True, max_edge_length=0.5,
                              smoothing="none")
        system = sphere_system(1, mutator)
        before = system.positions[system.the_point_index].copy()
        system.mutate_mesh()
        npt.assert_allclose(system.positions[system.the_point_index], before)

    def test_collapse_short_edges(self):
        mutator = MeshMutator(collapse_short=True, smoothing="none")
        system = sphere_system(2, mutator)
        shortest = system.geometry.edge_length.min()
        system.processor.mesh_mutator.min_edge_length = 1.001 * shortest
        assert system.mutate_mesh()
        assert system.n_vertices < 162
        assert euler_characteristic(system.mesh) == 2
        assert_consistent(system)

    def test_boundary_edges_are_not_collapsed(self):
        faces, x = hexagon_patch(radius=1.0, n_rings=3)
        system = MembraneSystem(faces, x, geodesic_method="graph")
        mutator = MeshMutator(collapse_short=True, min_edge_length=1.0)
        boundary = [e for e in range(system.mesh.n_edges)
                    if system.mesh.is_boundary_edge(e)]
        assert boundary
        assert not any(mutator.should_collapse(system.mesh, system.positions, e)
                       for e in boundary)

    def test_global_smoothing_after_split(self):
        mutator = MeshMutator(split_long=True, max_edge_length=0.5,
                              smoothing="global", smoothing_max_iteration=20)
        system = sphere_system(1, mutator)
        assert system.mutate_mesh()
        assert_consistent(system)


class TestFlip:
    @pytest.fixture
    def diamond(self):
        faces = [[0, 1, 2], [0, 2, 3]]
        x = [[-1.0, 0.0, 0.0], [0.0, -0.2, 0.0], [1.0, 0.0, 0.0],
             [0.0, 0.2, 0.0]]
        mutator = MeshMutator(flip_non_delaunay=True, smoothing="none")
        return MembraneSystem(faces, x, processor=MeshProcessor(
            mesh_mutator=mutator), geodesic_method="graph")

    def test_flips_non_delaunay_edge(self, diamond):
        assert diamond.mesh.find_edge(0, 2) is not None
        assert diamond.mutate_mesh()
        assert diamond.mesh.find_edge(0, 2) is None
        assert diamond.mesh.find_edge(1, 3) is not None
        assert_consistent(diamond)
        assert np.all(diamond.geometry.edge_cotan >= -1e-6)

    def test_delaunay_mesh_is_untouched(self):
        mutator = MeshMutator(flip_non_delaunay=True)
        system = sphere_system(1, mutator)
        faces = system.geometry.faces.copy()
        assert not system.mutate_mesh()
        npt.assert_array_equal(system.geometry.faces, faces)

    def test_require_flat(self, diamond):
        diamond.positions[1, 2] = 0.5
        diamond.update_configurations()
        mutator = diamond.processor.mesh_mutator
        mutator.flip_require_flat = True
        e = diamond.mesh.find_edge(0, 2)
        assert not mutator.should_flip(diamond.geometry, e)


class TestVertexShift:
    def test_interior_vertex_returns_to_centroid(self):
        faces, x = hexagon_patch(radius=1.0, n_rings=3)
        center = int(np.argmin(np.linalg.norm(x, axis=1)))
        x[center] += [0.05, 0.02, 0.0]
        mutator = MeshMutator(shift_vertex=True)
        system = MembraneSystem(faces, x, geodesic_method="graph",
                                processor=MeshProcessor(mesh_mutator=mutator))
        assert not system.mutate_mesh()
        npt.assert_allclose(system.positions[center], 0.0, atol=1e-12)

    def test_frozen_vertices_do_not_move(self):
        mutator = MeshMutator(shift_vertex=True)
        faces, x = icosphere(subdivisions=1)
        rng = np.random.default_rng(0)
        x = x + 0.02 * rng.standard_normal(x.shape)
        system = MembraneSystem(
            faces, x, {'variation': {'is_shape_variation': False,
                                     'is_protein_variation': True},
                       'protein_mobility': 1.0},
            processor=MeshProcessor(mesh_mutator=mutator))
        system.mutate_mesh()
        npt.assert_array_equal(system.positions, x)

    def test_shift_is_tangential(self):
        faces, x = icosphere(subdivisions=1)
        rng = np.random.default_rng(1)
        x = x + 0.02 * rng.standard_normal(x.shape)
        system = MembraneSystem(faces, x)
        normals = system.geometry.vertex_normal.copy()
        MeshMutator(shift_vertex=True).vertex_shift(system)
        d = system.positions - x
        npt.assert_allclose(np.sum(d * normals, axis=1), 0.0, atol=1e-12)


class TestRegularizer:
    @pytest.fixture
    def lattice(self):
        faces, x = hexagon_patch(radius=1.0, n_rings=3)
        return MembraneSystem(faces, x, geodesic_method="graph")

    def test_length_cross_ratio_of_regular_lattice(self, lattice):
        npt.assert_allclose(length_cross_ratio(lattice.geometry), 1.0)

    def test_inactive_gives_zero(self, lattice):
        force = MeshRegularizer().compute_force(lattice.geometry)
        npt.assert_array_equal(force, 0.0)

    def test_zero_at_reference(self, lattice):
        regularizer = MeshRegularizer(Kst=1.0, Ksl=1.0, Kse=1.0)
        regularizer.set_reference(lattice.geometry)
        force = regularizer.compute_force(lattice.geometry)
        npt.assert_allclose(force, 0.0, atol=1e-12)

    def test_restoring_and_tangential(self, lattice):
        regularizer = MeshRegularizer(Kse=1.0)
        regularizer.set_reference(lattice.geometry)
        center = lattice.the_point_index
        shift = np.array([0.05, 0.0, 0.0])
        lattice.positions[center] += shift
        geometry = lattice.refresh_geometry()
        force = regularizer.compute_force(geometry)
        assert np.dot(force[center], shift) < 0
        normal_part = np.einsum('ij,ij->i', force, geometry.vertex_normal)
        npt.assert_allclose(normal_part, 0.0, atol=1e-12)

    def test_boundary_excluded(self, lattice):
        regularizer = MeshRegularizer(Kse=1.0)
        regularizer.set_reference(lattice.geometry)
        lattice.positions *= 1.1
        geometry = lattice.refresh_geometry()
        force = regularizer.compute_force(geometry)
        npt.assert_array_equal(force[geometry.boundary_vertex], 0.0)

    def test_stale_references(self, lattice):
        regularizer = MeshRegularizer(Kse=1.0)
        with pytest.raises(ConfigurationError):
            regularizer.compute_force(lattice.geometry)
        faces, x = icosphere(subdivisions=1)
        other = MembraneSystem(faces, x)
        regularizer.set_reference(other.geometry)
        with pytest.raises(ConfigurationError):
            regularizer.compute_force(lattice.geometry)

    def test_system_sets_and_resets_references(self):
        faces, x = icosphere(subdivisions=1)
        processor = MeshProcessor(
            mesh_regularizer=MeshRegularizer(Kse=1.0),
            mesh_mutator=MeshMutator(split_long=True, max_edge_length=0.5,
                                     smoothing="none"))
        system = MembraneSystem(faces, x, processor=processor)
        regularizer = system.processor.mesh_regularizer
        npt.assert_allclose(regularizer.ref_edge_length,
                            system.geometry.edge_length)
        assert system.mutate_mesh()
        assert len(regularizer.ref_edge_length) == system.geometry.n_edges
        force = system.compute_regularization_force()
        assert force.shape == (system.n_vertices, 3)

    def test_forces_follow_mutated_mesh(self):
        faces, x = icosphere(subdivisions=1)
        processor = MeshProcessor(
            mesh_regularizer=MeshRegularizer(Kse=1.0),
            mesh_mutator=MeshMutator(split_long=True, max_edge_length=0.5,
                                     smoothing="none"))
        system = MembraneSystem(faces, x, {'dpd': {'gamma': 1.0}},
                                processor=processor)
        assert system.mutate_mesh()
        n = system.n_vertices
        assert n > 42
        npt.assert_array_equal(system.forces.force_mask, system.force_mask)
        assert system.compute_regularization_force().shape == (n, 3)
        damping, stochastic = system.compute_dpd_forces(0.1)
        assert damping.shape == stochastic.shape == (n, 3)

    def test_processor_is_not_shared(self):
        faces, x = icosphere(subdivisions=1)
        processor = MeshProcessor(mesh_regularizer=MeshRegularizer(Kse=1.0))
        first = MembraneSystem(faces, x, processor=processor)
        second = MembraneSystem(faces, 2.0 * x, processor=processor)
        assert first.processor is not processor
        assert processor.mesh_regularizer.ref_edge_length is None
        npt.assert_allclose(first.processor.mesh_regularizer.ref_edge_length,
                            first.geometry.edge_length)
        npt.assert_allclose(second.processor.mesh_regularizer.ref_edge_length,
                            second.geometry.edge_length)
