"""Tests for memdgclib.initial_conditions."""

import numpy as np
import numpy.testing as npt
import pytest

from memdgclib import ConfigurationError, MembraneSystem, Parameters
from memdgclib._meshes import icosphere
from memdgclib.initial_conditions import (
    CompositeIC,
    GeodesicTanhProteinDensity,
    PerVertexProteinDensity,
    RandomPerturbation,
    UniformProteinDensity,
    UniformVelocity,
    ZeroVelocity,
    protein_initial_condition,
)


@pytest.fixture
def sphere():
    faces, x = icosphere(radius=1.0, subdivisions=2)
    params = Parameters.from_dict({'point': {'pt': [0]}})
    return MembraneSystem(faces, x, params, seed=5, geodesic_method="graph")


class TestProteinDensity:
    def test_uniform(self, sphere):
        UniformProteinDensity(0.3).apply(sphere)
        npt.assert_allclose(sphere.protein_density, 0.3)
        assert sphere.protein_density.shape == (sphere.n_vertices,)

    def test_geodesic_tanh_disk(self, sphere):
        ic = GeodesicTanhProteinDensity(r1=0.5, r2=0.5, phi_in=0.9, phi_out=0.1)
        ic.apply(sphere)
        phi = sphere.protein_density
        npt.assert_allclose(phi[sphere.the_point_index], 0.9, atol=1e-6)
        far = int(np.argmax(sphere.geodesic_distance))
        npt.assert_allclose(phi[far], 0.1, atol=1e-6)
        assert np.all((phi >= 0.1 - 1e-12) & (phi <= 0.9 + 1e-12))

    def test_geodesic_tanh_monotone_in_distance(self, sphere):
        GeodesicTanhProteinDensity(1.0, 1.0, 0.8, 0.2, sharpness=2.0).apply(sphere)
        order = np.argsort(sphere.geodesic_distance)
        assert np.all(np.diff(sphere.protein_density[order]) <= 1e-12)

    def test_per_vertex(self, sphere):
        values = np.linspace(0.1, 0.9, sphere.n_vertices)
        PerVertexProteinDensity(values).apply(sphere)
        npt.assert_array_equal(sphere.protein_density, values)

    def test_per_vertex_length_mismatch(self, sphere):
        with pytest.raises(ConfigurationError):
            PerVertexProteinDensity([0.5, 0.5]).apply(sphere)


class TestProteinInitialCondition:
    def test_dispatch(self):
        params = Parameters()
        params.protein.protein0 = [0.4]
        assert isinstance(protein_initial_condition(params.protein),
                          UniformProteinDensity)
        params.protein.protein0 = [0.5, 0.5, 0.9, 0.1]
        ic = protein_initial_condition(params.protein)
        assert isinstance(ic, GeodesicTanhProteinDensity)
        assert ic.sharpness == params.protein.tanh_sharpness
        params.protein.protein0 = [0.5] * 12
        assert isinstance(protein_initial_condition(params.protein),
                          PerVertexProteinDensity)

    def test_system_uses_protein0(self):
        faces, x = icosphere(subdivisions=1)
        system = MembraneSystem(faces, x, {'protein': {'protein0': [0.25]}})
        npt.assert_allclose(system.protein_density, 0.25)


class TestVelocity:
    def test_zero(self, sphere):
        sphere.velocity = np.ones((sphere.n_vertices, 3))
        ZeroVelocity().apply(sphere)
        npt.assert_array_equal(sphere.velocity, 0.0)

    def test_uniform(self, sphere):
        UniformVelocity([1.0, 0.0, -2.0]).apply(sphere)
        assert sphere.velocity.shape == (sphere.n_vertices, 3)
        npt.assert_array_equal(sphere.velocity[7], [1.0, 0.0, -2.0])

    def test_composite_applies_in_order(self, sphere):
        CompositeIC(UniformVelocity([1.0, 1.0, 1.0]), ZeroVelocity(),
                    UniformProteinDensity(0.7)).apply(sphere)
        npt.assert_array_equal(sphere.velocity, 0.0)
        npt.assert_allclose(sphere.protein_density, 0.7)


class TestRandomPerturbation:
    def test_seeded_is_reproducible(self):
        faces, x = icosphere(subdivisions=1)
        a = MembraneSystem(faces, x, seed=11)
        b = MembraneSystem(faces, x, seed=11)
        RandomPerturbation(0.01).apply(a)
        RandomPerturbation(0.01).apply(b)
        npt.assert_array_equal(a.positions, b.positions)
        assert not np.allclose(a.positions, x)

    def test_displacement_is_normal(self):
        faces, x = icosphere(subdivisions=1)
        system = MembraneSystem(faces, x, seed=2)
        normals = system.geometry.vertex_normal.copy()
        RandomPerturbation(0.01).apply(system)
        d = system.positions - x
        tangential = d - np.sum(d * normals, axis=1)[:, None] * normals
        npt.assert_allclose(tangential, 0.0, atol=1e-14)

    def test_frozen_vertices_stay(self):
        faces, x = icosphere(subdivisions=1)
        system = MembraneSystem(faces, x, seed=2)
        system.force_mask[:] = 0.0
        RandomPerturbation(0.01).apply(system)
        npt.assert_array_equal(system.positions, x)
