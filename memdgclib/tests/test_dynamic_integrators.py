"""Tests for the time integrators and the simulation runner."""

import logging
import signal

import numpy as np
import numpy.testing as npt
import pytest

from memdgclib import (
    ConfigurationError,
    MembraneSystem,
    MeshMutator,
    MeshProcessor,
    Parameters,
)
from memdgclib._meshes import icosphere
from memdgclib.dynamic_integrators import (
    ConjugateGradient,
    DynamicSimulation,
    Euler,
    IntegratorOptions,
    IntegratorState,
    VelocityVerlet,
    integrators,
)
from memdgclib.dynamic_integrators._integrator import _invoke_callback
from memdgclib.initial_conditions import UniformProteinDensity

VESICLE = {
    'bending': {'Kb': 8.22e-5},
    'tension': {'Ksg': 1e-2},
    'osmotic': {'is_preferred_volume': True, 'Kv': 1e-2, 'Vt': 0.9},
}


def make_vesicle(params=None, **kwargs):
    faces, x = icosphere(radius=1.0, subdivisions=1)
    return MembraneSystem(faces, x, Parameters.from_dict(params or VESICLE),
                          **kwargs)


@pytest.fixture
def vesicle():
    return make_vesicle(seed=0)


# ---------------------------------------------------------------------------
# Option validation
# ---------------------------------------------------------------------------

class TestParameterChecks:
    def test_nonpositive_step(self, vesicle):
        with pytest.raises(ConfigurationError):
            Euler(vesicle, IntegratorOptions(characteristic_time_step=0.0))

    @pytest.mark.parametrize("rho, c1", [(1.0, 1e-4), (0.5, 0.0), (0.0, 0.5)])
    def test_backtrack_coefficients(self, vesicle, rho, c1):
        with pytest.raises(ConfigurationError):
            Euler(vesicle, IntegratorOptions(rho=rho, c1=c1))

    def test_coefficients_unchecked_without_backtracking(self, vesicle):
        Euler(vesicle, IntegratorOptions(is_backtrack=False, rho=2.0))

    @pytest.mark.parametrize("cls", [Euler, ConjugateGradient])
    def test_descent_integrators_reject_dpd(self, cls):
        params = dict(VESICLE, dpd={'gamma': 1.0})
        with pytest.raises(ConfigurationError):
            cls(make_vesicle(params))

    def test_conjugate_gradient_requires_backtracking(self, vesicle):
        with pytest.raises(ConfigurationError):
            ConjugateGradient(vesicle, IntegratorOptions(is_backtrack=False))

    def test_conjugate_gradient_restart_period(self, vesicle):
        with pytest.raises(ConfigurationError):
            ConjugateGradient(vesicle, IntegratorOptions(restart_period=0))

    def test_verlet_rejects_backtracking(self, vesicle):
        with pytest.raises(ConfigurationError):
            VelocityVerlet(vesicle, IntegratorOptions(is_backtrack=True))
        assert not VelocityVerlet(vesicle).options.is_backtrack

    def test_registry(self):
        assert integrators["euler"] is Euler
        assert integrators["conjugate_gradient"] is ConjugateGradient
        assert integrators["velocity_verlet"] is VelocityVerlet
        with pytest.raises(KeyError):
            integrators["rk4"]


# ---------------------------------------------------------------------------
# Line search
# ---------------------------------------------------------------------------

class TestBacktracking:
    def test_single_step_decreases_energy(self, vesicle):
        integrator = Euler(vesicle, IntegratorOptions(characteristic_time_step=0.1))
        integrator.status()
        before = vesicle.energy.potential
        integrator.march()
        after = vesicle.compute_potential_energy()
        assert after < before
        assert 0 < integrator.time_step <= 0.1
        assert integrator.state is IntegratorState.RUNNING
        npt.assert_allclose(vesicle.time, integrator.time_step)

    def test_armijo_condition_holds(self, vesicle):
        integrator = Euler(vesicle, IntegratorOptions(characteristic_time_step=1.0))
        integrator.status()
        before = vesicle.energy.potential
        force = vesicle.forces.mechanical_force.copy()
        x0 = vesicle.positions.copy()
        alpha = integrator.backtrack(before, force, np.zeros(42), 0.5, 1e-4)
        npt.assert_allclose(vesicle.positions, x0 + alpha * force)
        after = vesicle.compute_potential_energy()
        assert after < before - 1e-4 * alpha * np.sum(force * force)

    def test_uphill_direction_uses_force(self, vesicle, caplog):
        integrator = Euler(vesicle)
        integrator.status()
        force = vesicle.forces.mechanical_force.copy()
        with caplog.at_level(logging.WARNING):
            alpha = integrator.backtrack(vesicle.energy.potential, -force,
                                         np.zeros(42), 0.5, 1e-4)
        assert "uphill" in caplog.text
        npt.assert_array_equal(integrator.position_direction, force)
        assert alpha > 0
        assert integrator.state is IntegratorState.RUNNING

    def test_failure_restores_state(self, vesicle, caplog):
        integrator = Euler(vesicle)
        integrator.status()
        x0 = vesicle.positions.copy()
        force = vesicle.forces.mechanical_force.copy()
        unreachable = vesicle.energy.potential - 1.0
        with caplog.at_level(logging.WARNING):
            alpha = integrator.backtrack(unreachable, force, np.zeros(42),
                                         0.5, 1e-4)
        assert integrator.state is IntegratorState.FAILED
        assert alpha < 1e-5 * integrator.characteristic_time_step
        npt.assert_array_equal(vesicle.positions, x0)
        assert vesicle.time == 0.0
        assert "line search failure" in caplog.text

    def test_adaptive_step_at_start(self, vesicle):
        integrator = Euler(vesicle, IntegratorOptions(is_adaptive_step=True))
        integrator.update_adaptive_characteristic_step()
        npt.assert_allclose(integrator.characteristic_time_step, 0.1)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestStateTransitions:
    def test_time_budget_fails(self, vesicle):
        opts = IntegratorOptions(characteristic_time_step=0.1, total_time=0.35,
                                 is_backtrack=False)
        integrator = Euler(vesicle, opts)
        assert not integrator.integrate()
        assert integrator.state is IntegratorState.FAILED
        assert integrator.n_iterations == 4
        assert vesicle.time > 0.35

    def test_equilibrium_converges(self):
        faces, x = icosphere(subdivisions=1)
        system = MembraneSystem(faces, x)
        calls = []
        integrator = Euler(system, callback=lambda step, t, s: calls.append(t))
        assert integrator.integrate()
        assert integrator.success
        assert integrator.state is IntegratorState.CONVERGED
        assert integrator.n_iterations == 0
        assert calls == [0.0]

    def test_max_iterations_exits(self, vesicle):
        integrator = Euler(vesicle, IntegratorOptions(max_iterations=3))
        assert not integrator.integrate()
        assert integrator.state is IntegratorState.EXITED
        assert integrator.n_iterations == 3

    def test_interrupt_exits(self, vesicle):
        integrator = Euler(vesicle)
        integrator._handle_sigint(signal.SIGINT, None)
        assert not integrator.integrate()
        assert integrator.state is IntegratorState.EXITED
        assert integrator.n_iterations == 0

    def test_step(self, vesicle):
        integrator = Euler(vesicle, IntegratorOptions(is_backtrack=False))
        assert integrator.step() == 0.1
        assert integrator.n_iterations == 1
        vesicle.parameters.bending.Kb = 0.0
        vesicle.parameters.tension.Ksg = 0.0
        vesicle.parameters.osmotic.Kv = 0.0
        vesicle.update_configurations()
        assert integrator.step() == 0.0
        assert integrator.state is IntegratorState.CONVERGED

    def test_step_after_failed_line_search(self, vesicle):
        integrator = Euler(vesicle)
        search = integrator.backtrack

        def unreachable(energy_pre, *args):
            return search(energy_pre - 1.0, *args)

        integrator.backtrack = unreachable
        assert integrator.step() == 0.0
        assert integrator.state is IntegratorState.FAILED
        assert vesicle.time == 0.0

    def test_non_finite_force_fails(self, vesicle, caplog):
        integrator = Euler(vesicle)
        vesicle.forces.bending[0, 0] = np.nan
        with caplog.at_level(logging.ERROR):
            assert not integrator.finiteness_check()
        assert integrator.state is IntegratorState.FAILED
        assert "bending force is not finite" in caplog.text

    def test_non_finite_energy_fails(self, vesicle):
        integrator = Euler(vesicle)
        vesicle.compute_total_energy()
        vesicle.energy.bending = np.inf
        assert not integrator.finiteness_check()
        assert integrator.state is IntegratorState.FAILED


class TestConstraintThreshold:
    @pytest.fixture
    def stretched(self):
        faces, x = icosphere(subdivisions=1)
        system = MembraneSystem(faces, x, {'tension': {'Ksg': 1.0}})
        system.positions = 1.1 * system.positions
        system.update_configurations()
        return system

    def test_penalty_increment(self, stretched):
        integrator = Euler(stretched)
        integrator.area_difference = stretched.area_difference
        integrator.constraint_threshold()
        assert integrator.state is IntegratorState.RUNNING
        npt.assert_allclose(stretched.parameters.tension.Ksg, 1.3)

    def test_augmented_lagrangian(self, stretched):
        integrator = Euler(stretched, IntegratorOptions(is_augmented_lagrangian=True))
        integrator.area_difference = stretched.area_difference
        integrator.constraint_threshold()
        npt.assert_allclose(stretched.parameters.tension.lambda_SG, 0.21)
        assert stretched.parameters.tension.Ksg == 1.0

    def test_satisfied_constraint_converges(self, stretched):
        integrator = Euler(stretched, IntegratorOptions(constraint_tolerance=0.5))
        integrator.area_difference = stretched.area_difference
        integrator.constraint_threshold()
        assert integrator.state is IntegratorState.CONVERGED


# ---------------------------------------------------------------------------
# Integrators
# ---------------------------------------------------------------------------

class TestIntegrators:
    def test_euler_relaxes_vesicle(self, vesicle):
        vesicle.compute_potential_energy()
        before = vesicle.energy.potential
        Euler(vesicle, IntegratorOptions(max_iterations=10)).integrate()
        assert vesicle.compute_potential_energy() < before

    def test_euler_protein_variation(self):
        faces, x = icosphere(subdivisions=1)
        phi = 0.3 + 0.4 * (x[:, 2] + 1.0) / 2.0
        system = MembraneSystem(faces, x, {
            'adsorption': {'epsilon': -1e-2},
            'variation': {'is_shape_variation': False,
                          'is_protein_variation': True},
            'protein_mobility': 1.0,
        }, protein_density=phi)
        before = system.compute_potential_energy()
        Euler(system, IntegratorOptions(max_iterations=5)).integrate()
        assert system.compute_potential_energy() < before
        npt.assert_array_equal(system.positions, x)

    def test_diffusion_keeps_density_inside_unit_interval(self):
        faces, x = icosphere(subdivisions=1)
        phi = np.where(x[:, 2] > 0, 0.99, 0.01)
        system = MembraneSystem(faces, x, {
            'dirichlet': {'eta': 1.0},
            'protein': {'lambda_phi': 1e-6},
            'variation': {'is_shape_variation': False,
                          'is_protein_variation': True},
            'protein_mobility': 1.0,
        }, protein_density=phi)
        before = system.compute_potential_energy()
        Euler(system, IntegratorOptions(max_iterations=10)).integrate()
        phi = system.protein_density
        assert np.all((phi > 0) & (phi < 1))
        assert system.compute_potential_energy() < before

    def test_conjugate_gradient_relaxes_vesicle(self, vesicle):
        before = vesicle.compute_potential_energy()
        integrator = ConjugateGradient(
            vesicle, IntegratorOptions(max_iterations=10, restart_period=4))
        integrator.integrate()
        assert integrator.state is IntegratorState.EXITED
        assert vesicle.compute_potential_energy() < before

    def test_conjugate_gradient_keeps_searched_direction(self, vesicle):
        integrator = ConjugateGradient(vesicle, IntegratorOptions(
            restart_period=10))
        integrator.status()
        force = vesicle.forces.mechanical_force.copy()
        # a large beta on a reversed direction points the update uphill
        integrator._count = 1
        integrator._past_norm2 = 1e-6 * float(np.sum(force * force))
        vesicle.velocity = -force
        integrator.march()
        assert integrator.state is IntegratorState.RUNNING
        npt.assert_allclose(vesicle.velocity, force)

    def test_conjugate_gradient_reset(self, vesicle):
        integrator = ConjugateGradient(vesicle, IntegratorOptions(max_iterations=3))
        integrator.integrate()
        assert integrator._count == 3
        integrator.reset_history()
        assert integrator._count == 0

    def test_verlet_is_reproducible(self):
        params = dict(VESICLE, dpd={'gamma': 1.0}, temperature=300.0)
        opts = IntegratorOptions(characteristic_time_step=1e-3, is_backtrack=False,
                                 max_iterations=5)
        a = make_vesicle(params, seed=4)
        b = make_vesicle(params, seed=4)
        VelocityVerlet(a, opts).integrate()
        VelocityVerlet(b, opts).integrate()
        npt.assert_array_equal(a.positions, b.positions)
        npt.assert_array_equal(a.velocity, b.velocity)
        npt.assert_allclose(a.time, 5e-3)

    def test_verlet_reset(self, vesicle):
        integrator = VelocityVerlet(vesicle, IntegratorOptions(
            is_backtrack=False, max_iterations=2))
        integrator.integrate()
        assert integrator._previous_acceleration is not None
        integrator.reset_history()
        assert integrator._previous_acceleration is None

    def test_mesh_processing_period(self):
        mutator = MeshMutator(flip_non_delaunay=True)
        system = make_vesicle(processor=MeshProcessor(mesh_mutator=mutator))
        opts = IntegratorOptions(is_backtrack=False, max_iterations=3,
                                 process_mesh_period=0.05)
        Euler(system, opts).integrate()
        npt.assert_allclose(system.time, 0.3, atol=1e-8)

    def test_regularization_is_applied(self):
        from memdgclib import MeshRegularizer

        faces, x = icosphere(subdivisions=1)
        rng = np.random.default_rng(2)
        x = x + 0.02 * rng.standard_normal(x.shape)
        processor = MeshProcessor(mesh_regularizer=MeshRegularizer(Kse=0.1))
        system = MembraneSystem(faces, x, {'bending': {'Kb': 1e-3}},
                                processor=processor)
        spread = system.geometry.edge_length.std()
        regularizer = system.processor.mesh_regularizer
        regularizer.set_reference(system.geometry)
        Euler(system, IntegratorOptions(is_backtrack=False,
                                        characteristic_time_step=1e-3,
                                        max_iterations=20)).integrate()
        assert system.geometry.edge_length.std() < spread


# ---------------------------------------------------------------------------
# Callbacks and the runner
# ---------------------------------------------------------------------------

class TestCallbacks:
    def test_short_signature(self):
        calls = []
        _invoke_callback(lambda step, t, system: calls.append((step, t)),
                         3, 0.5, None, {'state': 'running'})
        assert calls == [(3, 0.5)]

    def test_full_signature(self):
        calls = []

        def callback(step, t, system, diagnostics):
            calls.append(diagnostics)

        _invoke_callback(callback, 0, 0.0, None, {'state': 'running'})
        assert calls == [{'state': 'running'}]

    def test_none(self):
        _invoke_callback(None, 0, 0.0, None)

    def test_save_period(self, vesicle):
        saved = []

        def callback(step, t, system, diagnostics):
            saved.append((step, diagnostics['state']))

        opts = IntegratorOptions(is_backtrack=False, save_period=0.2,
                                 max_iterations=5)
        Euler(vesicle, opts, callback=callback).integrate()
        assert [step for step, _ in saved] == [0, 2, 4]
        assert all(state == "running" for _, state in saved)


class TestDynamicSimulation:
    def test_run_with_named_integrator(self, vesicle):
        sim = (DynamicSimulation(vesicle, IntegratorOptions(max_iterations=2))
               .set_integrator("conjugate_gradient")
               .set_initial_conditions(UniformProteinDensity(0.3)))
        assert not sim.run()
        assert isinstance(sim.integrator, ConjugateGradient)
        assert sim.integrator.state is IntegratorState.EXITED
        npt.assert_allclose(vesicle.protein_density, 0.3)

    def test_default_is_euler(self):
        faces, x = icosphere(subdivisions=1)
        sim = DynamicSimulation(MembraneSystem(faces, x))
        assert sim.run()
        assert isinstance(sim.integrator, Euler)

    def test_boundary_conditions_installed(self, vesicle):
        from memdgclib._boundary_conditions import BoundaryConditionSet

        bc_set = BoundaryConditionSet()
        sim = DynamicSimulation(vesicle, IntegratorOptions(max_iterations=1))
        sim.set_boundary_conditions(bc_set).set_integrator(Euler).run()
        assert vesicle.boundary_conditions is bc_set
