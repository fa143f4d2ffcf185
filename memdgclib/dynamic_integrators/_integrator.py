"""
Shared machinery of the membrane time integrators.

An :class:`Integrator` drives a :class:`~memdgclib._system.MembraneSystem`
through a loop of ``status()`` (forces, energies, convergence and
finiteness checks), periodic saving, mesh processing and geodesic updates,
and ``march()`` (one step, implemented by subclasses).  The loop ends in
one of the terminal :class:`IntegratorState` values; only ``CONVERGED``
counts as success.

Numerical divergence and line-search exhaustion are not exceptions: they
move the integrator to ``FAILED`` and are reported through logging.

Usage
-----
    from memdgclib.dynamic_integrators import Euler, IntegratorOptions

    opts = IntegratorOptions(characteristic_time_step=0.1, total_time=50.0,
                             tolerance=1e-6, is_backtrack=True)
    integrator = Euler(system, opts, callback=history.callback)
    success = integrator.integrate()
"""

import enum
import inspect
import logging
import math
import signal
import threading
import time as _time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from memdgclib._errors import ConfigurationError
from memdgclib._forces import CHEMICAL_POTENTIALS, MECHANICAL_FORCES
from memdgclib._energy import POTENTIAL_TERMS

logger = logging.getLogger(__name__)

# energy term -> (force, potential) driving it, for line-search diagnostics
_ENERGY_DRIVERS = {
    'bending': ('bending', 'bending_potential'),
    'surface': ('capillary', None),
    'pressure': ('osmotic', None),
    'adsorption': ('adsorption', 'adsorption_potential'),
    'aggregation': ('aggregation', 'aggregation_potential'),
    'dirichlet': ('line_tension', 'diffusion_potential'),
    'protein_interior_penalty': (None, 'interior_penalty_potential'),
}


class IntegratorState(enum.Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    FAILED = "failed"
    EXITED = "exited"


@dataclass
class IntegratorOptions:
    """Options shared by all integrators.

    Attributes
    ----------
    characteristic_time_step : float
        Fixed step, or the initial trial step of the line search.
    total_time : float
        Simulated-time budget; exceeding it ends the run as FAILED.
    save_period, process_mesh_period, update_geodesics_period : float
        Simulated-time intervals between frame records, mesh mutation and
        geodesic-distance updates.
    tolerance : float
        Convergence threshold on the mechanical and chemical error norms.
    is_backtrack : bool
        Use the backtracking line search.
    rho, c1 : float
        Shrink ratio and sufficient-decrease coefficient of the line search.
    is_adaptive_step : bool
        Rescale the characteristic step by ``min_edge^2 / max_force``.
    is_augmented_lagrangian : bool
        Update the Lagrange multipliers (True) or scale the penalty
        stiffnesses by ``penalty_increment`` (False) when the force has
        converged but a constraint has not.
    constraint_tolerance : float
        Relative area/volume residual accepted at convergence.
    restart_period : int
        Iterations between conjugate-gradient restarts.
    max_iterations : int or None
        Optional cap on the number of marches; reaching it ends the run as
        EXITED.
    """
    characteristic_time_step: float = 0.1
    total_time: float = math.inf
    save_period: float = math.inf
    process_mesh_period: float = math.inf
    update_geodesics_period: float = math.inf
    tolerance: float = 1e-6
    is_backtrack: bool = True
    rho: float = 0.99
    c1: float = 1e-4
    is_adaptive_step: bool = False
    is_augmented_lagrangian: bool = False
    constraint_tolerance: float = 1e-2
    penalty_increment: float = 1.3
    restart_period: int = 10
    max_iterations: Optional[int] = None


def _invoke_callback(callback, step, t, system, diagnostics=None):
    """Call user callback, auto-detecting the short (3-arg) vs full (4-arg)
    signature.

    Short signature: callback(step, t, system)
    Full signature: callback(step, t, system, diagnostics)
    """
    if callback is None:
        return
    try:
        sig = inspect.signature(callback)
        n_params = len(sig.parameters)
    except (ValueError, TypeError):
        n_params = 3

    if n_params >= 4:
        callback(step, t, system, diagnostics)
    else:
        callback(step, t, system)


class Integrator(ABC):
    """Base class of the time integrators.

    Parameters
    ----------
    system : MembraneSystem
        System to advance in place.
    options : IntegratorOptions or None
        Integration options.
    callback : callable or None
        Called at every save with ``(step, t, system)`` or
        ``(step, t, system, diagnostics)``.
    """

    def __init__(self, system, options: Optional[IntegratorOptions] = None,
                 callback: Optional[Callable] = None):
        self.system = system
        self.options = options if options is not None else self.default_options()
        self.callback = callback
        self.state = IntegratorState.RUNNING
        self.check_parameters()

        opts = self.options
        self.characteristic_time_step = opts.characteristic_time_step
        self.time_step = opts.characteristic_time_step
        self.initial_time = system.time
        self.last_save = system.time
        self.last_process_mesh = system.time
        self.last_update_geodesics = system.time
        self.n_iterations = 0
        self.area_difference = 0.0
        self.volume_difference = 0.0
        self._exit_requested = False

        system.update_configurations()
        forces = system.compute_physical_forcing()
        self.initial_maximum_force = self._maximum_force(forces)
        self.dt_size2_ratio = (opts.characteristic_time_step
                               / system.geometry.min_edge_length ** 2)

    @classmethod
    def default_options(cls) -> IntegratorOptions:
        return IntegratorOptions()

    @property
    def success(self) -> bool:
        return self.state is IntegratorState.CONVERGED

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def check_parameters(self):
        """Validate options against the system; raise ConfigurationError."""
        opts = self.options
        if opts.characteristic_time_step <= 0:
            raise ConfigurationError("characteristic_time_step must be positive")
        if opts.is_backtrack and not (0 < opts.rho < 1 and 0 < opts.c1 < 1):
            raise ConfigurationError("To backtrack, 0 < rho < 1 and 0 < c1 < 1")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def integrate(self) -> bool:
        """Run until a terminal state; True only when converged."""
        system = self.system
        opts = self.options
        previous_handler = self._install_sigint()
        start = _time.perf_counter()
        try:
            while True:
                self.status()

                if (system.time - self.last_save >= opts.save_period
                        or system.time == self.initial_time
                        or self.state is not IntegratorState.RUNNING):
                    self.last_save = system.time
                    self.save_data()

                refreshed = False
                if system.time - self.last_process_mesh > opts.process_mesh_period:
                    self.last_process_mesh = system.time
                    if system.mutate_mesh():
                        self.reset_history()
                    system.update_configurations()
                    refreshed = True

                if (system.time - self.last_update_geodesics
                        > opts.update_geodesics_period):
                    self.last_update_geodesics = system.time
                    system.update_configurations(update_geodesics=True)
                    refreshed = True

                if self._exit_requested and self.state is IntegratorState.RUNNING:
                    logger.info("Interrupted, exiting after the current step.")
                    self.state = IntegratorState.EXITED
                if (opts.max_iterations is not None
                        and self.n_iterations >= opts.max_iterations
                        and self.state is IntegratorState.RUNNING):
                    self.state = IntegratorState.EXITED
                if self.state is not IntegratorState.RUNNING:
                    break

                if refreshed:
                    # re-evaluate on the processed mesh before stepping
                    system.time += 1e-10 * self.characteristic_time_step
                    continue
                self.march()
                self.n_iterations += 1
        finally:
            self._restore_sigint(previous_handler)

        logger.info(f"{type(self).__name__}: {self.state.value} after "
                    f"{self.n_iterations} iteration(s), t = {system.time:.6g}, "
                    f"{_time.perf_counter() - start:.3f} s")
        return self.success

    def step(self) -> float:
        """Evaluate the status and march once; return the step taken.

        Returns 0.0 when the status check ends the run or when a failed
        line search restored the state.
        """
        self.status()
        if self.state is not IntegratorState.RUNNING:
            return 0.0
        self.march()
        self.n_iterations += 1
        if self.state is not IntegratorState.RUNNING:
            return 0.0
        return self.time_step

    def reset_history(self):
        """Forget per-vertex state carried between steps."""

    @abstractmethod
    def march(self):
        """Advance the system by one step."""

    def _install_sigint(self):
        if threading.current_thread() is not threading.main_thread():
            return None
        return signal.signal(signal.SIGINT, self._handle_sigint)

    def _restore_sigint(self, previous):
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    def _handle_sigint(self, signum, frame):
        self._exit_requested = True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_forces(self):
        system = self.system
        forces = system.compute_physical_forcing()
        if system.parameters.dpd.gamma != 0:
            system.compute_dpd_forces(self.time_step)
        return forces

    def status(self):
        """Forces, convergence, time budget, energy and finiteness."""
        system = self.system
        forces = self.get_forces()
        self.area_difference = system.area_difference
        self.volume_difference = system.volume_difference

        if (forces.mechanical_error_norm < self.options.tolerance
                and forces.chemical_error_norm < self.options.tolerance):
            self.constraint_threshold()

        if system.time > self.options.total_time:
            logger.info("Reached time.")
            self.state = IntegratorState.FAILED

        if system.parameters.external.Kf != 0:
            system.compute_external_work(self.time_step)
        system.compute_total_energy()
        self.finiteness_check()

    def constraint_threshold(self):
        """Converge, or tighten the area/volume constraints.

        Called once the error norms are below tolerance.  Unconstrained
        quantities (constant tension or pressure, zero stiffness) count as
        satisfied.
        """
        system = self.system
        opts = self.options
        tension = system.parameters.tension
        osmotic = system.parameters.osmotic
        area_constrained = (system.tension_policy == "area_penalty"
                            and tension.Ksg != 0)
        volume_constrained = (system.pressure_policy == "reduced_volume"
                              and osmotic.Kv != 0)
        area_ok = not area_constrained or self.area_difference < opts.constraint_tolerance
        volume_ok = (not volume_constrained
                     or self.volume_difference < opts.constraint_tolerance)
        if area_ok and volume_ok:
            logger.info("Error norm smaller than tolerance.")
            self.state = IntegratorState.CONVERGED
            return

        geo = system.geometry
        if opts.is_augmented_lagrangian:
            before = (tension.lambda_SG, osmotic.lambda_V)
            if area_constrained:
                tension.lambda_SG += tension.Ksg * (geo.area - tension.At) / tension.At
            if volume_constrained:
                target = system.target_volume
                osmotic.lambda_V += osmotic.Kv * (geo.volume - target) / target
            logger.info(f"[lambda_SG, lambda_V] = {list(before)} -> "
                        f"{[tension.lambda_SG, osmotic.lambda_V]}")
        else:
            if not area_ok:
                tension.Ksg *= opts.penalty_increment
                logger.info(f"[Ksg] -> [{tension.Ksg:.6g}]")
            if not volume_ok:
                osmotic.Kv *= opts.penalty_increment
                logger.info(f"[Kv] -> [{osmotic.Kv:.6g}]")

    def finiteness_check(self) -> bool:
        """Report every non-finite component; move to FAILED if any."""
        system = self.system
        forces = system.forces
        energy = system.energy
        bad = []
        if not np.isfinite(self.time_step):
            bad.append("time step")
        if not np.isfinite(forces.mechanical_error_norm):
            if not np.all(np.isfinite(system.velocity)):
                bad.append("velocity")
            bad.extend(f"{name} force" for name in MECHANICAL_FORCES
                       if not np.all(np.isfinite(getattr(forces, name))))
        if not np.all(np.isfinite(forces.dpd_force)):
            bad.append("DPD force")
        if not np.isfinite(forces.chemical_error_norm):
            if not np.all(np.isfinite(system.protein_velocity)):
                bad.append("protein velocity")
            bad.extend(name.replace('_', ' ') for name in CHEMICAL_POTENTIALS
                       if not np.all(np.isfinite(getattr(forces, name))))
        if not np.isfinite(energy.total):
            bad.extend(f"{name} energy" for name in
                       POTENTIAL_TERMS + ('kinetic',)
                       if not np.isfinite(getattr(energy, name)))
            if not np.isfinite(energy.external_work):
                bad.append("external work")
        if bad:
            for name in bad:
                logger.error(f"{name} is not finite!")
            self.state = IntegratorState.FAILED
            return False
        return True

    # ------------------------------------------------------------------
    # Step size
    # ------------------------------------------------------------------

    def _maximum_force(self, forces) -> float:
        if self.system.parameters.variation.is_shape_variation:
            return float(np.abs(forces.mechanical_force).max())
        return float(np.abs(forces.chemical_potential).max())

    def update_adaptive_characteristic_step(self):
        """``dt_size2_ratio * min_edge^2 * (initial max force / max force)``."""
        current = self._maximum_force(self.system.forces)
        min_edge = self.system.geometry.min_edge_length
        ratio = self.initial_maximum_force / current if current > 0 else 1.0
        self.characteristic_time_step = self.dt_size2_ratio * min_edge * min_edge * ratio

    def backtrack(self, energy_pre: float, position_direction: np.ndarray,
                  chemical_direction: np.ndarray, rho: float, c1: float) -> float:
        """Backtracking line search along the given directions.

        Starting from the characteristic step, shrink ``alpha`` by ``rho``
        until::

            E(alpha) < E(0) + W_ext(alpha) - c1 alpha (F . d + mu . d_phi)

        A direction with a negative projection on the force (potential) is
        replaced by the force (potential) itself.  When ``alpha`` falls
        below ``1e-5`` of the characteristic step the system is restored,
        the per-term energy changes are logged and the integrator moves to
        FAILED.

        Returns
        -------
        float
            Accepted step size (the last trial on failure).
        """
        system = self.system
        forces = system.forces
        variation = system.parameters.variation
        previous_energy = system.energy.as_dict()

        position_projection = 0.0
        chemical_projection = 0.0
        if variation.is_shape_variation:
            force = forces.mechanical_force
            position_projection = float(np.sum(force * position_direction))
            if position_projection < 0:
                logger.warning("Backtracking line search: positional velocity "
                               "on uphill direction, use bare gradient!")
                position_direction = force
                position_projection = float(np.sum(force * force))
        if variation.is_protein_variation:
            potential = forces.chemical_potential
            chemical_projection = float(np.sum(potential * chemical_direction))
            if chemical_projection < 0:
                logger.warning("Backtracking line search: chemical direction "
                               "on uphill direction, use bare gradient!")
                chemical_direction = potential
                chemical_projection = float(np.sum(potential * potential))

        initial = system.backup()
        alpha = self.characteristic_time_step
        self.position_direction = position_direction
        self.chemical_direction = chemical_direction
        count = 0
        while True:
            self._trial(initial, alpha, position_direction, chemical_direction)
            energy = system.compute_potential_energy()
            bound = (energy_pre + system.compute_integrated_power(alpha)
                     - c1 * alpha * (position_projection + chemical_projection))
            if energy < bound:
                break
            if alpha < 1e-5 * self.characteristic_time_step:
                logger.warning("backtrack: line search failure! Simulation "
                               "stopped.")
                self.line_search_backtrace(alpha, initial, previous_energy)
                system.restore(initial)
                system.compute_potential_energy()
                self.state = IntegratorState.FAILED
                break
            alpha *= rho
            count += 1

        if count:
            logger.debug(f"alpha: {self.characteristic_time_step:.4g} -> "
                         f"{alpha:.4g} ({count} backtrack(s))")
        return alpha

    def _trial(self, initial, alpha, position_direction, chemical_direction):
        system = self.system
        variation = system.parameters.variation
        if variation.is_shape_variation:
            system.positions = initial['positions'] + alpha * position_direction
        if variation.is_protein_variation:
            system.protein_density = (initial['protein_density']
                                      + alpha * chemical_direction)
        system.time = initial['time'] + alpha
        system.update_configurations()

    def line_search_backtrace(self, alpha: float, initial: dict,
                              previous_energy: dict):
        """Log which energy terms rose along each single force at ``alpha``."""
        system = self.system
        forces = system.forces
        mobility = system.parameters.protein_mobility
        trial = system.energy.as_dict()
        for term, (force_name, potential_name) in _ENERGY_DRIVERS.items():
            if trial[term] <= previous_energy[term]:
                continue
            logger.warning(f"With the full update, {term} energy has increased "
                           f"{trial[term] - previous_energy[term]:.6g} from "
                           f"{previous_energy[term]:.6g} to {trial[term]:.6g}")
            if force_name is not None:
                force = getattr(forces, force_name)
                self._single_term(initial, term, previous_energy[term],
                                  initial['positions'] + alpha * force,
                                  initial['protein_density'],
                                  -alpha * float(np.sum(force * force)),
                                  f"{force_name} force")
            if potential_name is not None:
                potential = getattr(forces, potential_name)
                self._single_term(initial, term, previous_energy[term],
                                  initial['positions'],
                                  initial['protein_density']
                                  + alpha * mobility * potential,
                                  -alpha * mobility * float(np.sum(potential * potential)),
                                  potential_name.replace('_', ' '))

    def _single_term(self, initial, term, before, positions, density,
                     expected, label):
        system = self.system
        system.positions = positions
        system.protein_density = density
        system.update_configurations()
        system.compute_potential_energy()
        after = getattr(system.energy, term)
        if after > before:
            logger.warning(f"With only {label}, {term} energy has increased "
                           f"{after - before:.6g}, expected {expected:.6g}")
        system.positions = initial['positions'].copy()
        system.protein_density = initial['protein_density'].copy()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def diagnostics(self) -> dict:
        forces = self.system.forces
        return {
            'state': self.state.value,
            'time_step': self.time_step,
            'characteristic_time_step': self.characteristic_time_step,
            'mechanical_error_norm': forces.mechanical_error_norm,
            'chemical_error_norm': forces.chemical_error_norm,
            'area_difference': self.area_difference,
            'volume_difference': self.volume_difference,
        }

    def save_data(self):
        diagnostics = self.diagnostics()
        logger.debug(f"t = {self.system.time:.6g}, "
                     f"E = {self.system.energy.total:.6g}, "
                     f"|F| = {diagnostics['mechanical_error_norm']:.3e}, "
                     f"|mu| = {diagnostics['chemical_error_norm']:.3e}")
        _invoke_callback(self.callback, self.n_iterations, self.system.time,
                         self.system, diagnostics)

    # ------------------------------------------------------------------
    # Shared step helpers
    # ------------------------------------------------------------------

    def apply_regularization(self):
        """Add the tangential regularization force to the positions."""
        system = self.system
        if system.processor.is_mesh_regularize:
            system.positions = system.positions + system.compute_regularization_force()
