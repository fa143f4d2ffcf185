"""
Velocity Verlet integrator for damped, stochastic membrane dynamics.

Vertices carry unit mass; the acceleration is the mechanical force plus
the dissipative-particle-dynamics damping and stochastic forces, drawn
from the system's own random generator.  The protein density follows the
same mobility-weighted update as the Euler integrator.  Steps are fixed
(or adaptive); backtracking is not allowed since the dynamics are not an
energy descent.

Usage
-----
    from memdgclib.dynamic_integrators import VelocityVerlet, IntegratorOptions

    opts = IntegratorOptions(characteristic_time_step=1e-3, total_time=1.0,
                             is_backtrack=False)
    VelocityVerlet(system, opts).integrate()
"""

from memdgclib._errors import ConfigurationError
from memdgclib.dynamic_integrators._integrator import (
    Integrator,
    IntegratorOptions,
)


class VelocityVerlet(Integrator):
    """Second-order velocity Verlet integrator."""

    def __init__(self, system, options=None, callback=None):
        self._previous_acceleration = None
        super().__init__(system, options, callback)

    @classmethod
    def default_options(cls) -> IntegratorOptions:
        return IntegratorOptions(is_backtrack=False)

    def check_parameters(self):
        super().check_parameters()
        if self.options.is_backtrack:
            raise ConfigurationError("Velocity Verlet does not support "
                                     "backtracking!")

    def reset_history(self):
        self._previous_acceleration = None

    def march(self):
        system = self.system
        forces = system.forces
        if self.options.is_adaptive_step:
            self.update_adaptive_characteristic_step()
        dt = self.characteristic_time_step
        self.time_step = dt

        acceleration = forces.mechanical_force + forces.dpd_force
        if self._previous_acceleration is not None:
            # complete the previous step's velocity update with the new forces
            system.velocity = (system.velocity
                               + 0.5 * (self._previous_acceleration
                                        + acceleration) * dt)
        system.velocity = system.velocity * system.force_mask
        system.positions = (system.positions + system.velocity * dt
                            + 0.5 * acceleration * dt * dt)
        system.protein_velocity = (system.parameters.protein_mobility
                                   * forces.chemical_potential)
        system.protein_density = system.protein_density + system.protein_velocity * dt
        system.time += dt
        self._previous_acceleration = acceleration

        self.apply_regularization()
        system.update_configurations()
