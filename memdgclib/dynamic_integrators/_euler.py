"""
Forward Euler (gradient descent) integrator.

Each march sets the vertex velocity to the mechanical force and the protein
velocity to ``mobility * chemical potential``, then takes either a fixed
step of the characteristic size or a backtracking line-search step.  With
backtracking this is a steepest-descent energy minimizer.

Usage
-----
    from memdgclib.dynamic_integrators import Euler, IntegratorOptions

    integrator = Euler(system, IntegratorOptions(characteristic_time_step=0.1,
                                                 total_time=100.0))
    integrator.integrate()
"""

from memdgclib._errors import ConfigurationError
from memdgclib.dynamic_integrators._integrator import Integrator, IntegratorState


class Euler(Integrator):
    """Forward Euler integrator, optionally with backtracking."""

    def check_parameters(self):
        super().check_parameters()
        if self.system.parameters.dpd.gamma != 0:
            raise ConfigurationError("DPD has to be turned off for Euler "
                                     "integration!")

    def march(self):
        system = self.system
        forces = system.forces
        system.velocity = forces.mechanical_force.copy()
        system.protein_velocity = (system.parameters.protein_mobility
                                   * forces.chemical_potential)

        if self.options.is_adaptive_step:
            self.update_adaptive_characteristic_step()

        if self.options.is_backtrack:
            self.time_step = self.backtrack(system.energy.potential,
                                            system.velocity,
                                            system.protein_velocity,
                                            self.options.rho, self.options.c1)
        else:
            self.time_step = self.characteristic_time_step
            system.positions = system.positions + system.velocity * self.time_step
            system.protein_density = (system.protein_density
                                      + system.protein_velocity * self.time_step)
            system.time += self.time_step

        if self.state is IntegratorState.FAILED:
            return
        self.apply_regularization()
        system.update_configurations()
