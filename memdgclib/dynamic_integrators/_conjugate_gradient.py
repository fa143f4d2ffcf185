"""
Nonlinear conjugate-gradient energy minimizer.

Fletcher-Reeves directions with a restart every
``IntegratorOptions.restart_period`` iterations (and after every topology
change); each step is a backtracking line search along the current
direction.  A direction that turns uphill falls back to the bare force
inside the line search.
"""

import numpy as np

from memdgclib._errors import ConfigurationError
from memdgclib.dynamic_integrators._integrator import Integrator, IntegratorState


class ConjugateGradient(Integrator):
    """Fletcher-Reeves conjugate gradient with backtracking."""

    def __init__(self, system, options=None, callback=None):
        self._count = 0
        self._past_norm2 = 0.0
        self._past_chemical_norm2 = 0.0
        super().__init__(system, options, callback)

    def check_parameters(self):
        super().check_parameters()
        if self.system.parameters.dpd.gamma != 0:
            raise ConfigurationError("DPD has to be turned off for conjugate "
                                     "gradient!")
        if not self.options.is_backtrack:
            raise ConfigurationError("Conjugate gradient requires the "
                                     "backtracking line search!")
        if self.options.restart_period < 1:
            raise ConfigurationError("restart_period must be at least 1")

    def reset_history(self):
        self._count = 0

    def march(self):
        system = self.system
        forces = system.forces
        force = forces.mechanical_force
        potential = system.parameters.protein_mobility * forces.chemical_potential
        norm2 = float(np.sum(force * force))
        chemical_norm2 = float(np.sum(potential * potential))

        if self._count % self.options.restart_period == 0:
            system.velocity = force.copy()
            system.protein_velocity = potential.copy()
            self._count = 0
        else:
            beta = norm2 / self._past_norm2 if self._past_norm2 > 0 else 0.0
            chemical_beta = (chemical_norm2 / self._past_chemical_norm2
                             if self._past_chemical_norm2 > 0 else 0.0)
            system.velocity = beta * system.velocity + force
            system.protein_velocity = (chemical_beta * system.protein_velocity
                                       + potential)
        self._past_norm2 = norm2
        self._past_chemical_norm2 = chemical_norm2
        self._count += 1

        if self.options.is_adaptive_step:
            self.update_adaptive_characteristic_step()
        self.time_step = self.backtrack(system.energy.potential,
                                        system.velocity, system.protein_velocity,
                                        self.options.rho, self.options.c1)
        if self.state is IntegratorState.FAILED:
            return
        # the recurrence continues from the direction actually searched
        system.velocity = np.array(self.position_direction, dtype=float)
        system.protein_velocity = np.array(self.chemical_direction, dtype=float)
        self.apply_regularization()
        system.update_configurations()
