"""
DynamicSimulation: optional convenience runner for membrane simulations.

Bundles the system, boundary conditions, initial conditions, integrator
and its options into a single object.  Cases can use this OR construct an
integrator directly; it is purely a convenience layer.

Usage
-----
    from memdgclib.dynamic_integrators import DynamicSimulation, IntegratorOptions

    sim = DynamicSimulation(system, IntegratorOptions(total_time=10.0))
    sim.set_initial_conditions(CompositeIC(ZeroVelocity(), UniformProteinDensity(0.1)))
    sim.set_boundary_conditions(bc_set)
    sim.set_integrator("conjugate_gradient")
    success = sim.run(callback=history.callback)
"""

from typing import Callable, Optional, Union

from memdgclib.dynamic_integrators._conjugate_gradient import ConjugateGradient
from memdgclib.dynamic_integrators._euler import Euler
from memdgclib.dynamic_integrators._integrator import Integrator, IntegratorOptions
from memdgclib.dynamic_integrators._velocity_verlet import VelocityVerlet
from memdgclib.operators._registry import MethodRegistry

integrators = MethodRegistry("integrator")
integrators.register("euler", Euler)
integrators.register("conjugate_gradient", ConjugateGradient)
integrators.register("velocity_verlet", VelocityVerlet)


class DynamicSimulation:
    """Convenience runner that bundles all simulation components.

    Parameters
    ----------
    system : MembraneSystem
        System to integrate in place.
    options : IntegratorOptions or None
        Integration options; the integrator's defaults when None.
    """

    def __init__(self, system, options: Optional[IntegratorOptions] = None):
        self.system = system
        self.options = options
        self._ic = None
        self._bc_set = None
        self._integrator_cls = Euler
        self.integrator: Optional[Integrator] = None

    def set_initial_conditions(self, ic) -> 'DynamicSimulation':
        """Set initial conditions (an InitialCondition object).

        Returns self for chaining.
        """
        self._ic = ic
        return self

    def set_boundary_conditions(self, bc_set) -> 'DynamicSimulation':
        """Set boundary condition set (a BoundaryConditionSet object).

        Returns self for chaining.
        """
        self._bc_set = bc_set
        return self

    def set_integrator(self, integrator: Union[str, type]) -> 'DynamicSimulation':
        """Set the integrator class, or its registered name.

        Returns self for chaining.
        """
        if isinstance(integrator, str):
            integrator = integrators[integrator]
        self._integrator_cls = integrator
        return self

    def run(self, callback: Optional[Callable] = None) -> bool:
        """Run the simulation.

        1. Install boundary conditions and apply initial conditions (if set)
        2. Build the integrator and integrate to a terminal state
        3. Return whether the run converged

        Parameters
        ----------
        callback : callable or None
            Passed to the integrator.

        Returns
        -------
        bool
            True if the integrator converged.
        """
        if self._bc_set is not None:
            self.system.boundary_conditions = self._bc_set
        if self._ic is not None:
            self._ic.apply(self.system)
        self.system.update_configurations()

        self.integrator = self._integrator_cls(self.system, self.options,
                                               callback=callback)
        return self.integrator.integrate()
