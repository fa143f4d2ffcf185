"""Time integrators driving a membrane system towards equilibrium."""

from memdgclib.dynamic_integrators._integrator import (
    Integrator,
    IntegratorOptions,
    IntegratorState,
)
from memdgclib.dynamic_integrators._euler import Euler
from memdgclib.dynamic_integrators._conjugate_gradient import ConjugateGradient
from memdgclib.dynamic_integrators._velocity_verlet import VelocityVerlet
from memdgclib.dynamic_integrators._simulation import (
    DynamicSimulation,
    integrators,
)

__all__ = [
    'Integrator',
    'IntegratorOptions',
    'IntegratorState',
    'Euler',
    'ConjugateGradient',
    'VelocityVerlet',
    'DynamicSimulation',
    'integrators',
]
