"""
Exception hierarchy for memdgclib.

Configuration problems and broken topological invariants are raised as
exceptions.  Numerical divergence and line-search exhaustion are not: the
integrators detect them after the fact and terminate with a failure flag.
"""


class MembraneError(Exception):
    """Base class for all memdgclib errors."""


class ConfigurationError(MembraneError, ValueError):
    """Invalid parameter or option combination, detected at setup."""


class TopologyError(MembraneError, RuntimeError):
    """A mesh invariant was violated (non-manifold input, stale handle,
    lost tracked point, malformed boundary)."""
