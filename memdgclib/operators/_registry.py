"""
Shared registry for pluggable operators and named strategies.

Usage
-----
    geodesic_methods = MethodRegistry("geodesic")
    geodesic_methods.register("heat", heat_geodesic)
    fn = geodesic_methods["heat"]
    geodesic_methods.available()  # ["heat"]

    @geodesic_methods.decorate("graph")
    def graph_geodesic(geometry, source): ...
"""

from typing import Callable


class MethodRegistry:
    """Name -> callable lookup with helpful errors for unknown names.

    Parameters
    ----------
    name : str
        Human-readable name for error messages (e.g., "geodesic").
    """

    def __init__(self, name: str):
        self.name = name
        self._methods: dict[str, Callable] = {}

    def register(self, key: str, fn: Callable) -> None:
        """Register ``fn`` under ``key`` (later registrations win)."""
        self._methods[key] = fn

    def decorate(self, key: str) -> Callable:
        """Decorator form of :meth:`register`."""
        def wrapper(fn):
            self.register(key, fn)
            return fn
        return wrapper

    def __getitem__(self, key: str) -> Callable:
        if key not in self._methods:
            raise KeyError(
                f"Unknown {self.name} method: {key!r}. "
                f"Available: {list(self._methods.keys())}"
            )
        return self._methods[key]

    def __contains__(self, key: str) -> bool:
        return key in self._methods

    def available(self) -> list[str]:
        """Return list of registered method names."""
        return list(self._methods.keys())
