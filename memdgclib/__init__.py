"""
memdgclib: discrete differential geometry of biomembranes.

Triangulated membranes with a protein density field relax under bending,
surface tension, osmotic pressure, protein adsorption, aggregation and line
tension forces, with tangential mesh regularization and adaptive
remeshing.

Usage
-----
    import memdgclib
    from memdgclib import MembraneSystem, Parameters, icosphere
    from memdgclib.dynamic_integrators import Euler, IntegratorOptions

    memdgclib.configure_logging("INFO")
    faces, positions = icosphere(radius=1.0, subdivisions=1)
    params = Parameters.from_dict({
        'bending': {'Kb': 8.22e-5},
        'tension': {'Ksg': 1e-2},
        'osmotic': {'Kv': 1e-2},
    })
    system = MembraneSystem(faces, positions, params)
    Euler(system, IntegratorOptions(total_time=10.0)).integrate()
"""

import logging

from memdgclib._errors import ConfigurationError, MembraneError, TopologyError
from memdgclib._mesh import HalfedgeMesh
from memdgclib._meshes import cylinder, hexagon_patch, icosphere, sphere_from_points
from memdgclib._parameters import BendingRelation, Parameters
from memdgclib._regularizer import MeshRegularizer
from memdgclib._mutator import MeshMutator
from memdgclib._processor import MeshProcessor
from memdgclib._system import MembraneSystem

__all__ = [
    'MembraneError',
    'ConfigurationError',
    'TopologyError',
    'HalfedgeMesh',
    'icosphere',
    'cylinder',
    'hexagon_patch',
    'sphere_from_points',
    'BendingRelation',
    'Parameters',
    'MeshRegularizer',
    'MeshMutator',
    'MeshProcessor',
    'MembraneSystem',
    'configure_logging',
]


def configure_logging(level=logging.INFO, fmt: str = "%(asctime)s %(name)s "
                      "%(levelname)s: %(message)s"):
    """Attach a stream handler to the ``memdgclib`` logger.

    Parameters
    ----------
    level : int or str
        Logging level, e.g. ``logging.DEBUG`` or ``"INFO"``.
    fmt : str
        Record format.
    """
    logger = logging.getLogger("memdgclib")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
