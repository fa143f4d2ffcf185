"""Save and load membrane states; read and write triangulations.

The JSON state stores vertex positions, triangle connectivity, the vertex
fields (velocity, protein density), the simulation time and the full
parameter bundle, so a system can be rebuilt and continued.  Mesh files go
through meshio in any format it supports.

Usage
-----
    from memdgclib.data import save_state, load_state, read_mesh, write_mesh

    save_state(system, 'state.json', extra_meta={'case': 'vesicle'})
    system2, meta = load_state('state.json')

    positions, faces = read_mesh('input.ply')
    write_mesh('frame_0001.vtu', system)
"""

import json
import logging
from pathlib import Path
from typing import Optional

import meshio
import numpy as np

from memdgclib._errors import ConfigurationError

logger = logging.getLogger(__name__)

STATE_FORMAT = 'memdgclib_state_v1'


def save_state(system, path: str = 'state.json',
               extra_meta: Optional[dict] = None) -> str:
    """Serialize a membrane system to a JSON file.

    Parameters
    ----------
    system : MembraneSystem
        System to save.
    path : str or Path
        Output file path.
    extra_meta : dict or None
        Additional metadata to store.

    Returns
    -------
    str
        The path written to (for chaining).
    """
    parameters = system.parameters.to_dict()
    if not system.parameters.point.is_float_vertex:
        # vertex indices may have changed since construction
        parameters['point']['pt'] = [int(system.the_point_index)]
    state = {
        'format': STATE_FORMAT,
        'time': float(system.time),
        'n_vertices': int(system.n_vertices),
        'positions': system.positions.tolist(),
        'faces': system.geometry.faces.tolist(),
        'velocity': system.velocity.tolist(),
        'protein_density': system.protein_density.tolist(),
        'the_point': int(system.the_point_index),
        'parameters': parameters,
    }
    if extra_meta:
        state['meta'] = extra_meta

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(state, f, indent=2)
    logger.debug(f"saved state at t = {system.time:.6g} to {path}")
    return str(path)


def load_state(path: str, processor=None, **kwargs) -> tuple:
    """Rebuild a membrane system from a JSON file.

    Parameters
    ----------
    path : str or Path
        Path to state JSON file.
    processor : MeshProcessor or None
        Mesh processing options for the rebuilt system.
    **kwargs
        Forwarded to :class:`~memdgclib._system.MembraneSystem`.

    Returns
    -------
    system : MembraneSystem
    meta : dict
        Metadata including 'time', 'n_vertices', 'the_point' and any
        'meta' extras.
    """
    from memdgclib._system import MembraneSystem

    with open(path) as f:
        state = json.load(f)
    if state.get('format') != STATE_FORMAT:
        raise ConfigurationError(
            f"{path}: unsupported state format {state.get('format')!r}")

    system = MembraneSystem(
        np.array(state['faces'], dtype=int),
        np.array(state['positions'], dtype=float),
        parameters=state['parameters'],
        processor=processor,
        protein_density=np.array(state['protein_density'], dtype=float),
        velocity=np.array(state['velocity'], dtype=float),
        time=state['time'],
        **kwargs,
    )
    meta = {
        'time': state['time'],
        'n_vertices': state['n_vertices'],
        'the_point': state.get('the_point'),
    }
    if 'meta' in state:
        meta.update(state['meta'])
    return system, meta


def read_mesh(path: str) -> tuple:
    """Read a triangulation with meshio.

    Returns
    -------
    positions : ndarray of shape (n, 3)
    faces : ndarray of shape (m, 3)
    """
    mesh = meshio.read(str(path))
    cells = mesh.cells_dict
    if 'triangle' not in cells:
        raise ConfigurationError(
            f"{path}: no triangle cells (found {list(cells.keys())})")
    points = np.asarray(mesh.points, dtype=float)
    if points.shape[1] == 2:
        points = np.column_stack([points, np.zeros(len(points))])
    return points, np.asarray(cells['triangle'], dtype=int)


def write_mesh(path: str, system, file_format: Optional[str] = None) -> str:
    """Write the current configuration and its vertex fields with meshio."""
    geo = system.geometry
    mesh = meshio.Mesh(
        points=system.positions,
        cells=[('triangle', geo.faces)],
        point_data={
            'protein_density': system.protein_density,
            'mean_curvature': geo.mean_curvature,
            'gaussian_curvature': geo.gaussian_curvature,
            'geodesic_distance': system.geodesic_distance,
            'velocity': system.velocity,
        },
    )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    meshio.write(str(path), mesh, file_format=file_format)
    return str(path)
