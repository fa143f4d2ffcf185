"""Time-series recording of membrane simulation state for post-processing.

StateHistory records :class:`FrameRecord` snapshots during simulation via
the integrator callback and provides query APIs for analysis.

Usage
-----
    from memdgclib.data import StateHistory

    history = StateHistory(record_every=10)
    Euler(system, opts, callback=history.callback).integrate()

    times, energies = history.query_scalar('total_energy')
    phi = history.query_field_at_time(0.5, 'protein_density')
    df = history.to_dataframe()
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

#: Per-vertex or per-face arrays held by a frame
FRAME_ARRAYS = ('positions', 'protein_density', 'faces')


@dataclass
class FrameRecord:
    """Snapshot of one saved configuration."""
    time: float
    energy: dict
    mechanical_error_norm: float
    chemical_error_norm: float
    surface_tension: float
    osmotic_pressure: float
    area: float
    volume: float
    positions: np.ndarray
    protein_density: np.ndarray
    faces: np.ndarray
    diagnostics: dict = field(default_factory=dict)

    def scalars(self) -> dict:
        """Flat dictionary of the scalar series of this frame."""
        out = {
            'time': self.time,
            'n_vertices': len(self.positions),
            'n_faces': len(self.faces),
            'area': self.area,
            'volume': self.volume,
            'surface_tension': self.surface_tension,
            'osmotic_pressure': self.osmotic_pressure,
            'mechanical_error_norm': self.mechanical_error_norm,
            'chemical_error_norm': self.chemical_error_norm,
        }
        for name, value in self.energy.items():
            out[f'{name}_energy'] = value
        for name, value in self.diagnostics.items():
            if isinstance(value, (int, float, np.integer, np.floating)):
                out.setdefault(name, value)
        return out


class StateHistory:
    """Records simulation frames for post-processing.

    Parameters
    ----------
    record_every : int
        Record a frame every N integrator steps (default: 1).
    """

    def __init__(self, record_every: int = 1):
        self.record_every = record_every
        self.frames: list[FrameRecord] = []

    @property
    def times(self) -> list[float]:
        """List of recorded times."""
        return [f.time for f in self.frames]

    @property
    def n_snapshots(self) -> int:
        return len(self.frames)

    def callback(self, step, t, system, diagnostics=None):
        """Callback suitable for integrators.

        Can be passed directly as the ``callback`` argument to any integrator.
        """
        if step % self.record_every != 0:
            return
        self.append(system, diagnostics)

    def append(self, system, diagnostics: Optional[dict] = None):
        """Manually record a frame (alternative to callback)."""
        frame = system.frame_record()
        frame.diagnostics = dict(diagnostics) if diagnostics else {}
        self.frames.append(frame)

    def query_scalar(self, name: str):
        """Time series of a scalar column of :meth:`FrameRecord.scalars`.

        Returns
        -------
        times : list[float]
        values : list[float]
        """
        times = []
        values = []
        for frame in self.frames:
            scalars = frame.scalars()
            if name in scalars:
                times.append(frame.time)
                values.append(scalars[name])
        return times, values

    def query_field_at_time(self, t: float, name: str) -> Optional[np.ndarray]:
        """Array ``name`` of the frame closest to time ``t`` (a copy)."""
        if not self.frames:
            return None
        if name not in FRAME_ARRAYS:
            raise KeyError(f"Unknown frame array: {name!r}. "
                           f"Available: {list(FRAME_ARRAYS)}")
        frame = min(self.frames, key=lambda f: abs(f.time - t))
        return getattr(frame, name).copy()

    def query_diagnostics(self) -> list[tuple[float, dict]]:
        """Return all (time, diagnostics) pairs."""
        return [(f.time, f.diagnostics) for f in self.frames]

    def to_dataframe(self) -> pd.DataFrame:
        """Scalar series of all frames, one row per frame."""
        return pd.DataFrame([f.scalars() for f in self.frames])

    def clear(self):
        """Remove all recorded frames."""
        self.frames.clear()
