"""Data handling: save/load membrane states and record time-series history."""

from memdgclib.data._io import load_state, read_mesh, save_state, write_mesh
from memdgclib.data._history import FrameRecord, StateHistory

__all__ = ['save_state', 'load_state', 'read_mesh', 'write_mesh',
           'FrameRecord', 'StateHistory']
