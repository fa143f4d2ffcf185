"""Mesh processing options: regularization force plus topological mutation."""

from dataclasses import dataclass, field

from memdgclib._mutator import MeshMutator
from memdgclib._regularizer import MeshRegularizer


@dataclass
class MeshProcessor:
    """Bundle of the :class:`MeshRegularizer` and the :class:`MeshMutator`.

    Usage
    -----
        processor = MeshProcessor(
            mesh_regularizer=MeshRegularizer(Kse=1e-3),
            mesh_mutator=MeshMutator(flip_non_delaunay=True),
        )
    """
    mesh_regularizer: MeshRegularizer = field(default_factory=MeshRegularizer)
    mesh_mutator: MeshMutator = field(default_factory=MeshMutator)

    @property
    def is_mesh_regularize(self) -> bool:
        return self.mesh_regularizer.is_active

    @property
    def is_mesh_mutate(self) -> bool:
        return self.mesh_mutator.is_active
