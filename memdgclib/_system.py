"""
MembraneSystem: mesh, vertex fields, parameters and the force/energy engine.

The system owns the halfedge mesh, the per-vertex fields (positions,
velocity, protein density, masks, the tracked-point flag) and one frozen
:class:`~memdgclib.operators.Geometry` snapshot.  Every position or
topology change is followed by :meth:`MembraneSystem.refresh_geometry` or
:meth:`MembraneSystem.update_configurations`; nothing is patched
incrementally.

The random generator used by the stochastic force and by random
perturbations is owned by the system (``system.rng``) and seeded at
construction.

Usage
-----
    from memdgclib import MembraneSystem, Parameters, icosphere

    faces, positions = icosphere(radius=1.0, subdivisions=1)
    params = Parameters.from_dict({
        'bending': {'Kb': 8.22e-5},
        'tension': {'Ksg': 1e-2},
        'osmotic': {'is_preferred_volume': True, 'Kv': 1e-2, 'Vt': 0.9},
    })
    system = MembraneSystem(faces, positions, params, seed=0)
    forces = system.compute_physical_forcing()
    energy = system.compute_potential_energy()
"""

import copy
import logging
import math
from typing import Optional

import numpy as np

from memdgclib._boundary_conditions import BoundaryConditionSet, GeodesicMaskBC
from memdgclib._energy import (
    Energy,
    adsorption_energy,
    aggregation_energy,
    bending_energy,
    dirichlet_energy,
    kinetic_energy,
    pressure_energy,
    protein_interior_penalty,
    surface_energy,
)
from memdgclib._errors import ConfigurationError, TopologyError
from memdgclib._forces import (
    Forces,
    adsorption_force,
    aggregation_force,
    bending_forces,
    capillary_force,
    chemical_potentials,
    dpd_forces,
    external_force,
    line_tension_force,
    osmotic_force,
)
from memdgclib._mesh import HalfedgeMesh
from memdgclib._parameters import Parameters, relation_strategy
from memdgclib._processor import MeshProcessor
from memdgclib.initial_conditions import protein_initial_condition
from memdgclib.operators import compute_geometry, geodesic_distance

logger = logging.getLogger(__name__)

#: Per-vertex arrays gathered through the reindex after a topology change
VERTEX_FIELDS = ('positions', 'velocity', 'protein_density', 'protein_velocity',
                 'geodesic_distance', 'the_point', 'force_mask', 'protein_mask')

PRESSURE_POLICIES = ('constant', 'reduced_volume', 'ideal_gas')


def sphere_volume_for_area(area: float) -> float:
    """Volume of the sphere whose surface area is ``area``."""
    radius = math.sqrt(area / (4.0 * math.pi))
    return 4.0 / 3.0 * math.pi * radius ** 3


class MembraneSystem:
    """State of a membrane simulation.

    Parameters
    ----------
    faces : array_like, shape (n_faces, 3)
        Consistently oriented triangles.
    positions : array_like, shape (n_vertices, 3)
        Initial vertex positions.
    parameters : Parameters or dict or None
        Physical parameters; validated with :meth:`Parameters.check`.  The
        system works on its own copy.
    processor : MeshProcessor or None
        Regularization and mutation options.
    protein_density : array_like or None
        Initial density; overrides ``parameters.protein.protein0``.
    velocity : array_like or None
        Initial velocity (default zero).
    time : float
        Initial simulation time.
    seed : int or None
        Seed of the owned random generator (ignored when ``rng`` is given).
    rng : numpy.random.Generator or None
        Generator to use instead of a freshly seeded one.
    boundary_conditions : BoundaryConditionSet or None
        Overrides the conditions named in ``parameters.boundary``.
    geodesic_method : str
        Registered geodesic method used for the tracked-point distance.
    """

    def __init__(self, faces, positions, parameters=None,
                 processor: Optional[MeshProcessor] = None,
                 protein_density=None, velocity=None, time: float = 0.0,
                 seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None,
                 boundary_conditions: Optional[BoundaryConditionSet] = None,
                 geodesic_method: str = "heat"):
        if parameters is None:
            parameters = Parameters()
        elif isinstance(parameters, dict):
            parameters = Parameters.from_dict(parameters)
        self.parameters = copy.deepcopy(parameters).check()
        self.relation = relation_strategy(self.parameters.bending.relation)
        self.processor = (copy.deepcopy(processor) if processor is not None
                          else MeshProcessor())
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.geodesic_method = geodesic_method

        self.positions = np.array(positions, dtype=float)
        if self.positions.ndim != 2 or self.positions.shape[1] != 3:
            raise ConfigurationError(
                f"positions must have shape (n, 3), got {self.positions.shape}")
        self.mesh = HalfedgeMesh.from_faces(faces, n_vertices=len(self.positions))
        self.is_open_mesh = not self.mesh.is_closed
        self.time = float(time)

        n = self.n_vertices
        self.velocity = (np.zeros((n, 3)) if velocity is None
                         else np.array(velocity, dtype=float))
        self.protein_velocity = np.zeros(n)
        self.force_mask = np.ones((n, 3))
        self.protein_mask = np.ones(n)
        self.boundary_conditions = (
            boundary_conditions if boundary_conditions is not None
            else BoundaryConditionSet.from_parameters(self.parameters.boundary))
        self.energy = Energy()

        self.geometry = compute_geometry(self.mesh, self.positions)
        self.the_point = self._locate_point()
        self.geodesic_distance = np.zeros(n)
        self.update_geodesics()

        if protein_density is not None:
            self.protein_density = np.array(protein_density, dtype=float)
        else:
            protein_initial_condition(self.parameters.protein).apply(self)
        self._check_protein_density()

        self._initialize_constraints()
        self.update_configurations()
        self.forces = Forces(self.force_mask.copy(), self.protein_mask.copy())

        regularizer = self.processor.mesh_regularizer
        if regularizer.is_active and regularizer.ref_edge_length is None:
            regularizer.set_reference(self.geometry)
        logger.info(f"MembraneSystem: {self.mesh!r}, "
                    f"{'open' if self.is_open_mesh else 'closed'}, "
                    f"area {self.geometry.area:.4g}, "
                    f"volume {self.geometry.volume:.4g}")

    # ------------------------------------------------------------------
    # Sizes and simple properties
    # ------------------------------------------------------------------

    @property
    def n_vertices(self) -> int:
        return len(self.positions)

    @property
    def the_point_index(self) -> int:
        return int(np.flatnonzero(self.the_point)[0])

    @property
    def tension_policy(self) -> str:
        if self.parameters.tension.is_constant_surface_tension or self.is_open_mesh:
            return "constant"
        return "area_penalty"

    @property
    def pressure_policy(self) -> str:
        osmotic = self.parameters.osmotic
        if osmotic.is_constant_osmotic_pressure or self.is_open_mesh:
            return "constant"
        if osmotic.is_preferred_volume:
            return "reduced_volume"
        return "ideal_gas"

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _locate_point(self) -> np.ndarray:
        """Boolean tracked-point flag from ``parameters.point.pt``."""
        pt = np.atleast_1d(np.asarray(self.parameters.point.pt, dtype=float))
        x = self.positions
        if len(pt) == 1:
            index = int(pt[0])
            if not 0 <= index < self.n_vertices:
                raise ConfigurationError(
                    f"point.pt vertex {index} is out of range "
                    f"[0, {self.n_vertices})")
        elif len(pt) == 2:
            index = int(np.argmin(np.linalg.norm(x[:, :2] - pt, axis=1)))
        else:
            index = int(np.argmin(np.linalg.norm(x - pt, axis=1)))
        flag = np.zeros(self.n_vertices, dtype=bool)
        flag[index] = True
        return flag

    def _check_protein_density(self):
        phi = self.protein_density
        if len(phi) != self.n_vertices:
            raise ConfigurationError(
                f"protein density has {len(phi)} values for "
                f"{self.n_vertices} vertices")
        if np.any(phi <= 0) or np.any(phi >= 1):
            raise ConfigurationError(
                "protein density must lie strictly inside (0, 1)")

    def _initialize_constraints(self):
        """Resolve target area, reduced volume and ambient concentration."""
        geo = self.geometry
        tension = self.parameters.tension
        osmotic = self.parameters.osmotic
        if tension.At <= 0:
            tension.At = geo.area
        self.reference_volume = sphere_volume_for_area(tension.At)
        if osmotic.Vt <= 0:
            osmotic.Vt = geo.volume / self.reference_volume
        if self.pressure_policy == "ideal_gas" and osmotic.Kv != 0:
            if geo.volume <= 0:
                raise ConfigurationError(
                    "ideal-gas pressure needs a positive enclosed volume; "
                    "check the face orientation")
            if osmotic.cam <= 0:
                osmotic.cam = osmotic.n / geo.volume
        logger.debug(f"constraints: At={tension.At:.4g}, Vt={osmotic.Vt:.4g}, "
                     f"cam={osmotic.cam:.4g}, tension={self.tension_policy}, "
                     f"pressure={self.pressure_policy}")

    @property
    def target_volume(self) -> float:
        return self.parameters.osmotic.Vt * self.reference_volume

    # ------------------------------------------------------------------
    # Configuration updates
    # ------------------------------------------------------------------

    def refresh_geometry(self):
        """Recompute the geometry snapshot from the current positions."""
        self.geometry = compute_geometry(self.mesh, self.positions)
        return self.geometry

    def update_configurations(self, update_geodesics: bool = False):
        """Refresh geometry, density-dependent moduli and masks.

        Parameters
        ----------
        update_geodesics : bool
            Also re-locate a floating tracked point and recompute the
            geodesic distance from it.
        """
        self.refresh_geometry()
        bending = self.parameters.bending
        h = self.relation.value(self.protein_density)
        self.H0 = bending.H0c * h
        self.Kb = bending.Kb + bending.Kbc * h
        if update_geodesics:
            self.update_geodesics()
        self.force_mask, self.protein_mask = self._compute_masks()

    def update_geodesics(self):
        if self.parameters.point.is_float_vertex:
            self.the_point = self._locate_point()
        self.geodesic_distance = geodesic_distance(
            self.geometry, self.the_point_index, method=self.geodesic_method)

    def _compute_masks(self):
        variation = self.parameters.variation
        extra = []
        if variation.geodesic_mask > 0:
            extra.append(GeodesicMaskBC(variation.geodesic_mask,
                                        self.geodesic_distance, field="force"))
            extra.append(GeodesicMaskBC(variation.geodesic_mask,
                                        self.geodesic_distance, field="protein"))
        force_mask, protein_mask = self.boundary_conditions.masks(
            self.geometry, extra=extra)
        if not variation.is_shape_variation:
            force_mask[:] = 0.0
        if not variation.is_protein_variation:
            protein_mask[:] = 0.0
        return force_mask, protein_mask

    def reindex_fields(self, reindex):
        """Gather every per-vertex field through a compress result."""
        for name in VERTEX_FIELDS:
            setattr(self, name, getattr(self, name)[reindex.vertices])

    def global_update_after_mutation(self):
        """Recompute everything that depends on topology.

        Raises
        ------
        TopologyError
            If the mesh is no longer manifold or the tracked point is lost
            or duplicated.
        """
        self.mesh.validate()
        if (not self.parameters.point.is_float_vertex
                and int(self.the_point.sum()) != 1):
            raise TopologyError(
                f"expected exactly one tracked point after mutation, "
                f"found {int(self.the_point.sum())}")
        self.update_configurations(update_geodesics=True)
        self.forces = Forces(self.force_mask.copy(), self.protein_mask.copy())
        regularizer = self.processor.mesh_regularizer
        if regularizer.is_active:
            regularizer.reset_element_references(self.geometry)

    def mutate_mesh(self) -> bool:
        """Run one mutation cycle; True if the topology changed."""
        if not self.processor.is_mesh_mutate:
            return False
        return self.processor.mesh_mutator.mutate(self)

    # ------------------------------------------------------------------
    # Constraint scalars
    # ------------------------------------------------------------------

    def surface_tension(self) -> float:
        tension = self.parameters.tension
        if self.tension_policy == "constant":
            return tension.Ksg
        return (tension.Ksg * (self.geometry.area - tension.At) / tension.At
                + tension.lambda_SG)

    def osmotic_pressure(self) -> float:
        osmotic = self.parameters.osmotic
        policy = self.pressure_policy
        if policy == "constant":
            return osmotic.Kv
        volume = self.geometry.volume
        if policy == "reduced_volume":
            target = self.target_volume
            return -(osmotic.Kv * (volume - target) / target + osmotic.lambda_V)
        if osmotic.Kv == 0:
            return 0.0
        return osmotic.Kv * (osmotic.n / volume - osmotic.cam)

    @property
    def area_difference(self) -> float:
        """Relative area residual ``|A - At| / At``."""
        At = self.parameters.tension.At
        return abs(self.geometry.area - At) / At

    @property
    def volume_difference(self) -> float:
        """Relative volume residual of the active pressure policy."""
        policy = self.pressure_policy
        if policy == "reduced_volume":
            target = self.target_volume
            return abs(self.geometry.volume - target) / target
        if policy == "ideal_gas" and self.parameters.osmotic.Kv != 0:
            osmotic = self.parameters.osmotic
            ratio = osmotic.cam * self.geometry.volume / osmotic.n
            return abs(ratio - 1.0)
        return 0.0

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def compute_physical_forcing(self) -> Forces:
        """Masked mechanical forces and chemical potentials of the current
        geometry.  Stored on ``self.forces`` and returned."""
        geo = self.geometry
        p = self.parameters
        phi = self.protein_density
        forces = Forces(self.force_mask.copy(), self.protein_mask.copy())
        forces.set_normals(geo.vertex_normal)
        forces.surface_tension = self.surface_tension()
        forces.osmotic_pressure = self.osmotic_pressure()

        if p.variation.is_shape_variation:
            schlafli, area, gauss = bending_forces(geo, self.H0, self.Kb)
            forces.bending_schlafli = forces.mask_force(schlafli)
            forces.bending_area = forces.mask_force(area)
            forces.bending_gauss = forces.mask_force(gauss)
            forces.bending = forces.mask_force(schlafli + area + gauss)
            forces.capillary = forces.mask_force(
                capillary_force(geo, forces.surface_tension))
            forces.osmotic = forces.mask_force(
                osmotic_force(geo, forces.osmotic_pressure))
            forces.line_tension = forces.mask_force(
                line_tension_force(geo, phi, p.dirichlet.eta))
            forces.adsorption = forces.mask_force(
                adsorption_force(geo, phi, p.adsorption.epsilon))
            forces.aggregation = forces.mask_force(
                aggregation_force(geo, phi, p.aggregation.chi))
            forces.external = forces.mask_force(external_force(
                geo, self.geodesic_distance, p.external.Kf, p.external.std,
                p.external.decay_time, self.time))

        if p.variation.is_protein_variation:
            bending = p.bending
            dh = self.relation.derivative(phi)
            potentials = chemical_potentials(
                geo, phi, self.H0, self.Kb,
                dH0dphi=bending.H0c * dh, dKbdphi=bending.Kbc * dh,
                epsilon=p.adsorption.epsilon, chi=p.aggregation.chi,
                eta=p.dirichlet.eta, lambda_phi=p.protein.lambda_phi)
            for name, value in potentials.items():
                setattr(forces, name, forces.mask_protein(value))

        self.forces = forces
        return forces

    def compute_dpd_forces(self, dt: float):
        """Damping and stochastic forces for a step of size ``dt``."""
        damping, stochastic = dpd_forces(
            self.geometry, self.velocity, self.parameters.dpd.gamma,
            self.parameters.temperature, dt, self.rng)
        self.forces.damping = self.forces.mask_force(damping)
        self.forces.stochastic = self.forces.mask_force(stochastic)
        return self.forces.damping, self.forces.stochastic

    def compute_regularization_force(self) -> np.ndarray:
        force = self.processor.mesh_regularizer.compute_force(self.geometry)
        self.forces.regularization = self.forces.mask_force(force)
        return self.forces.regularization

    # ------------------------------------------------------------------
    # Energies
    # ------------------------------------------------------------------

    def compute_potential_energy(self) -> float:
        """Fill the potential terms of ``self.energy``; return their sum."""
        geo = self.geometry
        p = self.parameters
        phi = self.protein_density
        e = self.energy
        e.bending = bending_energy(geo, self.H0, self.Kb)
        e.surface = surface_energy(geo.area, p.tension.Ksg, p.tension.At,
                                   p.tension.lambda_SG,
                                   self.tension_policy == "constant")
        e.pressure = (pressure_energy(
            geo.volume, self.pressure_policy, p.osmotic.Kv,
            target_volume=self.target_volume, lambda_V=p.osmotic.lambda_V,
            cam=p.osmotic.cam, n=p.osmotic.n)
            if p.osmotic.Kv != 0 or self.pressure_policy == "reduced_volume"
            else 0.0)
        e.adsorption = adsorption_energy(geo, phi, p.adsorption.epsilon)
        e.aggregation = aggregation_energy(geo, phi, p.aggregation.chi)
        e.dirichlet = dirichlet_energy(geo, phi, p.dirichlet.eta)
        e.protein_interior_penalty = (
            protein_interior_penalty(phi, p.protein.lambda_phi)
            if p.variation.is_protein_variation else 0.0)
        return e.potential

    def compute_kinetic_energy(self) -> float:
        self.energy.kinetic = kinetic_energy(self.velocity)
        return self.energy.kinetic

    def compute_total_energy(self) -> float:
        self.compute_potential_energy()
        self.compute_kinetic_energy()
        return self.energy.total

    def compute_integrated_power(self, dt: float) -> float:
        """Work of the external force over ``dt`` at the current velocity."""
        return float(dt * np.sum(self.forces.external * self.velocity))

    def compute_external_work(self, dt: float) -> float:
        self.energy.external_work += self.compute_integrated_power(dt)
        return self.energy.external_work

    # ------------------------------------------------------------------
    # State snapshots
    # ------------------------------------------------------------------

    def backup(self) -> dict:
        """Copy of the fields a trial step may change."""
        return {'positions': self.positions.copy(),
                'protein_density': self.protein_density.copy(),
                'time': self.time}

    def restore(self, state: dict):
        self.positions = state['positions'].copy()
        self.protein_density = state['protein_density'].copy()
        self.time = state['time']
        self.update_configurations()

    def frame_record(self):
        """Structured per-frame record for history and persistence."""
        from memdgclib.data._history import FrameRecord

        return FrameRecord(
            time=self.time,
            energy=self.energy.as_dict(),
            mechanical_error_norm=self.forces.mechanical_error_norm,
            chemical_error_norm=self.forces.chemical_error_norm,
            surface_tension=self.forces.surface_tension,
            osmotic_pressure=self.forces.osmotic_pressure,
            area=self.geometry.area,
            volume=self.geometry.volume,
            positions=self.positions.copy(),
            protein_density=self.protein_density.copy(),
            faces=self.geometry.faces.copy(),
        )

    def __repr__(self):
        return (f"MembraneSystem(n_vertices={self.n_vertices}, "
                f"n_faces={self.mesh.n_faces}, time={self.time:.4g})")
