# mesh.py

import csv
import enum
import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, TextIO, Tuple

import numpy as np

from core.exceptions import (
    AdjacencyInvariantViolation,
    InvalidArgumentError,
    MeshFinalisedError,
)
from geometry.entities import Element, Vertex
from parameters.global_parameters import GlobalParameters
from runtime import topology
from runtime.diagnostics.distortion import evaluate_criteria
from runtime.energy_manager import EnergyModuleManager
from runtime.steppers.gradient_descent import GradientDescent

logger = logging.getLogger("elastic_projection")


class MeshState(enum.Enum):
    RELAXING = "relaxing"
    TEARING = "tearing"
    STITCHING = "stitching"
    DONE = "done"


@dataclass(frozen=True)
class ElementArrays:
    """Per-element arrays in ``Mesh.element_ids`` order, rebuilt on topology changes."""

    element_ids: Tuple[int, ...]
    rows: np.ndarray  # (E, 3) vertex rows
    shape_gradients: np.ndarray  # (E, 3, 2)
    areas: np.ndarray
    weights: np.ndarray
    lam: np.ndarray
    mu: np.ndarray
    active: np.ndarray  # not degenerate and non-zero undeformed area


@dataclass(frozen=True)
class MeshSnapshot:
    """A consistent copy of the planar configuration taken between steps."""

    vertex_ids: Tuple[int, ...]
    positions: np.ndarray
    triangles: np.ndarray
    boundary: Tuple[int, ...]
    energy: float
    step_count: int
    state: MeshState
    fold_count: int
    tear_budget: float


class Mesh:
    """The rubber sheet: every vertex and element plus the topology state machine.

    Mutators (``update``, ``rupture``, ``stitch``, ``finalise``) and
    :meth:`snapshot` serialise on one re-entrant lock, so a reader on another
    thread only ever sees whole steps.
    """

    def __init__(self, global_parameters: Optional[GlobalParameters] = None):
        self.global_parameters = global_parameters or GlobalParameters()
        self.vertices: Dict[int, Vertex] = {}
        self.elements: Dict[int, Element] = {}
        self.grid_shape: Optional[Tuple[int, int]] = None

        self.state = MeshState.RELAXING
        self.step_count = 0
        self.step_size = self.global_parameters.step_size
        self.tear_budget = self.global_parameters.tear_length
        self.finalised = False
        self._frozen_energy: Optional[float] = None

        self._lock = threading.RLock()
        self._next_vertex_index = 0
        self._next_element_index = 0
        self._topology_version = 0
        self._vertex_cache_version = -1
        self._element_cache_version = -1
        self._vertex_ids: Tuple[int, ...] = ()
        self._vertex_index_to_row: Dict[int, int] = {}
        self._element_arrays: Optional[ElementArrays] = None

        model = self.global_parameters.energy_model
        self.energy_module = EnergyModuleManager([model]).get_module(model)
        self.stepper = GradientDescent.from_parameters(self.global_parameters)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    def add_vertex(self, vertex: Vertex, index: Optional[int] = None) -> Vertex:
        if index is None:
            index = self._next_vertex_index
        if index in self.vertices:
            raise InvalidArgumentError(f"Vertex index {index} is already in use")
        vertex.index = index
        self.vertices[index] = vertex
        self._next_vertex_index = max(self._next_vertex_index, index + 1)
        self.increment_topology_version()
        return vertex

    def remove_vertex(self, vertex: Vertex) -> None:
        if vertex.forces:
            raise AdjacencyInvariantViolation(
                f"Cannot remove {vertex}; it still has {len(vertex.forces)} element(s)",
                vertex=vertex,
            )
        del self.vertices[vertex.index]
        self.increment_topology_version()

    def add_element(self, element: Element, index: Optional[int] = None) -> Element:
        if index is None:
            index = self._next_element_index
        if index in self.elements:
            raise InvalidArgumentError(f"Element index {index} is already in use")
        element.index = index
        self.elements[index] = element
        self._next_element_index = max(self._next_element_index, index + 1)
        self.increment_topology_version()
        return element

    def increment_topology_version(self) -> None:
        """Invalidate every cache keyed on connectivity."""
        self._topology_version += 1

    # ------------------------------------------------------------------
    # cached views
    # ------------------------------------------------------------------
    def _ensure_vertex_cache(self) -> None:
        if self._vertex_cache_version == self._topology_version:
            return
        self._vertex_ids = tuple(sorted(self.vertices))
        self._vertex_index_to_row = {vid: row for row, vid in enumerate(self._vertex_ids)}
        self._vertex_cache_version = self._topology_version

    @property
    def vertex_ids(self) -> Tuple[int, ...]:
        self._ensure_vertex_cache()
        return self._vertex_ids

    @property
    def vertex_index_to_row(self) -> Dict[int, int]:
        self._ensure_vertex_cache()
        return self._vertex_index_to_row

    @property
    def element_ids(self) -> Tuple[int, ...]:
        return self.element_arrays().element_ids

    def element_arrays(self) -> ElementArrays:
        if (
            self._element_arrays is not None
            and self._element_cache_version == self._topology_version
        ):
            return self._element_arrays

        index_map = self.vertex_index_to_row
        element_ids = tuple(sorted(self.elements))
        n = len(element_ids)
        rows = np.zeros((n, 3), dtype=int)
        grads = np.zeros((n, 3, 2))
        areas = np.zeros(n)
        weights = np.zeros(n)
        lam = np.zeros(n)
        mu = np.zeros(n)
        for k, eid in enumerate(element_ids):
            element = self.elements[eid]
            rows[k] = [index_map[v.index] for v in element.vertices]
            grads[k] = element.shape_gradients
            areas[k] = element.area
            weights[k] = element.weight
            lam[k] = element.lam
            mu[k] = element.mu
        distinct = (
            (rows[:, 0] != rows[:, 1])
            & (rows[:, 1] != rows[:, 2])
            & (rows[:, 2] != rows[:, 0])
        )
        self._element_arrays = ElementArrays(
            element_ids=element_ids,
            rows=rows,
            shape_gradients=grads,
            areas=areas,
            weights=weights,
            lam=lam,
            mu=mu,
            active=distinct & (areas > 0),
        )
        self._element_cache_version = self._topology_version
        return self._element_arrays

    def positions_view(self) -> np.ndarray:
        """Planar positions as an ``(N, 2)`` array in ``vertex_ids`` order."""
        return np.array(
            [[self.vertices[vid].x, self.vertices[vid].y] for vid in self.vertex_ids],
            dtype=float,
        ).reshape(-1, 2)

    def set_velocities(self, velocities: np.ndarray) -> None:
        for vid, (vx, vy) in zip(self.vertex_ids, velocities):
            self.vertices[vid].set_velocity(float(vx), float(vy))

    def descend(self, timestep: float) -> None:
        for vertex in self.vertices.values():
            vertex.descend(timestep)

    # ------------------------------------------------------------------
    # energy
    # ------------------------------------------------------------------
    def energy_at(self, positions: np.ndarray) -> float:
        return self.energy_module.calculate_energy(
            self, self.global_parameters, positions=positions
        )

    def compute_energy_and_gradient(self) -> Tuple[float, np.ndarray]:
        positions = self.positions_view()
        grad = np.zeros_like(positions)
        energy = self.energy_module.compute_energy_and_gradient_array(
            self, self.global_parameters, positions=positions, grad_arr=grad
        )
        return energy, grad

    def refresh_forces(self) -> float:
        """Recompute every vertex's force map and velocity; return the total energy."""
        energies, forces = self.energy_module.element_forces(self)
        for eid, corner_forces in zip(self.element_ids, forces):
            element = self.elements[eid]
            for vertex, force in zip(element.vertices, corner_forces):
                vertex.set_force(element, force)
        for vertex in self.vertices.values():
            vx, vy = vertex.net_force()
            vertex.set_velocity(float(vx), float(vy))
        return float(np.sum(energies))

    def save_baselines(self) -> None:
        for element in self.elements.values():
            element.compute_and_save_energy()

    def get_total_energy(self) -> float:
        with self._lock:
            if self._frozen_energy is not None:
                return self._frozen_energy
            return self.energy_at(self.positions_view())

    def is_finite(self) -> bool:
        return math.isfinite(self.get_total_energy())

    def count_folds(self) -> int:
        with self._lock:
            return sum(1 for e in self.elements.values() if e.is_folded())

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------
    def _require_mutable(self) -> None:
        if self.finalised:
            raise MeshFinalisedError("The mesh has been finalised and can no longer change")

    def update(self) -> bool:
        """Take one gradient-descent step.

        Returns ``True`` iff the step lowered the total energy by more than
        ``precision``.
        """
        with self._lock:
            self._require_mutable()
            self.state = MeshState.RELAXING
            energy0, grad = self.compute_energy_and_gradient()
            if not math.isfinite(energy0):
                logger.warning(
                    "Energy is not finite (%d folded element(s)); cannot descend.",
                    self.count_folds(),
                )
                return False

            self.refresh_forces()
            accepted, self.step_size, energy1 = self.stepper.step(
                self, grad, self.step_size, self.energy_at, energy0=energy0
            )
            self.step_count += 1
            if not accepted:
                logger.debug(
                    "Step %d rejected; step size now %.3e", self.step_count, self.step_size
                )
                return False
            return energy0 - energy1 > self.global_parameters.precision

    def rupture(self) -> bool:
        """Tear the most overstressed edge, if any; return whether a tear happened."""
        with self._lock:
            self._require_mutable()
            self.state = MeshState.TEARING
            self.refresh_forces()
            candidate = topology.find_tear_candidate(self)
            if candidate is None:
                return False
            topology.tear(self, candidate)
            self.tear_budget -= candidate.length
            self.save_baselines()
            logger.info(
                "Tore edge %d-%d (excess stress %.4g); %.4f rad of tear left.",
                candidate.vertex.index,
                candidate.inner.index,
                candidate.excess,
                self.tear_budget,
            )
            return True

    def stitch(self) -> bool:
        """Close the slit tip that costs the least energy, if any is worth closing."""
        with self._lock:
            self._require_mutable()
            self.state = MeshState.STITCHING
            candidate = topology.find_stitch(self)
            if candidate is None:
                return False
            topology.close_slit(self, candidate.tip)
            self.tear_budget += candidate.length
            self.save_baselines()
            logger.info(
                "Stitched vertex %d shut (energy change %.4g); %.4f rad of tear left.",
                candidate.tip.index,
                candidate.delta_energy,
                self.tear_budget,
            )
            return True

    def finalise(self) -> None:
        with self._lock:
            if self.finalised:
                return
            self._frozen_energy = self.energy_at(self.positions_view())
            self.state = MeshState.DONE
            self.finalised = True
            logger.info(
                "Mesh finalised after %d steps with energy %.6f.",
                self.step_count,
                self._frozen_energy,
            )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def boundary_loop(self) -> List[Vertex]:
        """Edge vertices in clockwise order, starting from the lowest index."""
        with self._lock:
            edge = [v for vid, v in sorted(self.vertices.items()) if v.is_on_edge()]
            if not edge:
                return []
            loop = [edge[0]]
            current = edge[0].clockwise
            while current is not edge[0]:
                if current is None or len(loop) > len(edge):
                    raise AdjacencyInvariantViolation(
                        "The boundary does not close into a loop", vertex=loop[-1]
                    )
                loop.append(current)
                current = current.clockwise
            return loop

    def validate(self) -> None:
        with self._lock:
            topology.validate_mesh(self)

    def get_criteria(self, weights: Optional[np.ndarray] = None) -> Tuple[float, float, float]:
        """Areal mean, areal spread and angular mean distortion, in nepers."""
        with self._lock:
            return evaluate_criteria(self, weights)

    def snapshot(self) -> MeshSnapshot:
        with self._lock:
            index_map = self.vertex_index_to_row
            triangles = self.element_arrays().rows.copy()
            try:
                boundary = tuple(index_map[v.index] for v in self.boundary_loop())
            except AdjacencyInvariantViolation:
                boundary = ()
            return MeshSnapshot(
                vertex_ids=self.vertex_ids,
                positions=self.positions_view(),
                triangles=triangles,
                boundary=boundary,
                energy=self.get_total_energy(),
                step_count=self.step_count,
                state=self.state,
                fold_count=self.count_folds(),
                tear_budget=self.tear_budget,
            )

    def save(self, sink: TextIO) -> None:
        """Write the vertex positions and connectivity as CSV rows.

        The vertices are renumbered densely in index order; floats use
        ``repr`` so they read back bit for bit.
        """
        with self._lock:
            writer = csv.writer(sink, lineterminator="\n")
            index_map = self.vertex_index_to_row
            writer.writerow([len(self.vertices), len(self.elements)])
            for row, vid in enumerate(self.vertex_ids):
                v = self.vertices[vid]
                writer.writerow(
                    [row, *(repr(float(c)) for c in (v.phi, v.lam, v.x, v.y))]
                )
            for eid in sorted(self.elements):
                writer.writerow(
                    [index_map[v.index] for v in self.elements[eid].vertices]
                )

    def __repr__(self):
        return (
            f"Mesh({len(self.vertices)} vertices, {len(self.elements)} elements, "
            f"state={self.state.name})"
        )
