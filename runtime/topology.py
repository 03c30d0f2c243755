# runtime/topology.py
"""Tearing and stitching of the sheet's boundary."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import numpy as np

from core.exceptions import AdjacencyInvariantViolation
from geometry.entities import Element, Vertex, link_boundary, unlink_boundary

if TYPE_CHECKING:
    from geometry.mesh import Mesh

logger = logging.getLogger("elastic_projection")


@dataclass(frozen=True)
class TearCandidate:
    """An interior edge ``(vertex, inner)`` that could be opened."""

    vertex: Vertex
    inner: Vertex
    split: int  # position of the first clockwise-side element around ``vertex``
    length: float
    stress: float
    strength: float

    @property
    def excess(self) -> float:
        return self.stress - self.strength


@dataclass(frozen=True)
class StitchCandidate:
    """A slit tip whose two lips could be merged."""

    tip: Vertex
    keep: Vertex
    drop: Vertex
    length: float
    delta_energy: float
    excess: float


@dataclass
class _Merge:
    tip: Vertex
    keep: Vertex
    drop: Vertex
    after: Vertex
    keep_position: Tuple[float, float]
    drop_position: Tuple[float, float]
    moved: List[Element]


def _shared_inner_vertex(vertex: Vertex, first: Element, second: Element) -> Vertex:
    for candidate in first.vertices:
        if candidate is not vertex and second.touches(candidate):
            return candidate
    raise AdjacencyInvariantViolation(
        f"{first} and {second} share no edge at {vertex}",
        vertex=vertex,
        element=first,
    )


def edge_stress(vertex: Vertex, ordered: Sequence[Element], k: int) -> float:
    """Opening stress on the edge between ``ordered[k]`` and ``ordered[k + 1]``.

    The forces the two sides exert on ``vertex`` are differenced along the
    edge normal, halved and divided by the edge's geographic length. Positive
    values pull the edge apart.
    """
    inner = _shared_inner_vertex(vertex, ordered[k], ordered[k + 1])
    dx, dy = inner.x - vertex.x, inner.y - vertex.y
    norm = math.hypot(dx, dy)
    if norm == 0:
        return 0.0
    # the widdershins side lies clockwise of the edge
    normal = np.array([dy, -dx]) / norm
    widdershins_side = np.zeros(2)
    for element in ordered[: k + 1]:
        widdershins_side += vertex.forces[element]
    clockwise_side = np.zeros(2)
    for element in ordered[k + 1 :]:
        clockwise_side += vertex.forces[element]
    opening = float(np.dot(widdershins_side - clockwise_side, normal))
    return opening / 2 / vertex.geographic_distance_to(inner)


def tear_candidates(mesh: "Mesh") -> List[TearCandidate]:
    """Every interior edge that starts at the boundary and points into the sheet.

    Force maps must be current.
    """
    candidates = []
    for vertex in mesh.boundary_loop():
        if vertex.get_edge_angle() < 0:
            continue
        outward = vertex.get_edge_direction()
        ordered = vertex.get_neighbors_in_order()
        for k in range(len(ordered) - 1):
            inner = _shared_inner_vertex(vertex, ordered[k], ordered[k + 1])
            if inner.is_on_edge():
                continue
            if np.dot([inner.x - vertex.x, inner.y - vertex.y], outward) >= 0:
                continue
            length = vertex.geographic_distance_to(inner)
            if length > mesh.tear_budget:
                continue
            candidates.append(
                TearCandidate(
                    vertex=vertex,
                    inner=inner,
                    split=k + 1,
                    length=length,
                    stress=edge_stress(vertex, ordered, k),
                    strength=min(ordered[k].strength, ordered[k + 1].strength),
                )
            )
    return candidates


def find_tear_candidate(mesh: "Mesh") -> Optional[TearCandidate]:
    """The candidate with the largest positive excess stress, or ``None``."""
    best = max(tear_candidates(mesh), key=lambda c: c.excess, default=None)
    if best is None or not best.excess > 0:
        return None
    return best


def tear(mesh: "Mesh", candidate: TearCandidate) -> Vertex:
    """Open the candidate edge; return the new sibling of ``candidate.vertex``.

    The boundary ``w -> v -> c`` becomes ``w -> v -> u -> v' -> c``.
    """
    vertex, inner = candidate.vertex, candidate.inner
    ordered = vertex.get_neighbors_in_order()
    after = vertex.clockwise
    twin = mesh.add_vertex(vertex.split())
    for element in ordered[candidate.split :]:
        vertex.transfer_neighbor(element, twin)
    link_boundary(twin, after)
    link_boundary(inner, twin)
    link_boundary(vertex, inner)
    mesh.increment_topology_version()
    return twin


def stitch_tips(mesh: "Mesh") -> List[Vertex]:
    """Boundary vertices flanked by a pair of siblings."""
    loop = mesh.boundary_loop()
    if len(loop) <= 3:
        return []
    return [
        tip
        for tip in loop
        if tip.widdershins is not tip.clockwise
        and tip.widdershins.is_sibling_of(tip.clockwise)
    ]


def _merge(mesh: "Mesh", tip: Vertex) -> _Merge:
    keep, drop = tip.widdershins, tip.clockwise
    record = _Merge(
        tip=tip,
        keep=keep,
        drop=drop,
        after=drop.clockwise,
        keep_position=(keep.x, keep.y),
        drop_position=(drop.x, drop.y),
        moved=list(drop.forces),
    )
    keep.x, keep.y = (keep.x + drop.x) / 2, (keep.y + drop.y) / 2
    for element in record.moved:
        drop.transfer_neighbor(element, keep)
    link_boundary(keep, record.after)
    unlink_boundary(tip)
    unlink_boundary(drop)
    mesh.increment_topology_version()
    return record


def _revert(mesh: "Mesh", record: _Merge) -> None:
    keep, drop = record.keep, record.drop
    for element in record.moved:
        keep.transfer_neighbor(element, drop)
    keep.x, keep.y = record.keep_position
    drop.x, drop.y = record.drop_position
    link_boundary(keep, record.tip)
    link_boundary(record.tip, drop)
    link_boundary(drop, record.after)
    mesh.increment_topology_version()


def _closed_edge_excess(keep: Vertex, tip: Vertex) -> float:
    """Excess stress on the edge ``(keep, tip)`` after a merge closed it."""
    if keep.get_edge_angle() < 0:
        return math.inf
    ordered = keep.get_neighbors_in_order()
    for k in range(len(ordered) - 1):
        if ordered[k].touches(tip) and ordered[k + 1].touches(tip):
            strength = min(ordered[k].strength, ordered[k + 1].strength)
            return edge_stress(keep, ordered, k) - strength
    raise AdjacencyInvariantViolation(
        f"No closed edge between {keep} and {tip}", vertex=keep
    )


def find_stitch(mesh: "Mesh") -> Optional[StitchCandidate]:
    """Try every slit tip and return the cheapest merge worth committing.

    Each trial merge is reverted exactly; the mesh is unchanged on return.
    """
    tolerance = mesh.global_parameters.effective_stitch_tolerance
    best = None
    for tip in stitch_tips(mesh):
        keep, drop = tip.widdershins, tip.clockwise
        length = keep.geographic_distance_to(tip)
        affected = set(keep.forces) | set(drop.forces)
        for element in affected:
            element.compute_and_save_energy()

        record = _merge(mesh, tip)
        try:
            delta = sum(element.compute_delta_energy() for element in affected)
            if math.isfinite(delta):
                mesh.refresh_forces()
                excess = _closed_edge_excess(keep, tip)
            else:
                excess = math.inf
        finally:
            _revert(mesh, record)

        logger.debug(
            "Stitch trial at vertex %d: energy change %.4g, excess stress %.4g",
            tip.index,
            delta,
            excess,
        )
        if delta <= tolerance and not excess > 0:
            if best is None or delta < best.delta_energy:
                best = StitchCandidate(tip, keep, drop, length, delta, excess)

    mesh.refresh_forces()
    return best


def close_slit(mesh: "Mesh", tip: Vertex) -> Vertex:
    """Merge the lips on either side of ``tip``; return the removed vertex."""
    record = _merge(mesh, tip)
    mesh.remove_vertex(record.drop)
    return record.drop


def validate_mesh(mesh: "Mesh") -> None:
    """Raise :class:`AdjacencyInvariantViolation` on any broken cross-reference."""
    for eid, element in mesh.elements.items():
        if element.index != eid:
            raise AdjacencyInvariantViolation(
                f"Element stored under {eid} has index {element.index}", element=element
            )
        for vertex in element.vertices:
            if mesh.vertices.get(vertex.index) is not vertex:
                raise AdjacencyInvariantViolation(
                    f"{element} refers to a vertex the mesh does not own",
                    vertex=vertex,
                    element=element,
                )
            if element not in vertex.forces:
                raise AdjacencyInvariantViolation(
                    f"{vertex} does not list {element} among its neighbors",
                    vertex=vertex,
                    element=element,
                )

    on_edge = 0
    for vid, vertex in mesh.vertices.items():
        if vertex.index != vid:
            raise AdjacencyInvariantViolation(
                f"Vertex stored under {vid} has index {vertex.index}", vertex=vertex
            )
        for element in vertex.forces:
            if not element.touches(vertex) or mesh.elements.get(element.index) is not element:
                raise AdjacencyInvariantViolation(
                    f"{vertex} lists {element}, which does not have it as a corner",
                    vertex=vertex,
                    element=element,
                )
        if (vertex.clockwise is None) != (vertex.widdershins is None):
            raise AdjacencyInvariantViolation(
                f"{vertex} is only half linked into the boundary", vertex=vertex
            )
        if vertex.clockwise is not None:
            on_edge += 1
            if vertex.clockwise.widdershins is not vertex:
                raise AdjacencyInvariantViolation(
                    f"{vertex} and its clockwise neighbor disagree", vertex=vertex
                )
            if mesh.vertices.get(vertex.clockwise.index) is not vertex.clockwise:
                raise AdjacencyInvariantViolation(
                    f"{vertex} links to a boundary vertex the mesh does not own",
                    vertex=vertex,
                )

    if len(mesh.boundary_loop()) != on_edge:
        raise AdjacencyInvariantViolation("The boundary is split into several loops")
