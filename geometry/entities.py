# entities.py

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from core.exceptions import AdjacencyInvariantViolation, InvalidArgumentError
from geometry.matrix import Matrix

logger = logging.getLogger("elastic_projection")

TWO_PI = 2 * math.pi


def _wrap_angle(angle: float) -> float:
    """Wrap an angle into [0, 2π)."""
    wrapped = math.fmod(angle, TWO_PI)
    if wrapped < 0:
        wrapped += TWO_PI
    if wrapped >= TWO_PI:
        wrapped = 0.0
    return wrapped


@dataclass(eq=False)
class Vertex:
    """A single node of the rubber sheet.

    ``phi`` and ``lam`` are the fixed position on the globe and must not be
    reassigned; ``x`` and ``y`` are the current planar position. Vertices
    compare by identity so they can key dictionaries while they move.
    """

    phi: float
    lam: float
    x: float = 0.0
    y: float = 0.0
    index: int = -1
    vel_x: float = 0.0
    vel_y: float = 0.0
    forces: Dict["Element", np.ndarray] = field(default_factory=dict, repr=False)
    clockwise: Optional["Vertex"] = field(default=None, repr=False)
    widdershins: Optional["Vertex"] = field(default=None, repr=False)

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y])

    def split(self) -> "Vertex":
        """Create a sibling at the same spot on the globe and in the plane."""
        return Vertex(self.phi, self.lam, self.x, self.y)

    def is_sibling_of(self, other: "Vertex") -> bool:
        if other is self or self.phi != other.phi:
            return False
        dlam = math.remainder(self.lam - other.lam, TWO_PI)
        return abs(dlam) < 1e-12 or abs(abs(self.phi) - math.pi / 2) < 1e-12

    def descend(self, timestep: float) -> None:
        self.x += timestep * self.vel_x
        self.y += timestep * self.vel_y

    def set_velocity(self, vel_x: float, vel_y: float) -> None:
        self.vel_x = vel_x
        self.vel_y = vel_y

    # ------------------------------------------------------------------
    # element bookkeeping
    # ------------------------------------------------------------------
    @property
    def neighbors(self) -> Tuple["Element", ...]:
        return tuple(self.forces)

    def add_neighbor(self, element: "Element") -> None:
        self.forces.setdefault(element, np.zeros(2))

    def remove_neighbor(self, element: "Element") -> np.ndarray:
        try:
            return self.forces.pop(element)
        except KeyError:
            raise AdjacencyInvariantViolation(
                f"{element} is not a neighbor of {self}", vertex=self, element=element
            ) from None

    def set_force(self, element: "Element", force: np.ndarray) -> None:
        if element not in self.forces:
            raise AdjacencyInvariantViolation(
                f"Cannot record a force from {element}; it does not touch {self}",
                vertex=self,
                element=element,
            )
        self.forces[element] = force

    def net_force(self) -> np.ndarray:
        total = np.zeros(2)
        for force in self.forces.values():
            total += force
        return total

    def transfer_neighbor(self, element: "Element", replacement: "Vertex") -> None:
        """Hand one incident element over to ``replacement``.

        The force map entries of both vertices and the element's corner slot
        change together; nothing else may observe the mesh in between.
        """
        if element not in self.forces or not element.touches(self):
            raise AdjacencyInvariantViolation(
                f"Cannot transfer {element}: it is not attached to {self}",
                vertex=self,
                element=element,
            )
        force = self.forces.pop(element)
        for corner, vertex in enumerate(element.vertices):
            if vertex is self:
                element.vertices[corner] = replacement
        replacement.forces[element] = force

    # ------------------------------------------------------------------
    # boundary queries
    # ------------------------------------------------------------------
    def is_on_edge(self) -> bool:
        return self.clockwise is not None and self.widdershins is not None

    def _require_edge(self) -> None:
        if not self.is_on_edge():
            raise InvalidArgumentError(f"{self} is not on the edge of the mesh")

    def _boundary_turn(self) -> float:
        """Counterclockwise sweep from the widdershins to the clockwise neighbor."""
        cw, ww = self.clockwise, self.widdershins
        return _wrap_angle(
            math.atan2(cw.y - self.y, cw.x - self.x)
            - math.atan2(ww.y - self.y, ww.x - self.x)
        )

    def _corner_angle_sum(self) -> Tuple[float, bool]:
        """Sum of the signed corner angles at this vertex over its elements."""
        total = 0.0
        inverted = False
        for element in self.forces:
            if element.is_degenerate():
                continue
            angle = element.corner_angle(element.corner_of(self))
            if angle < 0:
                inverted = True
            total += angle
        return total, inverted

    def get_edge_angle(self) -> float:
        """Interior angle of the boundary at this vertex.

        Returns a value in ``[0, 2π)``, or exactly ``2π`` at the tip of a slit
        whose two lips still coincide. A negative value means the incident
        elements are inverted or wrap over themselves (a fold).
        """
        self._require_edge()
        theta = self._boundary_turn()
        total, inverted = self._corner_angle_sum()
        winding = round((total - theta) / TWO_PI)
        if not inverted:
            if winding == 0:
                return theta
            if winding == 1 and theta < 1e-12:
                return TWO_PI
        return theta - TWO_PI

    def get_edge_direction(self) -> np.ndarray:
        """Unit vector pointing out of the mesh, bisecting the exterior angle."""
        self._require_edge()
        angle = self.get_edge_angle()
        if angle < 0:
            angle = self._boundary_turn()
        ww, cw = self.widdershins, self.clockwise
        if ww.x != self.x or ww.y != self.y:
            inward = math.atan2(ww.y - self.y, ww.x - self.x) + angle / 2
        elif cw.x != self.x or cw.y != self.y:
            inward = math.atan2(cw.y - self.y, cw.x - self.x) - angle / 2
        else:
            return np.array([1.0, 0.0])
        return -np.array([math.cos(inward), math.sin(inward)])

    def get_neighbors_in_order(self) -> Tuple["Element", ...]:
        """Incident elements walked from the widdershins side to the clockwise side."""
        self._require_edge()
        remaining = [e for e in self.forces if not e.is_degenerate()]
        start = next((e for e in remaining if e.touches(self.widdershins)), None)
        if start is None:
            raise AdjacencyInvariantViolation(
                f"No element of {self} touches its widdershins neighbor", vertex=self
            )
        ordered = [start]
        remaining.remove(start)
        while remaining:
            nxt = next((e for e in remaining if e.is_adjacent_to(ordered[-1])), None)
            if nxt is None:
                raise AdjacencyInvariantViolation(
                    f"Elements around {self} do not form a chain", vertex=self
                )
            ordered.append(nxt)
            remaining.remove(nxt)
        if not ordered[-1].touches(self.clockwise):
            raise AdjacencyInvariantViolation(
                f"Element chain around {self} does not end at its clockwise neighbor",
                vertex=self,
            )
        return tuple(ordered)

    def geographic_distance_to(self, other: "Vertex") -> float:
        """Undeformed distance to an adjacent vertex, measured in a shared element."""
        for element in self.forces:
            if element.touches(other):
                a = element.undeformed_coords[element.corner_of(self)]
                b = element.undeformed_coords[element.corner_of(other)]
                return float(math.hypot(*(b - a)) / element.scale)
        raise InvalidArgumentError(f"{self} and {other} do not share an element")

    def __repr__(self):
        return (
            f"Vertex({self.index}: phi={self.phi:.4f}, lam={self.lam:.4f}, "
            f"x={self.x:.4f}, y={self.y:.4f})"
        )


def link_boundary(a: Vertex, b: Vertex) -> None:
    """Make ``b`` the clockwise neighbor of ``a`` (and ``a`` the widdershins of ``b``)."""
    a.clockwise = b
    b.widdershins = a


def unlink_boundary(vertex: Vertex) -> None:
    """Take a vertex off the boundary, clearing the back-references that point at it."""
    if vertex.clockwise is not None and vertex.clockwise.widdershins is vertex:
        vertex.clockwise.widdershins = None
    if vertex.widdershins is not None and vertex.widdershins.clockwise is vertex:
        vertex.widdershins.clockwise = None
    vertex.clockwise = None
    vertex.widdershins = None


@dataclass(eq=False)
class Element:
    """An independent triangular finite element.

    Each corner has its own undeformed coordinate, private to this element, so
    a vertex shared by several elements may sit in a different local frame in
    each of them.
    """

    vertices: List[Vertex]
    undeformed_coords: np.ndarray
    strength: float = math.inf
    lam: float = 1.0
    mu: float = 1.0
    weight: float = 1.0
    scale: float = 1.0
    cell: Optional[Tuple[int, int]] = None
    index: int = -1
    area: float = field(init=False)
    default_energy: float = field(init=False, default=0.0)
    _shape_gradients: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.vertices = list(self.vertices)
        if len(self.vertices) != 3:
            raise InvalidArgumentError(
                f"An element needs exactly 3 vertices; got {len(self.vertices)}"
            )
        coords = np.array(self.undeformed_coords, dtype=float)
        if coords.shape != (3, 2):
            raise InvalidArgumentError(
                f"Undeformed coordinates must have shape (3, 2); got {coords.shape}"
            )
        self.undeformed_coords = coords
        (xa, ya), (xb, yb), (xc, yc) = coords
        self.area = (xa * yb + xb * yc + xc * ya - (xb * ya + xc * yb + xa * yc)) / 2.0
        if self.area < 0:
            raise InvalidArgumentError(
                f"Undeformed corners must run counterclockwise; area is {self.area}"
            )
        grads = np.zeros((3, 2))
        if self.area > 0:
            for i in range(3):
                xb, yb = coords[(i + 1) % 3]
                xc, yc = coords[(i + 2) % 3]
                grads[i] = ((yb - yc) / (2 * self.area), (xc - xb) / (2 * self.area))
        self._shape_gradients = grads
        for vertex in self.vertices:
            vertex.add_neighbor(self)

    @property
    def shape_gradients(self) -> np.ndarray:
        """Gradients of the linear shape functions in the undeformed frame, ``(3, 2)``."""
        return self._shape_gradients

    def touches(self, vertex: Vertex) -> bool:
        return any(v is vertex for v in self.vertices)

    def corner_of(self, vertex: Vertex) -> int:
        for corner, v in enumerate(self.vertices):
            if v is vertex:
                return corner
        raise AdjacencyInvariantViolation(
            f"{vertex} is not a corner of {self}", vertex=vertex, element=self
        )

    def is_degenerate(self) -> bool:
        a, b, c = self.vertices
        return a is b or b is c or c is a

    def is_adjacent_to(self, other: "Element") -> bool:
        """True when the two elements share an edge; kitty-corner cells don't count."""
        shared = [v for v in self.vertices if other.touches(v)]
        unique = []
        for v in shared:
            if not any(v is u for u in unique):
                unique.append(v)
        return len(unique) >= 2

    # ------------------------------------------------------------------
    # mechanics
    # ------------------------------------------------------------------
    def deformation_gradient(self) -> Matrix:
        F = Matrix.zeros(2, 2)
        for vertex, grad in zip(self.vertices, self._shape_gradients):
            F = F.plus(
                Matrix.from_values(
                    2,
                    2,
                    vertex.x * grad[0],
                    vertex.x * grad[1],
                    vertex.y * grad[0],
                    vertex.y * grad[1],
                )
            )
        return F

    def is_folded(self) -> bool:
        """True when the element is turned inside out (``det F <= 0``)."""
        if self.is_degenerate() or self.area == 0:
            return False
        return not self.deformation_gradient().det() > 0

    def current_energy(self) -> float:
        """Neo-Hookean strain energy of the element in its current configuration."""
        if self.is_degenerate() or self.area == 0:
            return 0.0
        F = self.deformation_gradient()
        J = F.det()
        if not J > 0:
            return math.inf
        B = F.times(F.T)
        i1 = B.tr()
        log_j = math.log(J)
        density = self.mu / 2 * (i1 - 2 - 2 * log_j) + self.lam / 2 * log_j**2
        return density * self.area * self.weight

    def compute_and_save_energy(self) -> float:
        self.default_energy = self.current_energy()
        return self.default_energy

    def compute_delta_energy(self) -> float:
        return self.current_energy() - self.default_energy

    def energy_gradient(self) -> np.ndarray:
        """Derivative of :meth:`current_energy` with respect to each corner, ``(3, 2)``.

        Degenerate and folded elements contribute nothing.
        """
        if self.is_degenerate() or self.area == 0:
            return np.zeros((3, 2))
        F = self.deformation_gradient().values
        J = F[0, 0] * F[1, 1] - F[0, 1] * F[1, 0]
        if not J > 0:
            return np.zeros((3, 2))
        F_inv_T = np.array([[F[1, 1], -F[1, 0]], [-F[0, 1], F[0, 0]]]) / J
        P = self.mu * (F - F_inv_T) + self.lam * math.log(J) * F_inv_T
        return self._shape_gradients @ P.T * (self.area * self.weight)

    def principal_stretches(self) -> Tuple[float, float]:
        """Semi-axes of the local Tissot ellipse (relative to the undeformed frame)."""
        F = self.deformation_gradient()
        major, minor = F.times(F.T).eigenvalues()
        return math.sqrt(max(major, 0.0)), math.sqrt(max(minor, 0.0))

    def corner_angle(self, corner: int) -> float:
        """Signed interior angle at a corner in the deformed frame."""
        v = self.vertices[corner]
        p = self.vertices[(corner + 1) % 3]
        q = self.vertices[(corner + 2) % 3]
        ax, ay = p.x - v.x, p.y - v.y
        bx, by = q.x - v.x, q.y - v.y
        return math.atan2(ax * by - ay * bx, ax * bx + ay * by)

    def centroid(self) -> np.ndarray:
        return np.array(
            [
                sum(v.x for v in self.vertices) / 3.0,
                sum(v.y for v in self.vertices) / 3.0,
            ]
        )

    # ------------------------------------------------------------------
    # barycentric queries
    # ------------------------------------------------------------------
    def _barycentric(self, x: float, y: float) -> Tuple[float, float, float]:
        (xa, ya), (xb, yb), (xc, yc) = self.undeformed_coords.tolist()
        denom = (yb - yc) * (xa - xc) - (xb - xc) * (ya - yc)
        wa = ((yb - yc) * (x - xc) - (xb - xc) * (y - yc)) / denom
        wb = ((yc - ya) * (x - xc) - (xc - xa) * (y - yc)) / denom
        return wa, wb, 1 - wa - wb

    def contains_undeformed(
        self, x: float, y: float, open_side: Optional[int] = None
    ) -> bool:
        """Does the undeformed triangle contain this point?

        ``open_side`` names the corner across from an edge that is treated as
        open, turning the triangle into the intersection of two half-planes.
        """
        weights = self._barycentric(x, y)
        return all(w >= 0 for i, w in enumerate(weights) if i != open_side)

    def map_undeformed_to_deformed(self, x: float, y: float) -> Tuple[float, float]:
        """Linearly interpolate the planar position of an undeformed point."""
        wa, wb, wc = self._barycentric(x, y)
        a, b, c = self.vertices
        return (wa * a.x + wb * b.x + wc * c.x, wa * a.y + wb * b.y + wc * c.y)

    def __repr__(self):
        return f"Element({self.index}: {', '.join(str(v.index) for v in self.vertices)})"
