# construction.py

import logging
import math
from typing import Optional, Sequence, Union

import numpy as np

from core.exceptions import ConfigurationError
from geometry.entities import Element, Vertex, link_boundary
from geometry.mesh import Mesh
from geometry.projections import Projection, get_projection
from parameters.global_parameters import GlobalParameters

logger = logging.getLogger("elastic_projection")


def grid_shape(resolution: int) -> tuple:
    """Rows and columns of cells for a mesh with ``resolution`` nodes per quadrant."""
    return 2 * resolution, 4 * resolution


def uniform(resolution: int) -> np.ndarray:
    return np.ones(grid_shape(resolution))


def standardised(grid: np.ndarray) -> np.ndarray:
    """Rescale a positive grid so its geometric mean is one."""
    grid = np.asarray(grid, dtype=float)
    if not np.all(grid > 0):
        raise ConfigurationError("Scale grids must be strictly positive", key="scales")
    return grid / math.exp(float(np.mean(np.log(grid))))


def check_grid(grid, resolution: int, name: str) -> np.ndarray:
    grid = np.asarray(grid, dtype=float)
    expected = grid_shape(resolution)
    if grid.shape != expected:
        raise ConfigurationError(
            f"The {name} grid has shape {grid.shape}; resolution {resolution} needs {expected}",
            key=name,
        )
    if not np.all(np.isfinite(grid)):
        raise ConfigurationError(f"The {name} grid contains non-finite values", key=name)
    return grid


def _globe_point(phi: float, lam: float, eccentricity: float = 0.0) -> np.ndarray:
    """Position on an ellipsoid of unit equatorial radius at geodetic ``phi``, ``lam``."""
    e2 = eccentricity**2
    n = 1.0 / math.sqrt(1.0 - e2 * math.sin(phi) ** 2)
    return np.array(
        [
            n * math.cos(phi) * math.cos(lam),
            n * math.cos(phi) * math.sin(lam),
            n * (1.0 - e2) * math.sin(phi),
        ]
    )


def undeformed_coordinates(
    corners: Sequence[Vertex], scale: float = 1.0, eccentricity: float = 0.0
) -> np.ndarray:
    """Flatten three globe points onto the plane through their centroid direction.

    The local frame has x pointing east and y pointing north, so corners
    listed counterclockwise on the globe (seen from outside) stay
    counterclockwise. The result is multiplied by ``scale``. A nonzero
    ``eccentricity`` puts the corners on an oblate ellipsoid instead of the
    unit sphere.
    """
    points = np.array([_globe_point(v.phi, v.lam, eccentricity) for v in corners])
    centre = points.sum(axis=0)
    centre /= np.linalg.norm(centre)
    east = np.array([-centre[1], centre[0], 0.0])
    if np.linalg.norm(east) < 1e-12:
        east = np.array([0.0, 1.0, 0.0])
    east /= np.linalg.norm(east)
    north = np.cross(centre, east)
    coords = np.stack([points @ east, points @ north], axis=1)
    coords -= coords.mean(axis=0)
    return coords * scale


def build_globe_mesh(
    global_params: Optional[GlobalParameters] = None,
    projection: Union[str, Projection, None] = None,
    weights: Optional[np.ndarray] = None,
    scales: Optional[np.ndarray] = None,
) -> Mesh:
    """Build the latitude/longitude sheet, cut along the antimeridian.

    Each pole is a single vertex. Cells touching a pole are one triangle;
    every other cell is split into two, with the diagonal pointing away from
    the intersection of the equator and the prime meridian so the mesh keeps
    the globe's mirror symmetries.
    """
    params = global_params or GlobalParameters()
    n = params.resolution
    project = get_projection(
        projection if projection is not None else params.initial_condition
    )
    weights = uniform(n) if weights is None else check_grid(weights, n, "weights")
    scales = uniform(n) if scales is None else standardised(check_grid(scales, n, "scales"))

    mesh = Mesh(params)
    mesh.grid_shape = grid_shape(n)
    step = math.pi / (2 * n)

    def make_vertex(phi: float, lam: float) -> Vertex:
        x, y = project(phi, lam)
        return mesh.add_vertex(Vertex(float(phi), float(lam), float(x), float(y)))

    north = make_vertex(math.pi / 2, 0.0)
    rows = {
        i: [make_vertex(math.pi / 2 - i * step, -math.pi + j * step) for j in range(4 * n + 1)]
        for i in range(1, 2 * n)
    }
    south = make_vertex(-math.pi / 2, 0.0)

    for i in range(2 * n):
        phi_c = math.pi / 2 - (i + 0.5) * step
        for j in range(4 * n):
            lam_c = -math.pi + (j + 0.5) * step
            if i == 0:
                triangles = [(rows[1][j], rows[1][j + 1], north)]
            elif i == 2 * n - 1:
                triangles = [(south, rows[i][j + 1], rows[i][j])]
            else:
                tl, tr = rows[i][j], rows[i][j + 1]
                bl, br = rows[i + 1][j], rows[i + 1][j + 1]
                if (phi_c > 0) == (lam_c > 0):
                    triangles = [(bl, br, tr), (bl, tr, tl)]
                else:
                    triangles = [(bl, br, tl), (br, tr, tl)]
            for corners in triangles:
                mesh.add_element(
                    Element(
                        list(corners),
                        undeformed_coordinates(
                            corners, scales[i, j], params.eccentricity
                        ),
                        strength=params.strength,
                        lam=params.lam,
                        mu=params.mu,
                        weight=float(weights[i, j]),
                        scale=float(scales[i, j]),
                        cell=(i, j),
                    )
                )

    east_side = [rows[i][4 * n] for i in range(1, 2 * n)]
    west_side = [rows[i][0] for i in range(1, 2 * n)]
    loop = [north, *east_side, south, *reversed(west_side)]
    for a, b in zip(loop, loop[1:] + loop[:1]):
        link_boundary(a, b)

    mesh.save_baselines()
    logger.info(
        "Built globe mesh at resolution %d: %d vertices, %d elements, %s start.",
        n,
        len(mesh.vertices),
        len(mesh.elements),
        getattr(project, "__name__", "custom"),
    )
    return mesh
