# geom_io.py
import csv
import json
import logging
import os
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
import yaml

from core.exceptions import AdjacencyInvariantViolation, ConfigurationError
from geometry.construction import check_grid, grid_shape, undeformed_coordinates
from geometry.entities import Element, Vertex, link_boundary
from geometry.mesh import Mesh, MeshState
from parameters.global_parameters import GlobalParameters

logger = logging.getLogger("elastic_projection")


def load_data(filename):
    """Load a parameter file.

    Expected JSON or YAML format, either flat or nested under
    ``global_parameters``:
    {
        "global_parameters": {"resolution": 12, "lam": 1.0, "tear_length": 0.5},
        "weights": "path/to/weights.npy",
        "scales": "path/to/scales.csv"
    }"""
    filename_str = str(filename)
    with open(filename_str, "r") as f:
        if filename_str.endswith((".yaml", ".yml")):
            data = yaml.safe_load(f)
        elif filename_str.endswith(".json"):
            data = json.load(f)
        else:
            logger.error(f"Unsupported file format for: {filename_str}")
            raise ConfigurationError(f"Unsupported file format for: {filename_str}")

    return data or {}


def load_parameters(source: Union[str, os.PathLike, Mapping[str, Any], None]) -> GlobalParameters:
    """Build :class:`GlobalParameters` from a file name or an already parsed mapping."""
    if source is None:
        return GlobalParameters()
    data = source if isinstance(source, Mapping) else load_data(source)
    params = data.get("global_parameters", data)
    params = {k: v for k, v in params.items() if k not in ("weights", "scales", "criteria_weights")}
    return GlobalParameters.from_mapping(params)


def load_grid(path, resolution: int, name: str = "weights") -> np.ndarray:
    """Read a cell grid from ``.npy`` or delimited text.

    Grids finer than the mesh are block-averaged down when their shape is a
    whole multiple of the mesh's ``(2n, 4n)`` cell grid.
    """
    path_str = str(path)
    if path_str.endswith(".npy"):
        grid = np.load(path_str)
    else:
        delimiter = "," if path_str.endswith(".csv") else None
        grid = np.loadtxt(path_str, delimiter=delimiter, ndmin=2)
    grid = np.asarray(grid, dtype=float)

    rows, cols = grid_shape(resolution)
    if grid.ndim == 2 and grid.shape != (rows, cols):
        fy, ry = divmod(grid.shape[0], rows)
        fx, rx = divmod(grid.shape[1], cols)
        if ry == 0 and rx == 0 and fy > 0 and fx > 0:
            logger.debug(
                "Block-averaging %s grid %s down to %s", name, grid.shape, (rows, cols)
            )
            grid = grid.reshape(rows, fy, cols, fx).mean(axis=(1, 3))
    return check_grid(grid, resolution, name)


# ----------------------------------------------------------------------
# CSV rows
# ----------------------------------------------------------------------
def save_mesh_csv(mesh: Mesh, path) -> None:
    _ensure_parent(path)
    with open(path, "w", newline="") as f:
        mesh.save(f)
    logger.info("Saved mesh to %s", path)


def _rebuild_boundary(mesh: Mesh) -> None:
    """Link the boundary from the element edges that only one element uses.

    Element corners run counterclockwise, so each free edge ``a -> b`` is
    walked backwards by the clockwise boundary.
    """
    edge_count: Dict[tuple, int] = {}
    for element in mesh.elements.values():
        for k in range(3):
            a, b = element.vertices[k], element.vertices[(k + 1) % 3]
            key = (min(a.index, b.index), max(a.index, b.index))
            edge_count[key] = edge_count.get(key, 0) + 1

    for element in mesh.elements.values():
        for k in range(3):
            a, b = element.vertices[k], element.vertices[(k + 1) % 3]
            key = (min(a.index, b.index), max(a.index, b.index))
            if edge_count[key] != 1:
                continue
            if b.clockwise is not None:
                raise AdjacencyInvariantViolation(
                    f"{b} sits on the boundary more than once", vertex=b
                )
            link_boundary(b, a)


def load_mesh_csv(path, global_params: Optional[GlobalParameters] = None) -> Mesh:
    """Read a mesh written by :meth:`Mesh.save`.

    Only positions and connectivity are stored, so undeformed shapes are
    rebuilt from the globe coordinates with unit weight and scale.
    """
    params = global_params or GlobalParameters()
    mesh = Mesh(params)
    with open(path, "r", newline="") as f:
        reader = csv.reader(f)
        try:
            n_vertices, n_elements = (int(v) for v in next(reader))
            for _ in range(n_vertices):
                index, phi, lam, x, y = next(reader)
                mesh.add_vertex(
                    Vertex(float(phi), float(lam), float(x), float(y)), index=int(index)
                )
            for _ in range(n_elements):
                corners = [mesh.vertices[int(i)] for i in next(reader)]
                mesh.add_element(
                    Element(
                        corners,
                        undeformed_coordinates(corners, eccentricity=params.eccentricity),
                        strength=params.strength,
                        lam=params.lam,
                        mu=params.mu,
                    )
                )
        except (StopIteration, ValueError, KeyError) as exc:
            raise ConfigurationError(f"Malformed mesh file {path}: {exc!r}") from exc

    _rebuild_boundary(mesh)
    mesh.save_baselines()
    return mesh


# ----------------------------------------------------------------------
# JSON
# ----------------------------------------------------------------------
def save_mesh_json(mesh: Mesh, path, *, compact: bool = False) -> None:
    """Persist the complete mesh state, including undeformed shapes and the boundary."""

    def _link(vertex):
        return None if vertex is None else vertex.index

    with mesh.lock:
        data = {
            "global_parameters": mesh.global_parameters.to_dict(),
            "state": mesh.state.value,
            "step_count": mesh.step_count,
            "step_size": mesh.step_size,
            "tear_budget": mesh.tear_budget,
            "finalised": mesh.finalised,
            "grid_shape": list(mesh.grid_shape) if mesh.grid_shape else None,
            "vertices": [
                {
                    "index": v.index,
                    "phi": v.phi,
                    "lam": v.lam,
                    "x": v.x,
                    "y": v.y,
                    "clockwise": _link(v.clockwise),
                    "widdershins": _link(v.widdershins),
                }
                for _, v in sorted(mesh.vertices.items())
            ],
            "elements": [
                {
                    "index": e.index,
                    "vertices": [v.index for v in e.vertices],
                    "undeformed": e.undeformed_coords.tolist(),
                    "strength": e.strength,
                    "lam": e.lam,
                    "mu": e.mu,
                    "weight": e.weight,
                    "scale": e.scale,
                    "cell": list(e.cell) if e.cell is not None else None,
                    "default_energy": e.default_energy,
                }
                for _, e in sorted(mesh.elements.items())
            ],
        }
    _ensure_parent(path)
    with open(path, "w") as f:
        if compact:
            json.dump(data, f, separators=(",", ":"), ensure_ascii=False)
        else:
            json.dump(data, f, indent=4, ensure_ascii=False)
    logger.info("Saved mesh state to %s", path)


def load_mesh_json(path) -> Mesh:
    with open(path, "r") as f:
        data = json.load(f)

    mesh = Mesh(GlobalParameters.from_mapping(data.get("global_parameters")))
    if data.get("grid_shape"):
        mesh.grid_shape = tuple(data["grid_shape"])
    for entry in data["vertices"]:
        mesh.add_vertex(
            Vertex(entry["phi"], entry["lam"], entry["x"], entry["y"]),
            index=int(entry["index"]),
        )
    for entry in data["elements"]:
        element = Element(
            [mesh.vertices[int(i)] for i in entry["vertices"]],
            np.array(entry["undeformed"], dtype=float),
            strength=float(entry["strength"]),
            lam=float(entry["lam"]),
            mu=float(entry["mu"]),
            weight=float(entry["weight"]),
            scale=float(entry["scale"]),
            cell=tuple(entry["cell"]) if entry.get("cell") is not None else None,
        )
        element.default_energy = float(entry.get("default_energy", 0.0))
        mesh.add_element(element, index=int(entry["index"]))
    for entry in data["vertices"]:
        if entry.get("clockwise") is not None:
            link_boundary(mesh.vertices[int(entry["index"])], mesh.vertices[int(entry["clockwise"])])

    mesh.step_count = int(data.get("step_count", 0))
    mesh.step_size = float(data.get("step_size", mesh.step_size))
    mesh.tear_budget = float(data.get("tear_budget", mesh.tear_budget))
    mesh.state = MeshState(data.get("state", MeshState.RELAXING.value))
    if data.get("finalised"):
        mesh.finalise()
    return mesh


def _ensure_parent(path) -> None:
    parent = os.path.dirname(str(path))
    if parent:
        os.makedirs(parent, exist_ok=True)
