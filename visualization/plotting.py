import logging
from typing import Any, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection, PolyCollection

from geometry.mesh import Mesh, MeshSnapshot

logger = logging.getLogger("elastic_projection")


def plot_map(
    mesh: Union[Mesh, MeshSnapshot],
    ax=None,
    draw_elements: bool = True,
    draw_edges: bool = True,
    draw_boundary: bool = True,
    element_color: Any = None,
    edge_color: str = "k",
    boundary_color: str = "C3",
    element_values: Optional[np.ndarray] = None,
    cmap: str = "RdBu_r",
    show_indices: bool = False,
    no_axes: bool = False,
    title: Optional[str] = None,
    show: bool = True,
):
    """
    Draw the planar configuration of a mesh using Matplotlib.

    Parameters
    ----------
    mesh :
        A :class:`~geometry.mesh.Mesh` or a snapshot taken from one. A mesh
        is snapshotted first so that a running optimiser is not raced.
    ax : matplotlib.axes.Axes, optional
        Axis to draw into. If omitted, a new figure and axis are created.
    draw_elements : bool, optional
        Fill each triangular element.
    draw_edges : bool, optional
        Outline every element.
    draw_boundary : bool, optional
        Trace the boundary loop, which shows the cut and any tears.
    element_values : np.ndarray, optional
        One value per element (e.g. areal distortion) used to colour the
        fills with ``cmap``; overrides ``element_color``.
    show : bool, optional
        If ``True`` (default), call :func:`matplotlib.pyplot.show` after
        drawing.

    Returns
    -------
    matplotlib.axes.Axes
        The axis that was drawn into.
    """
    snapshot = mesh.snapshot() if isinstance(mesh, Mesh) else mesh
    if len(snapshot.positions) == 0:
        logger.warning("Mesh has no vertices to visualize.")
        return ax

    if ax is None:
        _, ax = plt.subplots()

    positions = snapshot.positions
    polygons = positions[snapshot.triangles]  # (E, 3, 2)

    if draw_elements:
        collection = PolyCollection(
            polygons,
            edgecolors=edge_color if draw_edges else "none",
            linewidths=0.3 if draw_edges else 0.0,
        )
        if element_values is not None:
            collection.set_array(np.asarray(element_values, dtype=float))
            collection.set_cmap(cmap)
            plt.colorbar(collection, ax=ax)
        else:
            collection.set_facecolor(
                element_color if element_color is not None else (0.6, 0.8, 1.0)
            )
        ax.add_collection(collection)
    elif draw_edges:
        closed = np.concatenate([polygons, polygons[:, :1]], axis=1)
        ax.add_collection(LineCollection(closed, colors=edge_color, linewidths=0.3))

    if draw_boundary and snapshot.boundary:
        loop = positions[list(snapshot.boundary) + [snapshot.boundary[0]]]
        ax.plot(loop[:, 0], loop[:, 1], color=boundary_color, linewidth=1.0)

    if show_indices:
        for vid, (x, y) in zip(snapshot.vertex_ids, positions):
            ax.text(x, y, f"{vid}", color="k", fontsize=6)

    ax.set_aspect("equal")
    ax.autoscale_view()
    ax.set_title(
        title
        if title is not None
        else f"Step {snapshot.step_count}: energy {snapshot.energy:.4f}"
    )
    if no_axes:
        ax.set_axis_off()

    if show:
        plt.show()
    return ax
