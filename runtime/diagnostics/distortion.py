"""Kavrayskiy-style distortion statistics of a finished map."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np

from core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from geometry.mesh import Mesh

logger = logging.getLogger("elastic_projection")


def element_distortions(mesh: "Mesh", weights: Optional[np.ndarray] = None):
    """Per-element ``(areal, angular, weight)`` arrays in nepers.

    Degenerate and folded elements are left out. The weight of an element is
    the grid weight of its cell times its undeformed geographic area.
    """
    if weights is not None:
        weights = np.asarray(weights, dtype=float)
        if mesh.grid_shape is not None and weights.shape != mesh.grid_shape:
            raise ConfigurationError(
                f"Weight grid has shape {weights.shape}; the mesh needs {mesh.grid_shape}",
                key="weights",
            )

    areal, angular, mass = [], [], []
    for eid in sorted(mesh.elements):
        element = mesh.elements[eid]
        if element.is_degenerate() or element.area == 0 or element.is_folded():
            continue
        F = element.deformation_gradient()
        s1, s2 = element.principal_stretches()
        if not s2 > 0:
            continue
        cell_weight = 1.0
        if weights is not None and element.cell is not None:
            cell_weight = float(weights[element.cell])
        areal.append(math.log(F.det() * element.scale**2))
        angular.append(math.log(s1 / s2))
        mass.append(cell_weight * element.area / element.scale**2)
    return np.array(areal), np.array(angular), np.array(mass)


def evaluate_criteria(
    mesh: "Mesh", weights: Optional[np.ndarray] = None
) -> Tuple[float, float, float]:
    """Return ``(mean areal, std areal, mean angular)`` distortion in nepers.

    Reads the mesh only. ``weights`` is a grid of cell weights; ``None`` means
    uniform.
    """
    areal, angular, mass = element_distortions(mesh, weights)
    total = float(np.sum(mass))
    if total <= 0:
        logger.warning("No element carries weight; distortion is undefined.")
        return math.nan, math.nan, math.nan
    mean_areal = float(np.sum(mass * areal) / total)
    std_areal = float(np.sqrt(np.sum(mass * (areal - mean_areal) ** 2) / total))
    mean_angular = float(np.sum(mass * angular) / total)
    return mean_areal, std_areal, mean_angular
