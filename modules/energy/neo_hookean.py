# modules/energy/neo_hookean.py
# Compressible Neo-Hookean strain energy of the planar sheet

import logging
from typing import Dict, Optional, Tuple

import numpy as np

logger = logging.getLogger("elastic_projection")


def _deformation_gradients(mesh, positions: np.ndarray) -> Tuple[object, np.ndarray]:
    """Return the cached element arrays and ``F`` for every element, ``(E, 2, 2)``."""
    arrays = mesh.element_arrays()
    corner_pos = positions[arrays.rows]  # (E, 3, 2)
    # F_ab = sum_i x_ia * D_ib
    F = np.einsum("eia,eib->eab", corner_pos, arrays.shape_gradients)
    return arrays, F


def _strain_state(arrays, F: np.ndarray):
    """Split elements into stretched, folded and inactive and evaluate ``ln J``."""
    J = F[:, 0, 0] * F[:, 1, 1] - F[:, 0, 1] * F[:, 1, 0]
    ok = arrays.active & (J > 0)
    folded = arrays.active & ~(J > 0)
    log_J = np.zeros_like(J)
    log_J[ok] = np.log(J[ok])
    return J, log_J, ok, folded


def element_energies(mesh, positions: Optional[np.ndarray] = None) -> np.ndarray:
    """Energy of every element in ``mesh.element_ids`` order.

    Degenerate elements contribute exactly zero and folded ones ``inf``.
    """
    if positions is None:
        positions = mesh.positions_view()
    arrays, F = _deformation_gradients(mesh, positions)
    J, log_J, ok, folded = _strain_state(arrays, F)

    I1 = np.einsum("eab,eab->e", F, F)  # tr(F F^T)
    density = 0.5 * arrays.mu * (I1 - 2.0 - 2.0 * log_J) + 0.5 * arrays.lam * log_J**2
    energies = np.where(ok, density * arrays.areas * arrays.weights, 0.0)
    energies[folded] = np.inf
    return energies


def calculate_energy(
    mesh, global_params=None, positions: Optional[np.ndarray] = None
) -> float:
    """Total strain energy; ``inf`` as soon as one element is folded."""
    if not mesh.elements:
        return 0.0
    return float(np.sum(element_energies(mesh, positions)))


def element_forces(
    mesh, positions: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Per-element energies and the force each element exerts on its corners.

    The forces are ``-dE/dX`` with shape ``(E, 3, 2)``; degenerate and folded
    elements exert none.
    """
    if positions is None:
        positions = mesh.positions_view()
    arrays, F = _deformation_gradients(mesh, positions)
    J, log_J, ok, folded = _strain_state(arrays, F)

    I1 = np.einsum("eab,eab->e", F, F)
    density = 0.5 * arrays.mu * (I1 - 2.0 - 2.0 * log_J) + 0.5 * arrays.lam * log_J**2
    energies = np.where(ok, density * arrays.areas * arrays.weights, 0.0)
    energies[folded] = np.inf

    forces = np.zeros((len(J), 3, 2))
    if np.any(ok):
        Fo = F[ok]
        Jo = J[ok]
        # F^{-T} of a 2x2 matrix is its cofactor matrix over det F
        cof = np.empty_like(Fo)
        cof[:, 0, 0] = Fo[:, 1, 1]
        cof[:, 0, 1] = -Fo[:, 1, 0]
        cof[:, 1, 0] = -Fo[:, 0, 1]
        cof[:, 1, 1] = Fo[:, 0, 0]
        F_inv_T = cof / Jo[:, None, None]
        mu = arrays.mu[ok][:, None, None]
        lam = arrays.lam[ok][:, None, None]
        P = mu * (Fo - F_inv_T) + lam * log_J[ok][:, None, None] * F_inv_T
        grad = np.einsum("eab,eib->eia", P, arrays.shape_gradients[ok])
        grad *= (arrays.areas[ok] * arrays.weights[ok])[:, None, None]
        forces[ok] = -grad
    return energies, forces


def compute_energy_and_gradient_array(
    mesh,
    global_params,
    *,
    positions: np.ndarray,
    grad_arr: np.ndarray,
) -> float:
    """Vectorised energy and gradient calculation writing to ``grad_arr``.

    ``grad_arr`` rows follow ``mesh.vertex_ids`` and are accumulated into, not
    overwritten.
    """
    if not mesh.elements:
        return 0.0
    energies, forces = element_forces(mesh, positions)
    rows = mesh.element_arrays().rows
    np.add.at(grad_arr, rows.reshape(-1), -forces.reshape(-1, 2))
    total = float(np.sum(energies))
    if not np.isfinite(total):
        logger.debug(
            "%d folded element(s); total energy is not finite.",
            int(np.count_nonzero(~np.isfinite(energies))),
        )
    return total


def compute_energy_and_gradient(mesh, global_params) -> Tuple[float, Dict[int, np.ndarray]]:
    """Reference path looping over :class:`Element` objects.

    Slower than :func:`compute_energy_and_gradient_array` but independent of
    the cached arrays, which makes it the yardstick for the vectorised kernel.
    """
    grad: Dict[int, np.ndarray] = {vidx: np.zeros(2) for vidx in mesh.vertices}
    total = 0.0
    for element in mesh.elements.values():
        total += element.current_energy()
        contribution = element.energy_gradient()
        for vertex, g in zip(element.vertices, contribution):
            grad[vertex.index] += g
    return total, grad
