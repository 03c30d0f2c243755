import logging
from typing import Callable

import numpy as np

logger = logging.getLogger("elastic_projection")


def backtracking_line_search(
    positions: np.ndarray,
    direction: np.ndarray,
    gradient: np.ndarray,
    step_size: float,
    energy_fn: Callable[[np.ndarray], float],
    max_iter: int = 30,
    beta: float = 0.5,
    c: float = 1e-4,
    gamma: float = 1.5,
    alpha_max_factor: float = 10.0,
    energy0: float | None = None,
) -> tuple[bool, float, float, float]:
    """Armijo backtracking line search over dense position arrays.

    Trial configurations are built as ``positions + alpha * direction`` and
    handed to ``energy_fn``; the caller's positions are never touched, so a
    failed search leaves nothing to restore.

    Parameters
    ----------
    positions : np.ndarray
        ``(N, 2)`` starting positions.
    direction : np.ndarray
        ``(N, 2)`` descent direction, same row order as ``positions``.
    gradient : np.ndarray
        ``(N, 2)`` energy gradient at ``positions``.
    step_size : float
        First trial step, usually the step accepted last time grown by ``gamma``.
    energy_fn : Callable[[np.ndarray], float]
        Energy of a trial configuration. Folded trials return ``inf`` and are
        rejected like any other Armijo failure.
    max_iter : int, optional
        Maximum number of backtracking iterations, by default ``30``.
    beta : float, optional
        Shrink factor applied after each rejected trial, by default ``0.5``.
    c : float, optional
        Sufficient-decrease constant of the Armijo test, by default ``1e-4``.
    gamma : float, optional
        Step size growth factor on success, by default ``1.5``.
    alpha_max_factor : float, optional
        Cap on the next step relative to ``step_size``, by default ``10.0``.
    energy0 : float, optional
        Energy at ``positions`` if the caller already has it.

    Returns
    -------
    tuple[bool, float, float, float]
        Whether a step was accepted, the accepted ``alpha`` (0 on failure),
        the step size to use next time and the accepted energy.
    """
    if energy0 is None:
        energy0 = energy_fn(positions)

    g_dot_d = float(np.sum(gradient * direction))
    if g_dot_d >= 0:
        logger.debug("Direction does not descend (g.d = %.3e); no step taken.", g_dot_d)
        return False, 0.0, step_size, energy0

    alpha = step_size
    alpha_max = alpha_max_factor * step_size

    backtracks = 0
    for _ in range(max_iter):
        trial_energy = energy_fn(positions + alpha * direction)
        if trial_energy <= energy0 + c * alpha * g_dot_d:
            logger.debug(
                "Line search success: alpha=%.3e, backtracks=%d, E0=%.9f, Etrial=%.9f",
                alpha,
                backtracks,
                energy0,
                trial_energy,
            )
            new_step = min(alpha * gamma, alpha_max)
            return True, alpha, new_step, trial_energy

        alpha *= beta
        backtracks += 1

        # Steps this small no longer move anything measurable.
        if alpha < 1e-12:
            break

    logger.debug(
        "Line search failed after %d backtracks (alpha reached %.2e); shrinking step size.",
        backtracks,
        alpha,
    )
    return False, 0.0, max(alpha, step_size * beta), energy0
