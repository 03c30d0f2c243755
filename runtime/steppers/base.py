# runtime/steppers/base.py
"""Interface shared by the descent steppers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

import numpy as np

if TYPE_CHECKING:
    from geometry.mesh import Mesh


class BaseStepper(ABC):
    """Moves every vertex of a mesh along a descent direction."""

    @abstractmethod
    def step(
        self,
        mesh: "Mesh",
        grad: np.ndarray,
        step_size: float,
        energy_fn: Callable[[np.ndarray], float],
        energy0: float | None = None,
    ) -> tuple[bool, float, float]:
        """Advance ``mesh`` along ``-grad`` with a given ``step_size``.

        Parameters
        ----------
        mesh : Mesh
            The sheet whose vertices move.
        grad : np.ndarray
            Dense ``(N, 2)`` gradient in ``mesh.vertex_ids`` row order.
        step_size : float
            Step size to try first.
        energy_fn : Callable[[np.ndarray], float]
            Energy of ``mesh`` evaluated at a trial position array.
        energy0 : float, optional
            Energy of the current configuration, if already known.

        Returns
        -------
        tuple[bool, float, float]
            A flag indicating if the step was accepted, the step size to use
            on the next iteration and the energy after the step.
        """

    def __repr__(self) -> str:  # pragma: no cover - simple utility
        params = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{self.__class__.__name__}({params})"
