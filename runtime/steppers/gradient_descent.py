"""Steepest descent on vertex positions, step length chosen by backtracking."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np

from runtime.steppers.line_search import backtracking_line_search

from .base import BaseStepper

if TYPE_CHECKING:
    from geometry.mesh import Mesh


class GradientDescent(BaseStepper):
    """Move vertices along the net force, backtracking until energy drops enough.

    The descent direction is the net force on each vertex. It is stored as
    the vertex velocity and an accepted step moves every vertex with
    :meth:`Vertex.descend`.
    """

    def __init__(
        self,
        max_iter: int = 30,
        beta: float = 0.5,
        c: float = 1e-4,
        gamma: float = 1.5,
        alpha_max_factor: float = 10.0,
    ) -> None:
        self.max_iter = max_iter
        self.beta = beta
        self.c = c
        self.gamma = gamma
        self.alpha_max_factor = alpha_max_factor

    @classmethod
    def from_parameters(cls, global_params) -> "GradientDescent":
        return cls(
            max_iter=global_params.max_backtracks,
            beta=global_params.beta,
            c=global_params.armijo_c,
            gamma=global_params.gamma,
            alpha_max_factor=global_params.alpha_max_factor,
        )

    def step(
        self,
        mesh: "Mesh",
        grad: np.ndarray,
        step_size: float,
        energy_fn: Callable[[np.ndarray], float],
        energy0: float | None = None,
    ) -> tuple[bool, float, float]:
        """Try one descent step; returns (accepted, next step size, energy)."""
        direction = -grad
        mesh.set_velocities(direction)
        accepted, alpha, new_step, energy = backtracking_line_search(
            mesh.positions_view(),
            direction,
            grad,
            step_size,
            energy_fn,
            max_iter=self.max_iter,
            beta=self.beta,
            c=self.c,
            gamma=self.gamma,
            alpha_max_factor=self.alpha_max_factor,
            energy0=energy0,
        )
        if accepted:
            mesh.descend(alpha)
        return accepted, new_step, energy
