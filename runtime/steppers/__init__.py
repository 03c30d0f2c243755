"""Utilities and steppers for runtime optimization."""

from .gradient_descent import GradientDescent
from .line_search import backtracking_line_search

__all__ = ["GradientDescent", "backtracking_line_search"]
