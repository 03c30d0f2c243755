"""Custom exception types for the elastic projection solver."""

from __future__ import annotations

from typing import Any


class ElasticProjectionError(Exception):
    """Base class for domain-specific errors."""


class ConfigurationError(ElasticProjectionError):
    """Raised when material or mesh parameters are malformed or missing."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class DimensionError(ElasticProjectionError, ValueError):
    """Raised when a matrix operation is used outside its supported shape."""

    def __init__(
        self,
        message: str | None = None,
        *,
        shape: tuple[int, int] | None = None,
    ) -> None:
        if message is None:
            message = f"Unsupported matrix dimensions {shape}; only 2x2 is handled."
        super().__init__(message)
        self.shape = shape


class AdjacencyInvariantViolation(ElasticProjectionError):
    """Raised when the vertex/element relation or the boundary list is corrupt."""

    def __init__(
        self,
        message: str,
        *,
        vertex: Any | None = None,
        element: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.vertex = vertex
        self.element = element


class InvalidArgumentError(ElasticProjectionError, ValueError):
    """Raised when a caller asks for something the mesh cannot answer."""


class MeshFinalisedError(ElasticProjectionError):
    """Raised when a finalised mesh is asked to mutate."""


__all__ = [
    "ElasticProjectionError",
    "ConfigurationError",
    "DimensionError",
    "AdjacencyInvariantViolation",
    "InvalidArgumentError",
    "MeshFinalisedError",
]
