# global_parameters.py

import math
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping, Optional

from core.exceptions import ConfigurationError

_STRING_KEYS = {"initial_condition", "energy_model"}
_INT_KEYS = {"resolution", "max_backtracks"}


@dataclass(frozen=True)
class GlobalParameters:
    """Immutable material, mesh and solver configuration.

    All parameters are defined with underscore, _, instead of spaces. One
    instance is threaded through mesh construction; nothing reads process-wide
    state, so several configurations can live in one interpreter.
    """

    resolution: int = 12  # nodes from the equator to each pole
    lam: float = 1.0  # first Lamé parameter
    mu: float = 1.0  # shear modulus
    precision: float = 1e-6  # absolute energy decrease that still counts as progress
    tear_length: float = 0.0  # total tear budget, undeformed radians
    strength: float = math.inf  # stress above which an edge may tear
    eccentricity: float = 0.0  # of the reference ellipsoid; 0 is a sphere
    initial_condition: str = "hammer"
    energy_model: str = "neo_hookean"
    step_size: float = 1e-2
    stitch_tolerance: Optional[float] = None  # defaults to precision
    # Armijo backtracking line search
    max_backtracks: int = 30
    beta: float = 0.5
    armijo_c: float = 1e-4
    gamma: float = 1.5
    alpha_max_factor: float = 10.0

    def __post_init__(self):
        if self.resolution < 1:
            raise ConfigurationError(
                f"resolution must be at least 1; got {self.resolution}",
                key="resolution",
            )
        if not self.mu > 0:
            raise ConfigurationError(f"mu must be positive; got {self.mu}", key="mu")
        if not self.lam >= 0:
            raise ConfigurationError(
                f"lam must be non-negative; got {self.lam}", key="lam"
            )
        if not self.precision > 0:
            raise ConfigurationError(
                f"precision must be positive; got {self.precision}", key="precision"
            )
        if not self.tear_length >= 0:
            raise ConfigurationError(
                f"tear_length must be non-negative; got {self.tear_length}",
                key="tear_length",
            )
        if not self.strength >= 0:
            raise ConfigurationError(
                f"strength must be non-negative; got {self.strength}", key="strength"
            )
        if not 0 <= self.eccentricity < 1:
            raise ConfigurationError(
                f"eccentricity must lie in [0, 1); got {self.eccentricity}",
                key="eccentricity",
            )
        if not self.step_size > 0:
            raise ConfigurationError(
                f"step_size must be positive; got {self.step_size}", key="step_size"
            )
        if not 0 < self.beta < 1:
            raise ConfigurationError(
                f"beta must lie in (0, 1); got {self.beta}", key="beta"
            )

    @property
    def effective_stitch_tolerance(self) -> float:
        if self.stitch_tolerance is None:
            return self.precision
        return self.stitch_tolerance

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any] | None) -> "GlobalParameters":
        """Build parameters from a loosely typed mapping (e.g. parsed YAML).

        Numeric strings are coerced; unknown keys and non-numeric values raise
        :class:`ConfigurationError`.
        """
        if not params:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in params.items():
            if key not in known:
                raise ConfigurationError(f"Unknown parameter {key!r}", key=key)
            values[key] = _coerce(key, value)
        return cls(**values)

    def get(self, key, default=None):
        """Retrieve a parameter value, or return a default if not found."""
        return getattr(self, key, default)

    def updated(self, **changes) -> "GlobalParameters":
        """Return a copy with some parameters replaced."""
        return replace(self, **changes)

    def __contains__(self, key):
        return key in {f.name for f in fields(self)}

    def to_dict(self):
        """Convert the parameters to a dictionary for serialization."""
        return asdict(self)


def _coerce(key: str, value: Any) -> Any:
    if key in _STRING_KEYS:
        if not isinstance(value, str):
            raise ConfigurationError(
                f"{key} must be a string; got {value!r}", key=key
            )
        return value
    if key == "stitch_tolerance" and value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be numeric; got {value!r}", key=key)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"inf", "infinity", "+inf"}:
            value = math.inf
        else:
            try:
                value = float(text)
            except ValueError:
                raise ConfigurationError(
                    f"{key} should be numeric; got {value!r}", key=key
                ) from None
    if not isinstance(value, (int, float)):
        raise ConfigurationError(f"{key} must be numeric; got {value!r}", key=key)
    if key in _INT_KEYS:
        if not math.isfinite(value) or float(value) != int(value):
            raise ConfigurationError(
                f"{key} must be an integer; got {value!r}", key=key
            )
        return int(value)
    return float(value)
