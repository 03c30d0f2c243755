# projections.py
"""Classical projections used to flatten the globe before relaxation.

Every projection maps latitude ``phi`` and longitude ``lam`` (radians) on the
unit sphere to planar ``(x, y)``, with north up and east to the right.
"""

import math
from typing import Callable, Dict, Tuple, Union

from core.exceptions import ConfigurationError

Projection = Callable[[float, float], Tuple[float, float]]


def equirectangular(phi: float, lam: float) -> Tuple[float, float]:
    return lam, phi


def sinusoidal(phi: float, lam: float) -> Tuple[float, float]:
    return lam * math.cos(phi), phi


def lambert_cylindrical(phi: float, lam: float) -> Tuple[float, float]:
    """Lambert's cylindrical equal-area projection."""
    return lam, math.sin(phi)


def hammer(phi: float, lam: float) -> Tuple[float, float]:
    """Hammer-Aitoff equal-area projection of the whole globe."""
    z = math.sqrt(1 + math.cos(phi) * math.cos(lam / 2))
    x = 2 * math.sqrt(2) * math.cos(phi) * math.sin(lam / 2) / z
    y = math.sqrt(2) * math.sin(phi) / z
    return x, y


def mollweide(phi: float, lam: float) -> Tuple[float, float]:
    if abs(phi) >= math.pi / 2:
        theta = math.copysign(math.pi / 2, phi)
    else:
        # Newton iteration on 2θ + sin 2θ = π sin φ
        theta = phi
        target = math.pi * math.sin(phi)
        for _ in range(50):
            residual = 2 * theta + math.sin(2 * theta) - target
            slope = 2 + 2 * math.cos(2 * theta)
            if slope == 0:
                break
            delta = residual / slope
            theta -= delta
            if abs(delta) < 1e-14:
                break
    x = 2 * math.sqrt(2) / math.pi * lam * math.cos(theta)
    y = math.sqrt(2) * math.sin(theta)
    return x, y


PROJECTIONS: Dict[str, Projection] = {
    "equirectangular": equirectangular,
    "sinusoidal": sinusoidal,
    "lambert": lambert_cylindrical,
    "hammer": hammer,
    "mollweide": mollweide,
}


def get_projection(projection: Union[str, Projection]) -> Projection:
    """Look a projection up by name; callables are passed through."""
    if callable(projection):
        return projection
    try:
        return PROJECTIONS[str(projection).lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown initial condition {projection!r}; "
            f"choose from {', '.join(sorted(PROJECTIONS))}",
            key="initial_condition",
        ) from None
