"""Target dimension planning.

Two conventions coexist:

- ``plan_dimensions`` bounds the *smaller* side (native resize path).
- ``fit_within`` bounds the *larger* side (cloud and local backends).

They produce different sizes for the same input and are kept separate on purpose.
"""

import math


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def plan_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale so the smaller side equals ``max_dimension``; never upscale.

    Width is authoritative when both sides are equal.
    """
    if width <= height:
        if width > max_dimension:
            return max_dimension, max(1, _round_half_up(height * max_dimension / width))
    elif height > max_dimension:
        return max(1, _round_half_up(width * max_dimension / height)), max_dimension
    return width, height


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale so the larger side equals ``max_dimension``; never upscale."""
    if max(width, height) <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, _round_half_up(height * max_dimension / width))
    return max(1, _round_half_up(width * max_dimension / height)), max_dimension
