"""
Astigmatism vector math.

Astigmatism axes repeat every 180°, so ordinary vector addition only works after
the double-angle transform: the axis is doubled before embedding in Cartesian
space and halved again on the way back. Every combination of astigmatism
(corneal + posterior + SIA, target - lens) goes through these functions; adding
magnitudes directly is wrong whenever the axes differ.
"""

import math
from dataclasses import dataclass
from typing import Tuple


def normalize_axis(axis: float) -> float:
    """Reduce any axis to [0, 180)."""
    normalized = math.fmod(axis, 180.0)
    if normalized < 0:
        normalized += 180.0
    # fmod of a tiny negative value can land exactly on 180
    if normalized >= 180.0:
        normalized -= 180.0
    return normalized


@dataclass(frozen=True)
class AstigmatismVector:
    """Astigmatism as magnitude (diopters) and axis (degrees, [0, 180))."""
    magnitude: float
    axis: float

    def __post_init__(self):
        object.__setattr__(self, "magnitude", abs(float(self.magnitude)))
        object.__setattr__(self, "axis", normalize_axis(float(self.axis)))

    @classmethod
    def zero(cls) -> "AstigmatismVector":
        return cls(magnitude=0.0, axis=0.0)

    def to_cartesian(self) -> Tuple[float, float]:
        return to_vector(self)

    @classmethod
    def from_cartesian(cls, x: float, y: float) -> "AstigmatismVector":
        return to_astigmatism(x, y)

    def rotated(self, degrees: float) -> "AstigmatismVector":
        return AstigmatismVector(magnitude=self.magnitude, axis=self.axis + degrees)

    def format(self) -> str:
        return f"{self.magnitude:.2f}D @ {self.axis:.0f}°"

    def to_dict(self) -> dict:
        return {"magnitude": self.magnitude, "axis": self.axis}

    def __str__(self) -> str:
        return self.format()


def to_vector(v: AstigmatismVector) -> Tuple[float, float]:
    """
    Map magnitude/axis to Cartesian using the double-angle transform.

    Returns:
        (x, y) with x = m·cos(2·axis), y = m·sin(2·axis)
    """
    theta = 2.0 * v.axis * math.pi / 180.0
    return (v.magnitude * math.cos(theta), v.magnitude * math.sin(theta))


def to_astigmatism(x: float, y: float) -> AstigmatismVector:
    """Inverse of to_vector: halve the Cartesian angle back to an axis."""
    magnitude = math.hypot(x, y)
    if magnitude == 0:
        return AstigmatismVector.zero()
    axis = math.degrees(math.atan2(y, x)) / 2.0
    return AstigmatismVector(magnitude=magnitude, axis=axis)


def add(v1: AstigmatismVector, v2: AstigmatismVector) -> AstigmatismVector:
    x1, y1 = to_vector(v1)
    x2, y2 = to_vector(v2)
    return to_astigmatism(x1 + x2, y1 + y2)


def subtract(v1: AstigmatismVector, v2: AstigmatismVector) -> AstigmatismVector:
    x1, y1 = to_vector(v1)
    x2, y2 = to_vector(v2)
    return to_astigmatism(x1 - x2, y1 - y2)


def axis_distance(a1: float, a2: float) -> float:
    """Smallest angular separation between two axes, in [0, 90]."""
    diff = abs(normalize_axis(a1) - normalize_axis(a2))
    return min(diff, 180.0 - diff)
