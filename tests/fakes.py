"""
Test doubles and landmark builders.

SimulatedMatchingEngine stands in for LandmarkMatchingEngine when a test needs a
stream of plausible cyclotorsion readings without building landmark sets.
"""

import math
import random
from typing import Optional, Sequence

from toricguide.models.schema import CaptureQuality
from toricguide.services.landmarks import EyeLandmarkSet, VesselDescriptor
from toricguide.services.matching import MatchResult

REFERENCE_ANGLES = [0.0, 45.0, 100.0, 160.0, 220.0, 290.0]
REFERENCE_LENGTHS = [0.10, 0.08, 0.12, 0.09, 0.11, 0.07]


def make_landmarks(angles: Sequence[float] = REFERENCE_ANGLES,
                   lengths: Sequence[float] = REFERENCE_LENGTHS,
                   rotation: float = 0.0,
                   jitter: float = 0.0,
                   radius: float = 0.2,
                   quality: CaptureQuality = CaptureQuality.GOOD,
                   rng: Optional[random.Random] = None) -> EyeLandmarkSet:
    """Vessels on a circle around the limbus, optionally rotated and jittered."""
    rng = rng or random.Random(0)
    vessels = []
    for index, (angle, length) in enumerate(zip(angles, lengths)):
        a = (angle + rotation + (rng.uniform(-jitter, jitter) if jitter else 0.0)) % 360.0
        rad = math.radians(a)
        vessels.append(VesselDescriptor(
            angle=a,
            normalized_position=(radius * math.cos(rad), radius * math.sin(rad)),
            length=length,
            id=f"v{index}",
        ))
    return EyeLandmarkSet(
        limbus_center=(0.5, 0.5),
        limbus_radius=0.25,
        pupil_center=(0.5, 0.5),
        pupil_radius=0.1,
        vessels=tuple(vessels),
        capture_quality=quality,
    )


def match_result(cyclotorsion: float, confidence: float = 0.9, matched: bool = True,
                 matched_count: int = 6) -> MatchResult:
    return MatchResult(cyclotorsion=cyclotorsion, confidence=confidence,
                       matched_count=matched_count, matched=matched, reference_count=6)


class SimulatedMatchingEngine:
    """Seeded source of noisy cyclotorsion readings around a true value."""

    def __init__(self, true_cyclotorsion: float = 8.0, noise: float = 1.0,
                 dropout: float = 0.0, seed: int = 42):
        self.true_cyclotorsion = true_cyclotorsion
        self.noise = noise
        self.dropout = dropout
        self.rng = random.Random(seed)
        self.readings = []

    def match(self, reference=None, current=None) -> MatchResult:
        if self.dropout and self.rng.random() < self.dropout:
            return match_result(0.0, confidence=0.2, matched=False, matched_count=1)
        value = self.true_cyclotorsion + self.rng.gauss(0.0, self.noise)
        self.readings.append(value)
        return match_result(value, confidence=self.rng.uniform(0.75, 0.95))
