"""
Landmark Matching Engine

Estimates cyclotorsion by matching reference limbal vessels against the vessels
of a live frame. Both sets must already be calibration-corrected.

Each reference vessel is scored against every unused live vessel on radial
position, angular position and length. The default assignment is greedy and
reference-first with no backtracking; it is not a globally optimal bipartite
matching. Assignment lives behind `VesselAssigner` so another strategy can be
swapped in.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

import numpy as np

from toricguide.models.schema import CaptureQuality
from .landmarks import EyeLandmarkSet, VesselDescriptor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingConfig:
    match_score_threshold: float = 0.7
    min_matched_vessels: int = 3
    max_angle_difference: float = 45.0  # degrees
    min_match_confidence: float = 0.6

    # Score weights: radial position and angle dominate, length breaks ties
    radius_weight: float = 0.4
    angle_weight: float = 0.4
    length_weight: float = 0.2
    # 0.2 lost per 0.04 of radial difference
    radius_penalty: float = 5.0

    @classmethod
    def from_settings(cls, settings) -> "MatchingConfig":
        return cls(
            match_score_threshold=settings.match_score_threshold,
            min_matched_vessels=settings.min_matched_vessels,
            max_angle_difference=settings.max_angle_difference,
            min_match_confidence=settings.min_match_confidence,
        )


@dataclass(frozen=True)
class VesselMatch:
    reference: VesselDescriptor
    current: VesselDescriptor
    score: float
    angle_difference: float  # current - reference, degrees in (-180, 180]


@dataclass(frozen=True)
class MatchResult:
    cyclotorsion: float      # degrees, positive = live rotated counter-clockwise of reference
    confidence: float        # [0, 1]
    matched_count: int
    matched: bool            # enough consistent matches to trust the estimate
    reference_count: int = 0
    matches: Tuple[VesselMatch, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls, reference_count: int = 0) -> "MatchResult":
        return cls(cyclotorsion=0.0, confidence=0.0, matched_count=0, matched=False,
                   reference_count=reference_count)

    @property
    def quality_description(self) -> str:
        if self.confidence >= 0.8:
            return "Excellent"
        if self.confidence >= 0.6:
            return "Good"
        if self.confidence >= 0.4:
            return "Acceptable"
        return "Low"


def angle_difference(a1: float, a2: float) -> float:
    """a1 - a2 wrapped to (-180, 180]."""
    diff = (a1 - a2) % 360.0
    if diff > 180.0:
        diff -= 360.0
    return diff


def match_score(ref: VesselDescriptor, cur: VesselDescriptor,
                config: MatchingConfig = MatchingConfig()) -> float:
    radius_diff = abs(ref.radial_distance - cur.radial_distance)
    radius_score = max(0.0, 1.0 - radius_diff * config.radius_penalty)

    longest = max(ref.length, cur.length)
    length_score = min(ref.length, cur.length) / longest if longest > 0 else 0.0

    angle_diff = abs(angle_difference(cur.angle, ref.angle))
    if angle_diff <= config.max_angle_difference and config.max_angle_difference > 0:
        angle_score = 1.0 - angle_diff / config.max_angle_difference
    else:
        angle_score = 0.0

    return (radius_score * config.radius_weight
            + angle_score * config.angle_weight
            + length_score * config.length_weight)


ScoreFn = Callable[[VesselDescriptor, VesselDescriptor], float]


class VesselAssigner(ABC):
    """Pairs reference vessels with live vessels."""

    @abstractmethod
    def assign(self, reference: Sequence[VesselDescriptor], current: Sequence[VesselDescriptor],
               score_fn: ScoreFn, threshold: float) -> List[VesselMatch]:
        """Return accepted matches; each live vessel is used at most once."""


class GreedyAssigner(VesselAssigner):
    """First reference vessel to claim a live vessel keeps it."""

    def assign(self, reference, current, score_fn, threshold):
        matches = []
        used = set()

        for ref in reference:
            best_index = None
            best_score = 0.0
            for index, cur in enumerate(current):
                if index in used:
                    continue
                score = score_fn(ref, cur)
                if score > best_score and score >= threshold:
                    best_score = score
                    best_index = index

            if best_index is not None:
                cur = current[best_index]
                used.add(best_index)
                matches.append(VesselMatch(
                    reference=ref,
                    current=cur,
                    score=best_score,
                    angle_difference=angle_difference(cur.angle, ref.angle),
                ))

        return matches


def weighted_cyclotorsion(matches: Sequence[VesselMatch]) -> float:
    """Score-weighted mean of the per-pair angular differences."""
    if not matches:
        return 0.0
    weights = np.array([m.score for m in matches], dtype=float)
    diffs = np.array([m.angle_difference for m in matches], dtype=float)
    total = float(np.sum(weights))
    if total <= 0:
        return 0.0
    return float(np.sum(diffs * weights) / total)


def angular_consistency(matches: Sequence[VesselMatch]) -> float:
    """1 for perfectly uniform rotation, falling to 0 at a 10° standard deviation."""
    if len(matches) < 2:
        return 1.0
    std = float(np.std([m.angle_difference for m in matches]))
    return max(0.0, 1.0 - std / 10.0)


def match_confidence(matches: Sequence[VesselMatch], total_reference: int) -> float:
    if total_reference <= 0:
        return 0.0
    match_ratio = len(matches) / total_reference
    mean_score = float(np.mean([m.score for m in matches])) if matches else 0.0
    consistency = angular_consistency(matches)
    confidence = match_ratio * 0.3 + mean_score * 0.4 + consistency * 0.3
    return min(1.0, confidence)


class LandmarkMatchingEngine:
    """Compares a reference landmark set with a live one."""

    def __init__(self, config: MatchingConfig = MatchingConfig(),
                 assigner: VesselAssigner | None = None):
        self.config = config
        self.assigner = assigner or GreedyAssigner()

    def score(self, ref: VesselDescriptor, cur: VesselDescriptor) -> float:
        return match_score(ref, cur, self.config)

    def match(self, reference: EyeLandmarkSet, current: EyeLandmarkSet) -> MatchResult:
        """
        Estimate cyclotorsion of `current` relative to `reference`.

        Always returns a result; `matched` is False when too few vessels matched,
        confidence is below the minimum, or the live capture quality is poor.
        """
        ref_vessels = reference.vessels
        if not ref_vessels:
            log.warning("Reference landmark set has no vessels")
            return MatchResult.empty()

        matches = self.assigner.assign(ref_vessels, current.vessels, self.score,
                                       self.config.match_score_threshold)

        cyclotorsion = weighted_cyclotorsion(matches)
        confidence = match_confidence(matches, len(ref_vessels))

        matched = (len(matches) >= self.config.min_matched_vessels
                   and confidence >= self.config.min_match_confidence
                   and current.capture_quality != CaptureQuality.POOR)

        log.debug(f"Matched {len(matches)}/{len(ref_vessels)} vessels: "
                  f"cyclotorsion {cyclotorsion:.2f}°, confidence {confidence:.2f}, valid={matched}")

        return MatchResult(
            cyclotorsion=cyclotorsion,
            confidence=confidence,
            matched_count=len(matches),
            matched=matched,
            reference_count=len(ref_vessels),
            matches=tuple(matches),
        )
