"""
Cyclotorsion Tracker

Session state machine that turns noisy per-frame matching results into a
stable corrected axis for the overlay:

    NOT_STARTED -> set_reference -> READY -> start -> TRACKING <-> SEARCHING -> stop -> STOPPED

Any unrecoverable input error moves the session to ERROR; leaving it takes a
fresh reference or a start with a reference present. Every call that changes
the published values returns a TrackingUpdate event.

The tracker expects a single producer calling `update` with already
rate-limited samples. It does no throttling, locking or I/O of its own.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

from toricguide.exceptions import InvalidTransitionError, ReferenceNotConfiguredError
from toricguide.models.schema import CaptureQuality, Eye
from .astigmatism import normalize_axis
from .landmarks import EyeLandmarkSet
from .matching import MatchResult

log = logging.getLogger(__name__)


class TrackingStatus(str, Enum):
    NOT_STARTED = "not_started"
    READY = "ready"
    TRACKING = "tracking"
    SEARCHING = "searching"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class TrackingState:
    status: TrackingStatus
    reason: Optional[str] = None

    @classmethod
    def error(cls, reason: str) -> "TrackingState":
        return cls(TrackingStatus.ERROR, reason)

    @property
    def is_active(self) -> bool:
        return self.status in (TrackingStatus.TRACKING, TrackingStatus.SEARCHING)

    @property
    def description(self) -> str:
        if self.status == TrackingStatus.ERROR:
            return f"Error: {self.reason}"
        return {
            TrackingStatus.NOT_STARTED: "Not started",
            TrackingStatus.READY: "Ready",
            TrackingStatus.TRACKING: "Tracking",
            TrackingStatus.SEARCHING: "Searching...",
            TrackingStatus.STOPPED: "Stopped",
        }[self.status]


NOT_STARTED = TrackingState(TrackingStatus.NOT_STARTED)
READY = TrackingState(TrackingStatus.READY)
TRACKING = TrackingState(TrackingStatus.TRACKING)
SEARCHING = TrackingState(TrackingStatus.SEARCHING)
STOPPED = TrackingState(TrackingStatus.STOPPED)


@dataclass(frozen=True)
class TrackerConfig:
    history_size: int = 5
    smoothing_factor: float = 0.3
    alignment_tolerance: float = 5.0  # degrees

    @classmethod
    def from_settings(cls, settings) -> "TrackerConfig":
        return cls(
            history_size=settings.history_size,
            smoothing_factor=settings.smoothing_factor,
            alignment_tolerance=settings.alignment_tolerance,
        )


def confidence_bars(confidence: float) -> int:
    """Confidence as 0-5 bars for the overlay indicator."""
    return max(0, min(5, int(confidence * 5 + 0.5)))


@dataclass(frozen=True)
class TrackingUpdate:
    """Everything the overlay needs after one tracker call.

    corrected_axis is None whenever the session is not tracking, so an axis is
    never published without its state, confidence and alignment.
    """
    state: TrackingState
    applied: bool
    target_axis: Optional[float]
    corrected_axis: Optional[float]
    cyclotorsion: Optional[float]
    axis_deviation: Optional[float]
    is_aligned: bool
    confidence: float
    confidence_bars: int
    matched_count: int
    manual_override: bool
    locked: bool

    def to_dict(self) -> dict:
        return {
            "status": self.state.status.value,
            "reason": self.state.reason,
            "description": self.state.description,
            "applied": self.applied,
            "target_axis": self.target_axis,
            "corrected_axis": self.corrected_axis,
            "cyclotorsion": self.cyclotorsion,
            "axis_deviation": self.axis_deviation,
            "is_aligned": self.is_aligned,
            "confidence": self.confidence,
            "confidence_bars": self.confidence_bars,
            "matched_count": self.matched_count,
            "manual_override": self.manual_override,
            "locked": self.locked,
        }


class CyclotorsionTracker:
    """One intra-operative tracking session."""

    def __init__(self, config: TrackerConfig = TrackerConfig()):
        self.config = config
        self._state = NOT_STARTED
        self._reference: Optional[EyeLandmarkSet] = None
        self._target_axis: Optional[float] = None
        self._eye = Eye.RIGHT
        self._clear_estimate()

    def _clear_estimate(self):
        self._history: Deque[float] = deque(maxlen=self.config.history_size)
        self._smoothed = 0.0
        self._confidence = 0.0
        self._matched_count = 0
        self._manual = False
        self._locked_axis: Optional[float] = None

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def reference(self) -> Optional[EyeLandmarkSet]:
        return self._reference

    @property
    def target_axis(self) -> Optional[float]:
        return self._target_axis

    @property
    def eye(self) -> Eye:
        return self._eye

    @property
    def smoothed_cyclotorsion(self) -> float:
        return self._smoothed

    @property
    def history(self) -> list:
        return list(self._history)

    @property
    def is_locked(self) -> bool:
        return self._locked_axis is not None

    # -- state machine -------------------------------------------------------

    def set_reference(self, landmarks: EyeLandmarkSet, target_axis: float, eye: Eye) -> TrackingUpdate:
        """Install the reference set and target axis; always resets the session to READY."""
        self._reference = landmarks
        self._target_axis = normalize_axis(target_axis)
        self._eye = eye
        self._clear_estimate()
        self._state = READY
        log.info(f"Reference configured: {len(landmarks.vessels)} vessels, "
                 f"target axis {self._target_axis:.1f}° ({eye.value})")
        return self.snapshot()

    def start(self) -> TrackingUpdate:
        if self._reference is None:
            self._state = TrackingState.error("Reference not configured")
            log.warning("Cannot start tracking: no reference set")
            raise ReferenceNotConfiguredError()
        if self._state.status == TrackingStatus.STOPPED:
            raise InvalidTransitionError("start", self._state.status.value)
        if not self._state.is_active:
            self._state = TRACKING
            log.info("Tracking started")
        return self.snapshot()

    def stop(self) -> TrackingUpdate:
        self._state = STOPPED
        log.info("Tracking stopped")
        return self.snapshot()

    def fail(self, reason: str) -> TrackingUpdate:
        """Move to ERROR after an unrecoverable input problem from the producer."""
        self._state = TrackingState.error(reason)
        log.error(f"Tracking error: {reason}")
        return self.snapshot()

    def reset(self) -> TrackingUpdate:
        self._reference = None
        self._target_axis = None
        self._clear_estimate()
        self._state = NOT_STARTED
        return self.snapshot()

    # -- per-frame update ----------------------------------------------------

    def update(self, result: MatchResult,
               quality: Optional[CaptureQuality] = None) -> TrackingUpdate:
        """
        Feed one matching result.

        Outside TRACKING/SEARCHING this is a no-op. Invalid frames (unmatched or
        poor quality) switch to SEARCHING and leave the estimate untouched; the
        next valid frame switches back to TRACKING.
        """
        if not self._state.is_active:
            return self.snapshot(applied=False)

        self._confidence = result.confidence
        self._matched_count = result.matched_count

        if not result.matched or quality == CaptureQuality.POOR:
            if self._state.status != TrackingStatus.SEARCHING:
                log.info(f"Lost match ({result.matched_count} vessels, "
                         f"confidence {result.confidence:.2f}); searching")
            self._state = SEARCHING
            return self.snapshot(applied=False)

        self._state = TRACKING
        if self._manual:
            return self.snapshot(applied=False)

        self._push_sample(result.cyclotorsion)
        return self.snapshot()

    def _push_sample(self, value: float):
        self._history.append(value)

        # More recent samples weigh more: weight = position + 1
        weighted_sum = 0.0
        weight_sum = 0.0
        for index, sample in enumerate(self._history):
            weight = index + 1
            weighted_sum += sample * weight
            weight_sum += weight
        average = weighted_sum / weight_sum

        alpha = self.config.smoothing_factor
        self._smoothed = self._smoothed * (1 - alpha) + average * alpha

    # -- operator controls ---------------------------------------------------

    def set_manual(self, cyclotorsion: float) -> TrackingUpdate:
        """Operator-entered cyclotorsion. Replaces the automatic estimate until cleared."""
        if self._reference is None:
            raise ReferenceNotConfiguredError()
        self._manual = True
        self._smoothed = cyclotorsion
        self._history.clear()
        self._history.append(cyclotorsion)
        log.info(f"Manual cyclotorsion set to {cyclotorsion:.1f}°")
        return self.snapshot()

    def adjust(self, delta: float) -> TrackingUpdate:
        """Nudge the current cyclotorsion value; switches to manual override."""
        return self.set_manual(self._smoothed + delta)

    def clear_manual(self) -> TrackingUpdate:
        self._manual = False
        return self.snapshot()

    def lock(self) -> TrackingUpdate:
        """Freeze the displayed axis at its current value."""
        axis = self._corrected_axis()
        if axis is None:
            raise InvalidTransitionError("lock", self._state.status.value)
        self._locked_axis = axis
        log.info(f"Axis locked at {axis:.1f}°")
        return self.snapshot()

    def unlock(self) -> TrackingUpdate:
        self._locked_axis = None
        return self.snapshot()

    # -- published values ----------------------------------------------------

    def _corrected_axis(self) -> Optional[float]:
        if self._target_axis is None or not self._state.is_active:
            return None
        # OD: positive cyclotorsion (clockwise) makes the axis appear smaller
        sign = -1.0 if self._eye == Eye.RIGHT else 1.0
        return normalize_axis(self._target_axis + sign * self._smoothed)

    def snapshot(self, applied: bool = True) -> TrackingUpdate:
        active = self._state.is_active
        corrected = self._corrected_axis()
        if corrected is not None and self._locked_axis is not None:
            corrected = self._locked_axis
        deviation = abs(self._smoothed) if active else None
        return TrackingUpdate(
            state=self._state,
            applied=applied and active,
            target_axis=self._target_axis,
            corrected_axis=corrected,
            cyclotorsion=self._smoothed if active else None,
            axis_deviation=deviation,
            is_aligned=deviation is not None and deviation < self.config.alignment_tolerance,
            confidence=self._confidence,
            confidence_bars=confidence_bars(self._confidence),
            matched_count=self._matched_count,
            manual_override=self._manual,
            locked=self._locked_axis is not None,
        )
