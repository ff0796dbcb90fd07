"""
Cyclotorsion Tracking API Routes

Sessions live in an in-process registry. Each session owns its tracker and a
lock, so frames and operator commands for one session are applied one at a time.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from toricguide.config import settings
from toricguide.exceptions import TrackingError
from toricguide.models.api import (
    AdjustRequest,
    CreateSessionRequest,
    FrameRequest,
    LandmarkInput,
    ManualRequest,
    TrackingResponse,
)
from toricguide.services.calibration import OpticsCalibrationEngine
from toricguide.services.landmarks import (
    DetectedVessel,
    DetectionResult,
    EyeLandmarkSet,
    build_landmark_set,
    save_landmarks,
)
from toricguide.services.matching import LandmarkMatchingEngine, MatchingConfig, MatchResult
from toricguide.services.tracker import CyclotorsionTracker, TrackerConfig, TrackingUpdate
from toricguide.storage import REFERENCES_DIR, reference_path
from .calibration import get_calibration_engine

log = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class TrackingSession:
    id: str
    tracker: CyclotorsionTracker
    matcher: LandmarkMatchingEngine
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionRegistry:
    """Tracking sessions by id."""

    def __init__(self, references_dir: Optional[Path] = None):
        self.references_dir = references_dir
        self._sessions: Dict[str, TrackingSession] = {}
        self._lock = threading.Lock()

    def create(self) -> TrackingSession:
        session = TrackingSession(
            id=uuid.uuid4().hex,
            tracker=CyclotorsionTracker(TrackerConfig.from_settings(settings)),
            matcher=LandmarkMatchingEngine(MatchingConfig.from_settings(settings)),
        )
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> TrackingSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown tracking session: {session_id}")
        return session

    def remove(self, session_id: str) -> TrackingSession:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown tracking session: {session_id}")
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


registry = SessionRegistry(REFERENCES_DIR)


def get_registry() -> SessionRegistry:
    return registry


def _landmarks(payload: LandmarkInput, calibration: OpticsCalibrationEngine) -> EyeLandmarkSet:
    if payload.landmarks is not None:
        return EyeLandmarkSet.from_dict(payload.landmarks.model_dump(mode="json"))

    d = payload.detection
    detection = DetectionResult(
        image_size=d.image_size,
        limbus_center=d.limbus_center,
        limbus_radius=d.limbus_radius,
        vessels=[
            DetectedVessel(position=v.position, angle=v.angle, length=v.length, thickness=v.thickness,
                           confidence=v.confidence, **({"id": v.id} if v.id else {}))
            for v in d.vessels
        ],
        pupil_center=d.pupil_center,
        pupil_radius=d.pupil_radius,
        quality=d.quality,
        quality_score=d.quality_score,
        reference_horizontal_axis=d.reference_horizontal_axis,
    )
    return build_landmark_set(detection, calibration)


def _response(session_id: str, update: TrackingUpdate,
              match: Optional[MatchResult] = None) -> TrackingResponse:
    body = update.to_dict()
    if match is not None:
        body["match_quality"] = match.quality_description
        body["raw_cyclotorsion"] = match.cyclotorsion
    return TrackingResponse(session_id=session_id, **body)


def _run(session: TrackingSession, operation):
    """Apply one tracker operation under the session lock, mapping tracking errors."""
    with session.lock:
        try:
            return operation(session.tracker)
        except TrackingError as e:
            # InvalidTransitionError, ReferenceNotConfiguredError
            raise HTTPException(status_code=409, detail=str(e))


@router.post("/sessions", response_model=TrackingResponse)
def create_session(request: CreateSessionRequest,
                   registry: SessionRegistry = Depends(get_registry),
                   calibration: OpticsCalibrationEngine = Depends(get_calibration_engine)):
    """Create a session with its reference landmarks and target axis (state READY)."""
    reference = _landmarks(request, calibration)
    if not reference.vessels:
        raise HTTPException(status_code=400, detail="Reference landmarks contain no vessels")

    session = registry.create()
    update = _run(session, lambda t: t.set_reference(reference, request.target_axis, request.eye))
    if registry.references_dir is not None:
        save_landmarks(reference, reference_path(session.id, registry.references_dir))
    log.info(f"Tracking session {session.id} created ({request.eye.value}, target {request.target_axis}°)")
    return _response(session.id, update)


@router.get("/sessions/{session_id}", response_model=TrackingResponse)
def session_status(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.snapshot(applied=False)))


@router.get("/sessions/{session_id}/reference")
def session_reference(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    session = registry.get(session_id)
    reference = session.tracker.reference
    if reference is None:
        raise HTTPException(status_code=404, detail="Session has no reference")
    return reference.to_dict()


@router.post("/sessions/{session_id}/start", response_model=TrackingResponse)
def start_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.start()))


@router.post("/sessions/{session_id}/frames", response_model=TrackingResponse)
def submit_frame(session_id: str, request: FrameRequest,
                 registry: SessionRegistry = Depends(get_registry),
                 calibration: OpticsCalibrationEngine = Depends(get_calibration_engine)):
    """Match one live capture against the reference and feed the result to the tracker."""
    session = registry.get(session_id)
    current = _landmarks(request, calibration)

    def step(tracker: CyclotorsionTracker):
        if tracker.reference is None or not tracker.state.is_active:
            return tracker.update(MatchResult.empty()), None
        if current.limbus_radius <= 0:
            return tracker.fail("Invalid limbus radius in frame"), None
        result = session.matcher.match(tracker.reference, current)
        return tracker.update(result, current.capture_quality), result

    update, match = _run(session, step)
    return _response(session.id, update, match)


@router.post("/sessions/{session_id}/manual", response_model=TrackingResponse)
def manual_override(session_id: str, request: ManualRequest,
                    registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.set_manual(request.cyclotorsion)))


@router.delete("/sessions/{session_id}/manual", response_model=TrackingResponse)
def clear_manual_override(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.clear_manual()))


@router.post("/sessions/{session_id}/adjust", response_model=TrackingResponse)
def adjust(session_id: str, request: AdjustRequest,
           registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.adjust(request.delta)))


@router.post("/sessions/{session_id}/lock", response_model=TrackingResponse)
def lock_axis(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.lock()))


@router.post("/sessions/{session_id}/unlock", response_model=TrackingResponse)
def unlock_axis(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.unlock()))


@router.post("/sessions/{session_id}/stop", response_model=TrackingResponse)
def stop_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = registry.get(session_id)
    return _response(session.id, _run(session, lambda t: t.stop()))


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    session = registry.remove(session_id)
    with session.lock:
        session.tracker.reset()
    if registry.references_dir is not None:
        path = reference_path(session.id, registry.references_dir)
        if path.exists():
            path.unlink()
    return {"ok": True, "session_id": session.id}
