"""
Optics Calibration API Routes

Each request loads the stored calibration into a fresh engine and saves it back
after a change, so the file is the single source of truth.
"""

import logging
from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from toricguide.audit import write_audit
from toricguide.config import settings
from toricguide.exceptions import CalibrationError
from toricguide.models.api import CalibrationFitRequest, CalibrationResponse, QuickCalibrationRequest
from toricguide.services.calibration import (
    CALIBRATION_PRESETS,
    CalibrationTarget,
    CalibrationThresholds,
    OpticsCalibrationEngine,
)
from toricguide.services.calibration_store import CalibrationStore
from toricguide.storage import CALIBRATION_FILE
from .calculate import get_audit_dir

log = logging.getLogger(__name__)

router = APIRouter()


def get_calibration_store() -> CalibrationStore:
    return CalibrationStore(CALIBRATION_FILE)


def get_calibration_engine(store: CalibrationStore = Depends(get_calibration_store)) -> OpticsCalibrationEngine:
    return OpticsCalibrationEngine(store.load_or_default(), CalibrationThresholds.from_settings(settings))


def _response(engine: OpticsCalibrationEngine) -> CalibrationResponse:
    return CalibrationResponse(is_calibrated=engine.is_calibrated, calibration=engine.data.to_dict())


@router.get("", response_model=CalibrationResponse)
def current_calibration(engine: OpticsCalibrationEngine = Depends(get_calibration_engine)):
    return _response(engine)


@router.post("/fit", response_model=CalibrationResponse)
def fit_calibration(request: CalibrationFitRequest,
                    engine: OpticsCalibrationEngine = Depends(get_calibration_engine),
                    store: CalibrationStore = Depends(get_calibration_store),
                    audit_dir: Path = Depends(get_audit_dir)):
    target = CalibrationTarget(
        known_points=list(request.known_points),
        measured_points=list(request.measured_points),
        known_diameter=request.known_diameter,
        measured_diameter=request.measured_diameter,
    )
    try:
        data = engine.fit(target, zoom_level=request.zoom_level, equipment_name=request.equipment_name)
    except CalibrationError as e:
        # includes InsufficientPointsError
        raise HTTPException(status_code=400, detail=str(e))

    store.save(data)
    write_audit("calibration", {"points": len(target.known_points), "calibration": data.to_dict()},
                directory=audit_dir)
    return _response(engine)


@router.post("/quick", response_model=CalibrationResponse)
def quick_calibration(request: QuickCalibrationRequest,
                      engine: OpticsCalibrationEngine = Depends(get_calibration_engine),
                      store: CalibrationStore = Depends(get_calibration_store)):
    store.save(engine.quick_calibrate(request.rotation_offset, request.zoom_level))
    return _response(engine)


@router.get("/presets")
def list_presets() -> List[dict]:
    return [
        {"key": key, "name": preset.name, "description": preset.description,
         "calibration": preset.data.to_dict()}
        for key, preset in CALIBRATION_PRESETS.items()
    ]


@router.post("/presets/{name}", response_model=CalibrationResponse)
def apply_preset(name: str,
                 engine: OpticsCalibrationEngine = Depends(get_calibration_engine),
                 store: CalibrationStore = Depends(get_calibration_store)):
    if name not in CALIBRATION_PRESETS:
        raise HTTPException(status_code=404, detail=f"Unknown calibration preset: {name}")
    store.save(engine.apply_preset(name))
    log.info(f"Calibration preset applied: {name}")
    return _response(engine)


@router.delete("", response_model=CalibrationResponse)
def reset_calibration(engine: OpticsCalibrationEngine = Depends(get_calibration_engine),
                      store: CalibrationStore = Depends(get_calibration_store)):
    store.reset()
    engine.reset()
    return _response(engine)
