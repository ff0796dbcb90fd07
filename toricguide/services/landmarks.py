"""
Eye landmark sets.

The vessel/limbus detector produces a `DetectionResult` in raw pixel coordinates.
`build_landmark_set` runs it through the active calibration and produces the
`EyeLandmarkSet` that matching consumes. Reference sets are exchanged between the
pre-op and intra-op phases as JSON.
"""

import json
import math
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from toricguide.models.schema import CaptureQuality
from .calibration import OpticsCalibrationEngine

Point = Tuple[float, float]

MIN_VESSEL_RADIUS = 1e-9


@dataclass(frozen=True)
class VesselDescriptor:
    """One limbal vessel after calibration correction."""
    angle: float                     # degrees around the limbus centre, [0, 360)
    normalized_position: Point       # relative to the limbus centre, image-fraction units
    length: float
    thickness: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def radial_distance(self) -> float:
        x, y = self.normalized_position
        return (x * x + y * y) ** 0.5

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "angle": self.angle,
            "normalized_position": list(self.normalized_position),
            "length": self.length,
            "thickness": self.thickness,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "VesselDescriptor":
        x, y = data["normalized_position"]
        return cls(
            angle=float(data["angle"]),
            normalized_position=(float(x), float(y)),
            length=float(data["length"]),
            thickness=float(data.get("thickness", 0.0)),
            id=str(data.get("id") or uuid.uuid4().hex),
        )


@dataclass(frozen=True)
class EyeLandmarkSet:
    """Calibrated landmarks of one capture. Reference sets stay fixed for a whole session."""
    limbus_center: Point
    limbus_radius: float
    pupil_center: Point
    pupil_radius: float
    vessels: Tuple[VesselDescriptor, ...]
    capture_quality: CaptureQuality = CaptureQuality.GOOD
    reference_horizontal_axis: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "vessels", tuple(self.vessels))

    def to_dict(self) -> Dict:
        return {
            "limbus_center": list(self.limbus_center),
            "limbus_radius": self.limbus_radius,
            "pupil_center": list(self.pupil_center),
            "pupil_radius": self.pupil_radius,
            "vessels": [v.to_dict() for v in self.vessels],
            "capture_quality": self.capture_quality.value,
            "reference_horizontal_axis": self.reference_horizontal_axis,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "EyeLandmarkSet":
        return cls(
            limbus_center=tuple(data["limbus_center"]),
            limbus_radius=float(data["limbus_radius"]),
            pupil_center=tuple(data.get("pupil_center") or data["limbus_center"]),
            pupil_radius=float(data.get("pupil_radius", 0.0)),
            vessels=tuple(VesselDescriptor.from_dict(v) for v in data.get("vessels", [])),
            capture_quality=CaptureQuality(data.get("capture_quality", CaptureQuality.GOOD.value)),
            reference_horizontal_axis=float(data.get("reference_horizontal_axis", 0.0)),
        )


@dataclass
class DetectedVessel:
    """Detector output for one vessel, raw pixel coordinates."""
    position: Point
    angle: float
    length: float
    thickness: float = 0.0
    confidence: float = 1.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class DetectionResult:
    """Raw detector output for one frame."""
    image_size: Tuple[float, float]
    limbus_center: Point
    limbus_radius: float
    vessels: List[DetectedVessel]
    pupil_center: Optional[Point] = None
    pupil_radius: float = 0.0
    quality: Optional[CaptureQuality] = None
    quality_score: Optional[float] = None
    reference_horizontal_axis: float = 0.0

    def resolved_quality(self) -> CaptureQuality:
        if self.quality is not None:
            return self.quality
        if self.quality_score is not None:
            return CaptureQuality.from_score(self.quality_score)
        return CaptureQuality.GOOD


def _bearing(dx: float, dy: float) -> float:
    """Direction of a limbus-relative offset, degrees in [0, 360)."""
    return math.degrees(math.atan2(dy, dx)) % 360.0


def _to_fraction(point: Point, image_size: Tuple[float, float]) -> Point:
    width, height = image_size
    return (point[0] / width, point[1] / height)


def build_landmark_set(detection: DetectionResult,
                       calibration: Optional[OpticsCalibrationEngine] = None) -> EyeLandmarkSet:
    """
    Correct raw detector output with the calibration and express vessels
    relative to the limbus centre in image-fraction units.

    A vessel angle is the bearing of its corrected limbus-relative position, so
    stored angles and positions always agree.
    """
    engine = calibration or OpticsCalibrationEngine()
    size = detection.image_size
    width = size[0]

    limbus_px = engine.transform_point(detection.limbus_center, size)
    limbus = _to_fraction(limbus_px, size)

    pupil_raw = detection.pupil_center or detection.limbus_center
    pupil = _to_fraction(engine.transform_point(pupil_raw, size), size)

    scale = engine.data.scale_factor or 1.0
    vessels = []
    for vessel in detection.vessels:
        px, py = _to_fraction(engine.transform_point(vessel.position, size), size)
        dx, dy = px - limbus[0], py - limbus[1]
        if math.hypot(dx, dy) > MIN_VESSEL_RADIUS:
            angle = _bearing(dx, dy)
        else:
            # No usable position; rotate the detector angle with the positions
            angle = (vessel.angle + engine.data.rotation_offset) % 360.0
        vessels.append(VesselDescriptor(
            angle=angle,
            normalized_position=(dx, dy),
            length=vessel.length * scale,
            thickness=vessel.thickness * scale,
            id=vessel.id,
        ))

    return EyeLandmarkSet(
        limbus_center=limbus,
        limbus_radius=detection.limbus_radius * scale / width,
        pupil_center=pupil,
        pupil_radius=detection.pupil_radius * scale / width,
        vessels=tuple(vessels),
        capture_quality=detection.resolved_quality(),
        reference_horizontal_axis=detection.reference_horizontal_axis,
    )


def save_landmarks(landmarks: EyeLandmarkSet, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(landmarks.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    return path


def load_landmarks(path: Path | str) -> EyeLandmarkSet:
    return EyeLandmarkSet.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))
