"""
Optics Calibration Engine

Fits and applies the geometric correction between raw captured coordinates and
optical coordinates for a microscope recording adapter: optical centre offset,
rotation offset, scale and radial/tangential lens distortion.

Point coordinates passed to `fit` are normalized image coordinates in [0, 1];
`transform_point` and `inverse_transform_point` work in pixels.

Known limitation: `inverse_transform_point` only undoes first-order radial
distortion (k1). Higher-order and tangential terms are not inverted, so the
inverse is approximate whenever k2, k3, p1 or p2 are non-zero.
"""

import logging
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from toricguide.exceptions import CalibrationError, InsufficientPointsError
from toricguide.models.schema import CalibrationQuality

log = logging.getLogger(__name__)

Point = Tuple[float, float]

MIN_CALIBRATION_POINTS = 4
MIN_DISTORTION_RADIUS = 0.01


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CalibrationData:
    """Calibration for one equipment setup. Applied to every coordinate until recalibration."""
    optical_center_x: float = 0.0  # normalized, -0.5..0.5
    optical_center_y: float = 0.0
    rotation_offset: float = 0.0   # degrees
    scale_factor: float = 1.0

    # Radial distortion
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0
    # Tangential distortion
    p1: float = 0.0
    p2: float = 0.0

    equipment_name: str = "MicroRec Default"
    microscope_model: str = "Zeiss Opmi Lumera I"
    adapter_type: str = "MicroRec (Custom Surgical)"
    zoom_level: float = 1.0

    calibration_date: datetime = field(default_factory=_now)
    quality: CalibrationQuality = CalibrationQuality.UNKNOWN
    validation_error: float = 0.0

    @classmethod
    def default(cls) -> "CalibrationData":
        return cls()

    @property
    def center_offset(self) -> Point:
        return (self.optical_center_x, self.optical_center_y)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["calibration_date"] = self.calibration_date.isoformat()
        data["quality"] = self.quality.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "CalibrationData":
        values = dict(data)
        if "calibration_date" in values and isinstance(values["calibration_date"], str):
            values["calibration_date"] = datetime.fromisoformat(values["calibration_date"])
        if "quality" in values:
            values["quality"] = CalibrationQuality(values["quality"])
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class CalibrationTarget:
    known_points: List[Point]     # positions on the physical calibration target
    measured_points: List[Point]  # the same positions as measured in the image
    known_diameter: float         # known reference feature size
    measured_diameter: float      # measured size of the same feature


@dataclass(frozen=True)
class CalibrationThresholds:
    """Mean reprojection error limits for each quality tier."""
    excellent_below: float = 0.005
    good_below: float = 0.01
    acceptable_below: float = 0.02

    @classmethod
    def from_settings(cls, settings) -> "CalibrationThresholds":
        return cls(
            excellent_below=settings.calib_excellent_below,
            good_below=settings.calib_good_below,
            acceptable_below=settings.calib_acceptable_below,
        )

    def quality_for(self, error: float) -> CalibrationQuality:
        if error < self.excellent_below:
            return CalibrationQuality.EXCELLENT
        if error < self.good_below:
            return CalibrationQuality.GOOD
        if error < self.acceptable_below:
            return CalibrationQuality.ACCEPTABLE
        return CalibrationQuality.POOR


@dataclass(frozen=True)
class CalibrationPreset:
    name: str
    description: str
    data: CalibrationData


CALIBRATION_PRESETS: Dict[str, CalibrationPreset] = {
    "microrec_standard": CalibrationPreset(
        name="MicroRec Standard",
        description="Default setup for MicroRec with Zeiss Opmi Lumera I",
        data=CalibrationData(k1=-0.05, equipment_name="MicroRec Standard",
                             quality=CalibrationQuality.GOOD, validation_error=0.01),
    ),
    "microrec_zoom_2x": CalibrationPreset(
        name="MicroRec Zoom 2x",
        description="For 2x magnification on the microscope",
        data=CalibrationData(scale_factor=2.0, k1=-0.08, k2=0.02, zoom_level=2.0,
                             equipment_name="MicroRec Zoom 2x",
                             quality=CalibrationQuality.GOOD, validation_error=0.012),
    ),
}


def centroid(points: Sequence[Point]) -> Point:
    if len(points) == 0:
        return (0.0, 0.0)
    cx, cy = np.mean(np.asarray(points, dtype=float), axis=0)
    return (float(cx), float(cy))


def calculate_center_offset(known: Sequence[Point], measured: Sequence[Point]) -> Point:
    kx, ky = centroid(known)
    mx, my = centroid(measured)
    return (mx - kx, my - ky)


def calculate_rotation(known: Sequence[Point], measured: Sequence[Point]) -> float:
    """
    Least-squares (Procrustes) rotation taking known onto measured, in degrees.

    Cross products accumulate sin, dot products accumulate cos, over
    centroid-relative coordinates.
    """
    k = np.asarray(known, dtype=float)
    m = np.asarray(measured, dtype=float)
    k = k - k.mean(axis=0)
    m = m - m.mean(axis=0)
    sum_sin = float(np.sum(k[:, 0] * m[:, 1] - k[:, 1] * m[:, 0]))
    sum_cos = float(np.sum(k[:, 0] * m[:, 0] + k[:, 1] * m[:, 1]))
    return math.degrees(math.atan2(sum_sin, sum_cos))


def calculate_radial_distortion(known: Sequence[Point], measured: Sequence[Point],
                                center: Point) -> float:
    """
    First-order radial coefficient k1.

    Linear regression of the fractional radial error (measuredR - knownR) / knownR
    against r². Points at the optical centre (knownR <= 0.01) carry no radial
    information and are excluded. Needs at least 3 usable points.
    """
    k = np.asarray(known, dtype=float) - 0.5
    m = np.asarray(measured, dtype=float) - 0.5 - np.asarray(center, dtype=float)

    r2 = np.sum(k * k, axis=1)
    known_r = np.sqrt(r2)
    measured_r = np.sqrt(np.sum(m * m, axis=1))

    usable = known_r > MIN_DISTORTION_RADIUS
    if np.count_nonzero(usable) < 3:
        return 0.0

    r2 = r2[usable]
    errors = (measured_r[usable] - known_r[usable]) / known_r[usable]

    n = float(len(r2))
    sum_r2 = float(np.sum(r2))
    sum_error = float(np.sum(errors))
    sum_r2_error = float(np.sum(r2 * errors))
    sum_r4 = float(np.sum(r2 * r2))

    denominator = n * sum_r4 - sum_r2 * sum_r2
    if abs(denominator) <= 1e-10:
        return 0.0
    return (n * sum_r2_error - sum_r2 * sum_error) / denominator


def _distort(x: float, y: float, data: CalibrationData) -> Point:
    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2
    radial = 1 + data.k1 * r2 + data.k2 * r4 + data.k3 * r6
    xd = x * radial + 2 * data.p1 * x * y + data.p2 * (r2 + 2 * x * x)
    yd = y * radial + data.p1 * (r2 + 2 * y * y) + 2 * data.p2 * x * y
    return (xd, yd)


def _rotate(x: float, y: float, degrees: float) -> Point:
    rad = math.radians(degrees)
    return (x * math.cos(rad) - y * math.sin(rad), x * math.sin(rad) + y * math.cos(rad))


def reproject(point: Point, data: CalibrationData) -> Point:
    """Predict where a known target point should appear under `data` (normalized coords)."""
    x, y = _distort(point[0] - 0.5, point[1] - 0.5, data)
    x, y = _rotate(x, y, data.rotation_offset)
    return (x * data.scale_factor + 0.5 + data.optical_center_x,
            y * data.scale_factor + 0.5 + data.optical_center_y)


def validate_calibration(known: Sequence[Point], measured: Sequence[Point],
                         data: CalibrationData,
                         thresholds: CalibrationThresholds = CalibrationThresholds()
                         ) -> Tuple[CalibrationQuality, float]:
    """Mean reprojection error of all known points, and the matching quality tier."""
    errors = [
        math.hypot(px - mx, py - my)
        for (px, py), (mx, my) in ((reproject(k, data), m) for k, m in zip(known, measured))
    ]
    mean_error = float(np.mean(errors)) if errors else float("inf")
    return thresholds.quality_for(mean_error), mean_error


class OpticsCalibrationEngine:
    """Holds the active calibration and applies it to points and angles."""

    def __init__(self, data: Optional[CalibrationData] = None,
                 thresholds: CalibrationThresholds = CalibrationThresholds()):
        self.data = data or CalibrationData.default()
        self.thresholds = thresholds

    @property
    def is_calibrated(self) -> bool:
        return self.data.quality != CalibrationQuality.UNKNOWN

    def fit(self, target: CalibrationTarget, zoom_level: float = 1.0,
            equipment_name: str = "MicroRec Custom") -> CalibrationData:
        """
        Fit a calibration from point correspondences and install it.

        Raises:
            InsufficientPointsError: fewer than 4 correspondences or mismatched lists
            CalibrationError: non-positive known or measured diameter
        """
        known, measured = target.known_points, target.measured_points
        if len(known) < MIN_CALIBRATION_POINTS or len(known) != len(measured):
            raise InsufficientPointsError(min(len(known), len(measured)), MIN_CALIBRATION_POINTS)
        if target.known_diameter <= 0:
            raise CalibrationError("Known diameter must be positive")
        if target.measured_diameter <= 0:
            raise CalibrationError("Measured diameter must be positive")

        center = calculate_center_offset(known, measured)
        rotation = calculate_rotation(known, measured)
        scale = target.measured_diameter / target.known_diameter
        k1 = calculate_radial_distortion(known, measured, center)

        data = CalibrationData(
            optical_center_x=center[0],
            optical_center_y=center[1],
            rotation_offset=rotation,
            scale_factor=scale,
            k1=k1,
            equipment_name=equipment_name,
            zoom_level=zoom_level,
            calibration_date=_now(),
        )
        quality, error = validate_calibration(known, measured, data, self.thresholds)
        data = replace(data, quality=quality, validation_error=error)

        log.info(f"Calibration fitted from {len(known)} points: rotation {rotation:.2f}°, "
                 f"scale {scale:.4f}, k1 {k1:.5f}, error {error:.5f} ({quality.value})")
        self.data = data
        return data

    def quick_calibrate(self, rotation_offset: float, zoom_level: float) -> CalibrationData:
        """Rotation offset and zoom only; distortion and scale are left as they are."""
        self.data = replace(
            self.data,
            rotation_offset=rotation_offset,
            zoom_level=zoom_level,
            calibration_date=_now(),
            quality=CalibrationQuality.ACCEPTABLE,
        )
        log.info(f"Quick calibration: rotation {rotation_offset:.2f}°, zoom {zoom_level:.2f}x")
        return self.data

    def apply_preset(self, key: str) -> CalibrationData:
        preset = CALIBRATION_PRESETS.get(key)
        if preset is None:
            raise CalibrationError(f"Unknown calibration preset: {key}")
        self.data = replace(preset.data, calibration_date=_now())
        return self.data

    def reset(self) -> CalibrationData:
        self.data = CalibrationData.default()
        return self.data

    def transform_point(self, point: Point, image_size: Tuple[float, float]) -> Point:
        width, height = image_size
        data = self.data

        x = point[0] / width - 0.5 - data.optical_center_x
        y = point[1] / height - 0.5 - data.optical_center_y

        x, y = _distort(x, y, data)
        x, y = _rotate(x, y, data.rotation_offset)

        return ((x * data.scale_factor + 0.5) * width,
                (y * data.scale_factor + 0.5) * height)

    def inverse_transform_point(self, point: Point, image_size: Tuple[float, float]) -> Point:
        """Approximate inverse of transform_point (first-order radial only)."""
        width, height = image_size
        data = self.data
        scale = data.scale_factor if data.scale_factor else 1.0

        x = (point[0] / width - 0.5) / scale
        y = (point[1] / height - 0.5) / scale

        x, y = _rotate(x, y, -data.rotation_offset)

        r2 = x * x + y * y
        radial = 1 + data.k1 * r2
        # Strongly negative k1 can zero the factor near the corners
        if abs(radial) > 1e-10:
            x, y = x / radial, y / radial

        return ((x + data.optical_center_x + 0.5) * width,
                (y + data.optical_center_y + 0.5) * height)

    def transform_angle(self, angle: float) -> float:
        """Axis angle with the rotation offset removed, in [0, 180)."""
        corrected = math.fmod(angle - self.data.rotation_offset, 180.0)
        if corrected < 0:
            corrected += 180.0
        return corrected if corrected < 180.0 else 0.0
