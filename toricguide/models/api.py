from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Tuple, Dict, Any

from .schema import CaptureQuality, Eye, IncisionLocation

Point = Tuple[float, float]


class KeratometryIn(BaseModel):
    k1_power: float = Field(description="Flat meridian power (D)")
    k1_axis: float = Field(description="Flat meridian axis (degrees)")
    k2_power: float = Field(description="Steep meridian power (D)")
    k2_axis: float = Field(description="Steep meridian axis (degrees)")


class IncisionIn(BaseModel):
    location: IncisionLocation = IncisionLocation.TEMPORAL
    axis: float = Field(default=180.0, description="Incision axis, used for on_axis incisions")
    size: float = Field(default=2.4, gt=0, description="Incision size (mm)")
    sia: Optional[float] = Field(default=None, ge=0, description="SIA (D); estimated from size when omitted")


class ToricRequest(BaseModel):
    eye: Eye
    keratometry: KeratometryIn
    incision: IncisionIn = Field(default_factory=IncisionIn)
    iol_model: Optional[str] = Field(default=None, description="Model name or platform, e.g. 'SN6AT'")
    iol_toricity: Optional[str] = Field(default=None, description="Toricity code, e.g. 'T4'")
    manufacturer: Optional[str] = Field(default=None, description="Restrict automatic lens choice")
    include_posterior: Optional[bool] = None


class ToricResponse(BaseModel):
    eye: str
    implantation_axis: float
    correction_type: str
    correction_percentage: float
    vectors: Dict[str, Dict[str, float]]
    iol: Dict[str, Any]
    report: Dict[str, Any]
    rationale: List[str]
    recommendations: List[Dict[str, Any]]


class MisalignmentRequest(BaseModel):
    misalignment_degrees: float
    iol_cylinder: float = Field(ge=0)


class MisalignmentResponse(BaseModel):
    misalignment_degrees: float
    residual_astigmatism: float
    percentage_correction_lost: float
    is_significant: bool
    is_critical: bool
    description: str


class CalibrationFitRequest(BaseModel):
    known_points: List[Point]
    measured_points: List[Point]
    known_diameter: float = Field(gt=0)
    measured_diameter: float = Field(gt=0)
    zoom_level: float = 1.0
    equipment_name: str = "MicroRec Custom"


class QuickCalibrationRequest(BaseModel):
    rotation_offset: float
    zoom_level: float = Field(default=1.0, gt=0)


class CalibrationResponse(BaseModel):
    is_calibrated: bool
    calibration: Dict[str, Any]


class VesselIn(BaseModel):
    angle: float
    normalized_position: Point
    length: float = Field(ge=0)
    thickness: float = Field(default=0.0, ge=0)
    id: Optional[str] = None


class LandmarkSetIn(BaseModel):
    """Calibrated landmarks, normalized to the limbus centre."""
    limbus_center: Point
    limbus_radius: float
    pupil_center: Optional[Point] = None
    pupil_radius: float = 0.0
    vessels: List[VesselIn] = Field(default_factory=list)
    capture_quality: CaptureQuality = CaptureQuality.GOOD
    reference_horizontal_axis: float = 0.0


class DetectedVesselIn(BaseModel):
    position: Point
    angle: float
    length: float = Field(ge=0)
    thickness: float = Field(default=0.0, ge=0)
    confidence: float = 1.0
    id: Optional[str] = None


class DetectionIn(BaseModel):
    """Raw detector output in pixel coordinates; corrected with the stored calibration."""
    image_size: Point
    limbus_center: Point
    limbus_radius: float
    vessels: List[DetectedVesselIn] = Field(default_factory=list)
    pupil_center: Optional[Point] = None
    pupil_radius: float = 0.0
    quality: Optional[CaptureQuality] = None
    quality_score: Optional[float] = None
    reference_horizontal_axis: float = 0.0

    @model_validator(mode="after")
    def _positive_image(self):
        if self.image_size[0] <= 0 or self.image_size[1] <= 0:
            raise ValueError("image_size must be positive")
        return self


class LandmarkInput(BaseModel):
    """Exactly one of calibrated landmarks or raw detection."""
    landmarks: Optional[LandmarkSetIn] = None
    detection: Optional[DetectionIn] = None

    @model_validator(mode="after")
    def _one_source(self):
        if (self.landmarks is None) == (self.detection is None):
            raise ValueError("Provide exactly one of 'landmarks' or 'detection'")
        return self


class CreateSessionRequest(LandmarkInput):
    target_axis: float
    eye: Eye


class FrameRequest(LandmarkInput):
    pass


class ManualRequest(BaseModel):
    cyclotorsion: float


class AdjustRequest(BaseModel):
    delta: float


class TrackingResponse(BaseModel):
    session_id: str
    status: str
    reason: Optional[str] = None
    description: str
    applied: bool
    target_axis: Optional[float] = None
    corrected_axis: Optional[float] = None
    cyclotorsion: Optional[float] = None
    axis_deviation: Optional[float] = None
    is_aligned: bool
    confidence: float
    confidence_bars: int
    matched_count: int
    manual_override: bool
    locked: bool
    match_quality: Optional[str] = None
    raw_cyclotorsion: Optional[float] = None
