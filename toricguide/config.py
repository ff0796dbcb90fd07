import os
from pydantic import BaseModel


class Settings(BaseModel):
    data_dir: str = os.getenv("TORICGUIDE_DATA_DIR", "data")
    allow_origin: str = os.getenv("ALLOW_ORIGIN", "*")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # Landmark matching
    match_score_threshold: float = float(os.getenv("MATCH_SCORE_THRESHOLD", "0.7"))
    min_matched_vessels: int = int(os.getenv("MIN_MATCHED_VESSELS", "3"))
    max_angle_difference: float = float(os.getenv("MAX_ANGLE_DIFFERENCE", "45.0"))
    min_match_confidence: float = float(os.getenv("MIN_MATCH_CONFIDENCE", "0.6"))

    # Tracking
    history_size: int = int(os.getenv("TRACKING_HISTORY_SIZE", "5"))
    smoothing_factor: float = float(os.getenv("TRACKING_SMOOTHING_FACTOR", "0.3"))
    alignment_tolerance: float = float(os.getenv("ALIGNMENT_TOLERANCE_DEG", "5.0"))

    # Calibration validation (mean reprojection error, normalized units)
    calib_excellent_below: float = float(os.getenv("CALIB_EXCELLENT_BELOW", "0.005"))
    calib_good_below: float = float(os.getenv("CALIB_GOOD_BELOW", "0.01"))
    calib_acceptable_below: float = float(os.getenv("CALIB_ACCEPTABLE_BELOW", "0.02"))

    # Calculator
    include_posterior_default: bool = os.getenv("INCLUDE_POSTERIOR", "true").lower() in ("1", "true", "yes")


settings = Settings()
