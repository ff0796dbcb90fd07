from enum import Enum


class Eye(str, Enum):
    RIGHT = "OD"
    LEFT = "OS"

    @property
    def description(self) -> str:
        return "Right eye" if self is Eye.RIGHT else "Left eye"


class AstigmatismType(str, Enum):
    WITH_THE_RULE = "with_the_rule"
    AGAINST_THE_RULE = "against_the_rule"
    OBLIQUE = "oblique"

    @property
    def abbreviation(self) -> str:
        return {
            AstigmatismType.WITH_THE_RULE: "WTR",
            AstigmatismType.AGAINST_THE_RULE: "ATR",
            AstigmatismType.OBLIQUE: "OBL",
        }[self]


class IncisionLocation(str, Enum):
    TEMPORAL = "temporal"
    SUPERIOR = "superior"
    NASAL = "nasal"
    ON_AXIS = "on_axis"


class CorrectionType(str, Enum):
    UNDERCORRECTION = "undercorrection"
    EXACT = "exact"
    OVERCORRECTION = "overcorrection"


class CaptureQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"

    @classmethod
    def from_score(cls, score: float) -> "CaptureQuality":
        """Map a detector score in [0, 1] to a quality tier."""
        if score >= 0.8:
            return cls.EXCELLENT
        if score >= 0.6:
            return cls.GOOD
        if score >= 0.4:
            return cls.ACCEPTABLE
        return cls.POOR


class CalibrationQuality(str, Enum):
    UNKNOWN = "unknown"
    POOR = "poor"
    ACCEPTABLE = "acceptable"
    GOOD = "good"
    EXCELLENT = "excellent"
