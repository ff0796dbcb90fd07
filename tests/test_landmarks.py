"""
Landmark set construction and exchange tests.
"""

import math
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from toricguide.models.schema import CaptureQuality
from toricguide.services.calibration import CalibrationData, OpticsCalibrationEngine
from toricguide.services.landmarks import (
    DetectedVessel,
    DetectionResult,
    EyeLandmarkSet,
    build_landmark_set,
    load_landmarks,
    save_landmarks,
)

from fakes import make_landmarks


class TestCaptureQuality:

    @pytest.mark.parametrize("score,expected", [
        (0.95, CaptureQuality.EXCELLENT),
        (0.8, CaptureQuality.EXCELLENT),
        (0.65, CaptureQuality.GOOD),
        (0.4, CaptureQuality.ACCEPTABLE),
        (0.1, CaptureQuality.POOR),
    ])
    def test_from_score(self, score, expected):
        assert CaptureQuality.from_score(score) == expected


class TestBuildLandmarkSet:

    def setup_method(self):
        self.detection = DetectionResult(
            image_size=(1000.0, 1000.0),
            limbus_center=(500.0, 500.0),
            limbus_radius=250.0,
            vessels=[
                DetectedVessel(position=(700.0, 500.0), angle=0.0, length=40.0, id="a"),
                DetectedVessel(position=(500.0, 300.0), angle=270.0, length=30.0, id="b"),
            ],
            pupil_radius=100.0,
            quality_score=0.7,
        )

    def test_identity_calibration(self):
        landmarks = build_landmark_set(self.detection)
        assert landmarks.limbus_center == pytest.approx((0.5, 0.5))
        assert landmarks.limbus_radius == pytest.approx(0.25)
        assert landmarks.pupil_center == pytest.approx((0.5, 0.5))
        assert landmarks.capture_quality == CaptureQuality.GOOD

        first, second = landmarks.vessels
        assert first.id == "a"
        assert first.normalized_position == pytest.approx((0.2, 0.0))
        assert first.radial_distance == pytest.approx(0.2)
        assert second.angle == pytest.approx(270.0)
        assert second.length == pytest.approx(30.0)

    def test_rotation_offset_turns_angles_with_positions(self):
        engine = OpticsCalibrationEngine(CalibrationData(rotation_offset=10.0))
        landmarks = build_landmark_set(self.detection, engine)
        assert landmarks.vessels[0].angle == pytest.approx(10.0)
        assert landmarks.vessels[1].angle == pytest.approx(280.0)
        for vessel in landmarks.vessels:
            x, y = vessel.normalized_position
            bearing = math.degrees(math.atan2(y, x)) % 360.0
            assert vessel.angle == pytest.approx(bearing)
        # Rotation about the image centre keeps the radial distance
        assert landmarks.vessels[0].radial_distance == pytest.approx(0.2)

    def test_scale_applies_to_lengths(self):
        engine = OpticsCalibrationEngine(CalibrationData(scale_factor=2.0))
        landmarks = build_landmark_set(self.detection, engine)
        assert landmarks.vessels[0].length == pytest.approx(80.0)
        assert landmarks.limbus_radius == pytest.approx(0.5)

    def test_vessel_on_limbus_centre_rotates_detector_angle(self):
        self.detection.vessels.append(DetectedVessel(position=(500.0, 500.0), angle=45.0, length=10.0))
        engine = OpticsCalibrationEngine(CalibrationData(rotation_offset=10.0))
        assert build_landmark_set(self.detection, engine).vessels[2].angle == pytest.approx(55.0)

    def test_explicit_quality_wins(self):
        self.detection.quality = CaptureQuality.POOR
        assert build_landmark_set(self.detection).capture_quality == CaptureQuality.POOR


class TestLandmarkExchange:

    def test_dict_round_trip(self):
        landmarks = make_landmarks()
        assert EyeLandmarkSet.from_dict(landmarks.to_dict()) == landmarks

    def test_missing_optional_fields(self):
        landmarks = EyeLandmarkSet.from_dict({
            "limbus_center": [0.5, 0.5],
            "limbus_radius": 0.25,
            "vessels": [{"angle": 10, "normalized_position": [0.1, 0.0], "length": 0.05}],
        })
        assert landmarks.pupil_center == (0.5, 0.5)
        assert landmarks.capture_quality == CaptureQuality.GOOD
        assert landmarks.vessels[0].id

    def test_save_and_load(self, tmp_path):
        landmarks = make_landmarks(rotation=12.0)
        path = save_landmarks(landmarks, tmp_path / "refs" / "session.json")
        assert path.exists()
        assert load_landmarks(path) == landmarks
