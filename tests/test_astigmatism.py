"""
Double-angle vector math tests.
"""

import math
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from toricguide.services.astigmatism import (
    AstigmatismVector,
    add,
    axis_distance,
    normalize_axis,
    subtract,
    to_astigmatism,
    to_vector,
)


class TestNormalizeAxis:

    @pytest.mark.parametrize("axis,expected", [
        (0, 0), (90, 90), (180, 0), (190, 10), (-10, 170), (360, 0), (-180, 0), (545, 5),
    ])
    def test_reduces_to_half_open_range(self, axis, expected):
        assert normalize_axis(axis) == pytest.approx(expected)

    def test_tiny_negative_never_returns_180(self):
        result = normalize_axis(-1e-15)
        assert 0 <= result < 180

    def test_vector_constructor_normalizes(self):
        v = AstigmatismVector(magnitude=-1.5, axis=200)
        assert v.magnitude == 1.5
        assert v.axis == pytest.approx(20)


class TestDoubleAngle:

    def test_round_trip(self):
        for magnitude, axis in [(1.0, 0), (0.75, 45), (2.5, 90), (1.25, 135), (0.3, 179)]:
            v = AstigmatismVector(magnitude=magnitude, axis=axis)
            back = to_astigmatism(*to_vector(v))
            assert back.magnitude == pytest.approx(magnitude)
            assert axis_distance(back.axis, axis) == pytest.approx(0, abs=1e-9)

    def test_axis_periodicity(self):
        a = to_vector(AstigmatismVector(1.0, 30))
        b = to_vector(AstigmatismVector(1.0, 210))
        assert a[0] == pytest.approx(b[0])
        assert a[1] == pytest.approx(b[1])

    def test_90_degrees_maps_to_negative_x(self):
        x, y = to_vector(AstigmatismVector(1.0, 90))
        assert x == pytest.approx(-1.0)
        assert y == pytest.approx(0.0, abs=1e-12)

    def test_zero_magnitude_is_zero_vector(self):
        v = to_astigmatism(0.0, 0.0)
        assert v.magnitude == 0
        assert v.axis == 0


class TestCombination:

    def test_zero_is_identity(self):
        v = AstigmatismVector(1.25, 72)
        result = add(v, AstigmatismVector.zero())
        assert result.magnitude == pytest.approx(v.magnitude)
        assert result.axis == pytest.approx(v.axis)

    def test_addition_commutes(self):
        a = AstigmatismVector(1.75, 90)
        b = AstigmatismVector(0.40, 25)
        ab, ba = add(a, b), add(b, a)
        assert ab.magnitude == pytest.approx(ba.magnitude)
        assert ab.axis == pytest.approx(ba.axis)

    def test_orthogonal_axes_cancel(self):
        result = add(AstigmatismVector(1.0, 90), AstigmatismVector(1.0, 0))
        assert result.magnitude == pytest.approx(0.0, abs=1e-12)

    def test_same_axis_adds_magnitudes(self):
        result = add(AstigmatismVector(1.0, 45), AstigmatismVector(0.5, 45))
        assert result.magnitude == pytest.approx(1.5)
        assert result.axis == pytest.approx(45)

    def test_subtract_self_is_zero(self):
        v = AstigmatismVector(2.0, 33)
        assert subtract(v, v).magnitude == pytest.approx(0.0, abs=1e-12)

    def test_oblique_sum_is_not_scalar_sum(self):
        result = add(AstigmatismVector(1.0, 0), AstigmatismVector(1.0, 45))
        assert result.magnitude == pytest.approx(math.sqrt(2))
        assert result.axis == pytest.approx(22.5)


class TestFormatting:

    def test_format(self):
        assert AstigmatismVector(1.254, 89.6).format() == "1.25D @ 90°"

    def test_rotated(self):
        assert AstigmatismVector(1.0, 170).rotated(20).axis == pytest.approx(10)

    def test_axis_distance(self):
        assert axis_distance(5, 175) == pytest.approx(10)
        assert axis_distance(0, 90) == pytest.approx(90)
