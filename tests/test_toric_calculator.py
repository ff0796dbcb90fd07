"""
Toric axis calculator tests, built around a WTR cornea (K1 43.00 @ 180, K2 44.75 @ 90).
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from toricguide.models.schema import AstigmatismType, CorrectionType, Eye, IncisionLocation
from toricguide.services.iol_catalog import find_by_model
from toricguide.services.toric_calculator import (
    IncisionData,
    Keratometry,
    ToricAxisCalculator,
    calculate_misalignment_effect,
    classify_correction,
    correct_for_cyclotorsion,
    recommend_iols,
    sia_for_size,
    typical_incision_axis,
)


class TestKeratometry:

    def test_wtr(self):
        k = Keratometry(k1_power=43.0, k1_axis=180, k2_power=44.75, k2_axis=90)
        assert k.total_corneal_astigmatism == pytest.approx(1.75)
        assert k.astigmatism_type == AstigmatismType.WITH_THE_RULE

    def test_atr_and_oblique(self):
        assert Keratometry(k2_axis=5).astigmatism_type == AstigmatismType.AGAINST_THE_RULE
        assert Keratometry(k2_axis=175).astigmatism_type == AstigmatismType.AGAINST_THE_RULE
        assert Keratometry(k2_axis=45).astigmatism_type == AstigmatismType.OBLIQUE

    def test_validity(self):
        assert Keratometry().is_valid
        assert not Keratometry(k1_power=10).is_valid
        assert not Keratometry(k2_axis=200).is_valid


class TestIncision:

    @pytest.mark.parametrize("location,eye,expected", [
        (IncisionLocation.TEMPORAL, Eye.RIGHT, 180.0),
        (IncisionLocation.TEMPORAL, Eye.LEFT, 0.0),
        (IncisionLocation.NASAL, Eye.RIGHT, 0.0),
        (IncisionLocation.NASAL, Eye.LEFT, 180.0),
        (IncisionLocation.SUPERIOR, Eye.RIGHT, 90.0),
        (IncisionLocation.SUPERIOR, Eye.LEFT, 90.0),
    ])
    def test_sia_axis_mapping(self, location, eye, expected):
        assert typical_incision_axis(location, eye) == expected

    def test_on_axis_uses_incision_axis(self):
        assert typical_incision_axis(IncisionLocation.ON_AXIS, Eye.RIGHT, on_axis=135) == 135

    def test_sia_for_size(self):
        assert sia_for_size(2.0) == 0.15
        assert sia_for_size(2.2) == 0.25
        assert sia_for_size(2.4) == 0.35
        assert sia_for_size(2.75) == 0.45
        assert sia_for_size(3.2) == 0.50


class TestToricAxisCalculator:

    def setup_method(self):
        self.calculator = ToricAxisCalculator()
        self.keratometry = Keratometry(k1_power=43.0, k1_axis=180, k2_power=44.75, k2_axis=90)
        self.incision = IncisionData(location=IncisionLocation.TEMPORAL, surgically_induced_astigmatism=0.3)
        self.t3 = find_by_model("SN6AT", "T3")
        self.t4 = find_by_model("SN6AT", "T4")

    def test_worked_example_posterior_and_tca(self):
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t3, Eye.RIGHT)
        assert analysis.anterior_astigmatism.magnitude == pytest.approx(1.75)
        assert analysis.anterior_astigmatism.axis == pytest.approx(90)
        assert analysis.posterior_astigmatism.magnitude == pytest.approx(0.50)
        assert analysis.posterior_astigmatism.axis == pytest.approx(0)
        assert analysis.total_corneal_astigmatism.magnitude == pytest.approx(1.25)
        assert analysis.total_corneal_astigmatism.axis == pytest.approx(90)

    def test_target_and_implantation_axis(self):
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t3, Eye.RIGHT)
        assert analysis.post_sia_astigmatism.magnitude == pytest.approx(0.95)
        assert analysis.implantation_axis == pytest.approx(90)

    def test_undercorrection_keeps_residual_on_implantation_axis(self):
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t3, Eye.RIGHT)
        assert analysis.correction_type == CorrectionType.UNDERCORRECTION
        assert analysis.residual_astigmatism.magnitude == pytest.approx(0.26)
        assert analysis.residual_astigmatism.axis == pytest.approx(90)
        assert analysis.is_undercorrection

    def test_overcorrection_flips_residual_axis(self):
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t4, Eye.RIGHT)
        assert analysis.correction_type == CorrectionType.OVERCORRECTION
        assert analysis.residual_astigmatism.magnitude == pytest.approx(0.08)
        assert analysis.residual_astigmatism.axis == pytest.approx(0)
        assert analysis.implantation_axis == pytest.approx(90)

    def test_without_posterior(self):
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t3, Eye.RIGHT,
                                             include_posterior=False)
        assert analysis.posterior_astigmatism.magnitude == 0
        assert analysis.total_corneal_astigmatism.magnitude == pytest.approx(1.75)
        assert not analysis.includes_posterior

    def test_degenerate_keratometry_never_raises(self):
        flat = Keratometry(k1_power=43.0, k1_axis=180, k2_power=43.0, k2_axis=90)
        analysis = self.calculator.calculate(flat, self.incision, self.t3, Eye.LEFT, include_posterior=False)
        assert analysis.anterior_astigmatism.magnitude == 0
        assert analysis.correction_percentage == 0.0

    def test_target_for_matches_calculate(self):
        target = self.calculator.target_for(self.keratometry, self.incision, Eye.RIGHT)
        analysis = self.calculator.calculate(self.keratometry, self.incision, self.t3, Eye.RIGHT)
        assert target.magnitude == pytest.approx(analysis.post_sia_astigmatism.magnitude)

    def test_select_iol_picks_closest_lens(self):
        iol = self.calculator.select_iol(self.keratometry, self.incision, Eye.RIGHT)
        assert abs(iol.cylinder_power_at_cornea - 0.95) <= 0.05

    def test_report(self):
        report = self.calculator.calculate(self.keratometry, self.incision, self.t4, Eye.RIGHT).to_report()
        assert report["eye"] == "OD"
        assert report["tca"] == "1.25D @ 90°"
        assert report["correction_type"] == "overcorrection"
        assert report["astigmatism_type"] == "WTR"
        assert report["posterior_source"] == "Baylor nomogram"


class TestCorrectionClassification:

    def test_exact_within_tolerance(self):
        assert classify_correction(1.03, 1.03 + 1e-9) == CorrectionType.EXACT
        assert classify_correction(1.10, 1.03) == CorrectionType.OVERCORRECTION
        assert classify_correction(0.69, 1.03) == CorrectionType.UNDERCORRECTION


class TestMisalignment:

    def test_no_misalignment_loses_nothing(self):
        effect = calculate_misalignment_effect(0.0, 2.0)
        assert effect.residual_astigmatism == pytest.approx(0.0)
        assert effect.percentage_correction_lost == pytest.approx(0.0)
        assert not effect.is_significant
        assert effect.description == "Acceptable misalignment"

    def test_thirty_degrees_loses_everything(self):
        effect = calculate_misalignment_effect(-30.0, 2.0)
        assert effect.residual_astigmatism == pytest.approx(2.0)
        assert effect.percentage_correction_lost == pytest.approx(100.0)
        assert effect.is_critical
        assert effect.description.startswith("Critical")

    def test_ten_degrees_is_significant(self):
        effect = calculate_misalignment_effect(10.0, 1.5)
        assert effect.is_significant and not effect.is_critical


class TestRecommendations:

    def test_sorted_and_bounded(self):
        recs = recommend_iols(1.5)
        assert recs
        residuals = [r.predicted_residual for r in recs]
        assert residuals == sorted(residuals)
        assert all(r < 1.0 for r in residuals)
        assert recs[0].is_optimal

    def test_manufacturer_filter(self):
        from toricguide.services.iol_catalog import IOLManufacturer
        recs = recommend_iols(2.0, IOLManufacturer.ZEISS)
        assert {r.iol.manufacturer for r in recs} == {IOLManufacturer.ZEISS}
        assert recs[0].iol.toricity == "T30"


class TestCyclotorsionCorrection:

    def test_correct_for_cyclotorsion(self):
        assert correct_for_cyclotorsion(90, 10) == pytest.approx(80)
        assert correct_for_cyclotorsion(5, 10) == pytest.approx(175)


class TestIncisionSizes:

    def test_common_sizes_have_non_decreasing_sia(self):
        from toricguide.services.toric_calculator import COMMON_INCISION_SIZES_MM
        values = [sia_for_size(size) for size in COMMON_INCISION_SIZES_MM]
        assert values == sorted(values)
        assert values[0] == 0.15
        assert values[-1] == 0.50
