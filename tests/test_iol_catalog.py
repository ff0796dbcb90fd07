"""
Toric IOL catalog lookup tests.
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from toricguide.services.iol_catalog import (
    ALL_TORIC_IOLS,
    IOLManufacturer,
    find_best_match,
    find_by_model,
    find_options,
    models_for,
)


class TestCatalog:

    def test_families(self):
        assert len(models_for(IOLManufacturer.ALCON)) == 14
        assert len(models_for(IOLManufacturer.JOHNSON_JOHNSON)) == 6
        assert len(models_for(IOLManufacturer.ZEISS)) == 10
        assert len(models_for(IOLManufacturer.BAUSCH_LOMB)) == 7
        assert len(ALL_TORIC_IOLS) == 37

    def test_corneal_power_below_lens_power(self):
        for iol in ALL_TORIC_IOLS:
            assert 0 < iol.cylinder_power_at_cornea < iol.cylinder_power_at_iol

    def test_names(self):
        iol = find_by_model("SN6AT", "T5")
        assert iol.full_name == "Alcon AcrySof IQ Toric T5"
        assert iol.short_name == "SN6ATT5"

    def test_find_by_model_name_case_insensitive(self):
        assert find_by_model("tecnis toric ii", "225").cylinder_power_at_cornea == 1.55
        assert find_by_model("SN6AT", "T99") is None


class TestMatchingLenses:

    def test_best_match(self):
        assert find_best_match(2.41, IOLManufacturer.BAUSCH_LOMB).toricity == "T4"

    def test_best_match_across_catalog(self):
        iol = find_best_match(3.55)
        assert iol.platform == "CNWTT"
        assert iol.toricity == "T9"

    def test_options_ordered_by_distance(self):
        options = find_options(1.5, IOLManufacturer.ALCON, count=3)
        assert len(options) == 3
        distances = [abs(o.cylinder_power_at_cornea - 1.5) for o in options]
        assert distances == sorted(distances)
        assert options[0].toricity == "T5"
