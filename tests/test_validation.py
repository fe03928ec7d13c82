"""
Test Suite for Validation Modules

Tests invariant, fidelity and disclosure checks:
- InvariantValidator
- FidelityValidator
- DisclosureValidator
"""

import numpy as np
import pytest

from labsynth.generators import Period, get_generator
from labsynth.schema import get_family
from labsynth.validation import (
    DisclosureValidator,
    FidelityValidator,
    InvariantValidator,
)


PERIOD = Period.from_bounds("2024-01-01", "2024-01-31")


def generated(family, seed=42):
    return get_generator(family).generate(np.random.default_rng(seed), PERIOD)


class TestInvariantValidator:
    """Test invariant checks against injected faults"""

    @pytest.fixture
    def validator(self):
        return InvariantValidator(tolerance=0.01)

    def test_clean_family_passes(self, validator):
        report = validator.validate("cost_data", generated("cost_data"))
        assert report.passed
        assert report.rows_checked["test_costs"] > 0

    def test_every_negative_count_is_reported(self, validator):
        tables = generated("activity_volume")
        tables["daily"].loc[[2, 5, 40], "test_count"] = -1
        report = validator.validate("activity_volume", tables)

        flagged = [v for v in report.violations if v.rule == "non_negative" and v.sub_table == "daily"]
        assert sorted(v.row for v in flagged) == [2, 5, 40]
        assert all(v.field == "test_count" for v in flagged)

    def test_derivation_mismatch(self, validator):
        tables = generated("cost_data")
        tables["test_costs"].loc[3, "total_cost"] += 5.0
        report = validator.validate("cost_data", tables)

        flagged = [v for v in report.violations if v.rule == "derivation"]
        assert [(v.sub_table, v.field, v.row) for v in flagged] == [("test_costs", "total_cost", 3)]

    def test_derivation_within_tolerance(self, validator):
        tables = generated("cost_data")
        tables["test_costs"].loc[3, "total_cost"] += 0.005
        assert validator.validate("cost_data", tables).passed

    def test_domain_violation(self, validator):
        tables = generated("activity_volume")
        tables["daily"].loc[0, "section"] = "XYZ"
        report = validator.validate("activity_volume", tables)
        assert any(v.rule == "domain" and v.row == 0 for v in report.violations)

    def test_category_outside_section(self, validator):
        tables = generated("activity_volume")
        by_category = tables["by_category"]
        row = int(by_category.index[by_category["section"] == "KBA"][0])
        by_category.loc[row, "category"] = "Culture"
        report = validator.validate("activity_volume", tables)

        flagged = [v for v in report.violations if v.rule == "category_in_section"]
        assert [v.row for v in flagged] == [row]

    def test_westgard_nesting(self, validator):
        tables = generated("qc_data")
        daily = tables["daily"]
        row = int(daily.index[~daily["westgard_1_2s"]][0])
        daily.loc[row, "westgard_1_3s"] = True
        report = validator.validate("qc_data", tables)
        assert "westgard_nesting" in report.by_rule()

    def test_notification_consistency(self, validator):
        tables = generated("critical_values")
        events = tables["events"]
        row = int(events.index[events["notification_success"]][0])
        events.loc[row, "notification_success"] = False
        report = validator.validate("critical_values", tables)
        assert any(v.rule == "notification_consistency" and v.row == row for v in report.violations)

    def test_missing_field_and_sub_table(self, validator):
        tables = generated("antibiogram")
        tables["data"] = tables["data"].drop(columns=["intermediate_count"])
        del tables["organisms"]
        report = validator.validate("antibiogram", tables)

        presence = [(v.sub_table, v.field) for v in report.violations if v.rule == "presence"]
        assert ("data", "intermediate_count") in presence
        assert ("organisms", None) in presence
        assert "derivation" in report.by_rule()

    def test_report_serializes(self, validator):
        tables = generated("activity_volume")
        tables["daily"].loc[1, "test_count"] = -3
        payload = validator.validate("activity_volume", tables).to_dict()
        assert payload["passed"] is False
        assert payload["violation_count"] == len(payload["violations"])
        assert payload["violations"][0]["row"] == 1


class TestFidelityValidator:
    """Test fidelity scoring"""

    @pytest.fixture
    def table_schema(self):
        return get_family("incidents").sub_table("events")

    def test_identical_tables_score_high(self, table_schema):
        events = generated("incidents")["events"]
        report = FidelityValidator(threshold=0.7).validate(table_schema, events, events.copy())
        assert report.passed
        assert report.overall_score > 0.9

    def test_shifted_numeric_scores_low(self):
        table_schema = get_family("cost_data").sub_table("test_costs")
        reference = generated("cost_data")["test_costs"]
        synthetic = reference.copy()
        synthetic["reagent_cost"] = synthetic["reagent_cost"] * 10 + 1000
        report = FidelityValidator().validate(table_schema, reference, synthetic)
        assert report.column_scores["reagent_cost"] < report.column_scores["labor_cost"]


class TestDisclosureValidator:
    """Test exact-copy detection"""

    def test_copy_is_detected(self):
        table_schema = get_family("cost_data").sub_table("test_costs")
        source = generated("cost_data")["test_costs"]
        report = DisclosureValidator().validate("cost_data", table_schema, source, source.copy())
        assert report.exact_matches == len(source)
        assert not report.passed

    def test_perturbed_rows_do_not_match(self):
        table_schema = get_family("cost_data").sub_table("test_costs")
        source = generated("cost_data")["test_costs"]
        synthetic = source.copy()
        synthetic["reagent_cost"] = synthetic["reagent_cost"] + 0.37
        report = DisclosureValidator().validate("cost_data", table_schema, source, synthetic)
        assert report.exact_matches == 0
        assert report.match_rate == pytest.approx(0.0)

    def test_key_fields_alone_never_match(self):
        table_schema = get_family("activity_volume").sub_table("daily")
        source = generated("activity_volume")["daily"]
        synthetic = source.copy()
        synthetic["test_count"] = synthetic["test_count"] + 1
        report = DisclosureValidator().validate("activity_volume", table_schema, source, synthetic)
        assert report.passed
