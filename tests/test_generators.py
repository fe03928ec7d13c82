"""
Test Suite for Parametric Generators

Tests every family generator:
- Invariants hold for all families
- Reproducibility per seed
- Activity volume grids and weekly aggregation
- Critical value notification model
- QC Westgard flags
- Antibiogram count closure
"""

import numpy as np
import pandas as pd
import pytest

from labsynth import reference as ref
from labsynth.generators import GENERATORS, Period, get_generator
from labsynth.exceptions import UnknownFamily
from labsynth.schema import FieldType, get_family, list_families
from labsynth.validation import InvariantValidator


ALL_FAMILIES = list_families(include_optional=True)


@pytest.fixture
def validator():
    return InvariantValidator(tolerance=0.01)


class TestAllFamilies:
    """Checks that apply to every family"""

    def test_every_family_has_a_generator(self):
        assert set(GENERATORS) == set(ALL_FAMILIES)

    def test_unknown_family(self):
        with pytest.raises(UnknownFamily):
            get_generator("Unknown")

    @pytest.mark.parametrize("family", ALL_FAMILIES)
    def test_invariants_hold(self, family, short_period, validator):
        tables = get_generator(family).generate(np.random.default_rng(42), short_period)
        report = validator.validate(family, tables)
        assert report.passed, [str(v) for v in report.violations[:10]]

    @pytest.mark.parametrize("family", ALL_FAMILIES)
    def test_sub_tables_follow_schema(self, family, short_period):
        tables = get_generator(family).generate(np.random.default_rng(7), short_period)
        schema = get_family(family)
        assert list(tables) == list(schema.sub_tables)
        for name, data in tables.items():
            assert list(data.columns[:len(schema.sub_table(name).fields)]) == schema.sub_table(name).field_names
            assert len(data) > 0

    @pytest.mark.parametrize("family", ALL_FAMILIES)
    def test_same_seed_same_output(self, family, short_period):
        first = get_generator(family).generate(np.random.default_rng(42), short_period)
        second = get_generator(family).generate(np.random.default_rng(42), short_period)
        for name in first:
            pd.testing.assert_frame_equal(first[name], second[name])

    @pytest.mark.parametrize("family", ALL_FAMILIES)
    def test_counts_are_non_negative(self, family, short_period):
        tables = get_generator(family).generate(np.random.default_rng(3), short_period)
        for name, table_schema in get_family(family).sub_tables.items():
            for spec in table_schema.fields_of_type(FieldType.COUNT):
                values = tables[name][spec.name].dropna()
                assert (values >= 0).all(), f"{family}.{name}.{spec.name}"


class TestActivityVolume:
    """Test activity volume generation"""

    @pytest.fixture
    def tables(self):
        period = Period.from_bounds("2024-01-01", "2024-01-31")
        return get_generator("activity_volume").generate(np.random.default_rng(42), period)

    def test_daily_grid_includes_end_date(self, tables):
        assert len(tables["daily"]) == 31 * 3

    def test_weekly_total_matches_daily_total(self, tables):
        assert tables["weekly"]["test_count"].sum() == tables["daily"]["test_count"].sum()

    def test_weekly_sum_per_week_and_section(self, tables):
        daily = tables["daily"]
        expected = daily.groupby(["week", "section"])["test_count"].sum()
        weekly = tables["weekly"].set_index(["week", "section"])["test_count"]
        assert (weekly.sort_index() == expected.sort_index()).all()

    def test_weeks_start_on_monday(self, tables):
        assert (tables["daily"]["week"].dt.dayofweek == 0).all()

    def test_category_belongs_to_section(self, tables):
        by_category = tables["by_category"]
        assert set(by_category["section"]) <= set(ref.SECTIONS)
        for section, category in zip(by_category["section"], by_category["category"]):
            assert category in ref.categories_for_section(section)

    def test_five_categories_per_day_and_section(self, tables):
        sizes = tables["by_category"].groupby(["date", "section"]).size()
        assert len(sizes) == len(tables["daily"])
        assert (sizes == len(ref.CATEGORY_SHARES)).all()


class TestCriticalValues:
    """Test critical value notification events"""

    @pytest.fixture
    def events(self):
        period = Period.from_bounds("2023-10-01", "2024-12-31")
        return get_generator("critical_values").generate(np.random.default_rng(42), period)["events"]

    def test_event_count(self, events):
        assert len(events) == 2500

    def test_within_30_min_majority(self, events):
        assert 0.85 <= events["within_30_min"].mean() <= 0.95

    def test_failed_notifications_have_no_time(self, events):
        failed = events[~events["notification_success"]]
        assert failed["notification_time"].isna().all()
        assert failed["attempts_needed"].isna().all()
        assert not failed["within_30_min"].any()

    def test_notification_after_result(self, events):
        notified = events.dropna(subset=["notification_time"])
        assert (notified["notification_time"] >= notified["result_time"]).all()

    def test_event_ids_follow_time_order(self, events):
        assert events["datetime"].is_monotonic_increasing
        assert events["event_id"].is_unique


class TestQCData:
    """Test QC Westgard flags"""

    @pytest.fixture
    def daily(self):
        # 100 consecutive days, end date inclusive
        period = Period.from_bounds("2024-01-01", "2024-04-09")
        return get_generator("qc_data").generate(np.random.default_rng(42), period)["daily"]

    def test_one_hundred_days(self, daily):
        assert daily["date"].nunique() == 100

    def test_3s_flags_nest_in_2s_flags(self, daily):
        assert not (daily["westgard_1_3s"] & ~daily["westgard_1_2s"]).any()
        counts = daily.groupby(["analyte", "level", "instrument"])[["westgard_1_2s", "westgard_1_3s"]].sum()
        assert (counts["westgard_1_3s"] <= counts["westgard_1_2s"]).all()

    def test_some_results_exceed_2s(self, daily):
        assert daily["westgard_1_2s"].sum() > 0

    def test_instrument_runs_analyte(self, daily):
        for analyte, instrument in zip(daily["analyte"], daily["instrument"]):
            assert instrument in ref.QC_ANALYTE_INSTRUMENTS[analyte]

    def test_target_by_level(self, daily):
        assert (daily["target"] == daily["level"].map(ref.QC_TARGETS)).all()


class TestAntibiogram:
    """Test antibiogram susceptibility counts"""

    @pytest.fixture
    def data(self):
        period = Period.from_bounds("2023-01-01", "2024-12-31")
        return get_generator("antibiogram").generate(np.random.default_rng(42), period)["data"]

    def test_count_closure(self, data):
        resistant = data["isolate_count"] - data["susceptible_count"] - data["intermediate_count"]
        assert (data["resistant_count"] == resistant).all()
        assert (data["resistant_count"] >= 0).all()

    def test_susceptibility_rate_bounds(self, data):
        assert data["susceptibility_rate"].between(0, 1).all()

    def test_eight_quarters(self, data):
        assert data["quarter"].nunique() == 8


class TestCostData:
    """Test cost derivations"""

    def test_total_cost_is_sum_of_components(self, short_period):
        test_costs = get_generator("cost_data").generate(np.random.default_rng(42), short_period)["test_costs"]
        expected = test_costs["reagent_cost"] + test_costs["labor_cost"] + test_costs["overhead_cost"]
        assert np.allclose(test_costs["total_cost"], expected, atol=0.01)

    def test_every_test_is_costed(self, short_period):
        test_costs = get_generator("cost_data").generate(np.random.default_rng(42), short_period)["test_costs"]
        assert sorted(test_costs["test"]) == sorted(ref.all_tests())
