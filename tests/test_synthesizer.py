"""
Test Suite for Model-Based Synthesis

Tests fitting and sampling from real-shaped sources:
- DistributionFitter
- Source schema checks
- SequentialSynthesizer
- ModelBasedStrategy
"""

import numpy as np
import pandas as pd
import pytest

from labsynth.config import get_default_config
from labsynth.exceptions import SchemaMismatch, SourceReadFailure
from labsynth.generators import Period, get_generator
from labsynth.schema import get_family, list_families
from labsynth.synthesis import (
    DistributionFitter,
    ModelBasedStrategy,
    ParametricStrategy,
    SequentialSynthesizer,
    make_strategy,
)
from labsynth.synthesis.model import NumericFieldModel, _mutual_information
from labsynth.utils import FileHandler
from labsynth.validation import InvariantValidator
from labsynth.validation.disclosure import row_signatures


PERIOD = Period.from_bounds("2024-01-01", "2024-03-31")


def parametric_tables(family, seed=11):
    return get_generator(family).generate(np.random.default_rng(seed), PERIOD)


def write_sources(directory, family, tables):
    """Write base sub-tables the way a source extract would be laid out"""
    for name in get_family(family).base_tables:
        FileHandler.write_file(tables[name], directory / f"{family}.{name}.csv")
    return directory


@pytest.fixture
def model_config(tmp_path):
    config = get_default_config()
    config.generation.mode = "model-based"
    config.generation.seed = 42
    config.generation.start_date = "2024-01-01"
    config.generation.end_date = "2024-03-31"
    config.output.root = str(tmp_path / "output")
    return config


class TestDistributionFitter:
    """Test distribution fitting"""

    @pytest.fixture
    def fitter(self):
        return DistributionFitter()

    def test_constant_data(self, fitter):
        params = fitter.fit(np.full(50, 3.0))
        assert params.distribution == "constant"
        assert (params.generate(10, np.random.default_rng(0)) == 3.0).all()

    def test_normal_data(self, fitter):
        data = np.random.default_rng(1).normal(100, 5, 2000)
        params = fitter.fit(data, "normal")
        assert abs(params.params["mean"] - 100) < 1
        assert params.goodness_of_fit > 0.9

    def test_auto_prefers_good_fit(self, fitter):
        data = np.random.default_rng(2).exponential(4, 2000)
        params = fitter.fit(data)
        assert params.distribution in ("exponential", "gamma")

    def test_nan_only(self, fitter):
        with pytest.raises(ValueError):
            fitter.fit(np.array([np.nan, np.nan]))


class TestSourceChecks:
    """Test schema checks on source tables"""

    @pytest.fixture
    def synthesizer(self):
        return SequentialSynthesizer("cost_data", get_family("cost_data").sub_table("test_costs"))

    @pytest.fixture
    def source(self):
        return parametric_tables("cost_data")["test_costs"]

    def test_missing_column(self, synthesizer, source):
        with pytest.raises(SchemaMismatch) as exc_info:
            synthesizer.check_source(source.drop(columns=["labor_cost"]))
        assert exc_info.value.missing == ["labor_cost"]

    def test_empty_source(self, synthesizer, source):
        with pytest.raises(SchemaMismatch):
            synthesizer.check_source(source.iloc[0:0])

    def test_unreadable_numeric(self, synthesizer, source):
        source = source.astype({"reagent_cost": object})
        source.loc[0, "reagent_cost"] = "n/a"
        with pytest.raises(SchemaMismatch):
            synthesizer.check_source(source)

    def test_keeps_keys_and_base_fields(self, synthesizer, source):
        checked = synthesizer.check_source(source.assign(unrelated="x"))
        table_schema = get_family("cost_data").sub_table("test_costs")
        assert list(checked.columns) == table_schema.keys + table_schema.base_fields


class TestMutualInformation:
    """Test parent scoring for categorical fields"""

    def test_identical_columns(self):
        x = pd.Series(["a", "b"] * 50)
        assert _mutual_information(x, x.copy()) == pytest.approx(np.log(2))

    def test_constant_column_carries_nothing(self):
        x = pd.Series(["a", "b"] * 50)
        assert _mutual_information(x, pd.Series(["c"] * 100)) == pytest.approx(0.0)


class TestSequentialSynthesizer:
    """Test fitting and sampling of one sub-table"""

    def test_keyed_table_keeps_grid(self):
        source = parametric_tables("activity_volume")["daily"]
        synthesizer = SequentialSynthesizer("activity_volume", get_family("activity_volume").sub_table("daily"))
        synthetic = synthesizer.synthesize(source, None, np.random.default_rng(5))

        assert len(synthetic) == len(source)
        pd.testing.assert_frame_equal(
            synthetic[["date", "section"]].reset_index(drop=True),
            source[["date", "section"]].reset_index(drop=True),
            check_dtype=False,
        )

    def test_counts_stay_integral_and_in_range(self):
        source = parametric_tables("activity_volume")["daily"]
        synthesizer = SequentialSynthesizer("activity_volume", get_family("activity_volume").sub_table("daily"))
        synthetic = synthesizer.synthesize(source, None, np.random.default_rng(5))

        counts = synthetic["test_count"]
        assert (counts == counts.round()).all()
        assert counts.min() >= source["test_count"].min()
        assert counts.max() <= source["test_count"].max()

    def test_keyless_table_row_count(self):
        source = parametric_tables("incidents")["events"]
        synthesizer = SequentialSynthesizer("incidents", get_family("incidents").sub_table("events"))
        synthetic = synthesizer.synthesize(source, 40, np.random.default_rng(5))
        assert len(synthetic) == 40

    def test_missing_values_are_reproduced(self):
        source = parametric_tables("critical_values")["events"]
        assert source["result"].isna().any()
        synthesizer = SequentialSynthesizer("critical_values", get_family("critical_values").sub_table("events"))
        model = synthesizer.fit(synthesizer.check_source(source))
        synthetic = synthesizer.sample(model, None, np.random.default_rng(5))

        assert synthetic["result"].isna().any()
        assert synthetic["result"].notna().any()

    def test_anchored_times_are_fitted_as_gaps(self):
        source = parametric_tables("critical_values")["events"]
        synthesizer = SequentialSynthesizer("critical_values", get_family("critical_values").sub_table("events"))
        model = synthesizer.fit(synthesizer.check_source(source))

        anchors = {
            m.name: m.anchor for m in model.visit_sequence
            if isinstance(m, NumericFieldModel) and m.anchor is not None
        }
        assert anchors == {"notification_start": "datetime", "notification_time": "notification_start"}

    @pytest.mark.parametrize("seed", [0, 1, 2])
    @pytest.mark.parametrize("family,sub_table,milestones", [
        ("critical_values", "events", ["datetime", "notification_start", "notification_time"]),
        ("turnaround_time", "samples", ["sent_time", "received_time", "resulted_time", "acknowledged_time"]),
    ])
    def test_milestones_stay_in_order(self, family, sub_table, milestones, seed):
        source = parametric_tables(family)[sub_table]
        synthesizer = SequentialSynthesizer(family, get_family(family).sub_table(sub_table))
        synthetic = synthesizer.synthesize(source, None, np.random.default_rng(seed))

        for earlier, later in zip(milestones, milestones[1:]):
            both = synthetic[earlier].notna() & synthetic[later].notna()
            assert both.any()
            assert (synthetic.loc[both, later] >= synthetic.loc[both, earlier]).all(), f"{later} before {earlier}"

    def test_no_source_row_is_copied(self):
        source = parametric_tables("activity_volume")["daily"]
        table_schema = get_family("activity_volume").sub_table("daily")
        synthesizer = SequentialSynthesizer("activity_volume", table_schema, max_resample_attempts=50)
        synthetic = synthesizer.synthesize(source, None, np.random.default_rng(9))

        fields = table_schema.keys + table_schema.base_fields
        copied = np.isin(row_signatures(synthetic, table_schema, fields),
                         row_signatures(source, table_schema, fields))
        assert not copied.any()

    def test_same_rng_same_sample(self):
        source = parametric_tables("cost_data")["test_costs"]
        synthesizer = SequentialSynthesizer("cost_data", get_family("cost_data").sub_table("test_costs"))
        model = synthesizer.fit(synthesizer.check_source(source))
        first = synthesizer.sample(model, None, np.random.default_rng(3))
        second = synthesizer.sample(model, None, np.random.default_rng(3))
        pd.testing.assert_frame_equal(first, second)


class TestModelBasedStrategy:
    """Test model-based generation of whole families"""

    def test_make_strategy(self, model_config):
        assert isinstance(make_strategy(model_config), ModelBasedStrategy)
        model_config.generation.mode = "development"
        assert isinstance(make_strategy(model_config), ParametricStrategy)

    def test_missing_source_column_stops_before_fitting(self, tmp_path, model_config, monkeypatch):
        tables = parametric_tables("quality_indicators")
        tables["postanalytical"] = tables["postanalytical"].drop(columns=["within_tat"])
        model_config.sources["quality_indicators"] = str(write_sources(tmp_path, "quality_indicators", tables))

        fitted = []
        monkeypatch.setattr(SequentialSynthesizer, "fit", lambda self, source: fitted.append(source))
        monkeypatch.setattr(SequentialSynthesizer, "sample", lambda self, *args: fitted.append(args))

        strategy = ModelBasedStrategy(model_config)
        with pytest.raises(SchemaMismatch) as exc_info:
            strategy.build(get_generator("quality_indicators"), np.random.default_rng(0), PERIOD)

        assert exc_info.value.missing == ["within_tat"]
        assert fitted == []

    def test_no_source_configured(self, model_config):
        strategy = ModelBasedStrategy(model_config)
        with pytest.raises(SourceReadFailure):
            strategy.build(get_generator("cost_data"), np.random.default_rng(0), PERIOD)

    def test_unreadable_source_location(self, tmp_path, model_config):
        model_config.sources["cost_data"] = str(tmp_path / "missing")
        strategy = ModelBasedStrategy(model_config)
        with pytest.raises(SourceReadFailure):
            strategy.build(get_generator("cost_data"), np.random.default_rng(0), PERIOD)

    def test_derived_fields_are_recomputed(self, tmp_path, model_config):
        tables = parametric_tables("cost_data")
        tables["test_costs"]["total_cost"] = -1.0
        model_config.sources["cost_data"] = str(write_sources(tmp_path, "cost_data", tables))

        strategy = ModelBasedStrategy(model_config)
        synthetic, _ = strategy.build(get_generator("cost_data"), np.random.default_rng(0), PERIOD)

        test_costs = synthetic["test_costs"]
        expected = test_costs["reagent_cost"] + test_costs["labor_cost"] + test_costs["overhead_cost"]
        assert np.allclose(test_costs["total_cost"], expected, atol=0.01)

    @pytest.mark.parametrize("seed", [0, 1, 2])
    @pytest.mark.parametrize("family", list_families(include_optional=True))
    def test_synthetic_family_passes_invariants(self, tmp_path, model_config, family, seed):
        model_config.sources[family] = str(write_sources(tmp_path, family, parametric_tables(family)))

        strategy = ModelBasedStrategy(model_config)
        synthetic, diagnostics = strategy.build(get_generator(family), np.random.default_rng(seed), PERIOD)

        report = InvariantValidator().validate(family, synthetic)
        assert report.passed, [str(v) for v in report.violations[:10]]
        assert set(diagnostics) == set(get_family(family).base_tables)
        for entry in diagnostics.values():
            assert "disclosure" in entry
            assert "fidelity" in entry

    def test_num_rows_applies_to_keyless_tables(self, tmp_path, model_config):
        model_config.sources["incidents"] = str(write_sources(tmp_path, "incidents", parametric_tables("incidents")))
        model_config.synthesis.num_rows = 25

        strategy = ModelBasedStrategy(model_config)
        synthetic, _ = strategy.build(get_generator("incidents"), np.random.default_rng(0), PERIOD)
        assert len(synthetic["events"]) == 25

    def test_fidelity_checks_can_be_disabled(self, tmp_path, model_config):
        model_config.sources["cost_data"] = str(write_sources(tmp_path, "cost_data", parametric_tables("cost_data")))
        model_config.validation.fidelity_checks = False

        strategy = ModelBasedStrategy(model_config)
        _, diagnostics = strategy.build(get_generator("cost_data"), np.random.default_rng(0), PERIOD)
        assert all("fidelity" not in entry for entry in diagnostics.values())
