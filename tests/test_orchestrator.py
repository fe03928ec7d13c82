"""
Test Suite for the Synthesis Orchestrator

Tests full runs:
- Reproducibility of persisted output
- Per-family failure isolation
- Cancellation on fatal configuration errors
- Strict validation
"""

import json
from copy import deepcopy
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from labsynth.exceptions import InvalidConfiguration
from labsynth.generators import ActivityVolumeGenerator, CostDataGenerator, QualityIndicatorsGenerator
from labsynth.orchestrator import (
    RUN_REPORT_NAME,
    FamilyStatus,
    SynthesisOrchestrator,
    family_rng,
    generate,
)
from labsynth.utils import DatasetStore


FAMILIES = ["activity_volume", "critical_values", "cost_data"]


def family_files(root):
    root = Path(root)
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file() and p.name != RUN_REPORT_NAME
    }


class TestRun:
    """Test complete runs"""

    def test_all_requested_families_succeed(self, config):
        report = SynthesisOrchestrator(config).run(FAMILIES)

        assert report.passed
        assert report.succeeded == FAMILIES
        store = DatasetStore(config.output.root)
        for family in FAMILIES:
            assert store.exists(family)
            assert report.results[family].validation.passed

    def test_output_is_byte_identical_across_runs(self, config, tmp_path):
        first = deepcopy(config)
        first.output.root = str(tmp_path / "first")
        second = deepcopy(config)
        second.output.root = str(tmp_path / "second")

        SynthesisOrchestrator(first).run(FAMILIES)
        SynthesisOrchestrator(second).run(FAMILIES)

        files_first = family_files(first.output.root)
        assert files_first
        assert files_first == family_files(second.output.root)

    def test_parallel_matches_sequential(self, config):
        sequential = SynthesisOrchestrator(config, persist=False).run(FAMILIES)
        parallel_config = deepcopy(config)
        parallel_config.generation.enable_parallel = True
        parallel = SynthesisOrchestrator(parallel_config, persist=False).run(FAMILIES)

        for family in FAMILIES:
            for name, data in sequential.results[family].tables.items():
                pd.testing.assert_frame_equal(data, parallel.results[family].tables[name])

    def test_results_follow_registry_order(self, config):
        report = SynthesisOrchestrator(config, persist=False).run(["cost_data", "activity_volume"])
        assert list(report.results) == ["activity_volume", "cost_data"]

    def test_in_memory_run_writes_nothing(self, config):
        report = SynthesisOrchestrator(config, persist=False).run(["antibiogram"])
        assert report.passed
        assert report.results["antibiogram"].tables["data"] is not None
        assert not Path(config.output.root).exists()

    def test_run_report_is_written(self, config):
        SynthesisOrchestrator(config).run(["incidents"])
        with open(Path(config.output.root) / RUN_REPORT_NAME) as f:
            payload = json.load(f)
        assert payload["summary"]["succeeded"] == ["incidents"]
        assert payload["families"]["incidents"]["status"] == "success"

    def test_manifest_has_no_timestamps(self, config):
        SynthesisOrchestrator(config).run(["utilization"])
        manifest = DatasetStore(config.output.root).read_manifest("utilization")
        assert manifest["seed"] == 42
        assert manifest["start"] == "2024-01-01"
        assert set(manifest) == {"family", "mode", "seed", "start", "end", "format", "sub_tables", "validation"}


class TestFailureIsolation:
    """Test per-family failure handling"""

    def test_unknown_family(self, config):
        report = SynthesisOrchestrator(config).run(["Unknown", "cost_data"])

        result = report.results["Unknown"]
        assert result.status == FamilyStatus.FAILED
        assert result.error_type == "UnknownFamily"
        assert report.succeeded == ["cost_data"]
        assert not (Path(config.output.root) / "Unknown").exists()

    def test_one_failing_family_does_not_block_others(self, config, monkeypatch):
        def broken(self, rng, period):
            raise RuntimeError("source system offline")

        monkeypatch.setattr(ActivityVolumeGenerator, "sample_base", broken)
        report = SynthesisOrchestrator(config).run(FAMILIES)

        assert report.failed == ["activity_volume"]
        assert report.results["activity_volume"].error_type == "RuntimeError"
        assert report.succeeded == ["critical_values", "cost_data"]
        assert not DatasetStore(config.output.root).exists("activity_volume")

    def test_fatal_error_cancels_pending_families(self, config, monkeypatch):
        def fatal(self, rng, period):
            raise InvalidConfiguration("reference tables unusable")

        monkeypatch.setattr(QualityIndicatorsGenerator, "sample_base", fatal)
        with pytest.raises(InvalidConfiguration) as exc_info:
            SynthesisOrchestrator(config).run(["activity_volume", "quality_indicators", "qc_data"])

        report = exc_info.value.report
        assert report.succeeded == ["activity_volume"]
        assert report.failed == ["quality_indicators"]
        assert report.cancelled == ["qc_data"]
        assert (Path(config.output.root) / RUN_REPORT_NAME).exists()

    def test_invalid_configuration_fails_before_any_family(self, config):
        config.generation.start_date = "2024-03-01"
        config.generation.end_date = "2024-01-01"
        with pytest.raises(InvalidConfiguration):
            SynthesisOrchestrator(config).run(FAMILIES)
        assert not Path(config.output.root).exists()

    def test_model_based_without_sources(self, config):
        config.generation.mode = "production"
        with pytest.raises(InvalidConfiguration, match="No source configured"):
            SynthesisOrchestrator(config).run(["cost_data"])


class TestStrictValidation:
    """Test strict mode"""

    @pytest.fixture
    def corrupt_costs(self, monkeypatch):
        original = CostDataGenerator.derive

        def derive(self, tables, rng, period):
            result = original(self, tables, rng, period)
            result["test_costs"].loc[0, "total_cost"] += 100.0
            return result

        monkeypatch.setattr(CostDataGenerator, "derive", derive)

    def test_strict_blocks_persistence(self, config, corrupt_costs):
        config.validation.strict = True
        report = SynthesisOrchestrator(config).run(["cost_data"])

        result = report.results["cost_data"]
        assert result.status == FamilyStatus.FAILED
        assert result.error_type == "ValidationFailure"
        assert len(result.validation.violations) == 1
        assert not DatasetStore(config.output.root).exists("cost_data")

    def test_lenient_mode_persists_with_violations(self, config, corrupt_costs):
        report = SynthesisOrchestrator(config).run(["cost_data"])

        result = report.results["cost_data"]
        assert result.succeeded
        assert not result.validation.passed
        assert DatasetStore(config.output.root).read_manifest("cost_data")["validation"]["violations"] == 1


class TestHelpers:
    """Test module-level helpers"""

    def test_family_streams_are_independent(self):
        a = family_rng(42, "activity_volume").random(5)
        b = family_rng(42, "cost_data").random(5)
        assert not np.allclose(a, b)
        assert np.array_equal(a, family_rng(42, "activity_volume").random(5))

    def test_generate_single_family(self, config):
        tables = generate("antibiogram", config=config)
        assert set(tables) == {"data", "organisms", "antibiotics"}

    def test_generate_does_not_mutate_config(self, config):
        generate("antibiogram", mode="development", config=config)
        assert config.generation.mode == "parametric"
