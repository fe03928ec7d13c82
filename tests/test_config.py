"""
Test Suite for Configuration

Tests loading and validation:
- Presets, YAML files and environment overrides
- Date range resolution
- ConfigValidator
"""

import pandas as pd
import pytest
import yaml

from labsynth.config import (
    Config,
    ConfigLoader,
    ConfigValidator,
    GenerationMode,
    get_default_config,
)
from labsynth.exceptions import InvalidConfiguration


class TestGenerationMode:
    """Test mode parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("parametric", GenerationMode.PARAMETRIC),
        ("development", GenerationMode.PARAMETRIC),
        ("model-based", GenerationMode.MODEL_BASED),
        ("Production", GenerationMode.MODEL_BASED),
    ])
    def test_aliases(self, value, expected):
        assert GenerationMode.parse(value) == expected

    def test_unknown_mode(self):
        with pytest.raises(InvalidConfiguration):
            GenerationMode.parse("staging")


class TestDateRange:
    """Test date range resolution"""

    def test_default_lookback(self):
        config = get_default_config()
        config.generation.end_date = "2024-12-31"
        start, end = config.date_range()
        assert end == pd.Timestamp("2024-12-31")
        assert start == pd.Timestamp("2023-09-30")

    def test_explicit_start(self):
        config = get_default_config()
        config.generation.start_date = "2024-01-01"
        config.generation.end_date = "2024-01-31"
        assert config.date_range() == (pd.Timestamp("2024-01-01"), pd.Timestamp("2024-01-31"))

    def test_bad_date(self):
        config = get_default_config()
        config.generation.end_date = "not-a-date"
        with pytest.raises(InvalidConfiguration):
            config.date_range()


class TestConfigLoader:
    """Test configuration sources and precedence"""

    @pytest.fixture
    def loader(self):
        return ConfigLoader()

    def test_presets(self, loader):
        assert {"development", "production"} <= set(loader.list_presets())
        assert loader.load_preset("production").mode == GenerationMode.MODEL_BASED

    def test_unknown_preset(self, loader):
        with pytest.raises(InvalidConfiguration):
            loader.load_preset("nonexistent")

    def test_file_overrides_preset(self, loader, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"generation": {"seed": 7}}))
        config = loader.load(path, environ={}, preset="production")

        assert config.generation.seed == 7
        assert config.mode == GenerationMode.MODEL_BASED
        assert config.validation.strict is True

    def test_file_can_set_default_values_over_preset(self, loader, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"generation": {"mode": "parametric"}, "validation": {"strict": False}}))
        config = loader.load(path, environ={}, preset="production")

        assert config.validation.strict is False
        assert config.mode == GenerationMode.PARAMETRIC
        assert config.output.format == "parquet"

    def test_merge_dict_rejects_unknown_key(self, loader):
        with pytest.raises(InvalidConfiguration):
            loader.merge_dict(get_default_config(), {"output": {"rooot": "./x"}})

    def test_environment_overrides_file(self, loader, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"generation": {"seed": 7}, "output": {"root": "./from-file"}}))
        environ = {
            "SYNTH_SEED": "99",
            "SYNTH_OUTPUT": "./from-env",
            "SYNTH_MODE": "production",
            "SYNTH_STRICT": "yes",
            "L2_COSTS": "/data/costs",
        }
        config = loader.load(path, environ=environ)

        assert config.generation.seed == 99
        assert config.output.root == "./from-env"
        assert config.mode == GenerationMode.MODEL_BASED
        assert config.validation.strict is True
        assert config.sources["cost_data"] == "/data/costs"

    def test_bad_seed_in_environment(self, loader):
        with pytest.raises(InvalidConfiguration):
            loader.load(environ={"SYNTH_SEED": "forty-two"})

    def test_unknown_key_in_file(self, loader, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"generation": {"sede": 7}}))
        with pytest.raises(InvalidConfiguration):
            loader.load_from_file(path)

    def test_save_and_reload(self, loader, tmp_path):
        config = get_default_config()
        config.generation.seed = 123
        config.sources["antibiogram"] = "/data/abg.csv"
        path = tmp_path / "saved.yaml"
        loader.save_config(config, path)

        reloaded = loader.load_from_file(path)
        assert reloaded.generation.seed == 123
        assert reloaded.sources == {"antibiogram": "/data/abg.csv"}


class TestConfigValidator:
    """Test configuration validation"""

    def test_default_is_valid(self):
        valid, errors = ConfigValidator.validate(Config())
        assert valid, errors

    def test_collects_every_problem(self):
        config = get_default_config()
        config.generation.seed = -1
        config.output.format = "xlsx"
        config.generation.start_date = "2024-05-01"
        config.generation.end_date = "2024-01-01"

        valid, errors = ConfigValidator.validate(config)
        assert not valid
        assert len(errors) == 3

    def test_model_based_needs_sources(self):
        config = get_default_config()
        config.generation.mode = "model-based"
        config.sources["cost_data"] = "/data/costs"

        assert ConfigValidator.validate(config, ["cost_data"])[0]
        valid, errors = ConfigValidator.validate(config, ["cost_data", "antibiogram"])
        assert not valid
        assert "L2_ANTIBIOGRAM" in errors[0]

    def test_require_valid_raises(self):
        config = get_default_config()
        config.generation.seed = "abc"
        with pytest.raises(InvalidConfiguration, match="seed"):
            ConfigValidator.require_valid(config)
