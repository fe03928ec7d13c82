"""
Configuration Management Module

Handles loading, validation, and merging of run configuration from
defaults, an optional YAML file and environment variables.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
from dataclasses import dataclass, field, asdict
from datetime import date
from enum import Enum
from copy import deepcopy
import logging

import pandas as pd

from .exceptions import InvalidConfiguration
from .utils import PathManager

logger = logging.getLogger(__name__)


LOOKBACK_MONTHS = 15

SUPPORTED_FORMATS = ["csv", "parquet", "json", "pkl"]

# Environment variable naming the real source table of each family
SOURCE_ENV_VARS: Dict[str, str] = {
    "activity_volume": "L2_ACTIVITY_VOLUME",
    "quality_indicators": "L2_QUALITY",
    "qc_data": "L2_QC",
    "critical_values": "L2_CRITICAL",
    "incidents": "L2_INCIDENTS",
    "cost_data": "L2_COSTS",
    "utilization": "L2_UTILIZATION",
    "antibiogram": "L2_ANTIBIOGRAM",
    "executive_scorecard": "L2_SCORECARD",
    "turnaround_time": "L2_TAT",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


class GenerationMode(Enum):
    """Generation strategy"""
    PARAMETRIC = "parametric"
    MODEL_BASED = "model-based"

    @classmethod
    def parse(cls, value: Union[str, "GenerationMode"]) -> "GenerationMode":
        """Accept canonical names and the development/production aliases"""
        if isinstance(value, cls):
            return value
        aliases = {
            "parametric": cls.PARAMETRIC,
            "development": cls.PARAMETRIC,
            "model-based": cls.MODEL_BASED,
            "model_based": cls.MODEL_BASED,
            "production": cls.MODEL_BASED,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise InvalidConfiguration(
                f"Unsupported generation mode: {value!r}. Use one of {sorted(aliases)}"
            )
        return aliases[key]


@dataclass
class GenerationConfig:
    """Configuration for a generation run"""
    mode: str = "parametric"
    seed: Optional[int] = 42
    end_date: Optional[str] = None
    start_date: Optional[str] = None
    families: List[str] = field(default_factory=list)
    enable_parallel: bool = True
    max_workers: int = 4


@dataclass
class SynthesisConfig:
    """Configuration for model-based synthesis"""
    distribution_fitting: str = "auto"  # auto, normal, uniform, exponential, lognormal, gamma
    num_rows: Optional[int] = None      # None keeps the source row count
    max_resample_attempts: int = 10


@dataclass
class OutputConfig:
    """Configuration for persisted output"""
    root: str = "./output"
    format: str = "csv"


@dataclass
class ValidationConfig:
    """Configuration for validation and fidelity checks"""
    strict: bool = False
    tolerance: float = 0.01
    fidelity_checks: bool = True
    fidelity_threshold: float = 0.7


@dataclass
class Config:
    """Main configuration class combining all sub-configurations"""
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    # Source table locations (model-based mode only)
    sources: Dict[str, str] = field(default_factory=dict)
    # Per-family field mapping applied to sources on read: {schema_name: source_name}
    field_mappings: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def mode(self) -> GenerationMode:
        return GenerationMode.parse(self.generation.mode)

    def date_range(self) -> tuple:
        """
        Resolve the generation date range

        End defaults to today; start defaults to 15 months before end.

        Returns:
            Tuple of (start, end) as normalized Timestamps
        """
        try:
            end = pd.Timestamp(self.generation.end_date or date.today()).normalize()
            if self.generation.start_date:
                start = pd.Timestamp(self.generation.start_date).normalize()
            else:
                start = end - pd.DateOffset(months=LOOKBACK_MONTHS)
        except (ValueError, TypeError) as e:
            raise InvalidConfiguration(f"Invalid date: {e}") from e
        return start, end

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return asdict(self)


# YAML section name -> dataclass
CONFIG_SECTIONS = {
    'generation': GenerationConfig,
    'synthesis': SynthesisConfig,
    'output': OutputConfig,
    'validation': ValidationConfig,
}


class ConfigLoader:
    """Loads configuration from presets, files, dictionaries and the environment"""

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        """
        Initialize configuration loader

        Args:
            config_dir: Directory containing preset configurations
        """
        if config_dir is None:
            self.config_dir = PathManager.get_presets_dir()
        else:
            self.config_dir = Path(config_dir)

    def list_presets(self) -> List[str]:
        """Names of the preset files in the preset directory"""
        if not self.config_dir.exists():
            logger.warning(f"Config directory not found: {self.config_dir}")
            return []
        return sorted(p.stem for p in self.config_dir.glob("*.yaml"))

    def load_preset(self, preset_name: str) -> Config:
        """
        Load a preset configuration by name

        Args:
            preset_name: Name of the preset (e.g., 'development', 'production')

        Returns:
            Config object
        """
        return self.load_from_file(self._preset_path(preset_name))

    def _preset_path(self, preset_name: str) -> Path:
        presets = self.list_presets()
        if preset_name not in presets:
            available = ", ".join(presets)
            raise InvalidConfiguration(f"Preset '{preset_name}' not found. Available: {available}")
        return self.config_dir / f"{preset_name}.yaml"

    def load_from_file(self, filepath: Union[str, Path]) -> Config:
        """
        Load configuration from a YAML file

        Args:
            filepath: Path to the YAML configuration file

        Returns:
            Config object
        """
        return self._dict_to_config(self._read_yaml(filepath))

    @staticmethod
    def _read_yaml(filepath: Union[str, Path]) -> Dict[str, Any]:
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        if not isinstance(config_dict, dict):
            raise InvalidConfiguration(f"{filepath} must contain a mapping")
        return config_dict

    def merge_dict(self, base: Config, config_dict: Dict[str, Any]) -> Config:
        """
        Merge a configuration dictionary into a configuration

        Only keys present in `config_dict` are applied, so a layer that
        sets a value back to its default still overrides the layer below.

        Args:
            base: Configuration of the lower layers
            config_dict: Configuration dictionary (e.g. a parsed YAML file)

        Returns:
            New merged Config object
        """
        # rejects unknown keys before anything is applied
        self._dict_to_config(config_dict)
        merged = deepcopy(base)

        for key in CONFIG_SECTIONS:
            for field_name, field_value in (config_dict.get(key) or {}).items():
                setattr(getattr(merged, key), field_name, field_value)

        merged.sources.update(config_dict.get('sources') or {})
        merged.field_mappings.update(config_dict.get('field_mappings') or {})

        return merged

    def apply_environment(self, config: Config, environ: Optional[Dict[str, str]] = None) -> Config:
        """
        Override configuration with environment variables

        Args:
            config: Base configuration
            environ: Environment mapping (defaults to os.environ)

        Returns:
            New Config with environment values applied
        """
        env = os.environ if environ is None else environ
        config = deepcopy(config)

        if env.get("SYNTH_MODE"):
            config.generation.mode = env["SYNTH_MODE"]
        if env.get("SYNTH_OUTPUT"):
            config.output.root = env["SYNTH_OUTPUT"]
        if env.get("SYNTH_END_DATE"):
            config.generation.end_date = env["SYNTH_END_DATE"]
        if env.get("SYNTH_SEED"):
            try:
                config.generation.seed = int(env["SYNTH_SEED"])
            except ValueError:
                raise InvalidConfiguration(f"SYNTH_SEED must be an integer, got {env['SYNTH_SEED']!r}")
        if env.get("SYNTH_FORMAT"):
            config.output.format = env["SYNTH_FORMAT"].lower()
        if env.get("SYNTH_STRICT"):
            config.validation.strict = env["SYNTH_STRICT"].strip().lower() in _TRUE_VALUES

        for family, var in SOURCE_ENV_VARS.items():
            if env.get(var):
                config.sources[family] = env[var]

        return config

    def load(self, filepath: Optional[Union[str, Path]] = None,
             environ: Optional[Dict[str, str]] = None,
             preset: Optional[str] = None) -> Config:
        """Defaults, then the optional preset and YAML file, then the environment"""
        config = get_default_config()
        if preset is not None:
            config = self.merge_dict(config, self._read_yaml(self._preset_path(preset)))
            logger.info(f"Loaded preset: {preset}")
        if filepath is not None:
            config = self.merge_dict(config, self._read_yaml(filepath))
            logger.info(f"Loaded configuration file: {filepath}")
        return self.apply_environment(config, environ)

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> Config:
        """Convert dictionary to Config object"""
        config = Config()

        for key, config_class in CONFIG_SECTIONS.items():
            if key in config_dict:
                try:
                    setattr(config, key, config_class(**(config_dict[key] or {})))
                except TypeError as e:
                    raise InvalidConfiguration(f"Invalid '{key}' section: {e}") from e

        if 'sources' in config_dict:
            config.sources = dict(config_dict['sources'] or {})
        if 'field_mappings' in config_dict:
            config.field_mappings = dict(config_dict['field_mappings'] or {})

        return config

    def save_config(self, config: Config, filepath: Union[str, Path]):
        """
        Save configuration to a YAML file

        Args:
            config: Configuration to save
            filepath: Path to save the file
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.to_dict()

        with open(filepath, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to: {filepath}")


class ConfigValidator:
    """Validates configuration parameters"""

    @staticmethod
    def collect_errors(config: Config, families: Optional[List[str]] = None) -> List[str]:
        """
        Collect every configuration problem

        Args:
            config: Configuration to validate
            families: Families selected for the run (used for source checks)

        Returns:
            List of error messages (empty when valid)
        """
        from .schema import get_family, list_families
        from .exceptions import UnknownFamily

        errors = []

        try:
            mode = config.mode
        except InvalidConfiguration as e:
            errors.append(str(e))
            mode = None

        seed = config.generation.seed
        if seed is None or isinstance(seed, bool) or not isinstance(seed, int):
            errors.append(f"generation.seed must be an integer, got {seed!r}")
        elif seed < 0:
            errors.append("generation.seed must be non-negative")

        try:
            start, end = config.date_range()
            if start >= end:
                errors.append(f"Empty or reversed date range: {start.date()} to {end.date()}")
        except InvalidConfiguration as e:
            errors.append(str(e))

        if config.output.format not in SUPPORTED_FORMATS:
            errors.append(f"output.format must be one of {SUPPORTED_FORMATS}")

        if config.generation.max_workers <= 0:
            errors.append("generation.max_workers must be positive")

        if config.synthesis.num_rows is not None and config.synthesis.num_rows <= 0:
            errors.append("synthesis.num_rows must be positive")

        valid_distributions = ["auto", "normal", "uniform", "exponential", "lognormal", "gamma"]
        if config.synthesis.distribution_fitting not in valid_distributions:
            errors.append(f"synthesis.distribution_fitting must be one of {valid_distributions}")

        if not 0 <= config.validation.tolerance:
            errors.append("validation.tolerance must be non-negative")

        if mode == GenerationMode.MODEL_BASED:
            selected = families or config.generation.families or list_families()
            for family in selected:
                try:
                    get_family(family)
                except UnknownFamily:
                    # Reported per family by the orchestrator
                    continue
                if not config.sources.get(family):
                    errors.append(
                        f"No source configured for {family} in model-based mode "
                        f"(set {SOURCE_ENV_VARS.get(family, 'sources.' + family)})"
                    )

        return errors

    @staticmethod
    def validate(config: Config, families: Optional[List[str]] = None) -> tuple[bool, List[str]]:
        """
        Validate configuration parameters

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = ConfigValidator.collect_errors(config, families)
        return len(errors) == 0, errors

    @staticmethod
    def require_valid(config: Config, families: Optional[List[str]] = None):
        """Raise InvalidConfiguration listing every problem found"""
        errors = ConfigValidator.collect_errors(config, families)
        if errors:
            raise InvalidConfiguration("; ".join(errors))


def get_default_config() -> Config:
    """Get the default configuration"""
    return Config()

