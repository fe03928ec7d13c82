"""
Generation Strategies

The two ways of producing the base sub-tables of a family. Both hand
their base tables to the generator's `derive`, so derived fields,
aggregates and reference listings come from one code path.

- ParametricStrategy: the generator's own effect models
- ModelBasedStrategy: sequential synthesis fitted to real source tables
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple
import logging

import numpy as np

from ..config import Config, GenerationMode
from ..exceptions import SourceReadFailure
from ..generators.base import FamilyGenerator, Period, Tables
from ..utils import SourceReader
from ..validation.disclosure import DisclosureValidator
from ..validation.fidelity import FidelityValidator
from .model import SequentialSynthesizer

logger = logging.getLogger(__name__)


class GenerationStrategy(ABC):
    """Produces the complete sub-tables of one family"""

    mode: GenerationMode

    @abstractmethod
    def build(self, generator: FamilyGenerator, rng: np.random.Generator,
              period: Period) -> Tuple[Tables, Dict[str, Any]]:
        """
        Args:
            generator: Family generator
            rng: Family random stream
            period: Date range

        Returns:
            Tuple of ({sub_table: DataFrame}, diagnostics)
        """
        pass


class ParametricStrategy(GenerationStrategy):
    mode = GenerationMode.PARAMETRIC

    def build(self, generator, rng, period):
        return generator.generate(rng, period), {}


class ModelBasedStrategy(GenerationStrategy):
    """
    Synthesizes base sub-tables from the configured source of each family

    Every source table is checked against its schema before any model is
    fitted, so a mismatch in one base sub-table stops the family before
    fitting starts. Tables with grid keys keep the source grid;
    `synthesis.num_rows` sets the row count of keyless tables.
    """

    mode = GenerationMode.MODEL_BASED

    def __init__(self, config: Config):
        self.config = config
        self.fidelity = FidelityValidator(config.validation.fidelity_threshold)
        self.disclosure = DisclosureValidator()

    def build(self, generator, rng, period):
        family = generator.name
        schema = generator.schema
        location = self.config.sources.get(family)
        if not location:
            raise SourceReadFailure(family, FileNotFoundError(f"no source configured for {family}"))

        sources = SourceReader.read_sources(
            location, family, schema.base_tables, self.config.field_mappings.get(family)
        )

        synthesizers = {
            name: SequentialSynthesizer(
                family,
                schema.sub_table(name),
                distribution=self.config.synthesis.distribution_fitting,
                max_resample_attempts=self.config.synthesis.max_resample_attempts,
            )
            for name in schema.base_tables
        }
        checked = {name: synthesizer.check_source(sources[name]) for name, synthesizer in synthesizers.items()}

        base: Tables = {}
        diagnostics: Dict[str, Any] = {}
        for name, synthesizer in synthesizers.items():
            table_schema = schema.sub_table(name)
            model = synthesizer.fit(checked[name])
            n = None if table_schema.keys else self.config.synthesis.num_rows
            base[name] = synthesizer.sample(model, n, rng)
            logger.info(f"Synthesized {family}.{name}: {len(base[name])} rows from {model.n_rows} source rows")

            disclosure = self.disclosure.validate(family, table_schema, checked[name], base[name],
                                                  model.fitted_fields)
            diagnostics[name] = {"disclosure": disclosure.to_dict()}
            if self.config.validation.fidelity_checks:
                fidelity = self.fidelity.validate(table_schema, checked[name], base[name])
                diagnostics[name]["fidelity"] = fidelity.to_dict()

        return generator.derive(base, rng, period), diagnostics


def make_strategy(config: Config) -> GenerationStrategy:
    """Strategy for the configured generation mode"""
    if config.mode == GenerationMode.MODEL_BASED:
        return ModelBasedStrategy(config)
    return ParametricStrategy()
