"""
Synthesis Orchestrator Module

Runs a generation pass over the selected dataset families: resolves the
date range and per-family random streams, builds each family with the
configured strategy, validates it, persists it and reports a status per
family. A failing family never blocks the others.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import numpy as np

from .config import Config, ConfigValidator, GenerationMode, get_default_config
from .exceptions import InvalidConfiguration, LabSynthError, ValidationFailure
from .generators import get_generator
from .generators.base import Period, Tables
from .schema import FAMILY_ORDER, family_index, list_families
from .synthesis.strategy import GenerationStrategy, make_strategy
from .utils import DatasetStore, FileHandler
from .validation import InvariantValidator, ValidationReport

logger = logging.getLogger(__name__)


RUN_REPORT_NAME = "run_report.json"


class FamilyStatus(Enum):
    """Outcome of one family in a run"""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class FamilyResult:
    """Result of generating one family"""
    family: str
    status: FamilyStatus
    error: Optional[str] = None
    error_type: Optional[str] = None
    paths: List[str] = field(default_factory=list)
    rows: Dict[str, int] = field(default_factory=dict)
    validation: Optional[ValidationReport] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    generation_time: float = 0.0
    tables: Optional[Tables] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == FamilyStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "status": self.status.value,
            "error": self.error,
            "error_type": self.error_type,
            "paths": self.paths,
            "rows": self.rows,
            "validation": self.validation.to_dict() if self.validation else None,
            "diagnostics": self.diagnostics,
            "generation_time": round(self.generation_time, 3),
        }


@dataclass
class RunReport:
    """Per-family status report of a run"""
    mode: str
    seed: int
    start: str
    end: str
    output_root: str
    started_at: str
    finished_at: Optional[str] = None
    results: Dict[str, FamilyResult] = field(default_factory=dict)

    def _with(self, status: FamilyStatus) -> List[str]:
        return [name for name, r in self.results.items() if r.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with(FamilyStatus.SUCCESS)

    @property
    def failed(self) -> List[str]:
        return self._with(FamilyStatus.FAILED)

    @property
    def cancelled(self) -> List[str]:
        return self._with(FamilyStatus.CANCELLED)

    @property
    def passed(self) -> bool:
        return bool(self.results) and len(self.succeeded) == len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "seed": self.seed,
            "start": self.start,
            "end": self.end,
            "output_root": self.output_root,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "summary": {
                "succeeded": self.succeeded,
                "failed": self.failed,
                "cancelled": self.cancelled,
            },
            "families": {name: r.to_dict() for name, r in self.results.items()},
        }


def family_rng(seed: int, family: str) -> np.random.Generator:
    """Independent stream per family: root seed plus the family's fixed position"""
    return np.random.default_rng([seed, family_index(family)])


class SynthesisOrchestrator:
    """
    Main orchestrator for dataset generation

    Args:
        config: Configuration object (uses default if None)
        persist: Write datasets and the run report to the output root
    """

    def __init__(self, config: Optional[Config] = None, persist: bool = True):
        self.config = config or get_default_config()
        self.persist = persist
        self.validator = InvariantValidator(self.config.validation.tolerance)
        self.store = DatasetStore(self.config.output.root, self.config.output.format)
        self._cancel = threading.Event()

    def run(self, families: Optional[List[str]] = None) -> RunReport:
        """
        Generate, validate and persist the selected families

        Args:
            families: Family names; defaults to the configured selection
                or the nine default families

        Returns:
            RunReport with one FamilyResult per requested family

        Raises:
            InvalidConfiguration: before any family starts, or after the
                running families finished when a family hit a fatal
                configuration error (not-yet-started families are cancelled)
        """
        selected = self._select(families)
        ConfigValidator.require_valid(self.config, selected)
        period = Period.from_bounds(*self.config.date_range())
        strategy = make_strategy(self.config)
        self._cancel.clear()

        report = RunReport(
            mode=self.config.mode.value,
            seed=self.config.generation.seed,
            start=str(period.start.date()),
            end=str(period.end.date()),
            output_root=str(Path(self.config.output.root)),
            started_at=datetime.now().isoformat(timespec="seconds"),
        )
        logger.info(
            f"Run started: {len(selected)} families, mode={report.mode}, seed={report.seed}, "
            f"{report.start} to {report.end}"
        )

        fatal: Optional[InvalidConfiguration] = None
        parallel = self.config.generation.enable_parallel and len(selected) > 1

        if parallel:
            results = {}
            with ThreadPoolExecutor(max_workers=self.config.generation.max_workers) as executor:
                futures = {
                    executor.submit(self.run_family, family, period, strategy): family
                    for family in selected
                }
                for future in as_completed(futures):
                    family = futures[future]
                    try:
                        results[family] = future.result()
                    except InvalidConfiguration as e:
                        fatal = fatal or e
                        results[family] = self._failed(family, e)
            report.results = {family: results[family] for family in selected}
        else:
            for family in selected:
                try:
                    report.results[family] = self.run_family(family, period, strategy)
                except InvalidConfiguration as e:
                    fatal = fatal or e
                    report.results[family] = self._failed(family, e)

        report.finished_at = datetime.now().isoformat(timespec="seconds")
        self._log_summary(report)
        if self.persist:
            self._write_report(report)

        if fatal is not None:
            fatal.report = report
            raise fatal
        return report

    def run_family(self, family: str, period: Period, strategy: GenerationStrategy) -> FamilyResult:
        """
        Build, validate and persist one family

        Per-family errors become a failed FamilyResult; InvalidConfiguration
        propagates and cancels families that have not started yet.
        """
        if self._cancel.is_set():
            logger.info(f"{family}: cancelled")
            return FamilyResult(family, FamilyStatus.CANCELLED, error="run cancelled after a fatal error")

        start_time = time.time()
        logger.info(f"{family}: generating ({strategy.mode.value})")
        try:
            generator = get_generator(family)
            rng = family_rng(self.config.generation.seed, family)
            tables, diagnostics = strategy.build(generator, rng, period)

            validation = self.validator.validate(family, tables)
            if not validation.passed and self.config.validation.strict:
                raise ValidationFailure(validation)

            paths = []
            if self.persist:
                paths = [str(p) for p in self.store.save(family, tables, self._manifest(family, period, tables, validation))]

        except InvalidConfiguration:
            self._cancel.set()
            raise
        except LabSynthError as e:
            logger.error(f"{family}: failed: {e}")
            result = self._failed(family, e)
            if isinstance(e, ValidationFailure):
                result.validation = e.report
            result.generation_time = time.time() - start_time
            return result
        except Exception as e:
            logger.exception(f"{family}: unexpected error")
            result = self._failed(family, e)
            result.generation_time = time.time() - start_time
            return result

        elapsed = time.time() - start_time
        logger.info(f"{family}: done in {elapsed:.2f}s")
        return FamilyResult(
            family=family,
            status=FamilyStatus.SUCCESS,
            paths=paths,
            rows={name: len(data) for name, data in tables.items()},
            validation=validation,
            diagnostics=diagnostics,
            generation_time=elapsed,
            tables=tables,
        )

    def _select(self, families: Optional[List[str]]) -> List[str]:
        selected = list(families or self.config.generation.families or list_families())
        # Known families run in registry order; unknown names are reported per family
        known = [f for f in FAMILY_ORDER if f in selected]
        unknown = [f for f in dict.fromkeys(selected) if f not in FAMILY_ORDER]
        return known + unknown

    @staticmethod
    def _failed(family: str, error: BaseException) -> FamilyResult:
        return FamilyResult(
            family=family,
            status=FamilyStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _manifest(self, family: str, period: Period, tables: Tables,
                  validation: ValidationReport) -> Dict[str, Any]:
        """Deterministic description of a persisted family (no timestamps)"""
        return {
            "family": family,
            "mode": self.config.mode.value,
            "seed": self.config.generation.seed,
            "start": str(period.start.date()),
            "end": str(period.end.date()),
            "format": self.config.output.format,
            "sub_tables": {
                name: {"rows": len(data), "columns": list(data.columns)}
                for name, data in tables.items()
            },
            "validation": {
                "passed": validation.passed,
                "violations": len(validation.violations),
            },
        }

    def _write_report(self, report: RunReport):
        path = Path(self.config.output.root) / RUN_REPORT_NAME
        try:
            FileHandler.write_json(report.to_dict(), path)
        except OSError as e:
            logger.error(f"Could not write run report to {path}: {e}")
            return
        logger.info(f"Run report written to {path}")

    @staticmethod
    def _log_summary(report: RunReport):
        logger.info(
            f"Run finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed, "
            f"{len(report.cancelled)} cancelled"
        )
        for name in report.failed:
            result = report.results[name]
            logger.warning(f"  {name}: {result.error_type}: {result.error}")


def generate(family: str, mode: Optional[str] = None, config: Optional[Config] = None) -> Tables:
    """
    Build one family in memory without validation or persistence

    Args:
        family: Family name
        mode: Generation mode; overrides the configured one
        config: Configuration (defaults if None)

    Returns:
        {sub_table: DataFrame}
    """
    config = deepcopy(config) if config else get_default_config()
    if mode is not None:
        config.generation.mode = GenerationMode.parse(mode).value
    period = Period.from_bounds(*config.date_range())
    strategy = make_strategy(config)
    tables, _ = strategy.build(get_generator(family), family_rng(config.generation.seed, family), period)
    return tables
