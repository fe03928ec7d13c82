"""
Laboratory Synthetic Data Package

Synthetic clinical-laboratory datasets (activity volume, quality
indicators, QC trending, critical values, incidents, cost, utilization,
antibiogram, executive scorecard and turnaround time) generated either
from parametric effect models or from models fitted to real source data.
"""

__version__ = "1.0.0"
__author__ = "Synthetic Data Team"

from .config import Config, ConfigLoader, ConfigValidator, GenerationMode
from .exceptions import (
    LabSynthError,
    InvalidConfiguration,
    UnknownFamily,
    UnknownSection,
    UnknownCategory,
    SchemaMismatch,
    ValidationFailure,
    PersistenceFailure,
    SourceReadFailure,
)
from .orchestrator import SynthesisOrchestrator, FamilyResult, FamilyStatus, RunReport, generate

__all__ = [
    "Config",
    "ConfigLoader",
    "ConfigValidator",
    "GenerationMode",
    "SynthesisOrchestrator",
    "FamilyResult",
    "FamilyStatus",
    "RunReport",
    "generate",
    "LabSynthError",
    "InvalidConfiguration",
    "UnknownFamily",
    "UnknownSection",
    "UnknownCategory",
    "SchemaMismatch",
    "ValidationFailure",
    "PersistenceFailure",
    "SourceReadFailure",
]
