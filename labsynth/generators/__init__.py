"""
Dataset Family Generators

One generator per family, sharing the sample_base/derive contract:
- Activity volume: day-of-week, seasonal and growth effects
- Quality indicators: phase counts with derived rates and composite index
- QC trending: Westgard flags and cumulative statistics
- Critical values: notification events and compliance
- Incidents: taxonomy-weighted events with resolution times
- Cost analysis: cost components, inflation and rollups
- Utilization: ordering patterns and send-outs
- Antibiogram: susceptibility patterns with resistance trends
- Executive scorecard: random-walk KPIs with status
- Turnaround time: sample-level phase timestamps
"""

from typing import Dict, Type

from ..exceptions import UnknownFamily
from .base import FamilyGenerator, Period, conform
from .activity import ActivityVolumeGenerator
from .quality import QualityIndicatorsGenerator
from .qc import QCDataGenerator
from .critical_values import CriticalValuesGenerator
from .incidents import IncidentsGenerator
from .costs import CostDataGenerator
from .utilization import UtilizationGenerator
from .antibiogram import AntibiogramGenerator
from .scorecard import ExecutiveScorecardGenerator
from .turnaround import TurnaroundTimeGenerator

GENERATORS: Dict[str, Type[FamilyGenerator]] = {
    cls.name: cls
    for cls in (
        ActivityVolumeGenerator,
        QualityIndicatorsGenerator,
        QCDataGenerator,
        CriticalValuesGenerator,
        IncidentsGenerator,
        CostDataGenerator,
        UtilizationGenerator,
        AntibiogramGenerator,
        ExecutiveScorecardGenerator,
        TurnaroundTimeGenerator,
    )
}


def get_generator(family: str) -> FamilyGenerator:
    """
    Instantiate the generator of a family

    Raises:
        UnknownFamily: if no generator is registered under that name
    """
    try:
        return GENERATORS[family]()
    except KeyError:
        raise UnknownFamily(family) from None


__all__ = [
    "FamilyGenerator",
    "Period",
    "conform",
    "GENERATORS",
    "get_generator",
    "ActivityVolumeGenerator",
    "QualityIndicatorsGenerator",
    "QCDataGenerator",
    "CriticalValuesGenerator",
    "IncidentsGenerator",
    "CostDataGenerator",
    "UtilizationGenerator",
    "AntibiogramGenerator",
    "ExecutiveScorecardGenerator",
    "TurnaroundTimeGenerator",
]
