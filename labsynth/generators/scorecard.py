"""
Executive Scorecard Generator

Monthly KPIs as cumulative-sum random walks clipped to realistic bands,
each with a fixed target and a derived Green/Yellow/Red status, plus an
overall weighted score.
"""

from typing import Dict, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from ..schema.registry import overall_score_formula
from .base import FamilyGenerator, Period, Tables

logger = logging.getLogger(__name__)


# field: (start, drift mean, drift sd, lower bound, upper bound)
RANDOM_WALKS: Dict[str, Tuple[float, float, float, float, Optional[float]]] = {
    "quality_index": (85, 0.1, 1.0, 70, 100),
    "tat_compliance": (88, 0.05, 1.5, 75, 100),
    "critical_compliance": (94, 0.02, 0.8, 85, 100),
    "test_volume": (25000, 50, 500, 20000, None),
    "cost_per_test": (15, 0.02, 0.3, 12, None),
    "tests_per_fte": (180, 0.5, 5.0, 150, None),
}

TARGETS = {
    "quality_target": 90.0,
    "tat_target": 90.0,
    "critical_target": 95.0,
    "cost_target": 14.0,
    "productivity_target": 175.0,
}


def _status(value: pd.Series, green: pd.Series, yellow: pd.Series, higher_is_better: bool = True) -> np.ndarray:
    if higher_is_better:
        conditions = [value >= green, value >= yellow]
    else:
        conditions = [value <= green, value <= yellow]
    return np.select(conditions, ["Green", "Yellow"], default="Red")


class ExecutiveScorecardGenerator(FamilyGenerator):
    """Monthly executive KPI scorecard"""

    name = "executive_scorecard"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        monthly = pd.DataFrame({"month": period.months()})
        n = len(monthly)
        for column, (start, drift, sd, lower, upper) in RANDOM_WALKS.items():
            monthly[column] = np.clip(start + np.cumsum(rng.normal(drift, sd, n)), lower, upper)
        return {"monthly": monthly[self.base_columns("monthly")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        monthly = tables["monthly"][self.base_columns("monthly")].copy()
        monthly["month"] = pd.to_datetime(monthly["month"]).dt.normalize()
        monthly = monthly.sort_values("month", kind="stable").reset_index(drop=True)
        for column, (_, _, _, lower, upper) in RANDOM_WALKS.items():
            monthly[column] = pd.to_numeric(monthly[column]).clip(lower, upper)
        for column, value in TARGETS.items():
            monthly[column] = value

        monthly["quality_status"] = _status(
            monthly["quality_index"], monthly["quality_target"], monthly["quality_target"] - 5)
        monthly["tat_status"] = _status(
            monthly["tat_compliance"], monthly["tat_target"], monthly["tat_target"] - 5)
        monthly["critical_status"] = _status(
            monthly["critical_compliance"], monthly["critical_target"], monthly["critical_target"] - 3)
        monthly["volume_yoy_change"] = monthly["test_volume"].pct_change() * 100
        monthly["cost_status"] = _status(
            monthly["cost_per_test"], monthly["cost_target"], monthly["cost_target"] * 1.1,
            higher_is_better=False)
        monthly["productivity_status"] = _status(
            monthly["tests_per_fte"], monthly["productivity_target"], monthly["productivity_target"] * 0.95)
        monthly["overall_score"] = overall_score_formula(monthly)

        return self.finalize({"monthly": monthly})
