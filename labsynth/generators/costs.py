"""
Cost Analysis Generator

Per-test cost components and reimbursement, a monthly expansion with
volume growth and cost inflation, and exact section rollups.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..exceptions import UnknownCategory
from .base import FamilyGenerator, Period, Tables, expand_grid, round_half_even

logger = logging.getLogger(__name__)


REAGENT_RANGE = (2, 50)
LABOR_RANGE = (5, 25)
OVERHEAD_RANGE = (1, 8)
REIMBURSEMENT_MARKUP = (1.1, 1.8)
VOLUME_RANGE = (50, 500)
VOLUME_GROWTH_PER_YEAR = 0.03
INFLATION_PER_YEAR = 0.02

COST_COMPONENTS = ["section", "reagent_cost", "labor_cost", "overhead_cost", "total_cost", "reimbursement"]


def section_of_test(tests: pd.Series) -> pd.Series:
    catalog = ref.test_catalog().set_index("test")["section"]
    unknown = set(tests) - set(catalog.index)
    if unknown:
        raise UnknownCategory(sorted(unknown)[0])
    return tests.map(catalog)


def years_since_first(months: pd.Series) -> pd.Series:
    months = pd.to_datetime(months)
    return (months - months.min()).dt.days / 365


class CostDataGenerator(FamilyGenerator):
    """Test costs, monthly financials and section summary"""

    name = "cost_data"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        tests = ref.all_tests()
        n = len(tests)

        test_costs = pd.DataFrame({"test": tests})
        test_costs["reagent_cost"] = rng.uniform(*REAGENT_RANGE, n)
        test_costs["labor_cost"] = rng.uniform(*LABOR_RANGE, n)
        test_costs["overhead_cost"] = rng.uniform(*OVERHEAD_RANGE, n)
        total = test_costs[["reagent_cost", "labor_cost", "overhead_cost"]].sum(axis=1)
        test_costs["reimbursement"] = total * rng.uniform(*REIMBURSEMENT_MARKUP, n)

        monthly = expand_grid(month=period.months(), test=tests)
        growth = 1 + years_since_first(monthly["month"]) * VOLUME_GROWTH_PER_YEAR
        monthly["volume"] = round_half_even(rng.uniform(*VOLUME_RANGE, len(monthly)) * growth)

        return {
            "test_costs": test_costs[self.base_columns("test_costs")],
            "monthly": monthly[self.base_columns("monthly")],
        }

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        test_costs = tables["test_costs"][self.base_columns("test_costs")].copy()
        for column in ["reagent_cost", "labor_cost", "overhead_cost", "reimbursement"]:
            test_costs[column] = pd.to_numeric(test_costs[column]).clip(lower=0)
        test_costs["section"] = section_of_test(test_costs["test"])
        test_costs["total_cost"] = test_costs["reagent_cost"] + test_costs["labor_cost"] + test_costs["overhead_cost"]

        monthly = tables["monthly"][self.base_columns("monthly")].copy()
        monthly["month"] = pd.to_datetime(monthly["month"]).dt.normalize()
        monthly["volume"] = np.maximum(round_half_even(monthly["volume"]), 0)
        monthly = monthly.merge(test_costs.set_index("test")[COST_COMPONENTS], left_on="test",
                                right_index=True, how="left")
        if monthly["section"].isna().any():
            missing = monthly.loc[monthly["section"].isna(), "test"].iloc[0]
            raise UnknownCategory(missing)

        monthly["inflation_factor"] = 1 + years_since_first(monthly["month"]) * INFLATION_PER_YEAR
        monthly["reagent_total"] = monthly["reagent_cost"] * monthly["inflation_factor"] * monthly["volume"]
        monthly["labor_total"] = monthly["labor_cost"] * monthly["inflation_factor"] * monthly["volume"]
        monthly["overhead_total"] = monthly["overhead_cost"] * monthly["volume"]
        monthly["total_expense"] = monthly["reagent_total"] + monthly["labor_total"] + monthly["overhead_total"]
        monthly["revenue"] = monthly["reimbursement"] * monthly["volume"]
        monthly["margin"] = monthly["revenue"] - monthly["total_expense"]
        monthly["cost_per_test"] = monthly["total_expense"] / monthly["volume"].replace(0, np.nan)

        return self.finalize({
            "test_costs": test_costs,
            "monthly": monthly,
            "section_summary": self._section_summary(monthly),
        })

    @staticmethod
    def _section_summary(monthly: pd.DataFrame) -> pd.DataFrame:
        summary = (
            monthly.groupby(["month", "section"], sort=True)
            .agg(
                total_volume=("volume", "sum"),
                total_expense=("total_expense", "sum"),
                total_revenue=("revenue", "sum"),
                total_margin=("margin", "sum"),
            )
            .reset_index()
        )
        summary["avg_cost_per_test"] = summary["total_expense"] / summary["total_volume"].replace(0, np.nan)
        return summary
