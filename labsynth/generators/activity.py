"""
Activity Volume Generator

Daily test volume per section built from a base volume and a chain of
multiplicative effects (day of week, seasonality, growth, noise), with
exact weekly sums and a per-category split.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from .base import FamilyGenerator, Period, Tables, expand_grid, floor_to_week, round_half_even

logger = logging.getLogger(__name__)


WEEKEND_FACTOR = 0.4
MONDAY_FACTOR = 1.15
GROWTH_PER_YEAR = 0.03
NOISE_SD = 0.08
NOISE_FLOOR = 0.7
CATEGORY_NOISE_SD = 0.05

# Sections with a seasonal pattern: month -> factor
SEASONALITY = {
    "KMA": {12: 1.25, 1: 1.25, 2: 1.25, 6: 0.85, 7: 0.85, 8: 0.85},
}


def day_of_week_factor(dates: pd.Series) -> np.ndarray:
    dow = pd.to_datetime(dates).dt.dayofweek.to_numpy()
    return np.select([dow >= 5, dow == 0], [WEEKEND_FACTOR, MONDAY_FACTOR], default=1.0)


def seasonal_factor(dates: pd.Series, sections: pd.Series) -> np.ndarray:
    months = pd.to_datetime(dates).dt.month
    factors = [
        SEASONALITY.get(section, {}).get(month, 1.0)
        for section, month in zip(sections, months)
    ]
    return np.asarray(factors, dtype=float)


class ActivityVolumeGenerator(FamilyGenerator):
    """Daily, weekly and per-category test volumes"""

    name = "activity_volume"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        daily = expand_grid(date=period.days(), section=ref.SECTIONS)

        base_volume = daily["section"].map(ref.BASE_DAILY_VOLUME).to_numpy(dtype=float)
        growth = 1 + (daily["date"] - period.start).dt.days.to_numpy() / 365 * GROWTH_PER_YEAR
        noise = np.maximum(NOISE_FLOOR, rng.normal(1, NOISE_SD, len(daily)))

        daily["test_count"] = round_half_even(
            base_volume
            * day_of_week_factor(daily["date"])
            * seasonal_factor(daily["date"], daily["section"])
            * growth
            * noise
        )
        return {"daily": daily[self.base_columns("daily")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        daily = tables["daily"][self.base_columns("daily")].copy()
        daily["date"] = pd.to_datetime(daily["date"]).dt.normalize()
        daily = daily.sort_values(["date", "section"], kind="stable").reset_index(drop=True)
        daily["test_count"] = np.maximum(round_half_even(daily["test_count"]), 0)
        daily["week"] = floor_to_week(daily["date"])
        daily["year"] = daily["date"].dt.year
        daily["month"] = daily["date"].dt.month

        weekly = (
            daily.groupby(["week", "section"], sort=True)
            .agg(test_count=("test_count", "sum"), days_in_week=("date", "size"))
            .reset_index()
        )
        weekly["year"] = weekly["week"].dt.year

        return self.finalize({
            "daily": daily,
            "weekly": weekly,
            "by_category": self._split_by_category(daily, rng),
        })

    @staticmethod
    def _split_by_category(daily: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
        """Split each day's section volume by fixed category shares with noise"""
        shares = pd.DataFrame(
            [
                {"section": section, "category": category, "category_pct": ref.CATEGORY_SHARES[i]}
                for section in ref.SECTIONS
                for i, category in enumerate(ref.categories_for_section(section)[:len(ref.CATEGORY_SHARES)])
            ]
        )
        unknown = set(daily["section"]) - set(ref.SECTIONS)
        if unknown:
            # Raises UnknownSection for the first offending code
            ref.categories_for_section(sorted(unknown)[0])

        by_category = daily[["date", "week", "section", "test_count"]].merge(shares, on="section", how="left")
        noise = rng.normal(1, CATEGORY_NOISE_SD, len(by_category))
        by_category["category_count"] = np.maximum(
            round_half_even(by_category["test_count"] * by_category["category_pct"] * noise), 0
        )
        return by_category[["date", "week", "section", "category", "category_count"]]
