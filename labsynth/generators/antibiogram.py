"""
Antibiogram Generator

Quarterly cumulative susceptibility per organism/antibiotic. Base rates
encode known patterns (explicit overrides, intrinsic resistance marked
untested, everything else ~U(0.6, 0.95)); a resistance trend and noise
are applied per quarter and counts are derived from the rate.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from .base import FamilyGenerator, Period, Tables, expand_grid, round_half_even

logger = logging.getLogger(__name__)


DEFAULT_RATE_RANGE = (0.6, 0.95)
RATE_NOISE_SD = 0.03
ISOLATE_RANGE = (10, 150)
INTERMEDIATE_FRACTION = (0, 0.05)


def base_susceptibility(rng: np.random.Generator) -> pd.DataFrame:
    """Organism x antibiotic base rates with untested combinations flagged"""
    table = expand_grid(organism=ref.ORGANISMS, antibiotic=ref.ANTIBIOTICS)
    drawn = rng.uniform(*DEFAULT_RATE_RANGE, len(table))
    rates = []
    for (organism, antibiotic), default in zip(zip(table["organism"], table["antibiotic"]), drawn):
        fixed = ref.intrinsic_base_rate(organism, antibiotic)
        rates.append(default if fixed is None else fixed)
    table["base_rate"] = rates
    table["not_tested"] = [
        ref.is_intrinsically_untested(o, a, r)
        for o, a, r in zip(table["organism"], table["antibiotic"], table["base_rate"])
    ]
    return table


class AntibiogramGenerator(FamilyGenerator):
    """Quarterly susceptibility data with organism and antibiotic listings"""

    name = "antibiogram"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        base = base_susceptibility(rng)

        data = expand_grid(quarter=period.quarters(), organism=ref.ORGANISMS, antibiotic=ref.ANTIBIOTICS)
        data = data.merge(base, on=["organism", "antibiotic"], how="left")
        data = data[~data["not_tested"]].reset_index(drop=True)
        n = len(data)

        time_factor = (data["quarter"] - data["quarter"].min()).dt.days / 365
        trend = np.where(
            data["antibiotic"].isin(ref.RESISTANCE_TREND_AGENTS),
            ref.RESISTANCE_TREND_PER_YEAR * time_factor,
            0.0,
        )
        data["susceptibility_rate"] = np.clip(data["base_rate"] + trend + rng.normal(0, RATE_NOISE_SD, n), 0, 1)
        data["isolate_count"] = round_half_even(rng.uniform(*ISOLATE_RANGE, n))
        data["intermediate_count"] = round_half_even(data["isolate_count"] * rng.uniform(*INTERMEDIATE_FRACTION, n))

        return {"data": data[self.base_columns("data")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        data = tables["data"][self.base_columns("data")].copy()
        data["quarter"] = pd.to_datetime(data["quarter"]).dt.normalize()
        data["susceptibility_rate"] = pd.to_numeric(data["susceptibility_rate"]).clip(0, 1)
        data["isolate_count"] = np.maximum(round_half_even(data["isolate_count"]), 0)
        data["susceptible_count"] = round_half_even(data["isolate_count"] * data["susceptibility_rate"])
        # Intermediate is capped so the resistant remainder is never negative
        headroom = (data["isolate_count"] - data["susceptible_count"]).to_numpy()
        data["intermediate_count"] = np.clip(round_half_even(data["intermediate_count"]), 0, headroom)
        data["resistant_count"] = data["isolate_count"] - data["susceptible_count"] - data["intermediate_count"]

        return self.finalize({
            "data": data,
            "organisms": pd.DataFrame({"organism": list(ref.ORGANISMS)}),
            "antibiotics": pd.DataFrame({"antibiotic": list(ref.ANTIBIOTICS)}),
        })
