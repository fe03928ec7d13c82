"""
Utilization Generator

Monthly order counts for a sampled test panel per ordering department,
with duplicate ordering, guideline appropriateness and volume tiers,
plus send-out volumes and costs.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..schema.registry import utilization_tier_formula
from .base import FamilyGenerator, Period, Tables, expand_grid, round_half_even

logger = logging.getLogger(__name__)


PANEL_SIZE = 20
ORDER_RANGE = (10, 300)
DUPLICATE_RATE_RANGE = (0.02, 0.15)
GUIDELINE_APPROPRIATE_PROBABILITY = 0.85
SENDOUT_VOLUME_RANGE = (5, 50)
SENDOUT_COST_RANGE = (100, 800)
SENDOUT_TAT_DAYS = (3, 14)


class UtilizationGenerator(FamilyGenerator):
    """Test ordering patterns and send-outs"""

    name = "utilization"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        months = period.months()
        panel = rng.choice(ref.all_tests(), size=PANEL_SIZE, replace=False)

        orders = expand_grid(month=months, ordering_dept=ref.ORDERING_DEPARTMENTS, test=panel)
        n = len(orders)
        orders["order_count"] = round_half_even(rng.uniform(*ORDER_RANGE, n))
        orders["duplicate_rate"] = rng.uniform(*DUPLICATE_RATE_RANGE, n)
        orders["guideline_appropriate"] = rng.random(n) > 1 - GUIDELINE_APPROPRIATE_PROBABILITY

        sendouts = expand_grid(month=months, test=ref.SENDOUT_TESTS)
        m = len(sendouts)
        sendouts["volume"] = round_half_even(rng.uniform(*SENDOUT_VOLUME_RANGE, m))
        sendouts["cost_per_test"] = rng.uniform(*SENDOUT_COST_RANGE, m)
        sendouts["tat_days"] = round_half_even(rng.uniform(*SENDOUT_TAT_DAYS, m))
        sendouts["reference_lab"] = rng.choice(list(ref.REFERENCE_LABS), size=m)

        return {
            "orders": orders[self.base_columns("orders")],
            "sendouts": sendouts[self.base_columns("sendouts")],
        }

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        orders = tables["orders"][self.base_columns("orders")].copy()
        orders["order_count"] = np.maximum(round_half_even(orders["order_count"]), 0)
        orders["duplicate_rate"] = pd.to_numeric(orders["duplicate_rate"]).clip(0, 1)
        orders["duplicate_count"] = round_half_even(orders["order_count"] * orders["duplicate_rate"])
        orders["utilization_tier"] = utilization_tier_formula(orders)

        sendouts = tables["sendouts"][self.base_columns("sendouts")].copy()
        sendouts["volume"] = np.maximum(round_half_even(sendouts["volume"]), 0)
        sendouts["cost_per_test"] = pd.to_numeric(sendouts["cost_per_test"]).clip(lower=0)
        sendouts["tat_days"] = np.maximum(round_half_even(sendouts["tat_days"]), 0)
        sendouts["total_cost"] = sendouts["volume"] * sendouts["cost_per_test"]

        return self.finalize({"orders": orders, "sendouts": sendouts})
