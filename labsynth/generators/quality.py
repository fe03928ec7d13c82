"""
Quality Indicators Generator

Three independently sampled phase tables per (month, section). Counts
are drawn as rate x total; every rate is recomputed from its counts and
the composite quality index is computed from the joined phases.
"""

from typing import Dict, Tuple
import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..schema.registry import quality_index_formula
from .base import FamilyGenerator, Period, Tables, expand_grid, round_half_even

logger = logging.getLogger(__name__)


# count field: (mean rate, sd rate) of its total
PREANALYTICAL_RATES: Dict[str, Tuple[float, float]] = {
    "rejected_specimens": (0.008, 0.002),
    "hemolyzed_specimens": (0.015, 0.004),
    "labeling_errors": (0.0008, 0.0003),
    "missing_samples": (0.0005, 0.0002),
    "inadequate_volume": (0.012, 0.003),
}

# rate field: (count field, total field)
RATE_DEFINITIONS = {
    "preanalytical": {
        "rejection_rate": ("rejected_specimens", "total_specimens"),
        "hemolysis_rate": ("hemolyzed_specimens", "total_specimens"),
        "labeling_error_rate": ("labeling_errors", "total_specimens"),
        "missing_rate": ("missing_samples", "total_specimens"),
        "volume_inadequacy_rate": ("inadequate_volume", "total_specimens"),
    },
    "analytical": {
        "qc_pass_rate": ("qc_passed", "total_qc_events"),
        "auto_validation_rate": ("auto_validated", "total_results"),
        "rerun_rate": ("reruns", "total_results"),
    },
    "postanalytical": {
        "tat_compliance_rate": ("within_tat", "total_results"),
        "critical_notification_rate": ("criticals_notified_in_time", "total_criticals"),
        "amendment_rate": ("amendments", "total_results"),
        "correction_rate": ("corrections", "total_results"),
    },
}


def _uniform_count(rng: np.random.Generator, low: float, high: float, n: int) -> np.ndarray:
    return round_half_even(rng.uniform(low, high, n))


def _share(rng: np.random.Generator, total: np.ndarray, mean: float, sd: float) -> np.ndarray:
    return round_half_even(total * rng.normal(mean, sd, len(total)))


class QualityIndicatorsGenerator(FamilyGenerator):
    """Pre-analytical, analytical and post-analytical indicators"""

    name = "quality_indicators"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        grid = expand_grid(month=period.months(), section=ref.SECTIONS)
        n = len(grid)

        pre = grid.copy()
        pre["total_specimens"] = _uniform_count(rng, 8000, 15000, n)
        for column, (mean, sd) in PREANALYTICAL_RATES.items():
            pre[column] = _share(rng, pre["total_specimens"].to_numpy(), mean, sd)

        analytical = grid.copy()
        analytical["total_qc_events"] = _uniform_count(rng, 500, 1500, n)
        analytical["qc_passed"] = _share(rng, analytical["total_qc_events"].to_numpy(), 0.97, 0.01)
        analytical["total_results"] = _uniform_count(rng, 15000, 40000, n)
        results = analytical["total_results"].to_numpy()
        analytical["auto_validated"] = _share(rng, results, 0.82, 0.05)
        analytical["reruns"] = _share(rng, results, 0.02, 0.005)

        post = grid.copy()
        post["total_results"] = _uniform_count(rng, 15000, 40000, n)
        results = post["total_results"].to_numpy()
        post["within_tat"] = _share(rng, results, 0.92, 0.03)
        post["total_criticals"] = _uniform_count(rng, 50, 200, n)
        post["criticals_notified_in_time"] = _share(rng, post["total_criticals"].to_numpy(), 0.96, 0.02)
        post["amendments"] = _share(rng, results, 0.003, 0.001)
        post["corrections"] = _share(rng, results, 0.0008, 0.0003)

        return {
            "preanalytical": pre[self.base_columns("preanalytical")],
            "analytical": analytical[self.base_columns("analytical")],
            "postanalytical": post[self.base_columns("postanalytical")],
        }

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        phases = {}
        for phase, rates in RATE_DEFINITIONS.items():
            data = tables[phase][self.base_columns(phase)].copy()
            data["month"] = pd.to_datetime(data["month"]).dt.normalize()

            totals = {total for _, total in rates.values()}
            for total in totals:
                data[total] = np.maximum(round_half_even(data[total]), 0)
            # Counts never exceed their total, so rates stay within [0, 100]
            for rate, (count, total) in rates.items():
                data[count] = np.clip(round_half_even(data[count]), 0, data[total].to_numpy())
            for rate, (count, total) in rates.items():
                data[rate] = data[count] / data[total].replace(0, np.nan) * 100

            phases[phase] = data.sort_values(["month", "section"], kind="stable").reset_index(drop=True)

        quality_index = (
            phases["preanalytical"]
            .merge(phases["analytical"], on=["month", "section"], how="left")
            .merge(phases["postanalytical"], on=["month", "section"], how="left", suffixes=("", "_post"))
        )
        quality_index["quality_index"] = quality_index_formula(quality_index)

        phases["quality_index"] = quality_index
        return self.finalize(phases)
