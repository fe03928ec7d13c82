"""
Turnaround Time Generator

Sample-level timestamps (sent, received, resulted, acknowledged) for
culture, PCR and POCT PCR. Phase durations are floored Normal draws;
samples at the end of the observation window may still lack a result
or an acknowledgement.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..exceptions import UnknownCategory
from .base import FamilyGenerator, Period, Tables

logger = logging.getLogger(__name__)


WEEK_MINUTES = 7 * 24 * 60
MAX_HOUR_SHIFT = 15
LATE_FRACTION = 0.1
MISSING_ACKNOWLEDGEMENT = 0.3
MISSING_RESULT = 0.1
DAY_START_HOUR = 8


def _minutes(values: np.ndarray) -> pd.TimedeltaIndex:
    return pd.to_timedelta(np.floor(values * 60), unit="s")


class TurnaroundTimeGenerator(FamilyGenerator):
    """Per-sample turnaround timestamps"""

    name = "turnaround_time"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        batches = []
        for week in period.week_starts():
            week_origin = week + pd.Timedelta(hours=DAY_START_HOUR)
            for code, n in ref.TAT_SAMPLES_PER_WEEK.items():
                phases = ref.TAT_PHASES[code]
                sent = (
                    week_origin
                    + _minutes(rng.uniform(0, WEEK_MINUTES, n))
                    + pd.to_timedelta(rng.integers(0, MAX_HOUR_SHIFT + 1, n), unit="h")
                )
                durations = {
                    phase: np.maximum(floor, rng.normal(mean, sd, n))
                    for phase, (mean, sd, floor) in phases.items()
                }
                received = sent + _minutes(durations["prelab"])
                resulted = received + _minutes(durations["inlab"])
                acknowledged = resulted + _minutes(durations["postlab"])
                batches.append(pd.DataFrame({
                    "category": code,
                    "sent_time": sent,
                    "received_time": received,
                    "resulted_time": resulted,
                    "acknowledged_time": acknowledged,
                }))

        samples = pd.concat(batches, ignore_index=True)
        samples = samples.sort_values("sent_time", kind="stable").reset_index(drop=True)

        n_late = int(round(len(samples) * LATE_FRACTION))
        late = np.arange(len(samples) - n_late, len(samples))
        no_ack = rng.choice(late, size=int(round(n_late * MISSING_ACKNOWLEDGEMENT)), replace=False)
        samples.loc[no_ack, "acknowledged_time"] = pd.NaT
        no_result = rng.choice(late, size=int(round(n_late * MISSING_RESULT)), replace=False)
        samples.loc[no_result, ["resulted_time", "acknowledged_time"]] = pd.NaT

        return {"samples": samples[self.base_columns("samples")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        samples = tables["samples"][self.base_columns("samples")].copy()
        samples["category"] = samples["category"].astype(str)
        unknown = set(samples["category"]) - set(ref.TAT_CATEGORIES)
        if unknown:
            raise UnknownCategory(sorted(unknown)[0])

        for column in ["sent_time", "received_time", "resulted_time", "acknowledged_time"]:
            samples[column] = pd.to_datetime(samples[column])
        samples = samples.sort_values("sent_time", kind="stable").reset_index(drop=True)
        # No acknowledgement without a result
        samples["acknowledged_time"] = samples["acknowledged_time"].where(samples["resulted_time"].notna())

        samples["sample_id"] = np.arange(1, len(samples) + 1)
        samples["category_name"] = samples["category"].map(ref.TAT_CATEGORIES)
        samples["prelab_minutes"] = (samples["received_time"] - samples["sent_time"]).dt.total_seconds() / 60
        samples["inlab_minutes"] = (samples["resulted_time"] - samples["received_time"]).dt.total_seconds() / 60
        samples["postlab_minutes"] = (samples["acknowledged_time"] - samples["resulted_time"]).dt.total_seconds() / 60
        samples["total_minutes"] = (samples["acknowledged_time"] - samples["sent_time"]).dt.total_seconds() / 60

        return self.finalize({"samples": samples})
