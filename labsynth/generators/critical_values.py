"""
Critical Values Generator

Critical result events over the date range: the test is drawn from the
critical-test frequency weights, the result lands beyond the low or
high threshold, and notification succeeds with 96% probability after
a 1-10 minute start delay plus an Exponential(mean 8 min) delay.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..exceptions import UnknownCategory
from .base import (
    FamilyGenerator,
    Period,
    Tables,
    floor_to_month,
    make_faker,
    provider_codes,
)

logger = logging.getLogger(__name__)


N_EVENTS = 2500
LOW_PROBABILITY = 0.4
LOW_MULTIPLIER = (0.7, 0.95)
HIGH_MULTIPLIER = (1.05, 1.5)
START_DELAY_MINUTES = (1, 10)
SUCCESS_PROBABILITY = 0.96
MEAN_DELAY_MINUTES = 8
NOTIFY_LIMIT_MINUTES = 30


def _threshold_table() -> pd.DataFrame:
    return ref.critical_tests_frame().set_index("test")


class CriticalValuesGenerator(FamilyGenerator):
    """Critical value notification events and monthly compliance"""

    name = "critical_values"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        thresholds = _threshold_table()
        weights = thresholds["frequency_weight"].to_numpy()
        n = N_EVENTS

        events = pd.DataFrame({"datetime": period.uniform_datetimes(rng, n)})
        events["test"] = rng.choice(thresholds.index.to_numpy(), size=n, p=weights / weights.sum())

        low = events["test"].map(thresholds["low_critical"]).to_numpy(dtype=float)
        high = events["test"].map(thresholds["high_critical"]).to_numpy(dtype=float)
        events["is_low"] = (rng.random(n) < LOW_PROBABILITY) & ~np.isnan(low)
        low_result = low * rng.uniform(*LOW_MULTIPLIER, n)
        high_result = high * rng.uniform(*HIGH_MULTIPLIER, n)
        # Micro results (no thresholds) are non-numeric and stay NaN
        events["result"] = np.where(events["is_low"], low_result, high_result)

        start_delay = rng.uniform(*START_DELAY_MINUTES, n)
        events["notification_start"] = events["datetime"] + pd.to_timedelta(start_delay * 60, unit="s")
        events["notification_success"] = rng.random(n) < SUCCESS_PROBABILITY
        delay = rng.exponential(MEAN_DELAY_MINUTES, n)
        events["notification_time"] = (
            events["notification_start"] + pd.to_timedelta(delay * 60, unit="s")
        ).where(events["notification_success"])

        events["ordering_unit"] = rng.choice(
            list(ref.ORDERING_UNITS), size=n, p=list(ref.ORDERING_UNIT_WEIGHTS)
        )
        attempts = rng.choice(list(ref.NOTIFICATION_ATTEMPTS), size=n, p=list(ref.NOTIFICATION_ATTEMPT_WEIGHTS))
        events["attempts_needed"] = pd.Series(attempts, dtype="Int64").where(events["notification_success"])

        return {"events": events[self.base_columns("events")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        thresholds = _threshold_table()
        events = tables["events"][self.base_columns("events")].copy()

        unknown = set(events["test"]) - set(thresholds.index)
        if unknown:
            raise UnknownCategory(sorted(unknown)[0])

        events["datetime"] = pd.to_datetime(events["datetime"])
        events = events.sort_values("datetime", kind="stable").reset_index(drop=True)
        events["event_id"] = np.arange(1, len(events) + 1)
        events["result_time"] = events["datetime"]

        has_low = events["test"].map(thresholds["low_critical"]).notna()
        is_micro = events["test"].map(thresholds["is_micro"]).astype(bool)
        events["is_low"] = events["is_low"].astype(bool) & has_low
        events["result"] = pd.to_numeric(events["result"]).where(~is_micro)

        events["notification_start"] = pd.to_datetime(events["notification_start"])
        events["notification_time"] = pd.to_datetime(events["notification_time"])
        # A notification is successful exactly when it has a notification time
        success = events["notification_success"].astype(bool) & events["notification_time"].notna()
        events["notification_success"] = success
        events["notification_time"] = events["notification_time"].where(success)
        events["time_to_notify"] = (
            (events["notification_time"] - events["result_time"]).dt.total_seconds() / 60
        )
        events["within_30_min"] = events["time_to_notify"].notna() & (events["time_to_notify"] <= NOTIFY_LIMIT_MINUTES)

        faker = make_faker(rng)
        events["ordering_provider"] = provider_codes(faker, len(events))
        events["acknowledged_by"] = events["ordering_provider"].where(success)
        events["attempts_needed"] = pd.to_numeric(events["attempts_needed"]).round().clip(1, 4).where(success)

        return self.finalize({
            "events": events,
            "summary": self._monthly_summary(events),
        })

    @staticmethod
    def _monthly_summary(events: pd.DataFrame) -> pd.DataFrame:
        data = events.assign(
            month=floor_to_month(events["datetime"]),
            failed=~events["notification_success"],
        )
        summary = (
            data.groupby("month", sort=True)
            .agg(
                total_criticals=("event_id", "size"),
                notified_within_30=("within_30_min", "sum"),
                failed_notifications=("failed", "sum"),
                mean_notification_time=("time_to_notify", "mean"),
                p90_notification_time=("time_to_notify", lambda s: s.quantile(0.9)),
            )
            .reset_index()
        )
        summary["compliance_rate"] = summary["notified_within_30"] / summary["total_criticals"] * 100
        return summary
