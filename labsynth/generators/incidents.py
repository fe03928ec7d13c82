"""
Incidents Generator

Laboratory incidents drawn from the weighted incident taxonomy with a
section split, severity-dependent resolution time and derived status.
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
    technician_codes,
)

logger = logging.getLogger(__name__)


N_INCIDENTS = 800


class IncidentsGenerator(FamilyGenerator):
    """Incident events, monthly summary and taxonomy listing"""

    name = "incidents"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        types = ref.incident_types_frame()
        weights = types["frequency_weight"].to_numpy()
        n = N_INCIDENTS

        events = pd.DataFrame({"datetime": period.uniform_datetimes(rng, n)})
        type_idx = rng.choice(len(types), size=n, p=weights / weights.sum())
        events["type"] = types["type"].to_numpy()[type_idx]
        severity = types["severity"].to_numpy()[type_idx]

        events["section"] = rng.choice(list(ref.SECTIONS), size=n, p=list(ref.INCIDENT_SECTION_WEIGHTS))
        offset = np.array([ref.RESOLUTION_HOURS[s][0] for s in severity])
        mean = np.array([ref.RESOLUTION_HOURS[s][1] for s in severity])
        events["resolution_hours"] = rng.exponential(mean) + offset
        events["root_cause"] = rng.choice(list(ref.ROOT_CAUSES), size=n, p=list(ref.ROOT_CAUSE_WEIGHTS))
        events["corrective_action"] = rng.choice(list(ref.CORRECTIVE_ACTIONS), size=n)

        return {"events": events[self.base_columns("events")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        taxonomy = ref.incident_types_frame().set_index("type")
        events = tables["events"][self.base_columns("events")].copy()

        unknown = set(events["type"]) - set(taxonomy.index)
        if unknown:
            raise UnknownCategory(sorted(unknown)[0])

        events["datetime"] = pd.to_datetime(events["datetime"])
        events = events.sort_values("datetime", kind="stable").reset_index(drop=True)
        events["incident_id"] = [f"INC-{i:06d}" for i in range(1, len(events) + 1)]
        events["category"] = events["type"].map(taxonomy["category"])
        events["severity"] = events["type"].map(taxonomy["severity"])

        events["resolution_hours"] = pd.to_numeric(events["resolution_hours"]).clip(lower=0)
        events["resolved_datetime"] = events["datetime"] + pd.to_timedelta(events["resolution_hours"] * 3600, unit="s")
        events["status"] = np.where(events["resolved_datetime"] <= period.end, "Resolved", "Open")

        faker = make_faker(rng)
        events["reported_by"] = technician_codes(faker, len(events))

        return self.finalize({
            "events": events,
            "summary": self._monthly_summary(events),
            "types": ref.incident_types_frame(),
        })

    @staticmethod
    def _monthly_summary(events: pd.DataFrame) -> pd.DataFrame:
        data = events.assign(
            month=floor_to_month(events["datetime"]),
            is_high=events["severity"] == "High",
        )
        return (
            data.groupby(["month", "category"], sort=True)
            .agg(
                incident_count=("incident_id", "size"),
                high_severity=("is_high", "sum"),
                mean_resolution_hours=("resolution_hours", "mean"),
            )
            .reset_index()
        )
