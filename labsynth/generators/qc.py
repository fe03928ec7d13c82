"""
QC Trending Generator

Daily QC results per (analyte, level) with instrument assignment,
z-scores, Westgard 1:2s/1:3s flags, lot numbers and cumulative
mean/SD/CV per (analyte, level, instrument).

The running statistics are cumulative from the first observation of
each group, not a sliding window.
"""

import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..exceptions import UnknownCategory
from .base import FamilyGenerator, Period, Tables, expand_grid

logger = logging.getLogger(__name__)


SD_FRACTION_RANGE = (0.02, 0.05)
DRIFT_PROBABILITY = 0.03
DRIFT_MULTIPLIER = 2.5
LOT_LENGTH_DAYS = 90


def assign_instruments(analytes: pd.Series, rng: np.random.Generator) -> np.ndarray:
    """Pick an instrument per run from the analyte's instrument list"""
    unknown = set(analytes) - set(ref.QC_ANALYTE_INSTRUMENTS)
    if unknown:
        raise UnknownCategory(sorted(unknown)[0])
    options = [ref.QC_ANALYTE_INSTRUMENTS[a] for a in analytes]
    draws = rng.random(len(options))
    return np.array([opts[int(u * len(opts))] for opts, u in zip(options, draws)], dtype=object)


def cumulative_statistics(daily: pd.DataFrame) -> pd.DataFrame:
    """Running mean, SD and CV of `result` per (analyte, level, instrument) in date order"""
    data = daily.copy()
    groups = data.groupby(["analyte", "level", "instrument"], sort=False)["result"]
    n_obs = groups.cumcount() + 1
    mean = groups.cumsum() / n_obs
    squares = (data["result"] ** 2).groupby([data["analyte"], data["level"], data["instrument"]], sort=False).cumsum()
    variance = (squares / n_obs - mean ** 2).clip(lower=0)
    data["mean_cumulative"] = mean
    data["sd_cumulative"] = np.sqrt(variance)
    data["cv_cumulative"] = data["sd_cumulative"] / mean.replace(0, np.nan) * 100
    return data


class QCDataGenerator(FamilyGenerator):
    """Levey-Jennings style QC results"""

    name = "qc_data"

    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        daily = expand_grid(date=period.days(), analyte=ref.QC_ANALYTES, level=ref.QC_LEVELS)
        n = len(daily)

        daily["instrument"] = assign_instruments(daily["analyte"], rng)
        target = daily["level"].map(ref.QC_TARGETS).to_numpy(dtype=float)
        daily["sd_expected"] = target * rng.uniform(*SD_FRACTION_RANGE, n)
        drift = np.where(rng.random(n) > 1 - DRIFT_PROBABILITY, DRIFT_MULTIPLIER, 1.0)
        daily["result"] = target + rng.normal(0, daily["sd_expected"].to_numpy()) * drift

        return {"daily": daily[self.base_columns("daily")]}

    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        daily = tables["daily"][self.base_columns("daily")].copy()
        daily["date"] = pd.to_datetime(daily["date"]).dt.normalize()
        daily = daily.sort_values("date", kind="stable").reset_index(drop=True)

        unknown = set(daily["level"]) - set(ref.QC_TARGETS)
        if unknown:
            raise UnknownCategory(sorted(unknown)[0])
        daily["target"] = daily["level"].map(ref.QC_TARGETS).astype(float)
        daily["sd_expected"] = daily["sd_expected"].abs()
        daily["z_score"] = (daily["result"] - daily["target"]) / daily["sd_expected"].replace(0, np.nan)
        abs_z = daily["z_score"].abs()
        daily["westgard_1_2s"] = abs_z > 2
        daily["westgard_1_3s"] = abs_z > 3
        lot_index = (daily["date"] - daily["date"].min()).dt.days // LOT_LENGTH_DAYS + 1
        daily["lot_number"] = [f"LOT{i:04d}" for i in lot_index]
        daily["qc_passed"] = abs_z <= 2

        return self.finalize({
            "daily": daily,
            "summary": cumulative_statistics(daily),
        })
