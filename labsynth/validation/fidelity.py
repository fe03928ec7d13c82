# fidelity.py: source vs. synthetic similarity of base fields

import pandas as pd
import numpy as np
from typing import Dict, List, Any
from dataclasses import dataclass, field
from scipy import stats
from scipy.spatial.distance import jensenshannon
import logging

from ..schema import FieldType, SubTableSchema

logger = logging.getLogger(__name__)


# =========================
# REPORT STRUCTURES
# =========================

@dataclass
class FidelityMetric:
    name: str
    value: float
    passed: bool
    threshold: float
    details: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        status = "✓" if self.passed else "✗"
        return f"{status} {self.name}: {self.value:.3f} (threshold: {self.threshold})"


@dataclass
class FidelityReport:
    sub_table: str
    overall_score: float
    passed: bool
    metrics: List[FidelityMetric] = field(default_factory=list)
    column_scores: Dict[str, float] = field(default_factory=dict)

    def add_metric(self, metric: FidelityMetric):
        self.metrics.append(metric)

    def get_failed_metrics(self):
        return [m for m in self.metrics if not m.passed]

    def to_dict(self):
        return {
            "sub_table": self.sub_table,
            "overall_score": self.overall_score,
            "passed": self.passed,
            "metrics": [
                {"name": m.name, "value": m.value, "passed": m.passed, "threshold": m.threshold}
                for m in self.metrics
            ],
            "column_scores": self.column_scores,
        }


# =========================
# NUMERIC
# =========================

class NumericFidelity:

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold

    def validate(self, reference: pd.Series, synthetic: pd.Series, column_name: str):
        ref = pd.to_numeric(reference, errors="coerce").dropna()
        syn = pd.to_numeric(synthetic, errors="coerce").dropna()
        if len(ref) == 0 or len(syn) == 0:
            return []

        ks_stat, ks_p = stats.ks_2samp(ref, syn)
        ks_score = float(np.clip(1.0 - ks_stat, 0, 1))
        stat_score = self._compare_statistics(ref, syn)

        return [
            FidelityMetric(
                f"{column_name}_ks_test", ks_score, ks_score >= self.threshold,
                self.threshold, {"ks": float(ks_stat), "p": float(ks_p)}
            ),
            FidelityMetric(
                f"{column_name}_statistics", stat_score,
                stat_score >= self.threshold, self.threshold
            ),
        ]

    def _compare_statistics(self, ref, syn):
        def safe_diff(a, b):
            return abs(a - b) / (abs(a) + 1e-9)

        diffs = [safe_diff(ref.mean(), syn.mean())]
        for q in [0.25, 0.5, 0.75]:
            diffs.append(safe_diff(ref.quantile(q), syn.quantile(q)))

        score = 1 - np.mean(diffs)
        return float(np.clip(score, 0, 1))


# =========================
# CATEGORICAL
# =========================

class CategoricalFidelity:

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold

    def validate(self, reference: pd.Series, synthetic: pd.Series, column_name: str):
        r = reference.astype(str).value_counts(normalize=True)
        s = synthetic.astype(str).value_counts(normalize=True)
        if r.empty or s.empty:
            return []
        r, s = r.align(s, fill_value=0)
        js = jensenshannon(r.values, s.values)
        score = float(np.clip(1 - js, 0, 1))
        missing_levels = sorted(set(r.index[r > 0]) - set(s.index[s > 0]))

        return [FidelityMetric(
            f"{column_name}_distribution", score, score >= self.threshold,
            self.threshold, {"js": float(js), "unsampled_levels": missing_levels}
        )]


# =========================
# TEMPORAL
# =========================

class TemporalFidelity:

    def __init__(self, threshold=0.7):
        self.threshold = threshold

    def validate(self, reference, synthetic, column_name="date"):
        ref = pd.to_datetime(reference.dropna())
        syn = pd.to_datetime(synthetic.dropna())
        if len(ref) == 0 or len(syn) == 0:
            return []

        metrics = []

        ks_stat, _ = stats.ks_2samp(ref.astype("int64"), syn.astype("int64"))
        ks_score = float(np.clip(1.0 - ks_stat, 0, 1))
        metrics.append(FidelityMetric(
            f"{column_name}_ks_test", ks_score, ks_score >= self.threshold, self.threshold
        ))

        w = self._weekday_score(ref, syn)
        metrics.append(FidelityMetric(
            f"{column_name}_weekday_distribution", w, w >= self.threshold, self.threshold
        ))

        return metrics

    def _weekday_score(self, ref, syn):
        r = ref.dt.dayofweek.value_counts(normalize=True)
        s = syn.dt.dayofweek.value_counts(normalize=True)
        r, s = r.align(s, fill_value=0)
        js = jensenshannon(r.values, s.values)
        return float(np.clip(1 - js, 0, 1))


# =========================
# VALIDATOR
# =========================

class FidelityValidator:
    """Compares the base fields of a synthetic sub-table with its source"""

    def __init__(self, threshold: float = 0.7):
        self.threshold = threshold
        self.numeric = NumericFidelity(threshold)
        self.categorical = CategoricalFidelity(threshold)
        self.temporal = TemporalFidelity(threshold)

    def validate(self, table_schema: SubTableSchema, reference: pd.DataFrame,
                 synthetic: pd.DataFrame) -> FidelityReport:
        report = FidelityReport(table_schema.name, 0.0, False)

        for name in table_schema.base_fields:
            if name not in reference.columns or name not in synthetic.columns:
                continue
            spec = table_schema.get_field(name)

            if spec.type in (FieldType.DATE, FieldType.DATETIME):
                mets = self.temporal.validate(reference[name], synthetic[name], name)
            elif spec.is_numeric:
                mets = self.numeric.validate(reference[name], synthetic[name], name)
            else:
                mets = self.categorical.validate(reference[name], synthetic[name], name)

            for m in mets:
                report.add_metric(m)
            if mets:
                report.column_scores[name] = float(np.mean([m.value for m in mets]))

        if report.metrics:
            report.overall_score = float(np.mean([m.value for m in report.metrics]))
            report.passed = report.overall_score >= self.threshold

        if not report.passed:
            logger.warning(
                f"{table_schema.name}: fidelity score {report.overall_score:.3f} "
                f"below threshold {self.threshold}"
            )
        return report
