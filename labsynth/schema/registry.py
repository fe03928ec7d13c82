"""
Schema Registry Module

Canonical definitions of the dataset families:
- Sub-table names and roles (base, aggregate, reference)
- Ordered field lists with semantic types, roles and value domains
- Declared derivation formulas used by the generators and the validator

Read-only after import.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from ..exceptions import UnknownFamily
from .. import reference as ref

logger = logging.getLogger(__name__)


class FieldType(Enum):
    """Semantic field types"""
    DATE = "date"
    DATETIME = "datetime"
    CATEGORICAL = "categorical"
    COUNT = "count"            # integer >= 0
    INTEGER = "integer"
    FLOAT = "float"
    RATE = "rate"              # float within declared bounds
    BOOLEAN = "boolean"
    IDENTIFIER = "identifier"
    TEXT = "text"


class FieldRole(Enum):
    """How a field comes into existence"""
    KEY = "key"                # public grid value
    BASE = "base"              # drawn (parametric) or synthesized (model-based)
    DERIVED = "derived"        # formula or reference lookup
    IDENTIFIER = "identifier"  # regenerated, never fitted


class SubTableRole(Enum):
    BASE = "base"
    AGGREGATE = "aggregate"
    REFERENCE = "reference"


NUMERIC_TYPES = (FieldType.COUNT, FieldType.INTEGER, FieldType.FLOAT, FieldType.RATE)
TEMPORAL_TYPES = (FieldType.DATE, FieldType.DATETIME)


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single field"""
    name: str
    type: FieldType
    role: FieldRole = FieldRole.BASE
    domain: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    nullable: bool = False
    # temporal fields only: never earlier than this field of the same row
    after: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES

    @property
    def is_integer(self) -> bool:
        return self.type in (FieldType.COUNT, FieldType.INTEGER)

    @property
    def lower_bound(self) -> Optional[float]:
        if self.min_value is not None:
            return self.min_value
        if self.type == FieldType.COUNT:
            return 0.0
        return None


@dataclass(frozen=True)
class Derivation:
    """
    A derived field and the formula that produces it

    `compute` takes the sub-table and returns the expected values of
    `target`; the validator compares them to the stored column.
    """
    target: str
    formula: str
    compute: Callable[[pd.DataFrame], pd.Series]
    tolerance: float = 0.01


@dataclass
class SubTableSchema:
    """Contract for one named sub-table"""
    name: str
    role: SubTableRole
    fields: List[FieldSpec]
    derivations: List[Derivation] = field(default_factory=list)
    # Rule names for row-level checks that span fields (see validation layer)
    row_rules: Tuple[str, ...] = ()

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def keys(self) -> List[str]:
        return [f.name for f in self.fields if f.role == FieldRole.KEY]

    @property
    def base_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.role == FieldRole.BASE]

    @property
    def derived_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.role == FieldRole.DERIVED]

    @property
    def identifier_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.role == FieldRole.IDENTIFIER]

    def get_field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.name} has no field {name}")

    def fields_of_type(self, *types: FieldType) -> List[FieldSpec]:
        return [f for f in self.fields if f.type in types]


@dataclass
class FamilySchema:
    """A dataset family: its sub-tables and source settings"""
    name: str
    description: str
    sub_tables: Dict[str, SubTableSchema]
    source_env: Optional[str] = None
    default: bool = True

    @property
    def base_tables(self) -> List[str]:
        return [n for n, t in self.sub_tables.items() if t.role == SubTableRole.BASE]

    def sub_table(self, name: str) -> SubTableSchema:
        try:
            return self.sub_tables[name]
        except KeyError:
            raise KeyError(f"{self.name} has no sub-table {name}") from None


# =========================
# FIELD SHORTHANDS
# =========================

def _key(name, ftype=FieldType.CATEGORICAL, domain=None):
    return FieldSpec(name, ftype, FieldRole.KEY, domain=domain)


def _base(name, ftype, **kwargs):
    return FieldSpec(name, ftype, FieldRole.BASE, **kwargs)


def _derived(name, ftype, **kwargs):
    return FieldSpec(name, ftype, FieldRole.DERIVED, **kwargs)


def _agg(name, ftype, **kwargs):
    # Fields of aggregate/reference tables carry no generation role of their own
    return FieldSpec(name, ftype, FieldRole.DERIVED, **kwargs)


def _count(name, role=FieldRole.BASE, **kwargs):
    return FieldSpec(name, FieldType.COUNT, role, **kwargs)


def _pct(name, role=FieldRole.DERIVED, **kwargs):
    return FieldSpec(name, FieldType.RATE, role, min_value=0.0, max_value=100.0, **kwargs)


def _ratio(num: str, den: str, scale: float = 100.0):
    def compute(df: pd.DataFrame) -> pd.Series:
        denominator = df[den].astype(float).replace(0, np.nan)
        return df[num].astype(float) / denominator * scale
    return compute


def _rate_derivation(target: str, num: str, den: str) -> Derivation:
    return Derivation(target, f"{num} / {den} * 100", _ratio(num, den))


def _days_since_first(column: pd.Series) -> pd.Series:
    dates = pd.to_datetime(column)
    return (dates - dates.min()).dt.days.astype(float)


def _status_at_least(value: str, target: str, yellow: Callable[[pd.Series], pd.Series]):
    def compute(df: pd.DataFrame) -> pd.Series:
        return pd.Series(
            np.select(
                [df[value] >= df[target], df[value] >= yellow(df[target])],
                ["Green", "Yellow"],
                default="Red",
            ),
            index=df.index,
        )
    return compute


def _status_at_most(value: str, target: str, yellow: Callable[[pd.Series], pd.Series]):
    def compute(df: pd.DataFrame) -> pd.Series:
        return pd.Series(
            np.select(
                [df[value] <= df[target], df[value] <= yellow(df[target])],
                ["Green", "Yellow"],
                default="Red",
            ),
            index=df.index,
        )
    return compute


def _minutes_between(start: str, end: str):
    def compute(df: pd.DataFrame) -> pd.Series:
        delta = pd.to_datetime(df[end]) - pd.to_datetime(df[start])
        return delta.dt.total_seconds() / 60.0
    return compute


def quality_index_formula(df: pd.DataFrame) -> pd.Series:
    """Composite quality index from five phase rates"""
    return (
        (1 - df["rejection_rate"] / 100) * 0.20
        + (df["critical_notification_rate"].clip(upper=100) / 100) * 0.25
        + (df["tat_compliance_rate"].clip(upper=100) / 100) * 0.25
        + (1 - df["amendment_rate"] / 100) * 0.15
        + (df["qc_pass_rate"] / 100) * 0.15
    ) * 100


def overall_score_formula(df: pd.DataFrame) -> pd.Series:
    """Weighted executive score; cost is inverted and productivity capped"""
    return (
        df["quality_index"] * 0.30
        + df["tat_compliance"] * 0.25
        + df["critical_compliance"] * 0.20
        + (1 - (df["cost_per_test"] / 20).clip(upper=1)) * 100 * 0.15
        + (df["tests_per_fte"] / 200).clip(upper=1) * 100 * 0.10
    )


def utilization_tier_formula(df: pd.DataFrame) -> pd.Series:
    return pd.Series(
        np.select([df["order_count"] > 200, df["order_count"] > 50], ["High", "Medium"], default="Low"),
        index=df.index,
    )


# =========================
# FAMILY DEFINITIONS
# =========================

def _activity_volume() -> FamilySchema:
    daily = SubTableSchema(
        name="daily",
        role=SubTableRole.BASE,
        fields=[
            _key("date", FieldType.DATE),
            _derived("week", FieldType.DATE),
            _derived("year", FieldType.INTEGER),
            _derived("month", FieldType.INTEGER, min_value=1, max_value=12),
            _key("section", domain="section"),
            _count("test_count"),
        ],
    )
    weekly = SubTableSchema(
        name="weekly",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("week", FieldType.DATE),
            _agg("year", FieldType.INTEGER),
            _agg("section", FieldType.CATEGORICAL, domain="section"),
            _count("test_count", FieldRole.DERIVED),
            _count("days_in_week", FieldRole.DERIVED, max_value=7),
        ],
    )
    by_category = SubTableSchema(
        name="by_category",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("date", FieldType.DATE),
            _agg("week", FieldType.DATE),
            _agg("section", FieldType.CATEGORICAL, domain="section"),
            _agg("category", FieldType.CATEGORICAL, domain="test_category"),
            _count("category_count", FieldRole.DERIVED),
        ],
        row_rules=("category_in_section",),
    )
    return FamilySchema(
        name="activity_volume",
        description="Daily test volume per section with weekly and category breakdowns",
        sub_tables={"daily": daily, "weekly": weekly, "by_category": by_category},
        source_env="L2_ACTIVITY_VOLUME",
    )


def _quality_indicators() -> FamilySchema:
    month_section = [_key("month", FieldType.DATE), _key("section", domain="section")]

    preanalytical = SubTableSchema(
        name="preanalytical",
        role=SubTableRole.BASE,
        fields=month_section + [
            _count("total_specimens"),
            _count("rejected_specimens"),
            _count("hemolyzed_specimens"),
            _count("labeling_errors"),
            _count("missing_samples"),
            _count("inadequate_volume"),
            _pct("rejection_rate"),
            _pct("hemolysis_rate"),
            _pct("labeling_error_rate"),
            _pct("missing_rate"),
            _pct("volume_inadequacy_rate"),
        ],
        derivations=[
            _rate_derivation("rejection_rate", "rejected_specimens", "total_specimens"),
            _rate_derivation("hemolysis_rate", "hemolyzed_specimens", "total_specimens"),
            _rate_derivation("labeling_error_rate", "labeling_errors", "total_specimens"),
            _rate_derivation("missing_rate", "missing_samples", "total_specimens"),
            _rate_derivation("volume_inadequacy_rate", "inadequate_volume", "total_specimens"),
        ],
    )
    analytical = SubTableSchema(
        name="analytical",
        role=SubTableRole.BASE,
        fields=month_section + [
            _count("total_qc_events"),
            _count("qc_passed"),
            _count("total_results"),
            _count("auto_validated"),
            _count("reruns"),
            _pct("qc_pass_rate"),
            _pct("auto_validation_rate"),
            _pct("rerun_rate"),
        ],
        derivations=[
            _rate_derivation("qc_pass_rate", "qc_passed", "total_qc_events"),
            _rate_derivation("auto_validation_rate", "auto_validated", "total_results"),
            _rate_derivation("rerun_rate", "reruns", "total_results"),
        ],
    )
    postanalytical = SubTableSchema(
        name="postanalytical",
        role=SubTableRole.BASE,
        fields=month_section + [
            _count("total_results"),
            _count("within_tat"),
            _count("total_criticals"),
            _count("criticals_notified_in_time"),
            _count("amendments"),
            _count("corrections"),
            _pct("tat_compliance_rate"),
            _pct("critical_notification_rate"),
            _pct("amendment_rate"),
            _pct("correction_rate"),
        ],
        derivations=[
            _rate_derivation("tat_compliance_rate", "within_tat", "total_results"),
            _rate_derivation("critical_notification_rate", "criticals_notified_in_time", "total_criticals"),
            _rate_derivation("amendment_rate", "amendments", "total_results"),
            _rate_derivation("correction_rate", "corrections", "total_results"),
        ],
    )
    quality_index = SubTableSchema(
        name="quality_index",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("month", FieldType.DATE),
            _agg("section", FieldType.CATEGORICAL, domain="section"),
            _pct("rejection_rate"),
            _pct("qc_pass_rate"),
            _count("total_results", FieldRole.DERIVED),
            _count("total_results_post", FieldRole.DERIVED),
            _pct("tat_compliance_rate"),
            _pct("critical_notification_rate"),
            _pct("amendment_rate"),
            _pct("quality_index"),
        ],
        derivations=[
            Derivation(
                "quality_index",
                "((1 - rejection_rate/100)*0.20 + min(critical_notification_rate,100)/100*0.25"
                " + min(tat_compliance_rate,100)/100*0.25 + (1 - amendment_rate/100)*0.15"
                " + qc_pass_rate/100*0.15) * 100",
                quality_index_formula,
            ),
        ],
    )
    return FamilySchema(
        name="quality_indicators",
        description="Monthly pre-, intra- and post-analytical quality indicators with a composite index",
        sub_tables={
            "preanalytical": preanalytical,
            "analytical": analytical,
            "postanalytical": postanalytical,
            "quality_index": quality_index,
        },
        source_env="L2_QUALITY",
    )


def _qc_data() -> FamilySchema:
    qc_fields = [
        _key("date", FieldType.DATE),
        _key("analyte", domain="qc_analyte"),
        _key("level", domain="qc_level"),
        _base("instrument", FieldType.CATEGORICAL, domain="instrument"),
        _derived("target", FieldType.FLOAT, min_value=0),
        _base("sd_expected", FieldType.FLOAT, min_value=0),
        _base("result", FieldType.FLOAT),
        _derived("z_score", FieldType.FLOAT),
        _derived("westgard_1_2s", FieldType.BOOLEAN),
        _derived("westgard_1_3s", FieldType.BOOLEAN),
        _derived("lot_number", FieldType.TEXT),
        _derived("qc_passed", FieldType.BOOLEAN),
    ]
    qc_derivations = [
        Derivation(
            "target",
            "target of level (Level 1: 50, Level 2: 100, Level 3: 200)",
            lambda df: df["level"].map(ref.QC_TARGETS).astype(float),
        ),
        Derivation(
            "z_score",
            "(result - target) / sd_expected",
            lambda df: (df["result"] - df["target"]) / df["sd_expected"].replace(0, np.nan),
        ),
        Derivation("westgard_1_2s", "|z_score| > 2", lambda df: df["z_score"].abs() > 2),
        Derivation("westgard_1_3s", "|z_score| > 3", lambda df: df["z_score"].abs() > 3),
        Derivation("qc_passed", "|z_score| <= 2", lambda df: df["z_score"].abs() <= 2),
    ]
    daily = SubTableSchema(
        name="daily",
        role=SubTableRole.BASE,
        fields=qc_fields,
        derivations=qc_derivations,
        row_rules=("instrument_runs_analyte", "westgard_nesting"),
    )
    summary = SubTableSchema(
        name="summary",
        role=SubTableRole.AGGREGATE,
        fields=[FieldSpec(f.name, f.type, FieldRole.DERIVED, domain=f.domain, min_value=f.min_value)
                for f in qc_fields] + [
            _agg("mean_cumulative", FieldType.FLOAT),
            _agg("sd_cumulative", FieldType.FLOAT, min_value=0),
            _agg("cv_cumulative", FieldType.FLOAT),
        ],
        derivations=qc_derivations[1:],
        row_rules=("westgard_nesting",),
    )
    return FamilySchema(
        name="qc_data",
        description="Daily QC results per analyte and level with Westgard flags and cumulative statistics",
        sub_tables={"daily": daily, "summary": summary},
        source_env="L2_QC",
    )


def _critical_values() -> FamilySchema:
    events = SubTableSchema(
        name="events",
        role=SubTableRole.BASE,
        fields=[
            FieldSpec("event_id", FieldType.IDENTIFIER, FieldRole.IDENTIFIER),
            _base("datetime", FieldType.DATETIME),
            _base("test", FieldType.CATEGORICAL, domain="critical_test"),
            _base("is_low", FieldType.BOOLEAN),
            _base("result", FieldType.FLOAT, min_value=0, nullable=True),
            _derived("result_time", FieldType.DATETIME),
            _base("notification_start", FieldType.DATETIME, after="datetime"),
            _base("notification_success", FieldType.BOOLEAN),
            _base("notification_time", FieldType.DATETIME, nullable=True, after="notification_start"),
            _derived("time_to_notify", FieldType.FLOAT, min_value=0, nullable=True),
            _derived("within_30_min", FieldType.BOOLEAN),
            FieldSpec("ordering_provider", FieldType.IDENTIFIER, FieldRole.IDENTIFIER),
            _base("ordering_unit", FieldType.CATEGORICAL, domain="ordering_unit"),
            _derived("acknowledged_by", FieldType.TEXT, nullable=True),
            _base("attempts_needed", FieldType.INTEGER, min_value=1, max_value=4, nullable=True),
        ],
        derivations=[
            Derivation("time_to_notify", "minutes(notification_time - result_time)",
                       _minutes_between("result_time", "notification_time")),
            Derivation(
                "within_30_min",
                "time_to_notify is not null and time_to_notify <= 30",
                lambda df: df["time_to_notify"].notna() & (df["time_to_notify"] <= 30),
            ),
        ],
        row_rules=("notification_consistency",),
    )
    summary = SubTableSchema(
        name="summary",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("month", FieldType.DATE),
            _count("total_criticals", FieldRole.DERIVED),
            _count("notified_within_30", FieldRole.DERIVED),
            _count("failed_notifications", FieldRole.DERIVED),
            _agg("mean_notification_time", FieldType.FLOAT, min_value=0, nullable=True),
            _agg("p90_notification_time", FieldType.FLOAT, min_value=0, nullable=True),
            _pct("compliance_rate"),
        ],
        derivations=[_rate_derivation("compliance_rate", "notified_within_30", "total_criticals")],
    )
    return FamilySchema(
        name="critical_values",
        description="Critical result notification events with monthly compliance summary",
        sub_tables={"events": events, "summary": summary},
        source_env="L2_CRITICAL",
    )


def _incidents() -> FamilySchema:
    events = SubTableSchema(
        name="events",
        role=SubTableRole.BASE,
        fields=[
            FieldSpec("incident_id", FieldType.IDENTIFIER, FieldRole.IDENTIFIER),
            _base("datetime", FieldType.DATETIME),
            _derived("category", FieldType.CATEGORICAL, domain="incident_category"),
            _base("type", FieldType.CATEGORICAL, domain="incident_type"),
            _derived("severity", FieldType.CATEGORICAL, domain="severity"),
            _base("section", FieldType.CATEGORICAL, domain="section"),
            _base("resolution_hours", FieldType.FLOAT, min_value=0),
            _derived("resolved_datetime", FieldType.DATETIME),
            _derived("status", FieldType.CATEGORICAL, domain="incident_status"),
            _base("root_cause", FieldType.CATEGORICAL, domain="root_cause"),
            _base("corrective_action", FieldType.CATEGORICAL, domain="corrective_action"),
            FieldSpec("reported_by", FieldType.IDENTIFIER, FieldRole.IDENTIFIER),
        ],
        derivations=[
            Derivation(
                "resolution_hours",
                "hours(resolved_datetime - datetime)",
                lambda df: _minutes_between("datetime", "resolved_datetime")(df) / 60.0,
            ),
        ],
        row_rules=("incident_taxonomy",),
    )
    summary = SubTableSchema(
        name="summary",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("month", FieldType.DATE),
            _agg("category", FieldType.CATEGORICAL, domain="incident_category"),
            _count("incident_count", FieldRole.DERIVED),
            _count("high_severity", FieldRole.DERIVED),
            _agg("mean_resolution_hours", FieldType.FLOAT, min_value=0),
        ],
    )
    types = SubTableSchema(
        name="types",
        role=SubTableRole.REFERENCE,
        fields=[
            _agg("category", FieldType.CATEGORICAL, domain="incident_category"),
            _agg("type", FieldType.CATEGORICAL, domain="incident_type"),
            _agg("severity", FieldType.CATEGORICAL, domain="severity"),
            _agg("frequency_weight", FieldType.RATE, min_value=0, max_value=1),
        ],
    )
    return FamilySchema(
        name="incidents",
        description="Laboratory incident events with monthly category summary and taxonomy",
        sub_tables={"events": events, "summary": summary, "types": types},
        source_env="L2_INCIDENTS",
    )


def _cost_data() -> FamilySchema:
    test_costs = SubTableSchema(
        name="test_costs",
        role=SubTableRole.BASE,
        fields=[
            _key("test", domain="test"),
            _derived("section", FieldType.CATEGORICAL, domain="section"),
            _base("reagent_cost", FieldType.FLOAT, min_value=0),
            _base("labor_cost", FieldType.FLOAT, min_value=0),
            _base("overhead_cost", FieldType.FLOAT, min_value=0),
            _derived("total_cost", FieldType.FLOAT, min_value=0),
            _base("reimbursement", FieldType.FLOAT, min_value=0),
        ],
        derivations=[
            Derivation(
                "total_cost",
                "reagent_cost + labor_cost + overhead_cost",
                lambda df: df["reagent_cost"] + df["labor_cost"] + df["overhead_cost"],
            ),
        ],
        row_rules=("test_in_section",),
    )
    monthly = SubTableSchema(
        name="monthly",
        role=SubTableRole.BASE,
        fields=[
            _key("month", FieldType.DATE),
            _key("test", domain="test"),
            _derived("section", FieldType.CATEGORICAL, domain="section"),
            _derived("reagent_cost", FieldType.FLOAT, min_value=0),
            _derived("labor_cost", FieldType.FLOAT, min_value=0),
            _derived("overhead_cost", FieldType.FLOAT, min_value=0),
            _derived("total_cost", FieldType.FLOAT, min_value=0),
            _derived("reimbursement", FieldType.FLOAT, min_value=0),
            _count("volume"),
            _derived("inflation_factor", FieldType.FLOAT, min_value=1),
            _derived("reagent_total", FieldType.FLOAT, min_value=0),
            _derived("labor_total", FieldType.FLOAT, min_value=0),
            _derived("overhead_total", FieldType.FLOAT, min_value=0),
            _derived("total_expense", FieldType.FLOAT, min_value=0),
            _derived("revenue", FieldType.FLOAT, min_value=0),
            _derived("margin", FieldType.FLOAT),
            _derived("cost_per_test", FieldType.FLOAT, min_value=0, nullable=True),
        ],
        derivations=[
            Derivation(
                "inflation_factor",
                "1 + days_since_first_month / 365 * 0.02",
                lambda df: 1 + _days_since_first(df["month"]) / 365 * 0.02,
            ),
            Derivation(
                "reagent_total",
                "reagent_cost * inflation_factor * volume",
                lambda df: df["reagent_cost"] * df["inflation_factor"] * df["volume"],
            ),
            Derivation(
                "labor_total",
                "labor_cost * inflation_factor * volume",
                lambda df: df["labor_cost"] * df["inflation_factor"] * df["volume"],
            ),
            Derivation(
                "overhead_total",
                "overhead_cost * volume",
                lambda df: df["overhead_cost"] * df["volume"],
            ),
            Derivation(
                "total_expense",
                "reagent_total + labor_total + overhead_total",
                lambda df: df["reagent_total"] + df["labor_total"] + df["overhead_total"],
            ),
            Derivation("revenue", "reimbursement * volume", lambda df: df["reimbursement"] * df["volume"]),
            Derivation("margin", "revenue - total_expense", lambda df: df["revenue"] - df["total_expense"]),
            Derivation("cost_per_test", "total_expense / volume", _ratio("total_expense", "volume", 1.0)),
        ],
        row_rules=("test_in_section",),
    )
    section_summary = SubTableSchema(
        name="section_summary",
        role=SubTableRole.AGGREGATE,
        fields=[
            _agg("month", FieldType.DATE),
            _agg("section", FieldType.CATEGORICAL, domain="section"),
            _count("total_volume", FieldRole.DERIVED),
            _agg("total_expense", FieldType.FLOAT, min_value=0),
            _agg("total_revenue", FieldType.FLOAT, min_value=0),
            _agg("total_margin", FieldType.FLOAT),
            _agg("avg_cost_per_test", FieldType.FLOAT, min_value=0, nullable=True),
        ],
        derivations=[
            Derivation("total_margin", "total_revenue - total_expense",
                       lambda df: df["total_revenue"] - df["total_expense"]),
            Derivation("avg_cost_per_test", "total_expense / total_volume",
                       _ratio("total_expense", "total_volume", 1.0)),
        ],
    )
    return FamilySchema(
        name="cost_data",
        description="Per-test cost components, monthly expense and revenue, section rollups",
        sub_tables={"test_costs": test_costs, "monthly": monthly, "section_summary": section_summary},
        source_env="L2_COSTS",
    )


def _utilization() -> FamilySchema:
    orders = SubTableSchema(
        name="orders",
        role=SubTableRole.BASE,
        fields=[
            _key("month", FieldType.DATE),
            _key("ordering_dept", domain="ordering_dept"),
            _key("test", domain="test"),
            _count("order_count"),
            FieldSpec("duplicate_rate", FieldType.RATE, FieldRole.BASE, min_value=0.0, max_value=1.0),
            _count("duplicate_count", FieldRole.DERIVED),
            _base("guideline_appropriate", FieldType.BOOLEAN),
            _derived("utilization_tier", FieldType.CATEGORICAL, domain="utilization_tier"),
        ],
        derivations=[
            Derivation(
                "duplicate_count",
                "round(order_count * duplicate_rate)",
                lambda df: (df["order_count"] * df["duplicate_rate"]).round(),
                tolerance=0.5,
            ),
            Derivation("utilization_tier", "High if order_count > 200, Medium if > 50, else Low",
                       utilization_tier_formula),
        ],
    )
    sendouts = SubTableSchema(
        name="sendouts",
        role=SubTableRole.BASE,
        fields=[
            _key("month", FieldType.DATE),
            _key("test", domain="sendout_test"),
            _count("volume"),
            _base("cost_per_test", FieldType.FLOAT, min_value=0),
            _derived("total_cost", FieldType.FLOAT, min_value=0),
            _base("tat_days", FieldType.INTEGER, min_value=0),
            _base("reference_lab", FieldType.CATEGORICAL, domain="reference_lab"),
        ],
        derivations=[
            Derivation("total_cost", "volume * cost_per_test", lambda df: df["volume"] * df["cost_per_test"]),
        ],
    )
    return FamilySchema(
        name="utilization",
        description="Monthly test ordering by department and send-out volume and cost",
        sub_tables={"orders": orders, "sendouts": sendouts},
        source_env="L2_UTILIZATION",
    )


def _antibiogram() -> FamilySchema:
    data = SubTableSchema(
        name="data",
        role=SubTableRole.BASE,
        fields=[
            _key("quarter", FieldType.DATE),
            _key("organism", domain="organism"),
            _key("antibiotic", domain="antibiotic"),
            FieldSpec("susceptibility_rate", FieldType.RATE, FieldRole.BASE, min_value=0.0, max_value=1.0),
            _count("isolate_count"),
            _count("susceptible_count", FieldRole.DERIVED),
            _count("intermediate_count"),
            _count("resistant_count", FieldRole.DERIVED),
        ],
        derivations=[
            Derivation(
                "susceptible_count",
                "round(isolate_count * susceptibility_rate)",
                lambda df: (df["isolate_count"] * df["susceptibility_rate"]).round(),
                tolerance=0.5,
            ),
            Derivation(
                "resistant_count",
                "isolate_count - susceptible_count - intermediate_count",
                lambda df: df["isolate_count"] - df["susceptible_count"] - df["intermediate_count"],
            ),
        ],
    )
    organisms = SubTableSchema(
        name="organisms",
        role=SubTableRole.REFERENCE,
        fields=[_agg("organism", FieldType.CATEGORICAL, domain="organism")],
    )
    antibiotics = SubTableSchema(
        name="antibiotics",
        role=SubTableRole.REFERENCE,
        fields=[_agg("antibiotic", FieldType.CATEGORICAL, domain="antibiotic")],
    )
    return FamilySchema(
        name="antibiogram",
        description="Quarterly organism/antibiotic susceptibility with isolate counts",
        sub_tables={"data": data, "organisms": organisms, "antibiotics": antibiotics},
        source_env="L2_ANTIBIOGRAM",
    )


def _executive_scorecard() -> FamilySchema:
    def status(name):
        return _derived(name, FieldType.CATEGORICAL, domain="scorecard_status")

    monthly = SubTableSchema(
        name="monthly",
        role=SubTableRole.BASE,
        fields=[
            _key("month", FieldType.DATE),
            FieldSpec("quality_index", FieldType.RATE, min_value=70.0, max_value=100.0),
            _derived("quality_target", FieldType.FLOAT),
            status("quality_status"),
            FieldSpec("tat_compliance", FieldType.RATE, min_value=75.0, max_value=100.0),
            _derived("tat_target", FieldType.FLOAT),
            status("tat_status"),
            FieldSpec("critical_compliance", FieldType.RATE, min_value=85.0, max_value=100.0),
            _derived("critical_target", FieldType.FLOAT),
            status("critical_status"),
            _base("test_volume", FieldType.FLOAT, min_value=20000.0),
            _derived("volume_yoy_change", FieldType.FLOAT, nullable=True),
            _base("cost_per_test", FieldType.FLOAT, min_value=12.0),
            _derived("cost_target", FieldType.FLOAT),
            status("cost_status"),
            _base("tests_per_fte", FieldType.FLOAT, min_value=150.0),
            _derived("productivity_target", FieldType.FLOAT),
            status("productivity_status"),
            _derived("overall_score", FieldType.FLOAT, min_value=0.0, max_value=100.0),
        ],
        derivations=[
            Derivation("quality_status", "Green >= target, Yellow >= target - 5",
                       _status_at_least("quality_index", "quality_target", lambda t: t - 5)),
            Derivation("tat_status", "Green >= target, Yellow >= target - 5",
                       _status_at_least("tat_compliance", "tat_target", lambda t: t - 5)),
            Derivation("critical_status", "Green >= target, Yellow >= target - 3",
                       _status_at_least("critical_compliance", "critical_target", lambda t: t - 3)),
            Derivation("cost_status", "Green <= target, Yellow <= target * 1.1",
                       _status_at_most("cost_per_test", "cost_target", lambda t: t * 1.1)),
            Derivation("productivity_status", "Green >= target, Yellow >= target * 0.95",
                       _status_at_least("tests_per_fte", "productivity_target", lambda t: t * 0.95)),
            Derivation("overall_score", "weighted 30/25/20/15/10 composite", overall_score_formula),
        ],
    )
    return FamilySchema(
        name="executive_scorecard",
        description="Monthly executive KPIs with targets, traffic-light status and overall score",
        sub_tables={"monthly": monthly},
        source_env="L2_SCORECARD",
    )


def _turnaround_time() -> FamilySchema:
    samples = SubTableSchema(
        name="samples",
        role=SubTableRole.BASE,
        fields=[
            FieldSpec("sample_id", FieldType.IDENTIFIER, FieldRole.IDENTIFIER),
            _base("category", FieldType.CATEGORICAL, domain="tat_category"),
            _derived("category_name", FieldType.CATEGORICAL, domain="tat_category_name"),
            _base("sent_time", FieldType.DATETIME),
            _base("received_time", FieldType.DATETIME, after="sent_time"),
            _base("resulted_time", FieldType.DATETIME, nullable=True, after="received_time"),
            _base("acknowledged_time", FieldType.DATETIME, nullable=True, after="resulted_time"),
            _derived("prelab_minutes", FieldType.FLOAT, min_value=0),
            _derived("inlab_minutes", FieldType.FLOAT, min_value=0, nullable=True),
            _derived("postlab_minutes", FieldType.FLOAT, min_value=0, nullable=True),
            _derived("total_minutes", FieldType.FLOAT, min_value=0, nullable=True),
        ],
        derivations=[
            Derivation("category_name", "name of category code",
                       lambda df: df["category"].astype(str).map(ref.TAT_CATEGORIES)),
            Derivation("prelab_minutes", "minutes(received_time - sent_time)",
                       _minutes_between("sent_time", "received_time")),
            Derivation("inlab_minutes", "minutes(resulted_time - received_time)",
                       _minutes_between("received_time", "resulted_time")),
            Derivation("postlab_minutes", "minutes(acknowledged_time - resulted_time)",
                       _minutes_between("resulted_time", "acknowledged_time")),
            Derivation("total_minutes", "minutes(acknowledged_time - sent_time)",
                       _minutes_between("sent_time", "acknowledged_time")),
        ],
    )
    return FamilySchema(
        name="turnaround_time",
        description="Sample-level turnaround timestamps for culture, PCR and POCT PCR",
        sub_tables={"samples": samples},
        source_env="L2_TAT",
        default=False,
    )


# Fixed generation order; the position is the family's seed offset
_FAMILY_BUILDERS = (
    _activity_volume,
    _quality_indicators,
    _qc_data,
    _critical_values,
    _incidents,
    _cost_data,
    _utilization,
    _antibiogram,
    _executive_scorecard,
    _turnaround_time,
)

FAMILIES: Dict[str, FamilySchema] = {}
for _builder in _FAMILY_BUILDERS:
    _schema = _builder()
    FAMILIES[_schema.name] = _schema

FAMILY_ORDER: Tuple[str, ...] = tuple(FAMILIES)
DEFAULT_FAMILIES: Tuple[str, ...] = tuple(n for n, s in FAMILIES.items() if s.default)


def get_family(name: str) -> FamilySchema:
    """
    Look up a family schema

    Args:
        name: Family name, e.g. 'activity_volume'

    Returns:
        FamilySchema

    Raises:
        UnknownFamily: if the family is not registered
    """
    try:
        return FAMILIES[name]
    except KeyError:
        raise UnknownFamily(name) from None


def family_index(name: str) -> int:
    """Position of a family in the fixed generation order"""
    get_family(name)
    return FAMILY_ORDER.index(name)


def list_families(include_optional: bool = False) -> List[str]:
    """Registered family names in generation order"""
    if include_optional:
        return list(FAMILY_ORDER)
    return list(DEFAULT_FAMILIES)


def describe_family(name: str) -> Dict[str, Dict[str, object]]:
    """Plain-dict view of a family's sub-tables, fields and formulas"""
    family = get_family(name)
    return {
        table_name: {
            "role": table.role.value,
            "keys": table.keys,
            "fields": [
                {
                    "name": f.name,
                    "type": f.type.value,
                    "role": f.role.value,
                    "domain": f.domain,
                }
                for f in table.fields
            ],
            "derivations": {d.target: d.formula for d in table.derivations},
        }
        for table_name, table in family.sub_tables.items()
    }
