"""
Invariant Validation Module

Checks a generated dataset instance against its family schema:
- required sub-tables and fields are present
- key and non-nullable base fields hold values
- count fields are non-negative and bounded fields lie in range
- categorical fields only contain reference values
- declared derivation formulas hold within tolerance
- cross-field row rules (category within section, Westgard nesting, ...)

Every violation is reported; rows are never dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from .. import reference as ref
from ..exceptions import ReferenceLookupError
from ..schema import FamilySchema, FieldRole, FieldType, SubTableSchema, get_family

logger = logging.getLogger(__name__)


@dataclass
class Violation:
    """One invariant violation"""
    family: str
    sub_table: str
    field: Optional[str]
    rule: str
    detail: str
    row: Optional[int] = None

    def __str__(self) -> str:
        location = f"{self.family}.{self.sub_table}"
        if self.field:
            location += f".{self.field}"
        if self.row is not None:
            location += f"[{self.row}]"
        return f"{location} {self.rule}: {self.detail}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub_table": self.sub_table,
            "field": self.field,
            "rule": self.rule,
            "row": self.row,
            "detail": self.detail,
        }


@dataclass
class ValidationReport:
    """All violations found in one dataset instance"""
    family: str
    violations: List[Violation] = field(default_factory=list)
    rows_checked: Dict[str, int] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.violations

    def by_rule(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for v in self.violations:
            counts[v.rule] = counts.get(v.rule, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family,
            "passed": self.passed,
            "rows_checked": self.rows_checked,
            "violation_count": len(self.violations),
            "violations": [v.to_dict() for v in self.violations],
        }


# =========================
# ROW RULES
# =========================

def _category_in_section(df: pd.DataFrame) -> pd.Series:
    def ok(section, category):
        try:
            return category in ref.categories_for_section(section)
        except ReferenceLookupError:
            return False
    return pd.Series([ok(s, c) for s, c in zip(df["section"], df["category"])], index=df.index)


def _instrument_runs_analyte(df: pd.DataFrame) -> pd.Series:
    return pd.Series(
        [i in ref.QC_ANALYTE_INSTRUMENTS.get(a, ()) for a, i in zip(df["analyte"], df["instrument"])],
        index=df.index,
    )


def _westgard_nesting(df: pd.DataFrame) -> pd.Series:
    return ~df["westgard_1_3s"].astype(bool) | df["westgard_1_2s"].astype(bool)


def _notification_consistency(df: pd.DataFrame) -> pd.Series:
    success = df["notification_success"].astype(bool)
    notified = df["notification_time"].notna()
    attempts = df["attempts_needed"].notna()
    return (success == notified) & (success == attempts)


def _incident_taxonomy(df: pd.DataFrame) -> pd.Series:
    known = {(t.category, t.type, t.severity) for t in ref.INCIDENT_TYPES}
    return pd.Series(
        [(c, t, s) in known for c, t, s in zip(df["category"], df["type"], df["severity"])],
        index=df.index,
    )


def _test_in_section(df: pd.DataFrame) -> pd.Series:
    def ok(test, section):
        try:
            return ref.section_for_category(ref.category_for_test(test)) == section
        except ReferenceLookupError:
            return False
    return pd.Series([ok(t, s) for t, s in zip(df["test"], df["section"])], index=df.index)


ROW_RULES: Dict[str, Callable[[pd.DataFrame], pd.Series]] = {
    "category_in_section": _category_in_section,
    "instrument_runs_analyte": _instrument_runs_analyte,
    "westgard_nesting": _westgard_nesting,
    "notification_consistency": _notification_consistency,
    "incident_taxonomy": _incident_taxonomy,
    "test_in_section": _test_in_section,
}


# =========================
# VALIDATOR
# =========================

class InvariantValidator:
    """
    Validates dataset instances against the schema registry

    Args:
        tolerance: Default absolute tolerance for numeric derivations;
            a derivation's own tolerance wins when it is larger
    """

    def __init__(self, tolerance: float = 0.01):
        self.tolerance = tolerance

    def validate(self, family: str, tables: Dict[str, pd.DataFrame]) -> ValidationReport:
        """
        Check every sub-table of a family

        Args:
            family: Family name
            tables: {sub_table: DataFrame}

        Returns:
            ValidationReport listing every violation
        """
        schema: FamilySchema = get_family(family)
        report = ValidationReport(family=family)

        for name, table_schema in schema.sub_tables.items():
            if name not in tables:
                report.violations.append(
                    Violation(family, name, None, "presence", "sub-table missing")
                )
                continue
            data = tables[name].reset_index(drop=True)
            report.rows_checked[name] = len(data)
            report.violations.extend(self._check_table(family, table_schema, data))

        for name in tables:
            if name not in schema.sub_tables:
                logger.debug(f"{family}: sub-table {name} is not part of the schema")

        if report.passed:
            logger.info(f"{family}: all invariants hold ({sum(report.rows_checked.values())} rows)")
        else:
            logger.warning(f"{family}: {len(report.violations)} invariant violations {report.by_rule()}")
            for v in report.violations[:10]:
                logger.warning(f"  {v}")

        return report

    def _check_table(self, family: str, table_schema: SubTableSchema, data: pd.DataFrame) -> List[Violation]:
        violations: List[Violation] = []
        name = table_schema.name

        def flag(field_name: Optional[str], rule: str, mask: pd.Series, describe: Callable[[int], str]):
            rows = np.flatnonzero(np.asarray(mask.fillna(False), dtype=bool))
            for row in rows:
                violations.append(Violation(family, name, field_name, rule, describe(int(row)), int(row)))

        missing = [f for f in table_schema.field_names if f not in data.columns]
        for field_name in missing:
            violations.append(Violation(family, name, field_name, "presence", "field missing"))

        for spec in table_schema.fields:
            if spec.name in missing:
                continue
            column = data[spec.name]

            if not spec.nullable and spec.role in (FieldRole.KEY, FieldRole.BASE):
                flag(spec.name, "not_null", column.isna(), lambda r: "missing value")

            if spec.is_numeric:
                values = pd.to_numeric(column, errors="coerce").astype(float)
                if spec.type == FieldType.COUNT:
                    flag(spec.name, "non_negative", values < 0,
                         lambda r, v=values: f"count {v.iloc[r]} < 0")
                if spec.lower_bound is not None and spec.type != FieldType.COUNT:
                    flag(spec.name, "bounds", values < spec.lower_bound - 1e-9,
                         lambda r, v=values, b=spec.lower_bound: f"{v.iloc[r]} < {b}")
                if spec.max_value is not None:
                    flag(spec.name, "bounds", values > spec.max_value + 1e-9,
                         lambda r, v=values, b=spec.max_value: f"{v.iloc[r]} > {b}")

            if spec.domain:
                allowed = {str(v) for v in ref.domain_values(spec.domain)}
                present = column.notna()
                outside = present & ~column.astype(str).isin(allowed)
                flag(spec.name, "domain", outside,
                     lambda r, c=column, d=spec.domain: f"{c.iloc[r]!r} not in {d}")

        for derivation in table_schema.derivations:
            if derivation.target in missing:
                continue
            try:
                expected = derivation.compute(data)
            except KeyError as e:
                violations.append(Violation(
                    family, name, derivation.target, "derivation", f"inputs missing: {e}"
                ))
                continue
            actual = data[derivation.target]
            mismatch = self._mismatch(actual, expected, max(self.tolerance, derivation.tolerance))
            flag(derivation.target, "derivation", mismatch,
                 lambda r, a=actual, e=expected, f=derivation.formula:
                     f"{a.iloc[r]!r} != {e.iloc[r]!r} ({f})")

        for rule in table_schema.row_rules:
            check = ROW_RULES[rule]
            try:
                ok = check(data)
            except KeyError as e:
                violations.append(Violation(family, name, None, rule, f"inputs missing: {e}"))
                continue
            flag(None, rule, ~ok.astype(bool), lambda r, rl=rule: f"row breaks {rl}")

        return violations

    @staticmethod
    def _mismatch(actual: pd.Series, expected: pd.Series, tolerance: float) -> pd.Series:
        """Rows where actual differs from expected; two nulls agree"""
        expected = pd.Series(expected, index=actual.index)
        both_null = actual.isna() & expected.isna()
        one_null = actual.isna() ^ expected.isna()

        if pd.api.types.is_bool_dtype(actual) or pd.api.types.is_bool_dtype(expected):
            differs = actual.astype(object) != expected.astype(object)
        elif pd.api.types.is_numeric_dtype(actual) and pd.api.types.is_numeric_dtype(expected):
            diff = (actual.astype(float) - expected.astype(float)).abs()
            differs = diff > tolerance + 1e-9
        else:
            differs = actual.astype(str) != expected.astype(str)

        return (one_null | (differs & ~actual.isna() & ~expected.isna())) & ~both_null
