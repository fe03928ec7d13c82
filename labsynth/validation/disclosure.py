import pandas as pd
import numpy as np
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
import logging

from ..schema import FieldType, SubTableSchema

logger = logging.getLogger(__name__)

EPOCH = pd.Timestamp("1970-01-01")


# =========================================================
# ROW SIGNATURES
# =========================================================

def normalize_fields(data: pd.DataFrame, table_schema: SubTableSchema, fields: List[str]) -> pd.DataFrame:
    """
    Bring fitted fields to a dtype-independent form

    Categoricals compare as strings, numbers as floats rounded to 6
    decimals, dates and datetimes as whole seconds since the epoch.
    """
    normalized = {}
    for name in fields:
        spec = table_schema.get_field(name)
        column = data[name]
        if spec.type in (FieldType.DATE, FieldType.DATETIME):
            seconds = (pd.to_datetime(column) - EPOCH) / pd.Timedelta(seconds=1)
            normalized[name] = np.floor(seconds.astype(float))
        elif spec.is_numeric:
            normalized[name] = pd.to_numeric(column).astype(float).round(6)
        else:
            normalized[name] = column.astype(str).where(column.notna(), "<NA>")
    return pd.DataFrame(normalized, index=data.index)


def row_signatures(data: pd.DataFrame, table_schema: SubTableSchema, fields: List[str]) -> np.ndarray:
    """One 64-bit hash per row over the given fields"""
    if data.empty:
        return np.array([], dtype=np.uint64)
    normalized = normalize_fields(data, table_schema, fields)
    return pd.util.hash_pandas_object(normalized, index=False).to_numpy()


# =========================================================
# DATA STRUCTURES
# =========================================================

@dataclass
class DisclosureReport:
    family: str
    sub_table: str
    fields: List[str]
    exact_matches: int
    match_rate: float
    passed: bool
    uniqueness: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self):
        symbol = "✓" if self.passed else "✗"
        return (f"{symbol} {self.family}.{self.sub_table}: "
                f"{self.exact_matches} exact source matches ({self.match_rate:.3%})")

    def to_dict(self):
        return {
            "sub_table": self.sub_table,
            "fields": self.fields,
            "exact_matches": self.exact_matches,
            "match_rate": self.match_rate,
            "passed": self.passed,
            "uniqueness": self.uniqueness,
        }


# =========================================================
# DISCLOSURE VALIDATOR
# =========================================================

class DisclosureValidator:
    """
    Checks that no synthetic row reproduces a source row

    A row counts as a match when it equals some source row on every
    fitted field; key fields alone are public grid values and never
    count.
    """

    def __init__(self, rare_threshold: int = 3):
        self.rare_threshold = rare_threshold

    def validate(self, family: str, table_schema: SubTableSchema,
                 source: pd.DataFrame, synthetic: pd.DataFrame,
                 fields: Optional[List[str]] = None) -> DisclosureReport:

        if fields is None:
            fields = table_schema.keys + table_schema.base_fields
        fields = [f for f in fields if f in source.columns and f in synthetic.columns]

        source_rows = set(row_signatures(source, table_schema, fields).tolist())
        synthetic_rows = row_signatures(synthetic, table_schema, fields)
        matches = int(sum(1 for s in synthetic_rows.tolist() if s in source_rows))
        rate = matches / len(synthetic) if len(synthetic) else 0.0

        report = DisclosureReport(
            family=family,
            sub_table=table_schema.name,
            fields=fields,
            exact_matches=matches,
            match_rate=float(rate),
            passed=matches == 0,
            uniqueness=self._uniqueness(synthetic, table_schema),
        )

        if not report.passed:
            logger.warning(f"{family}.{table_schema.name}: {matches} synthetic rows copy a source row")
        return report

    def _uniqueness(self, synthetic: pd.DataFrame, table_schema: SubTableSchema) -> Dict[str, Any]:
        """Rare combinations of the categorical base fields"""
        columns = [
            spec.name for spec in table_schema.fields_of_type(FieldType.CATEGORICAL, FieldType.BOOLEAN)
            if spec.name in table_schema.base_fields and spec.name in synthetic.columns
        ]
        # never groupby([])
        if not columns or synthetic.empty:
            return {"columns_analyzed": columns}

        grouped = synthetic.groupby(columns, dropna=False).size()
        return {
            "columns_analyzed": columns,
            "total_combinations": int(len(grouped)),
            "unique_records": int((grouped == 1).sum()),
            "rare_records": int((grouped <= self.rare_threshold).sum()),
            "min_group_size": int(grouped.min()),
        }
