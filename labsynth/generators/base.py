"""
Base Generator for Dataset Families

Shared period/grid helpers and the two-step generator contract:
`sample_base` draws the base fields of the base sub-tables and
`derive` recomputes everything else. `derive` is the single code path
used by both the parametric and the model-based strategy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import product
from typing import Any, Dict, List, Sequence
import logging
import string

import numpy as np
import pandas as pd
from faker import Faker

from ..exceptions import InvalidConfiguration
from ..schema import FieldType, FamilySchema, SubTableSchema, get_family

logger = logging.getLogger(__name__)

Tables = Dict[str, pd.DataFrame]


@dataclass(frozen=True)
class Period:
    """
    Generation date range

    Daily, monthly and quarterly grids include the end date; event
    timestamps fall in [start, end).
    """
    start: pd.Timestamp
    end: pd.Timestamp

    @classmethod
    def from_bounds(cls, start, end) -> "Period":
        start = pd.Timestamp(start).normalize()
        end = pd.Timestamp(end).normalize()
        if start >= end:
            raise InvalidConfiguration(f"Empty or reversed date range: {start.date()} to {end.date()}")
        return cls(start, end)

    @property
    def total_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def days(self) -> pd.DatetimeIndex:
        return pd.date_range(self.start, self.end, freq="D")

    def months(self) -> pd.DatetimeIndex:
        return pd.date_range(month_start(self.start), month_start(self.end), freq="MS")

    def quarters(self) -> pd.DatetimeIndex:
        return pd.date_range(quarter_start(self.start), quarter_start(self.end), freq="QS")

    def week_starts(self) -> pd.DatetimeIndex:
        return pd.date_range(week_start(self.start), self.end, freq="7D")

    def uniform_datetimes(self, rng: np.random.Generator, n: int) -> pd.Series:
        """n timestamps uniform over [start, end), truncated to whole seconds"""
        offsets = rng.uniform(0, self.total_seconds, n)
        return pd.Series(self.start + pd.to_timedelta(np.floor(offsets), unit="s"))


def month_start(value: Any) -> pd.Timestamp:
    return pd.Timestamp(value).to_period("M").to_timestamp()


def quarter_start(value: Any) -> pd.Timestamp:
    return pd.Timestamp(value).to_period("Q").to_timestamp()


def week_start(value: Any) -> pd.Timestamp:
    """Monday of the week containing value"""
    ts = pd.Timestamp(value).normalize()
    return ts - pd.Timedelta(days=ts.dayofweek)


def floor_to_month(column: pd.Series) -> pd.Series:
    return pd.to_datetime(column).dt.to_period("M").dt.to_timestamp()


def floor_to_week(column: pd.Series) -> pd.Series:
    dates = pd.to_datetime(column).dt.normalize()
    return dates - pd.to_timedelta(dates.dt.dayofweek, unit="D")


def expand_grid(**dimensions: Sequence) -> pd.DataFrame:
    """Cross product of dimensions; the last one varies fastest"""
    names = list(dimensions)
    rows = list(product(*(list(v) for v in dimensions.values())))
    return pd.DataFrame(rows, columns=names)


def make_faker(rng: np.random.Generator) -> Faker:
    """Faker instance seeded from the family stream"""
    faker = Faker()
    faker.seed_instance(int(rng.integers(0, 2 ** 31 - 1)))
    return faker


def provider_codes(faker: Faker, n: int) -> List[str]:
    """Pseudonymous ordering provider codes, e.g. 'Dr. KQ'"""
    return [faker.lexify("Dr. ??", letters=string.ascii_uppercase) for _ in range(n)]


def technician_codes(faker: Faker, n: int) -> List[str]:
    """Pseudonymous reporter codes, e.g. 'Tech M07'"""
    return [
        f"Tech {faker.random_uppercase_letter()}{faker.random_int(1, 50):02d}"
        for _ in range(n)
    ]


def round_half_even(values) -> np.ndarray:
    return np.round(np.asarray(values, dtype=float))


class FamilyGenerator(ABC):
    """
    Abstract base class for dataset family generators

    Subclasses set `name` and implement `sample_base` and `derive`.
    """

    name: str = ""

    def __init__(self):
        self.schema: FamilySchema = get_family(self.name)

    @abstractmethod
    def sample_base(self, rng: np.random.Generator, period: Period) -> Tables:
        """
        Draw the base fields of every base sub-table

        Args:
            rng: Family random stream
            period: Date range

        Returns:
            {sub_table: DataFrame} with key and base fields only
        """
        pass

    @abstractmethod
    def derive(self, tables: Tables, rng: np.random.Generator, period: Period) -> Tables:
        """
        Recompute derived fields and build dependent sub-tables

        Args:
            tables: Base sub-tables (parametric draws or synthesized)
            rng: Family random stream
            period: Date range

        Returns:
            Complete {sub_table: DataFrame} in schema order
        """
        pass

    def generate(self, rng: np.random.Generator, period: Period) -> Tables:
        """Parametric generation: derive(sample_base(...))"""
        tables = self.derive(self.sample_base(rng, period), rng, period)
        for name, data in tables.items():
            logger.info(f"{self.name}.{name}: {len(data)} rows")
        return tables

    def base_columns(self, sub_table: str) -> List[str]:
        table = self.schema.sub_table(sub_table)
        return table.keys + table.base_fields

    def finalize(self, tables: Tables) -> Tables:
        """Order sub-tables and columns by schema and coerce declared types"""
        result = {}
        for name, table_schema in self.schema.sub_tables.items():
            if name not in tables:
                continue
            result[name] = conform(tables[name], table_schema)
        return result


def conform(data: pd.DataFrame, table_schema: SubTableSchema) -> pd.DataFrame:
    """Schema fields first (declared order), any extra columns after"""
    data = data.reset_index(drop=True)
    ordered = [c for c in table_schema.field_names if c in data.columns]
    extra = [c for c in data.columns if c not in ordered]
    data = data[ordered + extra].copy()

    for spec in table_schema.fields:
        if spec.name not in data.columns:
            continue
        column = data[spec.name]
        if spec.type in (FieldType.COUNT, FieldType.INTEGER):
            values = pd.to_numeric(column).round()
            if spec.nullable or values.isna().any():
                data[spec.name] = values.astype("Int64")
            else:
                data[spec.name] = values.astype("int64")
        elif spec.type in (FieldType.FLOAT, FieldType.RATE):
            data[spec.name] = pd.to_numeric(column).astype(float)
        elif spec.type == FieldType.BOOLEAN:
            data[spec.name] = column.astype(bool)
        elif spec.type == FieldType.DATE:
            data[spec.name] = pd.to_datetime(column).dt.normalize()
        elif spec.type == FieldType.DATETIME:
            data[spec.name] = pd.to_datetime(column)
    return data
