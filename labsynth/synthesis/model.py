"""
Sequential Synthesizer

Model-based synthesis of one base sub-table from a real source table.
Fields are synthesized one at a time, each conditioned on the fields
visited before it: grid keys first, then categorical fields, then
numeric and temporal fields.

- Categorical and boolean fields: conditional frequencies given the
  most informative earlier categoricals, backing off to fewer parents
  when a cell is sparse.
- Numeric, date and datetime fields: least-squares regression on earlier
  fields plus a residual distribution picked by DistributionFitter.
- Temporal fields declared `after` another field: the non-negative gap
  to that field is modelled instead of the absolute time.
- Missing values: an indicator column modelled like a categorical field.

Derived and identifier fields never enter the fit. The family's derive
step recomputes them from the sampled base fields.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd

from ..exceptions import SchemaMismatch
from ..schema import FieldType, SubTableSchema
from ..validation.disclosure import row_signatures
from .fitting import DistributionFitter, DistributionParams

logger = logging.getLogger(__name__)


EPOCH = pd.Timestamp("1970-01-01")
MISSING = "__missing__"
MAX_PARENTS = 2
MIN_CELL_SIZE = 5
ROWS_PER_COEFFICIENT = 10

CATEGORICAL_TYPES = (FieldType.CATEGORICAL, FieldType.BOOLEAN, FieldType.TEXT)
TEMPORAL_TYPES = (FieldType.DATE, FieldType.DATETIME)


@dataclass
class CategoricalFieldModel:
    """Conditional frequency table of one categorical column"""
    name: str
    parents: List[str]
    categories: List[Any]
    marginal: np.ndarray
    # depth k -> {values of parents[:k]: probabilities}
    conditional: Dict[int, Dict[Tuple, np.ndarray]]


@dataclass
class NumericFieldModel:
    """Regression of one numeric or temporal column on earlier columns"""
    name: str
    field_type: FieldType
    is_integer: bool
    min_value: float
    max_value: float
    predictors: List[str]
    coefficients: np.ndarray
    residuals: DistributionParams
    residual_shift: float
    missing: Optional[CategoricalFieldModel] = None
    # temporal field fitted as a non-negative gap after this field
    anchor: Optional[str] = None


FieldModel = Union[CategoricalFieldModel, NumericFieldModel]


@dataclass
class SynthesisModel:
    """
    Fitted model of one base sub-table

    Holds aggregate statistics only. `grid` carries the key values of the
    table (public reference values such as date x section) and
    `source_signatures` one-way row hashes used to reject verbatim copies.
    """
    family: str
    table_schema: SubTableSchema
    n_rows: int
    grid: Optional[pd.DataFrame]
    levels: Dict[str, List[Any]]
    means: Dict[str, float]
    visit_sequence: List[FieldModel]
    source_signatures: np.ndarray

    @property
    def fitted_fields(self) -> List[str]:
        return self.table_schema.keys + self.table_schema.base_fields


def _to_days(column: pd.Series) -> pd.Series:
    return (pd.to_datetime(column) - EPOCH) / pd.Timedelta(days=1)


def _from_days(values: np.ndarray, field_type: FieldType) -> pd.Series:
    stamps = pd.Series(EPOCH + pd.to_timedelta(values, unit="D"))
    if field_type == FieldType.DATE:
        return stamps.dt.floor("D")
    return stamps.dt.floor("s")


def _mutual_information(x: pd.Series, y: pd.Series) -> float:
    joint = pd.crosstab(x.astype(str), y.astype(str)).to_numpy(dtype=float)
    total = joint.sum()
    if total == 0:
        return 0.0
    joint = joint / total
    expected = joint.sum(axis=1, keepdims=True) @ joint.sum(axis=0, keepdims=True)
    nonzero = joint > 0
    return float((joint[nonzero] * np.log(joint[nonzero] / expected[nonzero])).sum())


def _cell_keys(frame: pd.DataFrame, parents: List[str]) -> List[Tuple]:
    return list(zip(*(frame[p].tolist() for p in parents)))


class SequentialSynthesizer:
    """
    Fits a sequential conditional model to a source sub-table and samples
    synthetic rows from it

    Args:
        family: Dataset family name
        table_schema: Schema of the base sub-table being synthesized
        distribution: Residual distribution ('auto' picks the best KS fit)
        max_resample_attempts: Redraws allowed for rows that copy a source row
    """

    def __init__(self, family: str, table_schema: SubTableSchema,
                 distribution: str = "auto", max_resample_attempts: int = 10):
        self.family = family
        self.table_schema = table_schema
        self.distribution = distribution
        self.max_resample_attempts = max_resample_attempts
        self.fitter = DistributionFitter()

    # ------------------------------------------------------------------
    # Source checks
    # ------------------------------------------------------------------

    def check_source(self, source: pd.DataFrame) -> pd.DataFrame:
        """
        Verify the source has every key and base field with usable types

        Returns:
            The source restricted to key and base fields, with dates parsed

        Raises:
            SchemaMismatch: on missing columns, an empty table or
                values that cannot be read as the declared type
        """
        schema = self.table_schema
        required = schema.keys + schema.base_fields
        missing = [c for c in required if c not in source.columns]
        if missing:
            raise SchemaMismatch(self.family, schema.name, missing)
        if source.empty:
            raise SchemaMismatch(self.family, schema.name, detail="source table is empty")

        ignored = [c for c in source.columns if c not in required]
        unknown = [c for c in ignored if c not in schema.field_names]
        if unknown:
            logger.warning(f"{self.family}.{schema.name}: ignoring unknown source columns {unknown}")
        if len(ignored) > len(unknown):
            logger.debug(f"{self.family}.{schema.name}: derived and identifier columns are recomputed, not fitted")

        checked = source[required].reset_index(drop=True).copy()
        for name in required:
            spec = schema.get_field(name)
            column = checked[name]
            if spec.type in TEMPORAL_TYPES:
                converted = pd.to_datetime(column, errors="coerce")
            elif spec.is_numeric:
                converted = pd.to_numeric(column, errors="coerce")
            else:
                continue
            unreadable = converted.isna() & column.notna()
            if unreadable.any():
                raise SchemaMismatch(
                    self.family, schema.name,
                    detail=f"{name} has {int(unreadable.sum())} values that are not {spec.type.value}"
                )
            checked[name] = converted
        return checked

    # ------------------------------------------------------------------
    # Fit
    # ------------------------------------------------------------------

    def fit(self, source: pd.DataFrame) -> SynthesisModel:
        """
        Fit the visit sequence to a checked source table

        Args:
            source: Output of check_source

        Returns:
            Fitted SynthesisModel
        """
        schema = self.table_schema
        frame = self._encode(source)
        levels: Dict[str, List[Any]] = {}
        means: Dict[str, float] = {}
        visited: List[str] = []
        categorical_visited: List[str] = []
        sequence: List[FieldModel] = []

        for name in schema.keys:
            self._register(name, frame, levels, means)
            visited.append(name)
            if name in levels:
                categorical_visited.append(name)

        categorical = [n for n in schema.base_fields if schema.get_field(n).type in CATEGORICAL_TYPES]
        numeric = [n for n in schema.base_fields if n not in categorical]

        for name in categorical:
            model = self._fit_categorical(name, frame[name], frame, categorical_visited)
            sequence.append(model)
            self._register(name, frame, levels, means)
            visited.append(name)
            categorical_visited.append(name)

        absolute = frame.copy()
        anchors = {}
        for position, name in enumerate(numeric):
            anchor = self._anchor_of(name, schema.keys + numeric[:position])
            if anchor is not None:
                anchors[name] = anchor
                frame[name] = absolute[name] - absolute[anchor]

        for name in numeric:
            indicator = None
            if frame[name].isna().any():
                indicator_name = f"{name}{MISSING}"
                frame[indicator_name] = frame[name].isna()
                indicator = self._fit_categorical(indicator_name, frame[indicator_name], frame, categorical_visited)
                self._register(indicator_name, frame, levels, means)
                visited.append(indicator_name)
                categorical_visited.append(indicator_name)
            model = self._fit_numeric(name, frame, visited, levels, means, anchors.get(name))
            model.missing = indicator
            sequence.append(model)
            self._register(name, frame, levels, means)
            visited.append(name)

        grid = source[schema.keys].reset_index(drop=True).copy() if schema.keys else None

        logger.info(
            f"Fitted {self.family}.{schema.name} on {len(source)} rows: "
            f"{len(categorical)} categorical, {len(numeric)} numeric fields"
        )

        return SynthesisModel(
            family=self.family,
            table_schema=schema,
            n_rows=len(source),
            grid=grid,
            levels=levels,
            means=means,
            visit_sequence=sequence,
            source_signatures=np.unique(row_signatures(source, schema, schema.keys + schema.base_fields)),
        )

    def _encode(self, data: pd.DataFrame) -> pd.DataFrame:
        """Working form: temporal as float days, categoricals with an explicit missing level"""
        encoded = {}
        for name in data.columns:
            spec = self.table_schema.get_field(name)
            column = data[name]
            if spec.type in TEMPORAL_TYPES:
                encoded[name] = _to_days(column).astype(float)
            elif spec.is_numeric:
                encoded[name] = pd.to_numeric(column).astype(float)
            else:
                encoded[name] = column.astype(object).where(column.notna(), MISSING)
        return pd.DataFrame(encoded, index=data.index)

    @staticmethod
    def _register(name: str, frame: pd.DataFrame, levels: Dict, means: Dict):
        column = frame[name]
        if column.dtype == object or column.dtype == bool:
            levels[name] = sorted(column.unique().tolist(), key=str)
        else:
            mean = column.mean()
            means[name] = float(mean) if pd.notna(mean) else 0.0

    def _fit_categorical(self, name: str, target: pd.Series, frame: pd.DataFrame,
                         candidates: List[str]) -> CategoricalFieldModel:
        categories = sorted(target.unique().tolist(), key=str)
        codes = pd.Categorical(target, categories=categories).codes
        marginal = np.bincount(codes, minlength=len(categories)) / len(codes)

        scored = [(_mutual_information(frame[c], target), i, c) for i, c in enumerate(candidates)]
        scored = sorted((s for s in scored if s[0] > 1e-9), key=lambda s: (-s[0], s[1]))
        parents = [c for _, _, c in scored[:MAX_PARENTS]]

        conditional: Dict[int, Dict[Tuple, np.ndarray]] = {}
        for depth in range(1, len(parents) + 1):
            counts: Dict[Tuple, np.ndarray] = {}
            for key, code in zip(_cell_keys(frame, parents[:depth]), codes):
                counts.setdefault(key, np.zeros(len(categories)))[code] += 1
            conditional[depth] = {
                key: cell / cell.sum() for key, cell in counts.items() if cell.sum() >= MIN_CELL_SIZE
            }

        return CategoricalFieldModel(name, parents, categories, marginal, conditional)

    def _anchor_of(self, name: str, earlier: List[str]) -> Optional[str]:
        spec = self.table_schema.get_field(name)
        if spec.type in TEMPORAL_TYPES and spec.after in earlier:
            return spec.after
        return None

    def _select_predictors(self, visited: List[str], levels: Dict, budget: int) -> List[str]:
        numeric = [n for n in visited if n not in levels]
        categorical = sorted((n for n in visited if n in levels), key=lambda n: len(levels[n]))
        selected, used = [], 0
        for name in numeric + categorical:
            width = len(levels[name]) - 1 if name in levels else 1
            if width <= 0:
                continue
            if used + width <= budget:
                selected.append(name)
                used += width
        return selected

    def _fit_numeric(self, name: str, frame: pd.DataFrame, visited: List[str],
                     levels: Dict, means: Dict, anchor: Optional[str] = None) -> NumericFieldModel:
        spec = self.table_schema.get_field(name)
        observed = frame[frame[name].notna()]
        y = observed[name].to_numpy(dtype=float)

        budget = max(0, len(observed) // ROWS_PER_COEFFICIENT - 1)
        predictors = self._select_predictors(visited, levels, budget)
        design = self._design(observed, predictors, levels, means)
        coefficients, *_ = np.linalg.lstsq(design, y, rcond=None)

        residuals = y - design @ coefficients
        # positive support for the skewed candidates
        spread = float(np.ptp(residuals)) or 1.0
        shift = float(residuals.min()) - 1e-6 * spread
        residual_params = self.fitter.fit(residuals - shift, self.distribution)

        lower, upper = float(y.min()), float(y.max())
        if spec.type not in TEMPORAL_TYPES:
            if spec.lower_bound is not None:
                lower = max(lower, spec.lower_bound)
            if spec.max_value is not None:
                upper = min(upper, spec.max_value)
        if anchor is not None:
            lower, upper = max(lower, 0.0), max(upper, 0.0)

        logger.debug(
            f"{self.family}.{self.table_schema.name}.{name}: {len(predictors)} predictors, "
            f"residuals {residual_params.distribution}"
        )

        return NumericFieldModel(
            name=name,
            field_type=spec.type,
            is_integer=spec.is_integer,
            min_value=lower,
            max_value=upper,
            predictors=predictors,
            coefficients=coefficients,
            residuals=residual_params,
            residual_shift=shift,
            anchor=anchor,
        )

    @staticmethod
    def _design(frame: pd.DataFrame, predictors: List[str], levels: Dict, means: Dict) -> np.ndarray:
        columns = [np.ones(len(frame))]
        for name in predictors:
            if name in levels:
                values = frame[name].to_numpy(dtype=object)
                for level in levels[name][1:]:
                    columns.append(np.array([v == level for v in values], dtype=float))
            else:
                values = frame[name].to_numpy(dtype=float)
                columns.append(np.where(np.isnan(values), means[name], values))
        return np.column_stack(columns)

    # ------------------------------------------------------------------
    # Sample
    # ------------------------------------------------------------------

    def sample(self, model: SynthesisModel, n: Optional[int], rng: np.random.Generator) -> pd.DataFrame:
        """
        Draw a synthetic sub-table

        Args:
            model: Fitted model
            n: Row count; None keeps the source row count (or the full
                grid when the table has keys)
            rng: Family random stream

        Returns:
            DataFrame of key and base fields
        """
        start = self._start_frame(model, n, rng)
        synthetic = self._decode(model, self._draw(model, start, rng))

        fields = model.fitted_fields
        for attempt in range(self.max_resample_attempts):
            copied = np.isin(row_signatures(synthetic, model.table_schema, fields), model.source_signatures)
            if not copied.any():
                break
            logger.debug(f"{model.family}.{model.table_schema.name}: redrawing {int(copied.sum())} copied rows")
            redraw = self._decode(model, self._draw(model, start.loc[copied], rng))
            for column in redraw.columns:
                synthetic.loc[redraw.index, column] = redraw[column]
        else:
            copied = np.isin(row_signatures(synthetic, model.table_schema, fields), model.source_signatures)
            if copied.any():
                logger.warning(
                    f"{model.family}.{model.table_schema.name}: {int(copied.sum())} rows still match "
                    f"a source row after {self.max_resample_attempts} redraws"
                )

        return synthetic

    def synthesize(self, source: pd.DataFrame, n: Optional[int], rng: np.random.Generator) -> pd.DataFrame:
        """check_source, fit and sample in one call"""
        checked = self.check_source(source)
        model = self.fit(checked)
        return self.sample(model, n, rng)

    def _start_frame(self, model: SynthesisModel, n: Optional[int], rng: np.random.Generator) -> pd.DataFrame:
        if model.grid is None:
            return pd.DataFrame(index=pd.RangeIndex(n or model.n_rows))
        grid = model.grid
        if n is None or n == len(grid):
            start = grid.copy()
        else:
            picks = np.sort(rng.choice(len(grid), size=n, replace=n > len(grid)))
            start = grid.iloc[picks]
        return self._encode(start.reset_index(drop=True))

    def _draw(self, model: SynthesisModel, start: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
        frame = start.copy()
        for field_model in model.visit_sequence:
            if isinstance(field_model, CategoricalFieldModel):
                frame[field_model.name] = self._draw_categorical(field_model, frame, rng)
                continue
            missing = None
            if field_model.missing is not None:
                indicator = field_model.missing.name
                frame[indicator] = self._draw_categorical(field_model.missing, frame, rng)
                missing = frame[indicator].to_numpy(dtype=bool)
            values = self._draw_numeric(field_model, frame, model, rng)
            if missing is not None:
                values[missing] = np.nan
            frame[field_model.name] = values
        return frame

    @staticmethod
    def _draw_categorical(field_model: CategoricalFieldModel, frame: pd.DataFrame,
                          rng: np.random.Generator) -> pd.Series:
        n = len(frame)
        probabilities = np.tile(field_model.marginal, (n, 1))
        parents = field_model.parents
        if parents:
            # deepest populated cell wins, the marginal is the last resort
            filled = np.zeros(n, dtype=bool)
            for depth in range(len(parents), 0, -1):
                cells = field_model.conditional.get(depth, {})
                for row, key in enumerate(_cell_keys(frame, parents[:depth])):
                    if filled[row]:
                        continue
                    cell = cells.get(key)
                    if cell is not None:
                        probabilities[row] = cell
                        filled[row] = True

        cumulative = probabilities.cumsum(axis=1)
        draws = rng.random(n)[:, None]
        codes = np.minimum((draws >= cumulative).sum(axis=1), len(field_model.categories) - 1)
        categories = np.empty(len(field_model.categories), dtype=object)
        categories[:] = field_model.categories
        return pd.Series(categories[codes], index=frame.index, dtype=object)

    def _draw_numeric(self, field_model: NumericFieldModel, frame: pd.DataFrame,
                      model: SynthesisModel, rng: np.random.Generator) -> np.ndarray:
        design = self._design(frame, field_model.predictors, model.levels, model.means)
        noise = field_model.residuals.generate(len(frame), rng) + field_model.residual_shift
        values = design @ field_model.coefficients + noise
        values = np.clip(values, field_model.min_value, field_model.max_value)
        if field_model.is_integer:
            values = np.round(values)
        return values.astype(float)

    def _decode(self, model: SynthesisModel, frame: pd.DataFrame) -> pd.DataFrame:
        """Back to schema-native types, key and base fields only"""
        schema = model.table_schema
        frame = self._absolute_times(model, frame)
        decoded = {}
        for name in model.fitted_fields:
            spec = schema.get_field(name)
            column = frame[name]
            if spec.type in TEMPORAL_TYPES:
                decoded[name] = _from_days(column.to_numpy(dtype=float), spec.type).to_numpy()
            elif spec.is_numeric:
                decoded[name] = column.to_numpy(dtype=float)
            else:
                values = column.where(column != MISSING, None)
                if spec.type == FieldType.BOOLEAN and values.notna().all():
                    values = values.astype(bool)
                decoded[name] = values.to_numpy()
        return pd.DataFrame(decoded, index=frame.index)

    @staticmethod
    def _absolute_times(model: SynthesisModel, frame: pd.DataFrame) -> pd.DataFrame:
        """Add each sampled gap to its anchor, anchors first"""
        anchored = [
            m for m in model.visit_sequence
            if isinstance(m, NumericFieldModel) and m.anchor is not None
        ]
        if not anchored:
            return frame
        frame = frame.copy()
        for field_model in anchored:
            frame[field_model.name] = frame[field_model.name] + frame[field_model.anchor]
        return frame
