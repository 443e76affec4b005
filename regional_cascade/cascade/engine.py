"""
Geographic cascade engine.

Fills every (fine entity, year) cell of a fixed skeleton from the finest
hierarchy level that has a value: the entity itself, then its intermediate
parent, then its coarse ancestor. Each cell records the level that supplied
it. An intermediate value is copied unchanged to every fine child without
own data; there is no weighting between siblings.

Optionally each fine entity's series is then gap-filled and extended by the
imputation pipeline, independently of every other entity.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..config.settings import PipelineSettings
from ..data.models import CascadedPanel, GeoLevel, VariableCascade, classify_levels
from ..data.panel import KEY_COLUMNS, long_values, standardize_year, year_axis
from ..data.reference import HierarchyReference, as_hierarchy_reference
from ..exceptions import PreconditionError, require_columns
from ..imputation.pipeline import impute_series
from ..logging_config import get_logger, get_performance_logger

logger = get_logger(__name__)
perf_logger = get_performance_logger(__name__)

# Reference column used to look up each level's values for a fine entity
LEVEL_KEYS = {
    GeoLevel.FINE: 'entity_id',
    GeoLevel.INTERMEDIATE: 'intermediate_id',
    GeoLevel.COARSE: 'coarse_id',
}

AGGREGATORS = ('first', 'mean', 'max', 'min')


def prepare_input(data: pd.DataFrame, vars: Sequence[str]) -> pd.DataFrame:
    """
    Validate a raw variable table and tag each row with its ``GeoLevel``.

    Raises:
        MissingColumnError: If ``entity_id`` or any of ``vars`` is absent
        GeoLevelError: If an entity id maps to no level
    """
    if 'year' not in data.columns:
        data = standardize_year(data)
    require_columns(data.columns, KEY_COLUMNS + list(vars))

    prepared = data[KEY_COLUMNS + list(vars)].copy()
    prepared['entity_id'] = prepared['entity_id'].astype(str).str.strip()
    prepared['year'] = prepared['year'].astype(int)
    prepared['level'] = classify_levels(prepared['entity_id'])
    return prepared


def _align_level(values: pd.DataFrame, level: GeoLevel, skeleton: pd.DataFrame) -> np.ndarray:
    """Values of one level aligned with the skeleton rows; the first row per (id, year) wins."""
    key = LEVEL_KEYS[level]
    lookup = values.loc[values['level'] == level.value, KEY_COLUMNS + ['value']] \
        .drop_duplicates(KEY_COLUMNS, keep='first') \
        .rename(columns={'entity_id': key})
    aligned = skeleton[[key, 'year']].merge(lookup, on=[key, 'year'], how='left')
    return aligned['value'].to_numpy(dtype=np.float64)


def resolve_levels(candidates: Dict[GeoLevel, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pick, per cell, the value of the finest level that has one.

    Args:
        candidates: Aligned value arrays per level, NaN where absent

    Returns:
        Tuple of (values, source_level) where source level is -1 if no
        level had a value
    """
    ordered = sorted(candidates, reverse=True)
    conditions = [~np.isnan(candidates[level]) for level in ordered]
    values = np.select(conditions, [candidates[level] for level in ordered], default=np.nan)
    source = np.select(conditions, [level.value for level in ordered], default=-1)
    return values, source


def _as_source_level(source: np.ndarray, index: pd.Index) -> pd.Series:
    levels = pd.Series(source, index=index, dtype='Int64')
    return levels.mask(levels < 0)


class CascadeEngine:
    """
    Cascades mixed-granularity panels onto the fine-level skeleton.
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = (settings or PipelineSettings()).ensure_valid()

    @staticmethod
    def build_skeleton(reference: HierarchyReference, years: Sequence[int]) -> pd.DataFrame:
        """Cross product of every fine entity with every year, sorted by entity and year."""
        ref = reference.table.rename(columns={'fine_id': 'entity_id'})
        grid = pd.DataFrame({'year': np.asarray(list(years), dtype=np.int64)})
        skeleton = ref.merge(grid, how='cross')
        return skeleton[['entity_id', 'year', 'intermediate_id', 'coarse_id']] \
            .sort_values(KEY_COLUMNS, kind='mergesort') \
            .reset_index(drop=True)

    def cascade_variable(self, prepared: pd.DataFrame, var: str,
                         skeleton: pd.DataFrame) -> VariableCascade:
        """Resolve one variable over the skeleton."""
        values = long_values(prepared, var, keep=['level'])
        candidates = {level: _align_level(values, level, skeleton) for level in GeoLevel}

        resolved, source = resolve_levels(candidates)
        return VariableCascade(
            name=var,
            values=pd.Series(resolved, index=skeleton.index, name=var),
            source_level=_as_source_level(source, skeleton.index),
        )

    def run(self,
            data: pd.DataFrame,
            vars: Sequence[str],
            hierarchy_ref: Union[HierarchyReference, pd.DataFrame],
            years: Optional[Iterable[int]] = None,
            impute: Optional[bool] = None,
            forecast_to: Optional[int] = None) -> CascadedPanel:
        """
        Cascade ``vars`` to the fine level and optionally impute.

        Args:
            data: Long table with ``entity_id``, ``year`` and one column per variable
            vars: Variables to cascade
            hierarchy_ref: Fine entities with their intermediate/coarse ancestors
            years: Year axis; defaults to the distinct years in ``data``
            impute: Run per-entity imputation (defaults to settings)
            forecast_to: Extend and forecast up to this year when imputing

        Returns:
            CascadedPanel aligned with the (entity, year) skeleton
        """
        vars = list(vars)
        impute = self.settings.cascade.impute if impute is None else impute
        if forecast_to is None:
            forecast_to = self.settings.cascade.forecast_to

        prepared = prepare_input(data, vars)
        reference = as_hierarchy_reference(hierarchy_ref)
        year_grid = year_axis(prepared, years)

        with perf_logger.timer("cascade", variables=len(vars), entities=len(reference), years=len(year_grid)):
            skeleton = self.build_skeleton(reference, year_grid)
            panel = CascadedPanel(keys=skeleton)
            for i, var in enumerate(vars, start=1):
                panel.variables[var] = self.cascade_variable(prepared, var, skeleton)
                perf_logger.log_progress("cascade", i, len(vars), variable=var)

            if impute:
                with perf_logger.timer("imputation", variables=len(vars), forecast_to=forecast_to):
                    panel = self.impute_panel(panel, reference, forecast_to)

        return panel

    def extend_years(self, panel: CascadedPanel, reference: HierarchyReference,
                     forecast_to: int) -> CascadedPanel:
        """Append empty rows for every fine entity up to ``forecast_to``."""
        last_year = int(panel.keys['year'].max())
        extra = self.build_skeleton(reference, range(last_year + 1, int(forecast_to) + 1))
        keys = pd.concat([panel.keys, extra], ignore_index=True) \
            .sort_values(KEY_COLUMNS, kind='mergesort')
        order = keys.index
        keys = keys.reset_index(drop=True)

        variables = {}
        for name, result in panel.variables.items():
            # appended rows have no label in the old index and come back missing
            values = result.values.reindex(order).reset_index(drop=True)
            source = result.source_level.reindex(order).reset_index(drop=True)
            variables[name] = VariableCascade(name, values.rename(name), source)

        logger.debug(f"Extended year axis from {last_year} to {forecast_to}")
        return CascadedPanel(keys=keys, variables=variables, imputed=panel.imputed)

    def impute_panel(self, panel: CascadedPanel, reference: HierarchyReference,
                     forecast_to: Optional[int] = None) -> CascadedPanel:
        """
        Impute every variable entity by entity.

        Series that are entirely missing over the observed years are left
        untouched with missing flags; complete series keep their values with
        flag 0. Everything else goes through ``impute_series``. Rows added
        beyond the observed years are filled by the forecast (flag 2).
        """
        if panel.keys.empty:
            logger.debug("Empty skeleton, nothing to impute")
            for result in panel.variables.values():
                result.imputation_flag = pd.Series(pd.array([], dtype='Int8'), index=panel.keys.index,
                                                   name=result.flag_column)
            panel.imputed = True
            return panel

        observed_last = int(panel.keys['year'].max())
        extend = forecast_to is not None and forecast_to > observed_last
        if extend:
            panel = self.extend_years(panel, reference, forecast_to)

        years = panel.keys['year'].to_numpy()
        observed = years <= observed_last
        blocks = panel.keys.groupby('entity_id', sort=False).indices

        for name, result in panel.variables.items():
            values = result.values.to_numpy(dtype=np.float64, copy=True)
            flags = pd.array([pd.NA] * len(values), dtype='Int8')

            outcomes = self._run_entities(values, years, observed, blocks, forecast_to if extend else None)
            for positions, filled, series_flags in outcomes:
                values[positions] = filled
                if series_flags is not None:
                    flags[positions] = series_flags

            result.values = pd.Series(values, index=panel.keys.index, name=name)
            result.imputation_flag = pd.Series(flags, index=panel.keys.index, name=result.flag_column)

        panel.imputed = True
        return panel

    def _impute_entity(self, values: np.ndarray, years: np.ndarray, observed: np.ndarray,
                       positions: np.ndarray, forecast_to: Optional[int]):
        """Impute one entity's rows; returns (positions, values, flags), flags None when all missing."""
        sub_observed = positions[observed[positions]]
        series = values[sub_observed]
        missing = np.isnan(series)

        if missing.all():
            return positions, values[positions], None
        if not missing.any() and forecast_to is None:
            return positions, values[positions], np.zeros(positions.size, dtype=np.int8)

        result = impute_series(series, years[sub_observed], forecast_to=forecast_to, settings=self.settings)
        return positions, result.values, result.flags

    def _run_entities(self, values: np.ndarray, years: np.ndarray, observed: np.ndarray,
                      jobs: Dict[Any, np.ndarray], forecast_to: Optional[int]) -> List[tuple]:
        max_workers = self.settings.cascade.max_workers
        if max_workers <= 1 or len(jobs) <= 1:
            return [self._impute_entity(values, years, observed, positions, forecast_to)
                    for positions in jobs.values()]

        results = []
        with ThreadPoolExecutor(max_workers=min(max_workers, len(jobs))) as executor:
            future_to_entity = {
                executor.submit(self._impute_entity, values, years, observed, positions, forecast_to): entity
                for entity, positions in jobs.items()
            }
            for future in as_completed(future_to_entity):
                results.append(future.result())
                logger.debug(f"Imputed entity {future_to_entity[future]}")
        return results


def cascade_to_fine(data: pd.DataFrame,
                    vars: Sequence[str],
                    hierarchy_ref: Union[HierarchyReference, pd.DataFrame],
                    years: Optional[Iterable[int]] = None,
                    impute: bool = True,
                    forecast_to: Optional[int] = None,
                    settings: Optional[PipelineSettings] = None) -> pd.DataFrame:
    """
    Cascade ``vars`` onto the fine-level skeleton and return the wide table.

    Columns are ``entity_id, year``, each variable, ``src_<v>_level`` and,
    when ``impute`` is true, ``imp_<v>_flag``.
    """
    engine = CascadeEngine(settings)
    panel = engine.run(data, vars, hierarchy_ref, years=years, impute=impute, forecast_to=forecast_to)
    return panel.to_frame()


def _reducer(agg: Union[str, Callable]) -> Union[str, Callable]:
    if callable(agg):
        return agg
    if agg not in AGGREGATORS:
        raise PreconditionError(
            f"agg must be a callable or one of {AGGREGATORS}, got '{agg}'",
            context={'agg': agg}
        )
    return agg


def cascade_available(data: pd.DataFrame,
                      vars: Sequence[str],
                      hierarchy_ref: Union[HierarchyReference, pd.DataFrame],
                      years: Optional[Iterable[int]] = None,
                      agg: Union[str, Callable] = "first") -> pd.DataFrame:
    """
    Cascade without building the full skeleton.

    Only (fine entity, year) pairs that receive a value from some level are
    returned, and only for fine entities in coarse units present in
    ``data``. Duplicate rows per (entity, year) at one level are combined
    with ``agg``. Per-variable results are outer-joined.

    Args:
        data: Long table with ``entity_id``, ``year`` and the variables
        vars: Variables to cascade
        hierarchy_ref: Fine entities with their ancestors
        years: Years to keep; defaults to the distinct years in ``data``
        agg: ``first``, ``mean``, ``max``, ``min`` or a callable on a Series

    Returns:
        Table of ``entity_id, year``, each variable and ``src_<v>_level``
    """
    vars = list(vars)
    if not vars:
        raise PreconditionError("cascade_available needs at least one variable")
    reducer = _reducer(agg)
    prepared = prepare_input(data, vars)
    reference = as_hierarchy_reference(hierarchy_ref)
    year_grid = set(year_axis(prepared, years))

    present = prepared['entity_id'].str[:GeoLevel.COARSE.code_length].unique()
    mapping = reference.restrict_to_coarse(present).table.rename(columns={'fine_id': 'entity_id'})

    results = []
    for var in vars:
        values = long_values(prepared, var, keep=['level'])

        per_level = []
        for level, key in LEVEL_KEYS.items():
            column = f"val{level.value}"
            subset = values[values['level'] == level.value]
            if subset.empty:
                per_level.append(pd.DataFrame({
                    'entity_id': pd.Series(dtype=object),
                    'year': pd.Series(dtype=np.int64),
                    column: pd.Series(dtype=np.float64),
                }))
                continue

            reduced = subset.groupby(['entity_id', 'year'])['value'].agg(reducer).rename(column)
            reduced = reduced.reset_index().rename(columns={'entity_id': key})
            if level is not GeoLevel.FINE:
                reduced = mapping[['entity_id', key]].merge(reduced, on=key, how='inner').drop(columns=key)
            reduced = reduced.astype({'entity_id': object, 'year': np.int64})
            per_level.append(reduced[reduced['year'].isin(year_grid)])

        keys = pd.concat([frame[KEY_COLUMNS] for frame in per_level]).drop_duplicates()
        joined = keys
        for frame in per_level:
            joined = joined.merge(frame, on=KEY_COLUMNS, how='left')

        candidates = {
            level: joined[f"val{level.value}"].to_numpy(dtype=np.float64) for level in GeoLevel
        }
        resolved, source = resolve_levels(candidates)
        result = VariableCascade(
            name=var,
            values=pd.Series(resolved, index=joined.index),
            source_level=_as_source_level(source, joined.index),
        )
        results.append(pd.DataFrame({
            'entity_id': joined['entity_id'],
            'year': joined['year'],
            var: result.values,
            result.src_column: result.source_level,
        }))

    merged = results[0]
    for frame in results[1:]:
        merged = merged.merge(frame, on=KEY_COLUMNS, how='outer')
    return merged.sort_values(KEY_COLUMNS, kind='mergesort').reset_index(drop=True)
