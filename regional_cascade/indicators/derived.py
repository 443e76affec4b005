"""
Ratio indicators built on cascade provenance.

A ratio is only computed where its inputs were supplied at intermediate
granularity or finer (the eligibility gate), and never from a logarithm
or denominator that is undefined.
"""

from typing import Iterable, Optional, Union

import numpy as np
import pandas as pd

from ..config.settings import IndicatorSettings, PipelineSettings
from ..data.models import GeoLevel
from ..data.panel import KEY_COLUMNS
from ..data.reference import HierarchyReference
from ..exceptions import require_columns
from ..logging_config import get_logger
from ..transformations import safe_log2
from ..cascade.engine import CascadeEngine, prepare_input

logger = get_logger(__name__)


def _src(var: str) -> str:
    return f"src_{var}_level"


def eligibility_level(cascaded: pd.DataFrame, inputs: Iterable[str]) -> pd.Series:
    """
    Highest source level among ``inputs`` per row, missing if none has one.
    """
    levels = cascaded[[_src(v) for v in inputs]].astype('Float64')
    return levels.max(axis=1, skipna=True).astype('Int64')


def national_values(raw_data: pd.DataFrame, var: str) -> pd.DataFrame:
    """
    Coarse-level rows of ``var`` as ``coarse_id, year, <var>_nat``.

    The first row per (country, year) is kept.
    """
    prepared = prepare_input(raw_data, [var])
    national = prepared.loc[prepared['level'] == GeoLevel.COARSE.value, KEY_COLUMNS + [var]]
    national = national.drop_duplicates(KEY_COLUMNS, keep='first')
    return national.rename(columns={'entity_id': 'coarse_id', var: f"{var}_nat"})


def compute_derived_indicators(cascaded: pd.DataFrame,
                               raw_data: pd.DataFrame,
                               settings: Optional[IndicatorSettings] = None) -> pd.DataFrame:
    """
    Add discharge activity, relative length of stay and log physician density.

    Columns added:

    - ``elig_da_level``: highest source level among the discharge and bed inputs
    - ``da``: log2(inpatient + day-case discharges) / log2(beds)
    - ``physicians_log2``
    - ``los_nat``: the country's own length of stay from ``raw_data``
    - ``elig_rlos_level``: source level of length of stay
    - ``rlos``: length of stay relative to ``los_nat``

    Args:
        cascaded: Wide cascade output with values and ``src_<v>_level`` columns
        raw_data: The uncascaded input, used for country-level length of stay
        settings: Variable names and the minimum eligibility level

    Returns:
        Copy of ``cascaded`` with the indicator columns, sorted by entity and year
    """
    settings = settings or IndicatorSettings()
    inp, day, beds = settings.inpatient_discharges, settings.day_case_discharges, settings.beds
    los, physicians = settings.length_of_stay, settings.physicians
    gate = settings.min_eligibility_level

    require_columns(cascaded.columns, KEY_COLUMNS + settings.variables + [_src(v) for v in settings.variables],
                    table="cascaded panel")

    out = cascaded.copy()

    out['elig_da_level'] = eligibility_level(out, [inp, day, beds])
    numerator = safe_log2(out[inp] + out[day])
    denominator = safe_log2(out[beds])
    eligible = (out['elig_da_level'] >= gate).fillna(False).to_numpy(dtype=bool)
    out['da'] = (numerator / denominator).where(eligible)

    out['physicians_log2'] = safe_log2(out[physicians])

    out['coarse_id'] = out['entity_id'].str[:GeoLevel.COARSE.code_length]
    national = national_values(raw_data, los).rename(columns={f"{los}_nat": 'los_nat'})
    national['los_nat'] = pd.to_numeric(national['los_nat'], errors='coerce').astype(np.float64)
    out = out.merge(national, on=['coarse_id', 'year'], how='left')

    out['elig_rlos_level'] = out[_src(los)]
    rlos_ok = (out['elig_rlos_level'] >= gate).fillna(False).to_numpy(dtype=bool) & (out['los_nat'] > 0).to_numpy()
    out['rlos'] = (out[los] / out['los_nat']).where(rlos_ok)

    eligible_rows = int(eligible.sum())
    logger.debug(f"Computed derived indicators: {eligible_rows}/{len(out)} rows eligible for da")
    return out.drop(columns='coarse_id').sort_values(KEY_COLUMNS, kind='mergesort').reset_index(drop=True)


def cascade_and_compute(data: pd.DataFrame,
                        hierarchy_ref: Union[HierarchyReference, pd.DataFrame],
                        years: Optional[Iterable[int]] = None,
                        settings: Optional[PipelineSettings] = None) -> pd.DataFrame:
    """
    Cascade the indicator variables without imputation, then add the derived indicators.

    Args:
        data: Long table with ``entity_id``, ``year`` and the indicator variables
        hierarchy_ref: Fine entities with their ancestors
        years: Year axis; defaults to the distinct years in ``data``
        settings: Pipeline settings; ``settings.indicators`` names the variables

    Returns:
        Wide table with cascaded variables, provenance and indicator columns
    """
    settings = settings or PipelineSettings()
    variables = settings.indicators.variables
    panel = CascadeEngine(settings).run(data, variables, hierarchy_ref, years=years, impute=False)
    return compute_derived_indicators(panel.to_frame(), data, settings.indicators)
