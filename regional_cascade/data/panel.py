"""
Long-format panel utilities: balancing, merging and year standardisation.
"""

from functools import reduce
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import MissingColumnError, PreconditionError, require_columns
from ..logging_config import get_logger

logger = get_logger(__name__)

KEY_COLUMNS = ['entity_id', 'year']
FILL_DIRECTIONS = ('down', 'up', 'downup', 'updown')


def standardize_year(df: pd.DataFrame) -> pd.DataFrame:
    """
    Ensure an integer ``year`` column exists.

    The year is taken from ``year`` if present, else from ``time`` or
    ``TIME_PERIOD`` (datetimes use their year component, anything else the
    first four characters of its string form).

    Raises:
        MissingColumnError: If none of the three columns exists
    """
    df = df.copy()
    if 'time' not in df.columns and 'TIME_PERIOD' in df.columns:
        df = df.rename(columns={'TIME_PERIOD': 'time'})

    if 'year' in df.columns:
        source = df['year']
    elif 'time' in df.columns:
        source = df['time']
    else:
        raise MissingColumnError(
            "No time column found: provide 'year', 'time' or 'TIME_PERIOD'",
            missing_columns=['year']
        )

    if pd.api.types.is_datetime64_any_dtype(source):
        years = source.dt.year
    elif pd.api.types.is_integer_dtype(source):
        years = source
    else:
        years = pd.to_numeric(source.astype(str).str[:4], errors='coerce')

    if years.isna().any():
        raise PreconditionError(
            "Time column contains values without a parseable year",
            context={'unparseable_rows': int(years.isna().sum())}
        )
    df['year'] = years.astype(int)
    return df


def balance_panel(data: pd.DataFrame,
                  vars: Sequence[str],
                  years: Iterable[int],
                  fill_direction: str = "downup") -> pd.DataFrame:
    """
    Expand every entity to the full year grid and carry values across gaps.

    New rows get missing values, then ``vars`` are filled per entity by
    last/next observation carried (no interpolation curve). Years already
    present outside ``years`` are kept.

    Args:
        data: Long panel with ``entity_id`` and ``year`` columns
        vars: Columns to fill
        years: Year grid every entity is expanded to
        fill_direction: ``down`` (forward), ``up`` (backward), ``downup`` or ``updown``

    Returns:
        Balanced panel sorted by entity and year
    """
    require_columns(data.columns, KEY_COLUMNS + list(vars))
    if fill_direction not in FILL_DIRECTIONS:
        raise PreconditionError(
            f"fill_direction must be one of {FILL_DIRECTIONS}, got '{fill_direction}'",
            context={'fill_direction': fill_direction}
        )

    grid_years = pd.Index(sorted(set(int(y) for y in years)), name='year')
    entities = data['entity_id'].drop_duplicates()
    grid = pd.MultiIndex.from_product([entities, grid_years], names=KEY_COLUMNS).to_frame(index=False)

    balanced = (
        grid.merge(data, on=KEY_COLUMNS, how='outer')
        .sort_values(KEY_COLUMNS, kind='mergesort')
        .reset_index(drop=True)
    )

    grouped = balanced.groupby('entity_id', sort=False)[list(vars)]
    if fill_direction == 'down':
        filled = grouped.ffill()
    elif fill_direction == 'up':
        filled = grouped.bfill()
    else:
        first, second = ('ffill', 'bfill') if fill_direction == 'downup' else ('bfill', 'ffill')
        filled = getattr(grouped, first)()
        filled = getattr(filled.groupby(balanced['entity_id'], sort=False), second)()

    balanced[list(vars)] = filled
    logger.debug(f"Balanced {entities.size} entities over {len(grid_years)} years")
    return balanced


def merge_datasets(*frames: pd.DataFrame,
                   by: Sequence[str] = ('entity_id', 'year'),
                   join_type: str = "full") -> pd.DataFrame:
    """
    Join several processed tables on their keys.

    Args:
        *frames: Tables with the ``by`` columns plus value columns
        by: Join keys
        join_type: ``full`` (default), ``left`` or ``inner``; anything else is
            treated as ``full``

    Returns:
        Merged table
    """
    if not frames:
        raise PreconditionError("merge_datasets needs at least one table")
    for i, frame in enumerate(frames):
        require_columns(frame.columns, list(by), table=f"table {i}")

    how = {'full': 'outer', 'left': 'left', 'inner': 'inner'}.get(join_type)
    if how is None:
        logger.warning(f"Unknown join type '{join_type}', using full join")
        how = 'outer'

    return reduce(lambda left, right: left.merge(right, on=list(by), how=how), frames)


def long_values(data: pd.DataFrame, var: str, keep: Sequence[str] = ()) -> pd.DataFrame:
    """
    Select ``entity_id, year, <var>`` as ``entity_id, year, value`` without missing values.

    Columns named in ``keep`` are carried along after the keys.
    """
    out = data[KEY_COLUMNS + list(keep) + [var]].rename(columns={var: 'value'})
    out = out[out['value'].notna()].copy()
    out['entity_id'] = out['entity_id'].astype(str).str.strip()
    out['value'] = out['value'].astype(np.float64)
    return out


def year_axis(data: pd.DataFrame, years: Optional[Iterable[int]] = None) -> List[int]:
    """Return ``years`` sorted, or the sorted distinct years of ``data``."""
    if years is None:
        return sorted(int(y) for y in data['year'].dropna().unique())
    return sorted(set(int(y) for y in years))
