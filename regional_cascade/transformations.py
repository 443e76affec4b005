"""
Numeric helpers shared by scoring and derived indicators.

Logarithms treat non-positive input as undefined (NaN) rather than as an
error, and scaling returns all-missing output when the input has no range.
"""

from typing import Callable, Dict, Sequence, Union

import numpy as np
import pandas as pd

from .exceptions import require_columns

ArrayLike = Union[pd.Series, np.ndarray, Sequence[float]]


def _safe_log(x: ArrayLike, log: Callable) -> Union[pd.Series, np.ndarray]:
    values = pd.to_numeric(pd.Series(x), errors='coerce').astype(np.float64)
    out = log(values.where(values > 0))
    return out if isinstance(x, pd.Series) else out.to_numpy()


def safe_log2(x: ArrayLike) -> Union[pd.Series, np.ndarray]:
    """Base-2 logarithm; missing or non-positive input gives NaN."""
    return _safe_log(x, np.log2)


def safe_log10(x: ArrayLike) -> Union[pd.Series, np.ndarray]:
    """Base-10 logarithm; missing or non-positive input gives NaN."""
    return _safe_log(x, np.log10)


def scale_0_100(x: ArrayLike) -> Union[pd.Series, np.ndarray]:
    """
    Min-max scale to the 0-100 range, ignoring missing values.

    Returns all NaN when the input is all missing or constant.
    """
    values = pd.to_numeric(pd.Series(x), errors='coerce').astype(np.float64)
    lo, hi = values.min(), values.max()
    if not (np.isfinite(lo) and np.isfinite(hi)) or lo == hi:
        scaled = pd.Series(np.nan, index=values.index, name=values.name)
    else:
        scaled = (values - lo) / (hi - lo) * 100
    return scaled if isinstance(x, pd.Series) else scaled.to_numpy()


rescale_minmax = scale_0_100


def compute_composite(df: pd.DataFrame, score_cols: Sequence[str],
                      out_col: str = "composite_score") -> pd.DataFrame:
    """Add the row-wise mean of ``score_cols``, skipping missing scores."""
    require_columns(df.columns, list(score_cols))
    out = df.copy()
    out[out_col] = out[list(score_cols)].mean(axis=1, skipna=True)
    return out


def transform_and_score(df: pd.DataFrame,
                        transforms: Dict[str, Callable[[pd.DataFrame], ArrayLike]]) -> pd.DataFrame:
    """
    Create transformed columns and score every ``*_tr`` column.

    Args:
        df: Input table
        transforms: New column name mapped to a function of the table,
            applied in order so later transforms can use earlier ones

    Returns:
        Table with the new columns plus ``score_<col>`` (0-100) for every
        column whose name ends in ``_tr``
    """
    out = df.copy()
    for new_col, transform in transforms.items():
        out[new_col] = transform(out)

    for col in [c for c in out.columns if c.endswith('_tr')]:
        out[f"score_{col}"] = scale_0_100(out[col])
    return out
