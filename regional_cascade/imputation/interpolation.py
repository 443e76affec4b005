"""
Gap filling within a single series.

Interior gaps are filled with a monotone piecewise-cubic Hermite curve
(PCHIP) through the observed points, which avoids overshooting between
knots. Positions before the first or after the last observation are held
at the nearest observed value; the curve is never extrapolated.
"""

from typing import Callable, Dict, Sequence

import numpy as np
import pandas as pd
from scipy.interpolate import PchipInterpolator

from ..data.models import InterpolationResult
from ..exceptions import ConfigurationError


def as_float_array(y: Sequence) -> np.ndarray:
    """Convert a sequence with None/NA/NaN gaps to a float array with NaN gaps."""
    return pd.to_numeric(pd.Series(y, dtype=object), errors='coerce').to_numpy(dtype=np.float64, na_value=np.nan)


def _degenerate(values: np.ndarray, flags: np.ndarray, observed: np.ndarray):
    """Results for series with fewer than two observations, else None."""
    if observed.size == 0:
        return InterpolationResult(values.copy(), flags)
    if observed.size == 1:
        return InterpolationResult(np.full(values.size, values[observed[0]]), flags)
    return None


def _hold_ends(filled: np.ndarray, values: np.ndarray, observed: np.ndarray) -> np.ndarray:
    first, last = observed[0], observed[-1]
    filled[:first] = values[first]
    filled[last + 1:] = values[last]
    filled[observed] = values[observed]
    return filled


def interpolate_pchip(y: Sequence) -> InterpolationResult:
    """
    Fill missing values with PCHIP interpolation and constant ends.

    Args:
        y: Series values, missing entries as None/NaN

    Returns:
        InterpolationResult with filled values and flags (1 where the input
        was missing, 0 where observed). An all-missing series is returned
        unchanged; a single observation is repeated everywhere.
    """
    values = as_float_array(y)
    missing = np.isnan(values)
    flags = missing.astype(np.int8)
    observed = np.flatnonzero(~missing)

    degenerate = _degenerate(values, flags, observed)
    if degenerate is not None:
        return degenerate

    curve = PchipInterpolator(observed, values[observed], extrapolate=False)
    filled = curve(np.arange(values.size, dtype=np.float64))
    return InterpolationResult(_hold_ends(filled, values, observed), flags)


def interpolate_linear(y: Sequence) -> InterpolationResult:
    """Same contract as ``interpolate_pchip`` with straight lines between observations."""
    values = as_float_array(y)
    missing = np.isnan(values)
    flags = missing.astype(np.int8)
    observed = np.flatnonzero(~missing)

    degenerate = _degenerate(values, flags, observed)
    if degenerate is not None:
        return degenerate

    filled = np.interp(np.arange(values.size), observed, values[observed])
    return InterpolationResult(_hold_ends(filled, values, observed), flags)


INTERPOLATORS: Dict[str, Callable[[Sequence], InterpolationResult]] = {
    'pchip': interpolate_pchip,
    'linear': interpolate_linear,
}


def get_interpolator(method: str) -> Callable[[Sequence], InterpolationResult]:
    try:
        return INTERPOLATORS[method]
    except KeyError:
        raise ConfigurationError(f"Unknown interpolation method '{method}'; expected one of {list(INTERPOLATORS)}") from None
