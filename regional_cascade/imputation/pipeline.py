"""
Two-stage imputation of a single series: interpolate, then optionally forecast.
"""

from typing import Optional, Sequence

import numpy as np

from ..config.settings import PipelineSettings
from ..data.models import ImputationResult
from ..exceptions import LengthMismatchError
from ..logging_config import get_logger
from .forecasting import AutoregressiveForecaster
from .interpolation import get_interpolator

logger = get_logger(__name__)

INTERPOLATION_LABELS = {
    'pchip': 'pchip_interpolation',
    'linear': 'linear_interpolation',
}


def impute_series(values: Sequence,
                  years: Sequence[int],
                  forecast_to: Optional[int] = None,
                  settings: Optional[PipelineSettings] = None) -> ImputationResult:
    """
    Fill interior gaps and optionally extend the series into future years.

    Args:
        values: Series values with gaps, aligned with ``years``
        years: Period labels, one per value
        forecast_to: Last year to forecast to; ignored unless beyond ``max(years)``
        settings: Interpolation and forecast configuration

    Returns:
        ImputationResult with extended values, years, flags (0 observed,
        1 interpolated, 2 forecast) and a description of the stages that ran

    Raises:
        LengthMismatchError: If ``values`` and ``years`` differ in length
    """
    settings = settings or PipelineSettings()

    if len(values) != len(years):
        raise LengthMismatchError(
            f"values and years must have the same length ({len(values)} != {len(years)})",
            expected=len(years),
            actual=len(values)
        )

    interpolate = get_interpolator(settings.interpolation.method)
    filled, flags = interpolate(values)
    year_labels = np.asarray(years, dtype=np.int64)
    flags = flags.astype(np.int8)
    method = INTERPOLATION_LABELS[settings.interpolation.method]

    if forecast_to is not None and year_labels.size and forecast_to > year_labels.max():
        last_year = int(year_labels.max())
        h = int(forecast_to) - last_year
        result = AutoregressiveForecaster(settings.forecast).forecast(filled, h)

        filled = np.concatenate([filled, result.forecast])
        year_labels = np.concatenate([year_labels, np.arange(last_year + 1, int(forecast_to) + 1)])
        flags = np.concatenate([flags, np.full(h, 2, dtype=np.int8)])
        method = f"{method} + {result.method}_forecasting"
        logger.debug(f"Forecast {h} periods to {forecast_to} using {result.method}")

    return ImputationResult(values=filled, years=year_labels, flags=flags, method=method)
