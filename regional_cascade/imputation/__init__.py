"""
Gap filling and forecasting for single yearly series.
"""

from .interpolation import interpolate_pchip, interpolate_linear, get_interpolator
from .forecasting import (
    ForecastStrategy, ConstantForecast, ETSForecast, HoltLinearForecast,
    AutoregressiveForecaster, build_strategy_chain, forecast_autoregressive
)
from .pipeline import impute_series

__all__ = [
    'interpolate_pchip',
    'interpolate_linear',
    'get_interpolator',
    'ForecastStrategy',
    'ConstantForecast',
    'ETSForecast',
    'HoltLinearForecast',
    'AutoregressiveForecaster',
    'build_strategy_chain',
    'forecast_autoregressive',
    'impute_series',
]
