"""
Configuration module for regional cascade and imputation.

This module holds the settings dataclasses for interpolation, forecasting,
the cascade engine and derived indicators.
"""

from .settings import (
    PipelineSettings, InterpolationSettings, ForecastSettings,
    CascadeSettings, IndicatorSettings
)

__all__ = [
    "PipelineSettings",
    "InterpolationSettings",
    "ForecastSettings",
    "CascadeSettings",
    "IndicatorSettings",
]
