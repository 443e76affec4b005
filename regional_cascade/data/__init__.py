"""
Data layer: geographic codes, hierarchy reference and long-panel utilities.
"""

from .models import (
    GeoLevel, GeoCode, parse_geo_code, classify_levels,
    InterpolationResult, ForecastResult, ImputationResult,
    VariableCascade, CascadedPanel
)
from .reference import HierarchyReference, load_hierarchy_reference
from .panel import balance_panel, merge_datasets, standardize_year

__all__ = [
    "GeoLevel",
    "GeoCode",
    "parse_geo_code",
    "classify_levels",
    "InterpolationResult",
    "ForecastResult",
    "ImputationResult",
    "VariableCascade",
    "CascadedPanel",
    "HierarchyReference",
    "load_hierarchy_reference",
    "balance_panel",
    "merge_datasets",
    "standardize_year",
]
