"""
Regional Cascade

Completes regional statistical panels: values are cascaded from country and
macro-region level down to regions where regional data is missing, with the
source level of every value recorded, and remaining gaps are filled by
shape-preserving interpolation and automatically selected forecasts.
"""

__version__ = "0.1.0"
__author__ = "Regional Cascade Team"

from .data.models import GeoLevel, CascadedPanel
from .data.reference import HierarchyReference
from .cascade.engine import CascadeEngine, cascade_to_fine, cascade_available
from .imputation.pipeline import impute_series
from .indicators.derived import compute_derived_indicators, cascade_and_compute
from .exceptions import RegionalCascadeError

__all__ = [
    "GeoLevel",
    "CascadedPanel",
    "HierarchyReference",
    "CascadeEngine",
    "cascade_to_fine",
    "cascade_available",
    "impute_series",
    "compute_derived_indicators",
    "cascade_and_compute",
    "RegionalCascadeError",
]
