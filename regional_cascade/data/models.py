"""
Core data models for regional cascading and imputation.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Any, Optional, Iterator, List
import pandas as pd
import numpy as np

from ..exceptions import GeoLevelError


class GeoLevel(IntEnum):
    """
    Tier of the geographic hierarchy.

    The integer values double as source levels in cascade provenance:
    a higher value is a finer, higher-priority tier.
    """

    COARSE = 0
    INTERMEDIATE = 1
    FINE = 2

    @property
    def code_length(self) -> int:
        """Number of characters in an entity id at this level."""
        return self.value + 2

    @classmethod
    def from_code_length(cls, length: int) -> 'GeoLevel':
        try:
            return cls(length - 2)
        except ValueError:
            raise GeoLevelError(
                f"No geographic level uses {length}-character entity ids"
            ) from None


@dataclass(frozen=True)
class GeoCode:
    """An entity id tagged with the level it belongs to."""

    code: str
    level: GeoLevel

    def ancestor(self, level: GeoLevel) -> 'GeoCode':
        """Return the ancestor of this code at a coarser (or equal) level."""
        if level > self.level:
            raise GeoLevelError(
                f"{level.name.lower()} is finer than {self.level.name.lower()}",
                entity_id=self.code
            )
        return GeoCode(self.code[:level.code_length], level)


def parse_geo_code(raw: Any) -> GeoCode:
    """
    Convert a raw entity id into a ``GeoCode``.

    Args:
        raw: Entity id as read from an upstream table

    Returns:
        GeoCode with the level implied by the id's length

    Raises:
        GeoLevelError: If the id is missing or its length maps to no level
    """
    if raw is None or (isinstance(raw, float) and np.isnan(raw)):
        raise GeoLevelError("Entity id is missing")
    code = str(raw).strip()
    try:
        level = GeoLevel.from_code_length(len(code))
    except GeoLevelError:
        raise GeoLevelError(
            f"Entity id '{code}' does not match any geographic level",
            entity_id=code
        ) from None
    return GeoCode(code, level)


def classify_levels(entity_ids: pd.Series) -> pd.Series:
    """
    Vectorised ``parse_geo_code`` returning the ``GeoLevel`` value per row.

    Raises:
        GeoLevelError: Naming the first id that has no level
    """
    if entity_ids.isna().any():
        raise GeoLevelError("Entity id column contains missing values")
    lengths = entity_ids.astype(str).str.strip().str.len()
    levels = lengths - 2
    invalid = ~levels.isin([level.value for level in GeoLevel])
    if invalid.any():
        bad = str(entity_ids[invalid].iloc[0])
        raise GeoLevelError(
            f"Entity id '{bad}' does not match any geographic level",
            entity_id=bad,
            context={'invalid_count': int(invalid.sum())}
        )
    return levels.astype(int)


@dataclass
class InterpolationResult:
    """Values and gap flags from interpolating one series."""

    values: np.ndarray
    flags: np.ndarray  # 0 = observed, 1 = filled (or originally missing)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter((self.values, self.flags))


@dataclass
class ForecastResult:
    """Point forecasts and 80% bounds for ``h`` future periods."""

    forecast: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    method: str

    @property
    def horizon(self) -> int:
        return len(self.forecast)


@dataclass
class ImputationResult:
    """Output of the imputation pipeline for one entity-variable series."""

    values: np.ndarray
    years: np.ndarray
    flags: np.ndarray  # 0 = observed, 1 = interpolated, 2 = forecast
    method: str

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'year': self.years, 'value': self.values, 'flag': self.flags})


@dataclass
class VariableCascade:
    """
    Cascade result for one variable, aligned with the panel keys.

    ``source_level`` holds the ``GeoLevel`` value that supplied each cell
    (missing when no level had data); ``imputation_flag`` is only set when
    the imputation stage ran.
    """

    name: str
    values: pd.Series
    source_level: pd.Series
    imputation_flag: Optional[pd.Series] = None

    @property
    def src_column(self) -> str:
        return f"src_{self.name}_level"

    @property
    def flag_column(self) -> str:
        return f"imp_{self.name}_flag"


@dataclass
class CascadedPanel:
    """
    A complete fine-level panel with per-variable provenance.

    ``keys`` holds one row per (fine entity, year) with the hierarchy
    ancestor columns; every ``VariableCascade`` is aligned with it.
    """

    keys: pd.DataFrame
    variables: Dict[str, VariableCascade] = field(default_factory=dict)
    imputed: bool = False

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def variable_names(self) -> List[str]:
        return list(self.variables)

    def variable(self, name: str) -> VariableCascade:
        if name not in self.variables:
            raise KeyError(f"Variable '{name}' not in cascaded panel")
        return self.variables[name]

    def to_frame(self, include_hierarchy: bool = False) -> pd.DataFrame:
        """
        Assemble the wide output table.

        Columns are ``entity_id, year``, then per variable ``<v>``,
        ``src_<v>_level`` and, when imputed, ``imp_<v>_flag``.
        """
        base_cols = ['entity_id', 'year']
        if include_hierarchy:
            base_cols += ['intermediate_id', 'coarse_id']
        columns: Dict[str, pd.Series] = {col: self.keys[col] for col in base_cols}

        for name, result in self.variables.items():
            columns[name] = result.values
            columns[result.src_column] = result.source_level
            if self.imputed and result.imputation_flag is not None:
                columns[result.flag_column] = result.imputation_flag

        return pd.DataFrame(columns).reset_index(drop=True)

    def summary(self) -> Dict[str, Dict[str, Any]]:
        """Count cells per source level and per imputation flag, by variable."""
        summary = {}
        for name, result in self.variables.items():
            entry = {
                'cells': len(result.values),
                'missing': int(result.values.isna().sum()),
                'source_level': {
                    GeoLevel(int(level)).name.lower(): int(count)
                    for level, count in result.source_level.value_counts().sort_index().items()
                },
            }
            if result.imputation_flag is not None:
                entry['imputation_flag'] = {
                    int(flag): int(count)
                    for flag, count in result.imputation_flag.value_counts().sort_index().items()
                }
            summary[name] = entry
        return summary
