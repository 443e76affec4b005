"""
Hierarchy reference table: the universe of fine-level entities and their ancestors.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

import pandas as pd

from ..exceptions import HierarchyError, GeoLevelError
from ..logging_config import get_logger
from ..performance.cache_manager import MemoizationCache
from .models import GeoLevel, parse_geo_code

logger = get_logger(__name__)

REFERENCE_COLUMNS = ['fine_id', 'intermediate_id', 'coarse_id']


@dataclass
class HierarchyReference:
    """
    One row per fine entity with its intermediate and coarse ancestors.

    The table defines the cascade skeleton: fine entities not listed here
    never appear in cascade output.
    """

    table: pd.DataFrame

    def __post_init__(self):
        self.table = self._validate(self.table)

    @staticmethod
    def _validate(table: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in REFERENCE_COLUMNS if col not in table.columns]
        if missing:
            raise HierarchyError(
                f"Hierarchy reference is missing column(s): {', '.join(missing)}",
                validation_failures=[f"missing column {col}" for col in missing]
            )

        table = table[REFERENCE_COLUMNS].copy()
        if table.isna().any().any():
            raise HierarchyError("Hierarchy reference contains missing ids")
        for col in REFERENCE_COLUMNS:
            table[col] = table[col].astype(str).str.strip()

        failures: List[str] = []
        expected = {
            'fine_id': GeoLevel.FINE,
            'intermediate_id': GeoLevel.INTERMEDIATE,
            'coarse_id': GeoLevel.COARSE,
        }
        for col, level in expected.items():
            bad = table.loc[table[col].str.len() != level.code_length, col]
            if not bad.empty:
                failures.append(f"{col} values not at {level.name.lower()} level: {sorted(bad.unique())[:5]}")

        duplicated = table.loc[table['fine_id'].duplicated(), 'fine_id']
        if not duplicated.empty:
            failures.append(f"duplicated fine ids: {sorted(duplicated.unique())[:5]}")

        if not failures:
            wrong_parent = table['intermediate_id'] != table['fine_id'].str[:3]
            wrong_country = table['coarse_id'] != table['fine_id'].str[:2]
            if wrong_parent.any():
                failures.append(
                    f"intermediate ids inconsistent with fine ids: {table.loc[wrong_parent, 'fine_id'].tolist()[:5]}"
                )
            if wrong_country.any():
                failures.append(
                    f"coarse ids inconsistent with fine ids: {table.loc[wrong_country, 'fine_id'].tolist()[:5]}"
                )

        if failures:
            raise HierarchyError("Malformed hierarchy reference", validation_failures=failures)

        return table.sort_values('fine_id').reset_index(drop=True)

    @classmethod
    def from_fine_ids(cls, fine_ids: Iterable[str]) -> 'HierarchyReference':
        """Derive ancestors of each fine id from its prefixes."""
        codes = []
        for raw in fine_ids:
            code = parse_geo_code(raw)
            if code.level is not GeoLevel.FINE:
                raise HierarchyError(
                    f"'{code.code}' is not a fine-level id",
                    validation_failures=[f"{code.code} is {code.level.name.lower()}"]
                )
            codes.append(code)

        table = pd.DataFrame({
            'fine_id': [c.code for c in codes],
            'intermediate_id': [c.ancestor(GeoLevel.INTERMEDIATE).code for c in codes],
            'coarse_id': [c.ancestor(GeoLevel.COARSE).code for c in codes],
        })
        return cls(table)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame,
                   fine_col: str = 'fine_id',
                   intermediate_col: str = 'intermediate_id',
                   coarse_col: str = 'coarse_id') -> 'HierarchyReference':
        """
        Wrap an upstream reference table, renaming its columns.

        Args:
            frame: Table produced by a geometry/reference fetch
            fine_col: Column holding fine-level ids
            intermediate_col: Column holding intermediate-level ids
            coarse_col: Column holding coarse-level ids
        """
        mapping = {fine_col: 'fine_id', intermediate_col: 'intermediate_id', coarse_col: 'coarse_id'}
        missing = [col for col in mapping if col not in frame.columns]
        if missing:
            raise HierarchyError(
                f"Hierarchy reference is missing column(s): {', '.join(missing)}",
                validation_failures=[f"missing column {col}" for col in missing]
            )
        return cls(frame.rename(columns=mapping))

    @property
    def fine_ids(self) -> List[str]:
        return self.table['fine_id'].tolist()

    @property
    def coarse_ids(self) -> List[str]:
        return sorted(self.table['coarse_id'].unique())

    def __len__(self) -> int:
        return len(self.table)

    def restrict_to_coarse(self, coarse_ids: Iterable[str]) -> 'HierarchyReference':
        """Keep only fine entities whose coarse ancestor is in ``coarse_ids``."""
        keep = set(coarse_ids)
        return HierarchyReference(self.table[self.table['coarse_id'].isin(keep)])


def as_hierarchy_reference(reference: Any) -> HierarchyReference:
    """Accept a ``HierarchyReference`` or a raw table with the reference columns."""
    if isinstance(reference, HierarchyReference):
        return reference
    if isinstance(reference, pd.DataFrame):
        return HierarchyReference(reference)
    raise HierarchyError(
        f"Hierarchy reference must be a DataFrame or HierarchyReference, got {type(reference).__name__}"
    )


def load_hierarchy_reference(loader: Callable[..., Any],
                             cache: Optional[MemoizationCache] = None,
                             **loader_kwargs) -> HierarchyReference:
    """
    Build a reference from an upstream loader, memoising the result.

    The loader may return a ``HierarchyReference``, a DataFrame with the
    reference columns, or an iterable of fine ids.

    Args:
        loader: Upstream fetch function (e.g. a boundary/reference download)
        cache: Cache to memoise the loaded reference in
        **loader_kwargs: Arguments passed to the loader and used in the cache key
    """
    def build() -> HierarchyReference:
        loaded = loader(**loader_kwargs)
        if isinstance(loaded, (HierarchyReference, pd.DataFrame)):
            reference = as_hierarchy_reference(loaded)
        else:
            try:
                reference = HierarchyReference.from_fine_ids(loaded)
            except GeoLevelError as e:
                raise HierarchyError(f"Loader returned an invalid fine id: {e.message}") from e
        logger.info(f"Loaded hierarchy reference with {len(reference)} fine entities")
        return reference

    if cache is None:
        return build()

    name = getattr(loader, '__qualname__', repr(loader))
    key = cache.make_key(f"load_hierarchy_reference.{name}", **loader_kwargs)
    return cache.get_or_compute(key, build)
