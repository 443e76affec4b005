"""
In-memory memoization cache for expensive upstream lookups.

Holds reference tables and geometry lookups keyed by function name and
arguments. It never holds panel data and has no eviction beyond ``clear``.
"""

import json
import hashlib
import threading
from dataclasses import dataclass
from datetime import date
from enum import Enum
from functools import wraps
from pathlib import PurePath
from typing import Any, Callable, Dict

import numpy as np
import pandas as pd

from ..exceptions import PreconditionError
from ..logging_config import get_logger

logger = get_logger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class CacheKey:
    """Cache key built from a function name and a hash of its arguments."""

    function: str
    digest: str

    def __str__(self) -> str:
        return f"{self.function}_{self.digest[:16]}"


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _canonical(value: Any) -> Any:
    """
    Reduce arguments to JSON-encodable structures with a stable ordering.

    Arrays and pandas objects are reduced to a hash of their full contents,
    never to their (truncated) repr.

    Raises:
        PreconditionError: For argument types with no content-based encoding
    """
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(v) for v in value), key=repr)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, np.generic):
        return _canonical(value.item())
    if isinstance(value, Enum):
        return {'__enum__': type(value).__qualname__, 'value': _canonical(value.value)}
    if isinstance(value, (date, PurePath)):
        return {'__' + type(value).__name__ + '__': str(value)}
    if isinstance(value, np.ndarray):
        if value.dtype == object:
            return {'__ndarray__': 'object', 'shape': list(value.shape),
                    'items': _canonical(value.ravel().tolist())}
        return {'__ndarray__': value.dtype.str, 'shape': list(value.shape),
                'sha256': _digest(np.ascontiguousarray(value).tobytes())}
    if isinstance(value, (pd.DataFrame, pd.Series, pd.Index)):
        hashed = pd.util.hash_pandas_object(value, index=not isinstance(value, pd.Index))
        labels = list(value.columns) if isinstance(value, pd.DataFrame) else [value.name]
        dtypes = value.dtypes.tolist() if isinstance(value, pd.DataFrame) else [value.dtype]
        return {'__pandas__': type(value).__name__, 'labels': _canonical(labels),
                'dtypes': [str(dtype) for dtype in dtypes],
                'sha256': _digest(hashed.to_numpy().tobytes())}
    raise PreconditionError(
        f"Cannot build a cache key from an argument of type {type(value).__name__}",
        context={'argument_type': type(value).__name__}
    )


class MemoizationCache:
    """Key-value cache with an explicit construct / query / clear lifecycle."""

    def __init__(self, name: str = "regional_cascade"):
        self.name = name
        self._entries: Dict[CacheKey, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(function: str, *args, **kwargs) -> CacheKey:
        """
        Build a deterministic key from a function name and its arguments.

        Positional and keyword arguments are encoded as canonical JSON and
        hashed, so equal argument structures always give equal keys.
        """
        payload = json.dumps(
            {'args': _canonical(list(args)), 'kwargs': _canonical(kwargs)},
            sort_keys=True
        )
        digest = hashlib.sha256(payload.encode()).hexdigest()
        return CacheKey(function, digest)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        with self._lock:
            value = self._entries.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, key: CacheKey, value: Any) -> Any:
        with self._lock:
            self._entries[key] = value
        logger.debug(f"Cached {key}")
        return value

    def contains(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __contains__(self, key: CacheKey) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> int:
        """Remove every entry and return how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info(f"{self.name} session cache cleared ({removed} entries)")
        return removed

    def get_or_compute(self, key: CacheKey, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, computing and storing it on a miss."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        return self.set(key, compute())

    def memoize(self, func: Callable) -> Callable:
        """Decorator caching ``func`` results by name and arguments."""

        @wraps(func)
        def wrapper(*args, **kwargs):
            key = self.make_key(func.__qualname__, *args, **kwargs)
            return self.get_or_compute(key, lambda: func(*args, **kwargs))

        wrapper.cache = self
        return wrapper

    def get_cache_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            'entry_count': len(self),
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': self.hits / total if total else 0.0,
        }
