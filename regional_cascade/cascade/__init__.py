"""
Geographic cascade from coarse to fine regional levels.
"""

from .engine import CascadeEngine, cascade_to_fine, cascade_available, resolve_levels

__all__ = [
    'CascadeEngine',
    'cascade_to_fine',
    'cascade_available',
    'resolve_levels',
]
