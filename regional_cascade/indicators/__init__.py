"""
Derived ratio indicators gated on cascade provenance.
"""

from .derived import compute_derived_indicators, cascade_and_compute, eligibility_level

__all__ = [
    'compute_derived_indicators',
    'cascade_and_compute',
    'eligibility_level',
]
