"""Quality control: low-count feature filtering.

Common Usage:
    >>> from noiseqpy.qc import filter_low_counts
    >>> container = filter_low_counts(container, factor="tissue", method="cpm", cpm=1)
"""

from noiseqpy.qc.low_counts import FILTER_METHODS, filter_low_counts, low_count_mask
from noiseqpy.qc.metrics import P_ADJUST_METHODS, adjust_pvalues, compute_cv, counts_per_million

__all__ = [
    "filter_low_counts",
    "low_count_mask",
    "FILTER_METHODS",
    "compute_cv",
    "adjust_pvalues",
    "P_ADJUST_METHODS",
    "counts_per_million",
]
