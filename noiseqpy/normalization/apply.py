"""Dispatch by method name, used by the statistic engines."""

from __future__ import annotations

import numpy as np

from noiseqpy.core.exceptions import ValidationError
from noiseqpy.normalization._base import check_counts
from noiseqpy.normalization.rpkm import rpkm
from noiseqpy.normalization.tmm import tmm
from noiseqpy.normalization.upper_quartile import upper_quartile

NORMALIZATION_METHODS = ("rpkm", "uqua", "tmm", "n")


def normalize_counts(
    X: np.ndarray,
    method: str,
    lengths: np.ndarray | None = None,
    length_correction: float = 0.0,
    sample_ids: list[str] | None = None,
    **params,
) -> np.ndarray:
    """Normalize a (n_samples, n_features) count array.

    Parameters
    ----------
    X : np.ndarray
        Raw counts.
    method : str
        "rpkm", "uqua", "tmm", or "n" (no normalization; a copy is returned).
    lengths : np.ndarray, optional
        Feature lengths, required when `length_correction` > 0.
    length_correction : float, default=0.0
        Length correction exponent.
    sample_ids : list[str], optional
        Used in error messages.
    **params
        Method specific keyword arguments (e.g. `log_ratio_trim` for TMM).
    """
    if method == "rpkm":
        return rpkm(X, lengths, length_correction, sample_ids)
    if method == "uqua":
        return upper_quartile(X, lengths, length_correction, sample_ids=sample_ids, **params)
    if method == "tmm":
        return tmm(X, lengths, length_correction, sample_ids=sample_ids, **params)
    if method == "n":
        return check_counts(X).copy()
    raise ValidationError(
        f"Unknown normalization method: {method}. Use one of {NORMALIZATION_METHODS}.",
        field="norm",
    )
