"""Common statistics for low-count filtering.

Stateless, pure functions over (n_samples, n_features) arrays, plus
multiple testing correction for the test-based filters.
"""

import numpy as np

from noiseqpy.core.exceptions import ValidationError

P_ADJUST_METHODS = ("none", "bh", "by", "bonferroni", "holm")


def counts_per_million(X: np.ndarray, depth: np.ndarray | None = None) -> np.ndarray:
    """Scale each sample (row) to counts per million.

    Parameters
    ----------
    X : np.ndarray
        Counts, shape (n_samples, n_features).
    depth : np.ndarray, optional
        Library sizes per sample. Defaults to the row sums of X.

    Returns
    -------
    np.ndarray
        CPM values. Samples with zero depth stay at zero.
    """
    depth = X.sum(axis=1) if depth is None else np.asarray(depth, dtype=np.float64)
    safe = np.where(depth > 0, depth, 1.0)
    return X / safe[:, np.newaxis] * 1e6


def compute_cv(
    data: np.ndarray,
    axis: int = 0,
    min_mean: float = 1e-6,
) -> np.ndarray:
    """Compute Coefficient of Variation (CV) as a percentage.

    CV = 100 * sd / mean, with the sample standard deviation (ddof=1).

    Parameters
    ----------
    data : np.ndarray
        Data matrix.
    axis : int, default=0
        Axis along which to compute CV (0: per column).
    min_mean : float, default=1e-6
        CV is NaN where the mean falls below this value.

    Returns
    -------
    np.ndarray
        CV in percent. NaN where undefined (low mean or a single value).
    """
    mean = np.mean(data, axis=axis)
    n = data.shape[axis]
    if n < 2:
        return np.full(mean.shape, np.nan)
    sd = np.std(data, axis=axis, ddof=1)
    cv = np.full(mean.shape, np.nan)
    ok = mean >= min_mean
    cv[ok] = 100.0 * sd[ok] / mean[ok]
    return cv


def adjust_pvalues(
    p_values: np.ndarray,
    method: str = "bh",
) -> np.ndarray:
    """
    Adjust p-values for multiple testing.

    Parameters
    ----------
    p_values : np.ndarray
        Raw p-values to adjust. NaNs are kept as NaN.
    method : str, default="bh"
        - "none": no adjustment
        - "bh": Benjamini-Hochberg (step-up)
        - "by": Benjamini-Yekutieli
        - "bonferroni": multiply by the number of tests
        - "holm": Holm step-down

    Returns
    -------
    np.ndarray
        Adjusted p-values clipped to [0, 1].

    References
    ----------
    Benjamini, Y., & Hochberg, Y. (1995). Controlling the false discovery
    rate: a practical and powerful approach to multiple testing. Journal of
    the Royal Statistical Society Series B, 57(1), 289-300.
    """
    if method not in P_ADJUST_METHODS:
        raise ValidationError(
            f"Unknown p-value adjustment method: {method}. Use one of {P_ADJUST_METHODS}.",
            field="p_adjust",
        )

    p_values = np.asarray(p_values, dtype=np.float64)
    n = len(p_values)

    if n == 0:
        return np.array([], dtype=np.float64)
    if method == "none":
        return p_values.copy()

    nan_mask = np.isnan(p_values)
    if nan_mask.all():
        return p_values.copy()

    valid_idx = ~nan_mask
    p_clean = p_values[valid_idx]
    n_valid = len(p_clean)

    sorted_idx = np.argsort(p_clean)
    sorted_p = p_clean[sorted_idx]
    ranks = np.arange(1, n_valid + 1, dtype=np.float64)

    if method == "bonferroni":
        adjusted = sorted_p * n_valid
    elif method == "holm":
        adjusted = sorted_p * (n_valid - ranks + 1)
        adjusted = np.maximum.accumulate(adjusted)
    else:
        multiplier = float(n_valid)
        if method == "by":
            multiplier *= float(np.sum(1.0 / ranks))
        adjusted = sorted_p * multiplier / ranks
        adjusted = np.minimum.accumulate(adjusted[::-1])[::-1]
    adjusted = np.clip(adjusted, 0.0, 1.0)

    result = np.full_like(p_values, np.nan, dtype=np.float64)
    result[valid_idx] = adjusted[np.argsort(sorted_idx)]

    return result


