"""Low-count feature filtering.

Removes features whose counts are too low to be analysed reliably. Three
methods are available:

1. **cpm**: counts-per-million threshold per condition, optionally with a
   coefficient-of-variation cutoff.
2. **wilcoxon**: one-sided Wilcoxon signed-rank test of median > 0 per
   condition. Meant for conditions with at least 5 samples.
3. **proportion**: one-sided proportion test of the feature's relative
   abundance against cpm / 1e6 per condition.

A feature is kept when it passes in at least one condition. Features with
zero counts in every sample are always dropped.
"""

from __future__ import annotations

import warnings

import numpy as np
import scipy.stats as stats

from noiseqpy.core.exceptions import ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.core.utils import group_indices
from noiseqpy.qc.metrics import (
    P_ADJUST_METHODS,
    adjust_pvalues,
    compute_cv,
    counts_per_million,
)

FILTER_METHODS = ("cpm", "wilcoxon", "proportion")


def _cpm_keep(
    X: np.ndarray,
    groups: dict[str, np.ndarray],
    cpm: float,
    cv_cutoff: float | None,
    already_normalized: bool,
    depth: np.ndarray | None,
) -> np.ndarray:
    values = X if already_normalized else counts_per_million(X, depth)
    keep = np.zeros(X.shape[1], dtype=bool)
    for idx in groups.values():
        sub = values[idx]
        passed = sub.sum(axis=0) > cpm * len(idx)
        if cv_cutoff is not None and len(idx) > 1:
            cv = compute_cv(sub, axis=0)
            passed &= np.nan_to_num(cv, nan=np.inf) <= cv_cutoff
        keep |= passed
    return keep


def _wilcoxon_pvalues(X: np.ndarray, groups: dict[str, np.ndarray]) -> np.ndarray:
    n_features = X.shape[1]
    p_min = np.ones(n_features, dtype=np.float64)
    for level, idx in groups.items():
        if len(idx) < 5:
            warnings.warn(
                f"Wilcoxon low-count filter used with {len(idx)} sample(s) in condition "
                f"'{level}'; at least 5 per condition are recommended.",
                UserWarning,
                stacklevel=3,
            )
        sub = X[idx]
        # all-zero columns have nothing to rank and keep p = 1
        active = np.flatnonzero(np.any(sub > 0, axis=0))
        if active.size == 0:
            continue
        result = stats.wilcoxon(
            sub[:, active], zero_method="wilcox", alternative="greater", axis=0
        )
        p = np.nan_to_num(np.asarray(result.pvalue, dtype=np.float64), nan=1.0)
        p_min[active] = np.minimum(p_min[active], p)
    return p_min


def _proportion_pvalues(
    X: np.ndarray,
    groups: dict[str, np.ndarray],
    cpm: float,
    depth: np.ndarray | None,
) -> np.ndarray:
    depth = X.sum(axis=1) if depth is None else np.asarray(depth, dtype=np.float64)
    p0 = cpm / 1e6
    p_min = np.ones(X.shape[1], dtype=np.float64)
    for idx in groups.values():
        n = depth[idx].sum()
        if n <= 0:
            continue
        p_hat = X[idx].sum(axis=0) / n
        z = (p_hat - p0) / np.sqrt(p0 * (1.0 - p0) / n)
        p_min = np.minimum(p_min, stats.norm.sf(z))
    return p_min


def low_count_mask(
    X: np.ndarray,
    groups: dict[str, np.ndarray],
    method: str = "cpm",
    cpm: float = 1.0,
    cv_cutoff: float | None = 100.0,
    p_adjust: str = "bh",
    alpha: float = 0.05,
    already_normalized: bool = False,
    depth: np.ndarray | None = None,
) -> np.ndarray:
    """Boolean mask of features that survive the low-count filter.

    Parameters
    ----------
    X : np.ndarray
        Counts (or normalized values), shape (n_samples, n_features).
    groups : dict[str, np.ndarray]
        Condition level -> sample indices.
    method : {"cpm", "wilcoxon", "proportion"}
        Filtering method.
    cpm : float, default=1.0
        CPM threshold (methods cpm and proportion).
    cv_cutoff : float | None, default=100.0
        Maximum CV in percent for the cpm method; None disables it.
    p_adjust : str, default="bh"
        Multiple testing correction for the test-based methods.
    alpha : float, default=0.05
        Significance level for the test-based methods.
    already_normalized : bool, default=False
        For the cpm method, use values as they are instead of converting
        to counts per million.
    depth : np.ndarray, optional
        Library sizes per sample; defaults to the row sums of X.

    Returns
    -------
    np.ndarray
        True for retained features.
    """
    if method not in FILTER_METHODS:
        raise ValidationError(
            f"Unknown low-count filter method: {method}. Use one of {FILTER_METHODS}.",
            field="method",
        )
    if cpm < 0:
        raise ValidationError(f"cpm must be >= 0, got {cpm}", field="cpm")
    if cv_cutoff is not None and cv_cutoff <= 0:
        raise ValidationError(f"cv_cutoff must be positive, got {cv_cutoff}", field="cv_cutoff")
    if p_adjust not in P_ADJUST_METHODS:
        raise ValidationError(
            f"Unknown p-value adjustment method: {p_adjust}. Use one of {P_ADJUST_METHODS}.",
            field="p_adjust",
        )
    if not 0 < alpha < 1:
        raise ValidationError(f"alpha must be in (0, 1), got {alpha}", field="alpha")
    if depth is not None and len(depth) != X.shape[0]:
        raise ValidationError(
            f"depth has {len(depth)} entries for {X.shape[0]} samples", field="depth"
        )

    if method == "cpm":
        keep = _cpm_keep(X, groups, cpm, cv_cutoff, already_normalized, depth)
    elif method == "wilcoxon":
        keep = adjust_pvalues(_wilcoxon_pvalues(X, groups), p_adjust) <= alpha
    else:
        if cpm == 0:
            raise ValidationError("The proportion test needs cpm > 0.", field="cpm")
        keep = adjust_pvalues(_proportion_pvalues(X, groups, cpm, depth), p_adjust) <= alpha

    return keep & np.any(X > 0, axis=0)


def filter_low_counts(
    container: ExprContainer,
    factor: str,
    assay_name: str = "gene",
    layer_name: str = "raw",
    method: str = "cpm",
    cpm: float = 1.0,
    cv_cutoff: float | None = 100.0,
    p_adjust: str = "bh",
    alpha: float = 0.05,
    already_normalized: bool = False,
    depth: np.ndarray | None = None,
) -> ExprContainer:
    """Filter out low-count features.

    Parameters
    ----------
    container : ExprContainer
        Container holding the data.
    factor : str
        Column of obs defining the conditions.
    assay_name : str, default="gene"
        Assay to filter. Every layer of the assay is subset.
    layer_name : str, default="raw"
        Layer used for the decision.
    method, cpm, cv_cutoff, p_adjust, alpha, already_normalized, depth
        See :func:`low_count_mask`.

    Returns
    -------
    ExprContainer
        New container whose assay keeps only the surviving features. The
        original container is not modified.

    Examples
    --------
    >>> filtered = filter_low_counts(container, factor="tissue", method="cpm", cpm=1)
    >>> filtered.assays["gene"].n_features <= container.assays["gene"].n_features
    True
    """
    assay = container.get_assay(assay_name)
    X = assay.get_layer(layer_name, assay_name).X
    groups = group_indices(container.obs, factor)

    keep = low_count_mask(
        X,
        groups,
        method=method,
        cpm=cpm,
        cv_cutoff=cv_cutoff,
        p_adjust=p_adjust,
        alpha=alpha,
        already_normalized=already_normalized,
        depth=depth,
    )

    n_removed = int((~keep).sum())
    n_all_zero = int((~np.any(X > 0, axis=0)).sum())
    if n_all_zero:
        warnings.warn(
            f"{n_all_zero} feature(s) with zero counts in every sample removed "
            f"from assay '{assay_name}'.",
            UserWarning,
            stacklevel=2,
        )
    if not keep.any():
        warnings.warn(
            f"Low-count filter ({method}) removed every feature of assay '{assay_name}'.",
            UserWarning,
            stacklevel=2,
        )

    result = container.with_assay(assay_name, assay.subset(np.flatnonzero(keep)))
    result.log_operation(
        action="filter_low_counts",
        params={
            "assay": assay_name,
            "layer": layer_name,
            "factor": factor,
            "method": method,
            "cpm": cpm,
            "cv_cutoff": cv_cutoff,
            "p_adjust": p_adjust,
            "n_removed": n_removed,
            "n_kept": int(keep.sum()),
        },
        description=f"Removed {n_removed} low-count features with method '{method}'.",
    )
    return result
