"""NOISeqBIO: differential expression with biological replicates.

Each feature gets a combined statistic theta from M (log2 ratio of the
condition means) and D (signed difference), each divided by its standard
error plus a shrinkage constant. The observed thetas are modelled as a
mixture of a null component, estimated from thetas computed on resampled
data, and a differential component:

    f(theta) = p0 * f0(theta) + (1 - p0) * f1(theta)
    prob(theta) = 1 - p0 * f0(theta) / f(theta)

Densities are Gaussian kernel estimates (scipy.stats.gaussian_kde).

Reference:
    Tarazona, S., Furio-Tari, P., Turra, D., Di Pietro, A., Nueda, M. J.,
    Ferrer, A., & Conesa, A. (2015). Data quality aware analysis of
    differential expression in RNA-seq with NOISeq R/Bioc package.
    Nucleic Acids Research, 43(21), e140.
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from itertools import combinations
from math import comb
from typing import Any

import numpy as np
import polars as pl
from joblib import Parallel, delayed
from scipy.stats import gaussian_kde
from sklearn.cluster import KMeans

from noiseqpy.core.exceptions import DegenerateMixtureFitError, ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.diff_expr.core import DEResult, prepare_comparison
from noiseqpy.diff_expr.noise import resolve_pseudocount, zero_substitute
from noiseqpy.qc import FILTER_METHODS, low_count_mask

# Above this many label splits, permutations are drawn instead of enumerated
_MAX_ENUMERATED_SPLITS = 10_000
_MAX_NULL_POINTS = 20_000
_GRID_POINTS = 512


def theta_components(
    X: np.ndarray,
    idx1: np.ndarray,
    idx2: np.ndarray,
    pseudocount: float,
) -> dict[str, np.ndarray]:
    """
    Per-feature M, signed D and their standard errors.

    Parameters
    ----------
    X : np.ndarray
        Normalized expression, shape (n_samples, n_features).
    idx1, idx2 : np.ndarray
        Sample indices of the two conditions (>= 2 each).
    pseudocount : float
        Zero replacement for the condition means.

    Returns
    -------
    dict
        Keys "mean1", "mean2", "m", "d", "sm", "sd".

    Notes
    -----
    sM follows from the delta method on log2 of each mean:
    Var(log2 x) ~ Var(x) / (x^2 ln(2)^2).
    """
    n1, n2 = len(idx1), len(idx2)
    mean1 = X[idx1].mean(axis=0)
    mean2 = X[idx2].mean(axis=0)
    var1 = X[idx1].var(axis=0, ddof=1)
    var2 = X[idx2].var(axis=0, ddof=1)

    e1 = zero_substitute(mean1, pseudocount=pseudocount)
    e2 = zero_substitute(mean2, pseudocount=pseudocount)
    return {
        "mean1": mean1,
        "mean2": mean2,
        "m": np.log2(e1 / e2),
        "d": e1 - e2,
        "sm": np.sqrt(var1 / (n1 * e1**2) + var2 / (n2 * e2**2)) / np.log(2),
        "sd": np.sqrt(var1 / n1 + var2 / n2),
    }


def shrinkage_constant(s: np.ndarray, a0per: float) -> float:
    """
    `a0per` quantile of the standard errors, kept strictly positive.

    Raises
    ------
    DegenerateMixtureFitError
        If every standard error is zero.
    """
    a0 = float(np.quantile(s, a0per))
    if a0 > 0:
        return a0
    positive = s[s > 0]
    if positive.size == 0:
        raise DegenerateMixtureFitError(
            "All replicate variances are zero; theta cannot be standardized."
        )
    return float(positive.min())


def combine_theta(parts: dict[str, np.ndarray], a0m: float, a0d: float) -> np.ndarray:
    """theta = (M / (a0M + sM) + D / (a0D + sD)) / 2"""
    return (parts["m"] / (a0m + parts["sm"]) + parts["d"] / (a0d + parts["sd"])) / 2.0


def usable_splits(n1: int, n2: int) -> int:
    """Label splits that differ from the observed one and from its mirror."""
    n_splits = comb(n1 + n2, n1) - 1
    if n1 == n2:
        n_splits -= 1
    return n_splits


def _permutation_splits(
    n1: int,
    n2: int,
    r: int,
    rng: np.random.Generator,
) -> list[tuple[np.ndarray, np.ndarray]]:
    n = n1 + n2
    observed = frozenset(range(n1))
    mirror = frozenset(range(n1, n))

    if comb(n, n1) <= _MAX_ENUMERATED_SPLITS:
        candidates = [
            frozenset(c) for c in combinations(range(n), n1) if frozenset(c) not in (observed, mirror)
        ]
        chosen = rng.choice(len(candidates), size=r, replace=False)
        picked = [candidates[i] for i in chosen]
    else:
        seen: set[frozenset[int]] = set()
        picked = []
        while len(picked) < r:
            split = frozenset(rng.permutation(n)[:n1].tolist())
            if split in (observed, mirror) or split in seen:
                continue
            seen.add(split)
            picked.append(split)

    return [
        (np.array(sorted(s)), np.array(sorted(set(range(n)) - s)))
        for s in picked
    ]


def _cluster_shuffle(
    X: np.ndarray,
    labels: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    shuffled = np.empty_like(X)
    for label in np.unique(labels):
        cols = np.flatnonzero(labels == label)
        block = X[:, cols].ravel()
        shuffled[:, cols] = rng.permutation(block).reshape(X.shape[0], cols.size)
    return shuffled


def null_thetas(
    X: np.ndarray,
    idx1: np.ndarray,
    idx2: np.ndarray,
    pseudocount: float,
    a0m: float,
    a0d: float,
    r: int = 50,
    nclust: int = 15,
    seed: int | None = 12345,
    n_jobs: int = 1,
) -> tuple[np.ndarray, str]:
    """
    Thetas under the no-change hypothesis.

    With at least `r` usable label splits, thetas are recomputed for `r`
    random splits. Otherwise features are grouped by k-means on their log
    mean expression and values are shuffled within each cluster `r` times.

    Returns
    -------
    tuple
        (pooled null thetas, "permutation" or "cluster")
    """
    rng = np.random.default_rng(seed)
    n1, n2 = len(idx1), len(idx2)
    order = np.concatenate([idx1, idx2])
    Xo = X[order]
    local1, local2 = np.arange(n1), np.arange(n1, n1 + n2)

    def _theta_of(data: np.ndarray, g1: np.ndarray, g2: np.ndarray) -> np.ndarray:
        return combine_theta(theta_components(data, g1, g2, pseudocount), a0m, a0d)

    if usable_splits(n1, n2) >= r:
        splits = _permutation_splits(n1, n2, r, rng)
        parts = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_theta_of)(Xo, g1, g2) for g1, g2 in splits
        )
        return np.concatenate(parts), "permutation"

    log_mean = np.log2(Xo.mean(axis=0) + pseudocount).reshape(-1, 1)
    n_clusters = max(1, min(nclust, np.unique(log_mean).size))
    labels = KMeans(n_clusters=n_clusters, random_state=seed, n_init=10).fit_predict(log_mean)
    shuffled = [_cluster_shuffle(Xo, labels, rng) for _ in range(r)]
    parts = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_theta_of)(data, local1, local2) for data in shuffled
    )
    return np.concatenate(parts), "cluster"


def _kde_on_grid(values: np.ndarray, adj: float, grid: np.ndarray) -> np.ndarray:
    try:
        kde = gaussian_kde(values)
        kde.set_bandwidth(kde.scotts_factor() * adj)
    except np.linalg.LinAlgError as e:
        raise DegenerateMixtureFitError(f"Kernel density estimation failed: {e}") from e
    return kde(grid)


def mixture_probability(
    theta: np.ndarray,
    theta0: np.ndarray,
    adj: float = 1.5,
    seed: int | None = 12345,
) -> tuple[np.ndarray, float]:
    """
    Probability of differential expression from the theta mixture.

    Parameters
    ----------
    theta : np.ndarray
        Observed thetas.
    theta0 : np.ndarray
        Null thetas.
    adj : float, default=1.5
        Multiplier of Scott's bandwidth for both densities.
    seed : int | None
        Seed for subsampling a large null.

    Returns
    -------
    tuple
        (prob in [0, 1], p0 estimate)
    """
    if np.var(theta) == 0:
        raise DegenerateMixtureFitError("All observed theta values are identical.")
    if theta0.size > _MAX_NULL_POINTS:
        rng = np.random.default_rng(seed)
        theta0 = rng.choice(theta0, size=_MAX_NULL_POINTS, replace=False)
    if np.var(theta0) == 0:
        raise DegenerateMixtureFitError("All null theta values are identical.")

    lo = min(theta.min(), theta0.min())
    hi = max(theta.max(), theta0.max())
    pad = 0.1 * (hi - lo)
    grid = np.linspace(lo - pad, hi + pad, _GRID_POINTS)

    f = np.interp(theta, grid, _kde_on_grid(theta, adj, grid))
    f0 = np.interp(theta, grid, _kde_on_grid(theta0, adj, grid))
    f = np.maximum(f, np.finfo(np.float64).tiny)

    with np.errstate(divide="ignore"):
        ratio = np.where(f0 > 0, f / f0, np.inf)
    p0 = float(min(1.0, ratio.min()))
    prob = np.clip(1.0 - p0 * f0 / f, 0.0, 1.0)
    return prob, p0


def diff_expr_noiseqbio(
    container: ExprContainer,
    factor: str,
    conditions: Sequence[str] | None = None,
    assay_name: str = "gene",
    layer: str = "raw",
    k: float | None = 0.5,
    norm: str = "rpkm",
    length_col: str = "length",
    length_correction: float = 0.0,
    norm_params: dict[str, Any] | None = None,
    r: int = 50,
    adj: float = 1.5,
    a0per: float = 0.9,
    seed: int | None = 12345,
    filter: str | None = "cpm",
    cpm: float = 1.0,
    cv_cutoff: float | None = 500.0,
    nclust: int = 15,
    min_features: int = 10,
    n_jobs: int = 1,
) -> DEResult:
    """NOISeqBIO differential expression for biological replicates.

    Parameters
    ----------
    container : ExprContainer
        Input data container with raw counts.
    factor : str
        Column in obs defining the conditions.
    conditions : Sequence[str], optional
        The two levels to compare.
    assay_name, layer : str
        Location of the raw counts.
    k : float | None, default=0.5
        Pseudocount for zero means.
    norm : {"rpkm", "uqua", "tmm", "n"}, default="rpkm"
        Normalization method.
    length_col : str, default="length"
        Column of var with feature lengths.
    length_correction : float, default=0.0
        Length correction exponent.
    norm_params : dict, optional
        Extra normalization arguments.
    r : int, default=50
        Number of permutations (or cluster shuffles) for the null.
    adj : float, default=1.5
        Bandwidth adjustment of the kernel density estimates.
    a0per : float, default=0.9
        Quantile of the standard errors used as shrinkage constant.
    seed : int | None, default=12345
        Seed for the resampling only.
    filter : str | None, default="cpm"
        Low-count filter applied to the compared samples before the
        statistic; None disables it.
    cpm, cv_cutoff : float
        Filter parameters, see :func:`noiseqpy.qc.low_count_mask`.
    nclust : int, default=15
        Number of k-means clusters when too few permutations exist.
    min_features : int, default=10
        Minimum number of features needed to fit the mixture.
    n_jobs : int, default=1
        joblib workers for the null thetas.

    Returns
    -------
    DEResult
        One row per feature surviving the filter; `ranking` is theta.

    Raises
    ------
    InsufficientReplicatesError
        If a condition has fewer than 2 samples.
    DegenerateMixtureFitError
        If the mixture densities cannot be estimated.

    Notes
    -----
    The suggested threshold for :meth:`DEResult.degenes` is q = 0.95.
    """
    if r < 1:
        raise ValidationError(f"r must be >= 1, got {r}", field="r")
    if not adj > 0:
        raise ValidationError(f"adj must be positive, got {adj}", field="adj")
    if not 0 <= a0per <= 1:
        raise ValidationError(f"a0per must be in [0, 1], got {a0per}", field="a0per")
    if nclust < 1:
        raise ValidationError(f"nclust must be >= 1, got {nclust}", field="nclust")
    if filter is not None and filter not in FILTER_METHODS:
        raise ValidationError(
            f"Unknown low-count filter method: {filter}. Use one of {FILTER_METHODS} or None.",
            field="filter",
        )
    if k is not None and not k > 0:
        raise ValidationError(f"k must be positive or None, got {k}", field="k")

    data = prepare_comparison(
        container,
        factor,
        conditions,
        assay_name,
        layer,
        norm,
        length_col,
        length_correction,
        norm_params,
        min_replicates=2,
    )

    X = data.normalized
    feature_ids = data.feature_ids
    annotation = data.annotation
    n_filtered = 0
    if filter is not None:
        groups = dict(zip(data.conditions, (data.idx1, data.idx2), strict=True))
        keep = low_count_mask(data.raw, groups, method=filter, cpm=cpm, cv_cutoff=cv_cutoff)
        n_filtered = int((~keep).sum())
        if n_filtered:
            warnings.warn(
                f"{n_filtered} low-count feature(s) removed before NOISeqBIO.",
                UserWarning,
                stacklevel=2,
            )
        X = X[:, keep]
        feature_ids = feature_ids[keep]
        if annotation is not None:
            annotation = annotation.filter(pl.Series(keep))

    if X.shape[1] < min_features:
        raise DegenerateMixtureFitError(
            f"{X.shape[1]} feature(s) available, at least {min_features} are needed "
            "to fit the theta mixture."
        )

    pseudocount = resolve_pseudocount(X, k)
    parts = theta_components(X, data.idx1, data.idx2, pseudocount)
    a0m = shrinkage_constant(parts["sm"], a0per)
    a0d = shrinkage_constant(parts["sd"], a0per)
    theta = combine_theta(parts, a0m, a0d)

    theta0, null_method = null_thetas(
        X, data.idx1, data.idx2, pseudocount, a0m, a0d, r=r, nclust=nclust, seed=seed, n_jobs=n_jobs
    )
    prob, p0 = mixture_probability(theta, theta0, adj=adj, seed=seed)

    c1, c2 = data.conditions
    return DEResult(
        feature_ids=feature_ids,
        conditions=data.conditions,
        mean1=parts["mean1"],
        mean2=parts["mean2"],
        m=parts["m"],
        d=parts["d"],
        prob=prob,
        ranking=theta,
        theta=theta,
        annotation=annotation,
        method="noiseqbio",
        params={
            "comparison": f"{c1}_vs_{c2}",
            "factor": factor,
            "normalization": norm,
            "replicates": "biological",
            "k": pseudocount,
            "length_correction": length_correction,
            "r": r,
            "adj": adj,
            "a0per": a0per,
            "a0M": a0m,
            "a0D": a0d,
            "p0": p0,
            "null": null_method,
            "seed": seed,
            "filter": filter,
            "n_filtered": n_filtered,
            "n_samples": {c1: len(data.idx1), c2: len(data.idx2)},
        },
    )
