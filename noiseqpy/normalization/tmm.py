from __future__ import annotations

import numpy as np
from scipy.stats import rankdata

from noiseqpy.core.exceptions import DegenerateNormalizationError, ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.normalization._base import (
    add_normalized_layer,
    check_counts,
    length_factor,
    library_sizes,
    resolve_lengths,
)


def select_reference(X: np.ndarray) -> int:
    """
    Index of the reference sample for TMM.

    The sample whose upper quartile of library-size-scaled counts is
    closest to the geometric mean of those quartiles over all samples.
    """
    totals = library_sizes(X)
    f75 = np.quantile(X / totals[:, np.newaxis], 0.75, axis=1)
    positive = f75[f75 > 0]
    if positive.size == 0:
        return int(np.argmax(totals))
    centre = np.exp(np.mean(np.log(positive)))
    return int(np.argmin(np.abs(f75 - centre)))


def _tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    log_ratio_trim: float,
    sum_trim: float,
    weighted: bool,
    a_cutoff: float,
    name: str,
) -> float:
    n_obs, n_ref = obs.sum(), ref.sum()
    both = (obs > 0) & (ref > 0)
    o, r = obs[both], ref[both]

    log_r = np.log2((o / n_obs) / (r / n_ref))
    abs_e = 0.5 * np.log2((o / n_obs) * (r / n_ref))
    variance = (n_obs - o) / n_obs / o + (n_ref - r) / n_ref / r

    finite = abs_e > a_cutoff
    log_r, abs_e, variance = log_r[finite], abs_e[finite], variance[finite]
    if log_r.size == 0:
        raise DegenerateNormalizationError(
            f"Sample '{name}' shares no non-zero features with the TMM reference.", sample=name
        )
    if np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * log_ratio_trim / 2) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim / 2) + 1
    hi_s = n + 1 - lo_s

    rank_l = rankdata(log_r)
    rank_s = rankdata(abs_e)
    keep = (rank_l >= lo_l) & (rank_l <= hi_l) & (rank_s >= lo_s) & (rank_s <= hi_s)
    if not keep.any():
        raise DegenerateNormalizationError(
            f"Trimming left no features to estimate the TMM factor of sample '{name}'.",
            sample=name,
        )

    if weighted:
        w = 1.0 / variance[keep]
        mean_m = np.sum(w * log_r[keep]) / np.sum(w)
    else:
        mean_m = np.mean(log_r[keep])
    return float(2.0 ** mean_m)


def tmm_factors(
    X: np.ndarray,
    reference: int | None = None,
    log_ratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighted: bool = True,
    a_cutoff: float = -1e10,
    sample_ids: list[str] | None = None,
) -> tuple[np.ndarray, int]:
    """
    TMM scaling factors relative to a reference sample.

    Returns:
        (factors, reference) where factors[reference] == 1.0
    """
    X = check_counts(X)
    n_samples = X.shape[0]
    for name, value in (("log_ratio_trim", log_ratio_trim), ("sum_trim", sum_trim)):
        if not 0 <= value < 1:
            raise ValidationError(f"{name} must be in [0, 1), got {value}", field=name)

    totals = library_sizes(X)
    empty = np.flatnonzero(totals <= 0)
    if empty.size:
        name = sample_ids[empty[0]] if sample_ids is not None else str(empty[0])
        raise DegenerateNormalizationError(
            f"Sample '{name}' has no counts; library size is zero.", sample=name
        )

    if reference is None:
        reference = select_reference(X)
    elif not 0 <= reference < n_samples:
        raise ValidationError(
            f"reference must be a sample index in [0, {n_samples}), got {reference}",
            field="reference",
        )

    factors = np.ones(n_samples, dtype=np.float64)
    for i in range(n_samples):
        if i == reference:
            continue
        name = sample_ids[i] if sample_ids is not None else str(i)
        factors[i] = _tmm_factor(
            X[i], X[reference], log_ratio_trim, sum_trim, weighted, a_cutoff, name
        )
    return factors, int(reference)


def tmm(
    X: np.ndarray,
    lengths: np.ndarray | None = None,
    length_correction: float = 0.0,
    reference: int | None = None,
    log_ratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighted: bool = True,
    a_cutoff: float = -1e10,
    sample_ids: list[str] | None = None,
) -> np.ndarray:
    """
    TMM normalization on a (n_samples, n_features) array.

    X_norm[s, f] = X[s, f] / (TMM_s * N_s / N_ref) / (L_f / 1000) ** lc
    """
    X = check_counts(X)
    factors, ref = tmm_factors(
        X, reference, log_ratio_trim, sum_trim, weighted, a_cutoff, sample_ids
    )
    return apply_tmm_factors(X, factors, ref, lengths, length_correction)


def apply_tmm_factors(
    X: np.ndarray,
    factors: np.ndarray,
    reference: int,
    lengths: np.ndarray | None = None,
    length_correction: float = 0.0,
) -> np.ndarray:
    """Scale each sample by its TMM factor times its library size relative to the reference."""
    totals = library_sizes(X)
    scale = factors * totals / totals[reference]
    return X / scale[:, np.newaxis] / length_factor(lengths, length_correction)


def norm_tmm(
    container: ExprContainer,
    assay_name: str = "gene",
    base_layer: str = "raw",
    new_layer_name: str = "tmm",
    length_col: str = "length",
    length_correction: float = 0.0,
    reference: int | None = None,
    log_ratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    weighted: bool = True,
    a_cutoff: float = -1e10,
) -> ExprContainer:
    """
    Trimmed Mean of M-values (TMM) normalization.

    Mathematical Formulation:
        M_f = log2((x_f / N) / (r_f / N_ref))          # log ratio
        A_f = 0.5 * log2((x_f / N) * (r_f / N_ref))    # abundance
        w_f = 1 / ((N - x_f) / (N x_f) + (N_ref - r_f) / (N_ref r_f))

        After trimming log_ratio_trim of M and sum_trim of A (split between
        both tails), TMM = 2 ** (sum(w M) / sum(w)).

    Reference:
        Robinson, M. D., & Oshlack, A. (2010).
        A scaling normalization method for differential expression analysis
        of RNA-seq data. Genome Biology, 11(3), R25.

    Args:
        container: ExprContainer holding the counts
        assay_name: Name of the assay to process
        base_layer: Name of the layer to normalize
        new_layer_name: Name for the new normalized layer
        length_col: Column of var holding feature lengths
        length_correction: Length correction exponent (0 = none)
        reference: Index of reference sample (None selects by upper quartile)
        log_ratio_trim: Fraction of extreme log ratios to trim (default 0.3)
        sum_trim: Fraction of extreme abundances to trim (default 0.05)
        weighted: Use inverse approximate variance weights
        a_cutoff: Features with abundance below this are ignored

    Returns:
        New ExprContainer with the TMM layer added
    """
    assay = container.get_assay(assay_name)
    X = assay.get_layer(base_layer, assay_name).X
    lengths = resolve_lengths(assay, length_col, length_correction)
    sample_ids = container.sample_ids.to_list()

    factors, ref = tmm_factors(
        X, reference, log_ratio_trim, sum_trim, weighted, a_cutoff, sample_ids
    )
    X_norm = apply_tmm_factors(X, factors, ref, lengths, length_correction)

    return add_normalized_layer(
        container,
        assay_name,
        base_layer,
        new_layer_name,
        X_norm,
        action="normalization_tmm",
        params={
            "reference_sample": sample_ids[ref],
            "factors": factors.tolist(),
            "log_ratio_trim": log_ratio_trim,
            "sum_trim": sum_trim,
            "length_correction": length_correction,
        },
    )
