from __future__ import annotations

import numpy as np

from noiseqpy.core.exceptions import DegenerateNormalizationError, ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.normalization._base import (
    add_normalized_layer,
    check_counts,
    length_factor,
    resolve_lengths,
)


def upper_quartiles(
    X: np.ndarray,
    lower_threshold: float = 0.0,
    min_nonzero: int = 4,
    sample_ids: list[str] | None = None,
) -> np.ndarray:
    """
    75th percentile of each sample's counts above `lower_threshold`.

    Zeros never take part in the percentile.

    Raises:
        DegenerateNormalizationError: fewer than `min_nonzero` qualifying
            features in a sample, or a non-positive quartile
    """
    uqs = np.empty(X.shape[0], dtype=np.float64)
    for i in range(X.shape[0]):
        row = X[i]
        values = row[(row > 0) & (row > lower_threshold)]
        name = sample_ids[i] if sample_ids is not None else str(i)
        if values.size < min_nonzero:
            raise DegenerateNormalizationError(
                f"Sample '{name}' has {values.size} qualifying feature(s), "
                f"at least {min_nonzero} are needed for a stable upper quartile.",
                sample=name,
            )
        uqs[i] = np.quantile(values, 0.75)
        if not uqs[i] > 0:
            raise DegenerateNormalizationError(
                f"Sample '{name}' has a non-positive upper quartile.", sample=name
            )
    return uqs


def upper_quartile(
    X: np.ndarray,
    lengths: np.ndarray | None = None,
    length_correction: float = 0.0,
    lower_threshold: float = 0.0,
    min_nonzero: int = 4,
    sample_ids: list[str] | None = None,
) -> np.ndarray:
    """
    Upper quartile normalization on a (n_samples, n_features) array.

    Mathematical Formulation:
        UQ_s = percentile_75({X[s, f] : X[s, f] > max(0, threshold)})
        X_norm[s, f] = X[s, f] / UQ_s * mean(UQ) / (L_f / 1000) ** lc

    Rescaling by mean(UQ) keeps values on a count-like scale without
    changing any within-sample proportion.
    """
    X = check_counts(X)
    if min_nonzero < 1:
        raise ValidationError(f"min_nonzero must be >= 1, got {min_nonzero}", field="min_nonzero")
    uqs = upper_quartiles(X, lower_threshold, min_nonzero, sample_ids)
    X_norm = X / uqs[:, np.newaxis] * uqs.mean()
    return X_norm / length_factor(lengths, length_correction)


def norm_uqua(
    container: ExprContainer,
    assay_name: str = "gene",
    base_layer: str = "raw",
    new_layer_name: str = "uqua",
    length_col: str = "length",
    length_correction: float = 0.0,
    lower_threshold: float = 0.0,
    min_nonzero: int = 4,
) -> ExprContainer:
    """
    Upper quartile normalization to align samples on their 75th percentile.

    Reference:
        Bullard, J. H., Purdom, E., Hansen, K. D., & Dudoit, S. (2010).
        Evaluation of statistical methods for normalization and differential expression
        in mRNA-Seq experiments. BMC Bioinformatics, 11, 94.

    Args:
        container: ExprContainer holding the counts
        assay_name: Name of the assay to process
        base_layer: Name of the layer to normalize
        new_layer_name: Name for the new normalized layer
        length_col: Column of var holding feature lengths
        length_correction: Length correction exponent (0 = none)
        lower_threshold: Counts at or below this value are ignored when
            computing the quartile
        min_nonzero: Minimum qualifying features per sample

    Returns:
        New ExprContainer with the upper quartile layer added
    """
    assay = container.get_assay(assay_name)
    X = assay.get_layer(base_layer, assay_name).X
    lengths = resolve_lengths(assay, length_col, length_correction)

    X_norm = upper_quartile(
        X,
        lengths,
        length_correction,
        lower_threshold=lower_threshold,
        min_nonzero=min_nonzero,
        sample_ids=container.sample_ids.to_list(),
    )

    return add_normalized_layer(
        container,
        assay_name,
        base_layer,
        new_layer_name,
        X_norm,
        action="normalization_upper_quartile",
        params={
            "length_correction": length_correction,
            "lower_threshold": lower_threshold,
            "min_nonzero": min_nonzero,
        },
    )
