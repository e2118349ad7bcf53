from __future__ import annotations

import numpy as np

from noiseqpy.core.exceptions import DegenerateNormalizationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.normalization._base import (
    add_normalized_layer,
    check_counts,
    length_factor,
    library_sizes,
    resolve_lengths,
)


def rpkm(
    X: np.ndarray,
    lengths: np.ndarray | None = None,
    length_correction: float = 1.0,
    sample_ids: list[str] | None = None,
) -> np.ndarray:
    """
    Reads per kilobase per million on a (n_samples, n_features) array.

    Mathematical Formulation:
        RPKM[s, f] = X[s, f] / (N_s / 1e6) / (L_f / 1000) ** lc

    With lc = 0 (or no lengths) this is counts per million.
    """
    X = check_counts(X)
    totals = library_sizes(X)
    empty = np.flatnonzero(totals <= 0)
    if empty.size:
        name = sample_ids[empty[0]] if sample_ids is not None else str(empty[0])
        raise DegenerateNormalizationError(
            f"Sample '{name}' has no counts; library size is zero.", sample=name
        )
    return X / (totals[:, np.newaxis] / 1e6) / length_factor(lengths, length_correction)


def norm_rpkm(
    container: ExprContainer,
    assay_name: str = "gene",
    base_layer: str = "raw",
    new_layer_name: str = "rpkm",
    length_col: str = "length",
    length_correction: float = 1.0,
    k: float | None = 0,
) -> ExprContainer:
    """
    RPKM normalization.

    Args:
        container: ExprContainer holding the counts
        assay_name: Name of the assay to process
        base_layer: Name of the layer to normalize
        new_layer_name: Name for the new normalized layer
        length_col: Column of var holding feature lengths
        length_correction: Exponent applied to the length term. 0 disables
            length correction and lengths are not required.
        k: Pseudocount recorded with the layer for downstream zero handling.
            The transform itself does not use it.

    Returns:
        New ExprContainer with the RPKM layer added

    Raises:
        MissingAnnotationError: lengths are needed but absent
        DegenerateNormalizationError: a sample has zero library size
    """
    assay = container.get_assay(assay_name)
    X = assay.get_layer(base_layer, assay_name).X
    lengths = resolve_lengths(assay, length_col, length_correction)

    X_norm = rpkm(X, lengths, length_correction, container.sample_ids.to_list())

    return add_normalized_layer(
        container,
        assay_name,
        base_layer,
        new_layer_name,
        X_norm,
        action="normalization_rpkm",
        params={"length_correction": length_correction, "k": k},
    )
