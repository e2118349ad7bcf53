"""Shared helpers for normalization methods."""

from __future__ import annotations

from typing import Any

import numpy as np

from noiseqpy.core.exceptions import MissingAnnotationError, ValidationError
from noiseqpy.core.structures import Assay, ExprContainer, ExprMatrix


def resolve_lengths(
    assay: Assay,
    length_col: str,
    length_correction: float,
) -> np.ndarray | None:
    """Return feature lengths when the length correction needs them.

    Parameters
    ----------
    assay : Assay
        Assay whose var may carry a length column.
    length_col : str
        Column in var holding feature lengths.
    length_correction : float
        Length correction exponent. Zero means lengths are not used.

    Returns
    -------
    np.ndarray | None
        Lengths as float64, or None when `length_correction` is 0.

    Raises
    ------
    MissingAnnotationError
        If the column is absent or has nulls for some features.
    """
    if length_correction < 0:
        raise ValidationError(
            f"length_correction must be >= 0, got {length_correction}", field="length_correction"
        )
    if length_correction == 0:
        return None
    if length_col not in assay.var.columns:
        raise MissingAnnotationError(length_col)
    lengths = assay.var[length_col]
    n_missing = lengths.null_count()
    if n_missing:
        raise MissingAnnotationError(length_col, n_missing=n_missing)
    return lengths.cast(float).to_numpy().astype(np.float64)


def length_factor(lengths: np.ndarray | None, length_correction: float) -> np.ndarray | float:
    """Per-feature divisor (length / 1kb) ** length_correction."""
    if lengths is None or length_correction == 0:
        return 1.0
    return (lengths / 1000.0) ** length_correction


def library_sizes(X: np.ndarray) -> np.ndarray:
    """Total counts per sample (rows)."""
    return X.sum(axis=1)


def check_counts(X: np.ndarray) -> np.ndarray:
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValidationError(f"Expected a 2D matrix, got {X.ndim}D.", field="X")
    if np.any(X < 0) or not np.all(np.isfinite(X)):
        raise ValidationError("Counts must be finite and non-negative.", field="X")
    return X


def add_normalized_layer(
    container: ExprContainer,
    assay_name: str,
    base_layer: str,
    new_layer_name: str,
    X_norm: np.ndarray,
    action: str,
    params: dict[str, Any],
) -> ExprContainer:
    """Attach a normalized layer to a new container and log it."""
    result = container.with_layer(assay_name, new_layer_name, ExprMatrix(X=X_norm))
    result.log_operation(
        action=action,
        params={"assay": assay_name, **params},
        description=f"{action} on layer '{base_layer}' -> '{new_layer_name}'.",
    )
    return result
