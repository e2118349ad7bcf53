"""Build an ExprContainer from in-memory count tables."""

from __future__ import annotations

import numpy as np
import polars as pl

from noiseqpy.core.exceptions import DimensionError, ValidationError
from noiseqpy.core.structures import Assay, ExprContainer, ExprMatrix

ANNOTATION_COLUMNS = ("length", "gc", "biotype", "chromosome", "start", "end")


def _check_annotation(var: pl.DataFrame) -> None:
    if "length" in var.columns:
        lengths = var["length"].drop_nulls().to_numpy()
        if np.any(lengths <= 0):
            raise ValidationError("Feature lengths must be positive.", field="length")
    if "gc" in var.columns:
        gc = var["gc"].drop_nulls().to_numpy()
        if np.any((gc < 0) | (gc > 1)):
            raise ValidationError("GC content must be a fraction in [0, 1].", field="gc")


def read_data(
    counts: pl.DataFrame | np.ndarray,
    factors: pl.DataFrame,
    annotation: pl.DataFrame | None = None,
    feature_ids: list[str] | None = None,
    sample_ids: list[str] | None = None,
    feature_id_col: str = "_index",
    assay_name: str = "gene",
    layer_name: str = "raw",
) -> ExprContainer:
    """Create a container from a feature-by-sample count table.

    Parameters
    ----------
    counts : pl.DataFrame | np.ndarray
        Either a DataFrame with a `feature_id_col` column plus one numeric
        column per sample, or an array of shape (n_features, n_samples)
        together with `feature_ids` and `sample_ids`.
    factors : pl.DataFrame
        One row per sample, in column order of `counts`. Each column is a
        factor (condition, batch, lane...). A `_index` column, if present,
        must match the sample ids.
    annotation : pl.DataFrame, optional
        Feature annotation keyed by `feature_id_col` with any of the columns
        length, gc, biotype, chromosome, start, end. Features absent from
        the annotation keep null fields.
    feature_ids, sample_ids : list[str], optional
        Identifiers when `counts` is an array.
    feature_id_col : str, default="_index"
        Name of the feature identifier column.
    assay_name, layer_name : str
        Where to store the counts in the container.

    Returns
    -------
    ExprContainer
        Container with counts stored samples x features.
    """
    if isinstance(counts, pl.DataFrame):
        if feature_id_col not in counts.columns:
            raise ValidationError(
                f"Count table has no feature id column '{feature_id_col}'.", field="feature_id_col"
            )
        feature_ids = counts[feature_id_col].cast(pl.Utf8).to_list()
        sample_ids = [c for c in counts.columns if c != feature_id_col]
        X = counts.select(sample_ids).to_numpy().astype(np.float64)
    else:
        X = np.asarray(counts, dtype=np.float64)
        if X.ndim != 2:
            raise DimensionError(f"Count array must be 2D, got {X.ndim}D.")
        if feature_ids is None:
            feature_ids = [f"feature_{i}" for i in range(X.shape[0])]
        if sample_ids is None:
            sample_ids = [f"sample_{j}" for j in range(X.shape[1])]
        if len(feature_ids) != X.shape[0]:
            raise DimensionError(
                f"feature_ids length ({len(feature_ids)}) != count rows ({X.shape[0]})"
            )
        if len(sample_ids) != X.shape[1]:
            raise DimensionError(
                f"sample_ids length ({len(sample_ids)}) != count columns ({X.shape[1]})"
            )

    if factors.height != len(sample_ids):
        raise DimensionError(
            f"factors has {factors.height} rows but the count table has {len(sample_ids)} samples"
        )

    if "_index" in factors.columns:
        if factors["_index"].cast(pl.Utf8).to_list() != list(sample_ids):
            raise ValidationError("factors '_index' does not match the sample ids.", field="factors")
        obs = factors
    else:
        obs = factors.with_columns(pl.Series("_index", list(sample_ids))).select(
            ["_index", *factors.columns]
        )

    var = pl.DataFrame({feature_id_col: list(feature_ids)})
    if annotation is not None:
        if feature_id_col not in annotation.columns:
            raise ValidationError(
                f"Annotation has no feature id column '{feature_id_col}'.", field="annotation"
            )
        keep = [c for c in annotation.columns if c in ANNOTATION_COLUMNS]
        ann = annotation.select([feature_id_col, *keep]).with_columns(
            pl.col(feature_id_col).cast(pl.Utf8)
        )
        var = (
            var.with_row_index("__row")
            .join(ann, on=feature_id_col, how="left")
            .sort("__row")
            .drop("__row")
        )
        _check_annotation(var)

    assay = Assay(var=var, layers={layer_name: ExprMatrix(X=X.T.copy())}, feature_id_col=feature_id_col)
    container = ExprContainer(obs=obs, assays={assay_name: assay})
    container.log_operation(
        action="read_data",
        params={"n_features": len(feature_ids), "n_samples": len(sample_ids), "assay": assay_name},
        description=f"Loaded counts into '{assay_name}/{layer_name}'.",
    )
    return container
