"""Result container and shared helpers for differential expression.

This module holds the per-feature result table produced by both NOISeq
variants and the selection of differentially expressed features by
probability threshold.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import polars as pl

from noiseqpy.core.exceptions import InsufficientReplicatesError, ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.core.utils import resolve_comparison
from noiseqpy.normalization import NORMALIZATION_METHODS, normalize_counts
from noiseqpy.normalization._base import resolve_lengths


@dataclass(frozen=True)
class DEResult:
    """
    Result container for one pairwise NOISeq or NOISeqBIO run.

    Attributes
    ----------
    feature_ids : np.ndarray
        Feature identifiers, in input order.
    conditions : tuple[str, str]
        The compared levels (condition 1, condition 2).
    mean1, mean2 : np.ndarray
        Mean normalized expression per condition.
    m : np.ndarray
        log2(mean1 / mean2) after zero substitution.
    d : np.ndarray
        |mean1 - mean2| (NOISeq) or mean1 - mean2 (NOISeqBIO).
    prob : np.ndarray
        Probability of differential expression, in [0, 1].
    ranking : np.ndarray
        -sign(M) * sqrt(M^2 + D^2) for NOISeq, theta for NOISeqBIO.
    theta : np.ndarray | None
        Combined statistic (NOISeqBIO only).
    annotation : pl.DataFrame | None
        Feature annotation carried through, row-aligned with feature_ids.
    method : str
        "noiseq-real", "noiseq-sim" or "noiseqbio".
    params : dict[str, Any]
        Run metadata: comparison, normalization, replicates, k used, ...
    """

    feature_ids: np.ndarray
    conditions: tuple[str, str]
    mean1: np.ndarray
    mean2: np.ndarray
    m: np.ndarray
    d: np.ndarray
    prob: np.ndarray
    ranking: np.ndarray
    theta: np.ndarray | None = None
    annotation: pl.DataFrame | None = None
    method: str = "noiseq-real"
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def comparison(self) -> str:
        return f"{self.conditions[0]}_vs_{self.conditions[1]}"

    @property
    def n_features(self) -> int:
        return len(self.feature_ids)

    def to_dataframe(self) -> pl.DataFrame:
        """
        Complete per-feature table, in input feature order.

        Returns
        -------
        pl.DataFrame
            Columns feature_id, <cond1>_mean, <cond2>_mean, M, D, [theta,]
            prob, ranking, then any annotation columns.
        """
        c1, c2 = self.conditions
        data: dict[str, np.ndarray | list] = {
            "feature_id": [str(f) for f in self.feature_ids],
            f"{c1}_mean": self.mean1,
            f"{c2}_mean": self.mean2,
            "M": self.m,
            "D": self.d,
        }
        if self.theta is not None:
            data["theta"] = self.theta
        data["prob"] = self.prob
        data["ranking"] = self.ranking

        df = pl.DataFrame(data)
        if self.annotation is not None and self.annotation.width:
            df = pl.concat([df, self.annotation], how="horizontal")
        return df

    def degenes(
        self,
        q: float = 0.8,
        m: str | None = None,
        min_abs_m: float | None = None,
    ) -> pl.DataFrame:
        """
        Select differentially expressed features.

        Parameters
        ----------
        q : float, default=0.8
            Probability threshold in [0, 1]; features with prob >= q are
            kept. Suggested: 0.8 (technical), 0.9 (simulated), 0.95 (NOISeqBIO).
        m : {"up", "down"}, optional
            Keep only features with M > 0 ("up", higher in condition 1) or
            M < 0 ("down").
        min_abs_m : float, optional
            Additional cutoff on |M|.

        Returns
        -------
        pl.DataFrame
            Selected features sorted by prob (descending).
        """
        if not 0.0 <= q <= 1.0:
            raise ValidationError(f"q must be in [0, 1], got {q}", field="q")
        if m not in (None, "up", "down"):
            raise ValidationError(f"m must be None, 'up' or 'down', got {m!r}", field="m")

        df = self.to_dataframe()
        mask = pl.col("prob") >= q
        if m == "up":
            mask = mask & (pl.col("M") > 0)
        elif m == "down":
            mask = mask & (pl.col("M") < 0)
        if min_abs_m is not None:
            mask = mask & (pl.col("M").abs() >= min_abs_m)

        return df.filter(mask).sort("prob", descending=True)


def carry_annotation(var: pl.DataFrame, feature_id_col: str) -> pl.DataFrame | None:
    """Annotation columns of var (everything but the id column), or None."""
    cols = [c for c in var.columns if c != feature_id_col]
    if not cols:
        return None
    return var.select(cols)


@dataclass(frozen=True)
class ComparisonData:
    """Raw and normalized data of the two compared conditions.

    Rows of `raw` and `normalized` are the samples of condition 1 followed
    by those of condition 2.
    """

    conditions: tuple[str, str]
    sample_ids: list[str]
    raw: np.ndarray
    normalized: np.ndarray
    idx1: np.ndarray
    idx2: np.ndarray
    lengths: np.ndarray | None
    feature_ids: np.ndarray
    annotation: pl.DataFrame | None


def prepare_comparison(
    container: ExprContainer,
    factor: str,
    conditions: Sequence[str] | None,
    assay_name: str,
    layer: str,
    norm: str,
    length_col: str,
    length_correction: float,
    norm_params: dict[str, Any] | None = None,
    min_replicates: int = 1,
) -> ComparisonData:
    """
    Validate a pairwise comparison and normalize its samples.

    Validation (assay, layer, factor, levels, replicate counts, method
    names, annotation) happens before any computation.

    Raises
    ------
    InvalidFactorCardinalityError
        If the factor does not resolve to two levels.
    InsufficientReplicatesError
        If a condition has fewer than `min_replicates` samples.
    MissingAnnotationError
        If the length correction needs lengths that are absent.
    """
    if norm not in NORMALIZATION_METHODS:
        raise ValidationError(
            f"Unknown normalization method: {norm}. Use one of {NORMALIZATION_METHODS}.",
            field="norm",
        )
    assay = container.get_assay(assay_name)
    X = assay.get_layer(layer, assay_name).X
    levels, idx1, idx2 = resolve_comparison(container.obs, factor, conditions)
    for level, idx in zip(levels, (idx1, idx2), strict=True):
        if len(idx) < min_replicates:
            raise InsufficientReplicatesError(level, len(idx), required=min_replicates)
    lengths = resolve_lengths(assay, length_col, length_correction)

    order = np.concatenate([idx1, idx2])
    all_ids = container.sample_ids.to_list()
    sample_ids = [all_ids[i] for i in order]
    raw = X[order]
    normalized = normalize_counts(
        raw, norm, lengths, length_correction, sample_ids=sample_ids, **(norm_params or {})
    )

    n1 = len(idx1)
    return ComparisonData(
        conditions=levels,
        sample_ids=sample_ids,
        raw=raw,
        normalized=normalized,
        idx1=np.arange(n1),
        idx2=np.arange(n1, len(order)),
        lengths=lengths,
        feature_ids=assay.feature_ids.to_numpy(),
        annotation=carry_annotation(assay.var, assay.feature_id_col),
    )
