"""End-to-end run: validate, filter, then score differential expression.

Normalization happens inside the statistic engine so that simulated
replicates go through exactly the same transform as the real samples.
"""

from __future__ import annotations

from dataclasses import replace

import polars as pl

from noiseqpy.config.loader import PipelineConfig, validate_config
from noiseqpy.core.exceptions import InsufficientReplicatesError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.core.utils import resolve_comparison
from noiseqpy.diff_expr.core import DEResult
from noiseqpy.diff_expr.noiseq import diff_expr_noiseq
from noiseqpy.diff_expr.noiseqbio import diff_expr_noiseqbio
from noiseqpy.normalization._base import resolve_lengths
from noiseqpy.qc.low_counts import filter_low_counts


def check_inputs(container: ExprContainer, config: PipelineConfig) -> None:
    """Eager validation of a run before any computation.

    Raises
    ------
    ValidationError
        Unknown method names or out-of-range values.
    AssayNotFoundError, LayerNotFoundError, FactorNotFoundError
        Missing data.
    InvalidFactorCardinalityError
        If the comparison does not resolve to two levels.
    InsufficientReplicatesError
        If a condition lacks the replicates the chosen mode needs.
    MissingAnnotationError
        If the length correction needs lengths that are absent.
    """
    validate_config(config)
    assay = container.get_assay(config.assay_name)
    assay.get_layer(config.layer, config.assay_name)
    levels, idx1, idx2 = resolve_comparison(container.obs, config.factor, config.conditions)
    if config.replicates in ("technical", "biological"):
        for level, idx in zip(levels, (idx1, idx2), strict=True):
            if len(idx) < 2:
                raise InsufficientReplicatesError(level, len(idx), required=2)
    resolve_lengths(
        assay, config.normalization.length_col, config.normalization.length_correction
    )


def run_pipeline(container: ExprContainer, config: PipelineConfig) -> DEResult:
    """
    Run the configured analysis on a container.

    Parameters
    ----------
    container : ExprContainer
        Input data with raw counts. Not modified.
    config : PipelineConfig
        Run configuration.

    Returns
    -------
    DEResult
        Per-feature results. `params["history"]` lists the actions applied
        to the data before scoring.

    Examples
    --------
    >>> config = PipelineConfig(factor="tissue", replicates="technical")
    >>> result = run_pipeline(container, config)
    >>> result.degenes(q=config.threshold)
    """
    check_inputs(container, config)

    data = container
    if config.filter.method is not None:
        data = filter_low_counts(
            data,
            factor=config.factor,
            assay_name=config.assay_name,
            layer_name=config.layer,
            method=config.filter.method,
            cpm=config.filter.cpm,
            cv_cutoff=config.filter.cv_cutoff,
            p_adjust=config.filter.p_adjust,
            alpha=config.filter.alpha,
        )

    norm = config.normalization
    common = {
        "factor": config.factor,
        "conditions": config.conditions,
        "assay_name": config.assay_name,
        "layer": config.layer,
        "norm": norm.method,
        "length_col": norm.length_col,
        "length_correction": norm.length_correction,
        "norm_params": dict(norm.params),
    }

    if config.replicates == "biological":
        bio = config.noiseqbio
        result = diff_expr_noiseqbio(
            data,
            k=bio.k,
            r=bio.r,
            adj=bio.adj,
            a0per=bio.a0per,
            seed=bio.seed,
            filter=bio.filter,
            cpm=bio.cpm,
            cv_cutoff=bio.cv_cutoff,
            nclust=bio.nclust,
            min_features=bio.min_features,
            n_jobs=bio.n_jobs,
            **common,
        )
    else:
        nq = config.noiseq
        result = diff_expr_noiseq(
            data,
            k=nq.k,
            replicates=config.replicates,
            pnr=nq.pnr,
            nss=nq.nss,
            v=nq.v,
            seed=nq.seed,
            n_jobs=nq.n_jobs,
            **common,
        )

    history = [{"action": log.action, **log.params} for log in data.history]
    return replace(result, params={**result.params, "history": history})


def select_de(result: DEResult, config: PipelineConfig, m: str | None = None) -> pl.DataFrame:
    """Differentially expressed features at the configured threshold."""
    return result.degenes(q=config.threshold, m=m)
