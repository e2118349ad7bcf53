"""Differential expression: noise model, NOISeq and NOISeqBIO.

Common Usage:
    >>> from noiseqpy.diff_expr import diff_expr_noiseq
    >>> result = diff_expr_noiseq(container, factor="tissue", norm="tmm")
    >>> result.degenes(q=0.8)
"""

from noiseqpy.diff_expr.core import ComparisonData, DEResult, prepare_comparison
from noiseqpy.diff_expr.noise import (
    NoiseDistribution,
    build_noise,
    pairwise_md,
    replicate_pairs,
    resolve_pseudocount,
    simulate_replicates,
    zero_substitute,
)
from noiseqpy.diff_expr.noiseq import REPLICATE_MODES, diff_expr_noiseq, noiseq_statistics
from noiseqpy.diff_expr.noiseqbio import (
    combine_theta,
    diff_expr_noiseqbio,
    mixture_probability,
    null_thetas,
    shrinkage_constant,
    theta_components,
    usable_splits,
)

__all__ = [
    "DEResult",
    "ComparisonData",
    "prepare_comparison",
    "NoiseDistribution",
    "build_noise",
    "pairwise_md",
    "replicate_pairs",
    "resolve_pseudocount",
    "simulate_replicates",
    "zero_substitute",
    "diff_expr_noiseq",
    "noiseq_statistics",
    "REPLICATE_MODES",
    "diff_expr_noiseqbio",
    "theta_components",
    "shrinkage_constant",
    "combine_theta",
    "usable_splits",
    "null_thetas",
    "mixture_probability",
]
