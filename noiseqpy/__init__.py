"""noiseqpy: Non-parametric differential expression for count data.

Implements the NOISeq family of methods for RNA-seq style count matrices,
organised as a strictly pipelined analysis:

    1. Normalization: RPKM, upper quartile, TMM
    2. Low-count filtering (optional): CPM, Wilcoxon, proportion test
    3. Noise model: within-condition (M, D) distribution from real or
       simulated replicates
    4. Differential expression: NOISeq (technical / simulated replicates)
       and NOISeqBIO (biological replicates)

Quick Start:
    >>> from noiseqpy import read_data, diff_expr_noiseq
    >>> container = read_data(counts, factors, annotation=annotation)
    >>> result = diff_expr_noiseq(container, factor="tissue", norm="tmm")
    >>> result.degenes(q=0.8)

Version: v0.1.0
"""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "noiseqpy developers"

# Configuration
from noiseqpy.config import (
    FilterConfig,
    NoiseqBioConfig,
    NoiseqConfig,
    NormalizationConfig,
    PipelineConfig,
    load_config,
    save_config,
)

# Core data structures and exceptions
from noiseqpy.core import (
    Assay,
    AssayNotFoundError,
    ConfigurationError,
    DegenerateMixtureFitError,
    DegenerateNormalizationError,
    DimensionError,
    ExprContainer,
    ExprMatrix,
    FactorNotFoundError,
    InsufficientReplicatesError,
    InvalidFactorCardinalityError,
    LayerNotFoundError,
    MissingAnnotationError,
    NoiseqError,
    ProvenanceLog,
    ValidationError,
    read_data,
)

# Differential expression
from noiseqpy.diff_expr import (
    DEResult,
    NoiseDistribution,
    build_noise,
    diff_expr_noiseq,
    diff_expr_noiseqbio,
    simulate_replicates,
    zero_substitute,
)

# Normalization
from noiseqpy.normalization import (
    norm_rpkm,
    norm_tmm,
    norm_uqua,
    normalize_counts,
    tmm_factors,
)

# Pipeline
from noiseqpy.pipeline import run_pipeline, select_de

# Quality control
from noiseqpy.qc import filter_low_counts, low_count_mask

__all__ = [
    "__version__",
    # Core
    "ExprContainer",
    "Assay",
    "ExprMatrix",
    "ProvenanceLog",
    "read_data",
    # Exceptions
    "NoiseqError",
    "ValidationError",
    "DimensionError",
    "AssayNotFoundError",
    "LayerNotFoundError",
    "FactorNotFoundError",
    "MissingAnnotationError",
    "DegenerateNormalizationError",
    "InsufficientReplicatesError",
    "InvalidFactorCardinalityError",
    "DegenerateMixtureFitError",
    "ConfigurationError",
    # Normalization
    "norm_rpkm",
    "norm_uqua",
    "norm_tmm",
    "normalize_counts",
    "tmm_factors",
    # QC
    "filter_low_counts",
    "low_count_mask",
    # Differential expression
    "DEResult",
    "NoiseDistribution",
    "build_noise",
    "simulate_replicates",
    "zero_substitute",
    "diff_expr_noiseq",
    "diff_expr_noiseqbio",
    # Config and pipeline
    "NormalizationConfig",
    "FilterConfig",
    "NoiseqConfig",
    "NoiseqBioConfig",
    "PipelineConfig",
    "load_config",
    "save_config",
    "run_pipeline",
    "select_de",
]
