from .exceptions import (
    AssayNotFoundError,
    ConfigurationError,
    DegenerateMixtureFitError,
    DegenerateNormalizationError,
    DimensionError,
    FactorNotFoundError,
    InsufficientReplicatesError,
    InvalidFactorCardinalityError,
    LayerNotFoundError,
    MissingAnnotationError,
    NoiseqError,
    ValidationError,
)
from .reader import read_data
from .structures import Assay, ExprContainer, ExprMatrix, ProvenanceLog

__all__ = [
    "ExprContainer",
    "Assay",
    "ExprMatrix",
    "ProvenanceLog",
    "read_data",
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
]
