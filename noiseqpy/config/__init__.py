"""Per-stage configuration and YAML persistence."""

from noiseqpy.config.loader import (
    DEFAULT_Q,
    REPLICATE_MODES,
    FilterConfig,
    NoiseqBioConfig,
    NoiseqConfig,
    NormalizationConfig,
    PipelineConfig,
    load_config,
    save_config,
    validate_config,
)

__all__ = [
    "NormalizationConfig",
    "FilterConfig",
    "NoiseqConfig",
    "NoiseqBioConfig",
    "PipelineConfig",
    "load_config",
    "save_config",
    "validate_config",
    "REPLICATE_MODES",
    "DEFAULT_Q",
]
