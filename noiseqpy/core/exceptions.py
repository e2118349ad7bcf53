"""Exception hierarchy for noiseqpy."""

from __future__ import annotations

from collections.abc import Sequence


class NoiseqError(Exception):
    """Base class for exceptions in noiseqpy."""

    pass


class ValidationError(NoiseqError):
    """Raised when a parameter or input fails validation.

    Attributes
    ----------
    field : str | None
        Name of the offending parameter, if known.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class DimensionError(NoiseqError):
    """Raised when matrix and metadata shapes disagree."""

    pass


class AssayNotFoundError(NoiseqError):
    """Raised when an assay name is not present in the container."""

    def __init__(self, assay_name: str) -> None:
        self.assay_name = assay_name
        super().__init__(f"Assay '{assay_name}' not found.")


class LayerNotFoundError(NoiseqError):
    """Raised when a layer name is not present in an assay."""

    def __init__(self, layer_name: str, assay_name: str) -> None:
        self.layer_name = layer_name
        self.assay_name = assay_name
        super().__init__(f"Layer '{layer_name}' not found in assay '{assay_name}'.")


class FactorNotFoundError(NoiseqError):
    """Raised when a factor column is not present in obs."""

    def __init__(self, factor: str) -> None:
        self.factor = factor
        super().__init__(f"Factor '{factor}' not found in obs.")


class MissingAnnotationError(NoiseqError):
    """Raised when a method needs feature annotation that is absent."""

    def __init__(self, column: str, n_missing: int | None = None) -> None:
        self.column = column
        self.n_missing = n_missing
        msg = f"Feature annotation '{column}' is required but missing"
        if n_missing is not None:
            msg += f" for {n_missing} feature(s)"
        super().__init__(msg + ".")


class DegenerateNormalizationError(NoiseqError):
    """Raised when a sample cannot yield a stable scaling factor."""

    def __init__(self, message: str, sample: str | None = None) -> None:
        self.sample = sample
        super().__init__(message)


class InsufficientReplicatesError(NoiseqError):
    """Raised when a condition has fewer replicates than a method requires."""

    def __init__(self, condition: str, n_samples: int, required: int = 2) -> None:
        self.condition = condition
        self.n_samples = n_samples
        self.required = required
        super().__init__(
            f"Condition '{condition}' has {n_samples} sample(s), "
            f"at least {required} replicates are required."
        )


class InvalidFactorCardinalityError(NoiseqError):
    """Raised when the comparison factor does not resolve to two levels."""

    def __init__(self, factor: str, levels: Sequence[str]) -> None:
        self.factor = factor
        self.levels = list(levels)
        super().__init__(
            f"Factor '{factor}' must resolve to exactly 2 levels, "
            f"got {len(self.levels)}: {self.levels}"
        )


class DegenerateMixtureFitError(NoiseqError):
    """Raised when the theta mixture density cannot be estimated."""

    pass


class ConfigurationError(NoiseqError):
    """Exception raised for configuration file errors.

    Attributes
    ----------
    config_path : Path | str | None
        Path to the configuration file that caused the error.
    """

    def __init__(self, message: str, config_path: object | None = None) -> None:
        super().__init__(message)
        self.config_path = config_path
