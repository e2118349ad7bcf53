"""Pipeline configuration: per-stage dataclasses and YAML load/save.

Each stage has its own configuration dataclass with documented defaults.
`load_config` reads a YAML file whose top-level sections mirror
:class:`PipelineConfig`; omitted sections and keys keep their defaults.

Example YAML::

    factor: tissue
    conditions: [brain, liver]
    replicates: technical
    normalization:
      method: tmm
    filter:
      method: cpm
      cpm: 1.0
    noiseq:
      k: 0.5
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from noiseqpy.core.exceptions import ConfigurationError, ValidationError
from noiseqpy.diff_expr.noiseq import REPLICATE_MODES as _NOISEQ_MODES
from noiseqpy.normalization import NORMALIZATION_METHODS
from noiseqpy.qc import FILTER_METHODS, P_ADJUST_METHODS

REPLICATE_MODES = (*_NOISEQ_MODES, "biological")

# Probability thresholds suggested for each replicate mode
DEFAULT_Q = {"technical": 0.8, "no": 0.9, "biological": 0.95}


@dataclass(slots=True)
class NormalizationConfig:
    """Normalization stage.

    Attributes
    ----------
    method : str
        "rpkm", "uqua", "tmm" or "n" (none).
    length_col : str
        Feature annotation column with lengths.
    length_correction : float
        Length correction exponent; 0 disables it.
    params : dict[str, object]
        Method-specific options (e.g. {"log_ratio_trim": 0.3} for TMM).
    """

    method: str = "rpkm"
    length_col: str = "length"
    length_correction: float = 0.0
    params: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class FilterConfig:
    """Low-count filter stage run before the statistic.

    Attributes
    ----------
    method : str | None
        "cpm", "wilcoxon", "proportion", or None to skip filtering.
    cpm : float
        CPM threshold.
    cv_cutoff : float | None
        Maximum CV (percent) for the cpm method.
    p_adjust : str
        Multiple testing correction for the test-based methods.
    alpha : float
        Significance level for the test-based methods.
    """

    method: str | None = None
    cpm: float = 1.0
    cv_cutoff: float | None = 100.0
    p_adjust: str = "bh"
    alpha: float = 0.05


@dataclass(slots=True)
class NoiseqConfig:
    """NOISeq with technical or simulated replicates."""

    k: float | None = 0.5
    pnr: float = 0.2
    nss: int = 5
    v: float = 0.02
    seed: int | None = 12345
    n_jobs: int = 1


@dataclass(slots=True)
class NoiseqBioConfig:
    """NOISeqBIO with biological replicates.

    `filter`, `cpm` and `cv_cutoff` configure the filter that NOISeqBIO
    runs on the compared samples, independent of the pipeline filter stage.
    """

    k: float | None = 0.5
    r: int = 50
    adj: float = 1.5
    a0per: float = 0.9
    seed: int | None = 12345
    filter: str | None = "cpm"
    cpm: float = 1.0
    cv_cutoff: float | None = 500.0
    nclust: int = 15
    min_features: int = 10
    n_jobs: int = 1


@dataclass(slots=True)
class PipelineConfig:
    """Complete run configuration.

    Attributes
    ----------
    factor : str
        obs column defining the conditions.
    conditions : list[str] | None
        The two levels to compare; None when the factor has exactly two.
    assay_name : str
        Assay holding the counts.
    layer : str
        Layer with raw counts.
    replicates : str
        "technical", "no" (simulated) or "biological".
    q : float | None
        Probability threshold for :func:`noiseqpy.pipeline.select_de`.
        None uses the suggested value for the replicate mode.
    """

    factor: str = ""
    conditions: list[str] | None = None
    assay_name: str = "gene"
    layer: str = "raw"
    replicates: str = "technical"
    q: float | None = None
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    noiseq: NoiseqConfig = field(default_factory=NoiseqConfig)
    noiseqbio: NoiseqBioConfig = field(default_factory=NoiseqBioConfig)

    @property
    def threshold(self) -> float:
        return DEFAULT_Q[self.replicates] if self.q is None else self.q


def validate_config(config: PipelineConfig) -> None:
    """Check method names and value ranges.

    Raises
    ------
    ValidationError
        Naming the offending field.
    """
    if not config.factor:
        raise ValidationError("A comparison factor is required.", field="factor")
    if config.replicates not in REPLICATE_MODES:
        raise ValidationError(
            f"Unknown replicates mode: {config.replicates}. Use one of {REPLICATE_MODES}.",
            field="replicates",
        )
    if config.conditions is not None and len(config.conditions) != 2:
        raise ValidationError(
            f"conditions must name exactly 2 levels, got {config.conditions}",
            field="conditions",
        )
    if config.q is not None and not 0.0 <= config.q <= 1.0:
        raise ValidationError(f"q must be in [0, 1], got {config.q}", field="q")
    if config.normalization.method not in NORMALIZATION_METHODS:
        raise ValidationError(
            f"Unknown normalization method: {config.normalization.method}. "
            f"Use one of {NORMALIZATION_METHODS}.",
            field="normalization.method",
        )
    if config.normalization.length_correction < 0:
        raise ValidationError(
            "length_correction must be >= 0.", field="normalization.length_correction"
        )
    if config.filter.method is not None and config.filter.method not in FILTER_METHODS:
        raise ValidationError(
            f"Unknown low-count filter method: {config.filter.method}. "
            f"Use one of {FILTER_METHODS} or null.",
            field="filter.method",
        )
    if config.filter.p_adjust not in P_ADJUST_METHODS:
        raise ValidationError(
            f"Unknown p-value adjustment method: {config.filter.p_adjust}. "
            f"Use one of {P_ADJUST_METHODS}.",
            field="filter.p_adjust",
        )
    if config.filter.method is not None:
        _validate_filter(config.filter)
    if config.replicates == "biological":
        _validate_noiseqbio(config.noiseqbio)
    else:
        _validate_noiseq(config.noiseq, simulated=config.replicates == "no")


def _check(ok: bool, message: str, field: str) -> None:
    if not ok:
        raise ValidationError(message, field=field)


def _validate_filter(cfg: FilterConfig) -> None:
    _check(cfg.cpm >= 0, f"cpm must be >= 0, got {cfg.cpm}", "filter.cpm")
    if cfg.method == "proportion":
        _check(cfg.cpm > 0, "The proportion test needs cpm > 0.", "filter.cpm")
    _check(
        cfg.cv_cutoff is None or cfg.cv_cutoff > 0,
        f"cv_cutoff must be positive, got {cfg.cv_cutoff}",
        "filter.cv_cutoff",
    )
    _check(0 < cfg.alpha < 1, f"alpha must be in (0, 1), got {cfg.alpha}", "filter.alpha")


def _validate_noiseq(cfg: NoiseqConfig, simulated: bool) -> None:
    _check(cfg.k is None or cfg.k > 0, f"k must be positive or None, got {cfg.k}", "noiseq.k")
    if simulated:
        _check(0 < cfg.pnr <= 1, f"pnr must be in (0, 1], got {cfg.pnr}", "noiseq.pnr")
        _check(cfg.nss >= 2, f"nss must be >= 2, got {cfg.nss}", "noiseq.nss")
        _check(0 <= cfg.v < 1, f"v must be in [0, 1), got {cfg.v}", "noiseq.v")


def _validate_noiseqbio(cfg: NoiseqBioConfig) -> None:
    if cfg.filter is not None and cfg.filter not in FILTER_METHODS:
        raise ValidationError(
            f"Unknown low-count filter method: {cfg.filter}. "
            f"Use one of {FILTER_METHODS} or null.",
            field="noiseqbio.filter",
        )
    _check(cfg.k is None or cfg.k > 0, f"k must be positive or None, got {cfg.k}", "noiseqbio.k")
    _check(cfg.r >= 1, f"r must be >= 1, got {cfg.r}", "noiseqbio.r")
    _check(cfg.adj > 0, f"adj must be positive, got {cfg.adj}", "noiseqbio.adj")
    _check(0 <= cfg.a0per <= 1, f"a0per must be in [0, 1], got {cfg.a0per}", "noiseqbio.a0per")
    _check(cfg.nclust >= 1, f"nclust must be >= 1, got {cfg.nclust}", "noiseqbio.nclust")
    _check(cfg.cpm >= 0, f"cpm must be >= 0, got {cfg.cpm}", "noiseqbio.cpm")
    _check(
        cfg.cv_cutoff is None or cfg.cv_cutoff > 0,
        f"cv_cutoff must be positive, got {cfg.cv_cutoff}",
        "noiseqbio.cv_cutoff",
    )
    _check(
        cfg.min_features >= 1,
        f"min_features must be >= 1, got {cfg.min_features}",
        "noiseqbio.min_features",
    )


def _parse_section(cls: type, data: Any, name: str, path: Path) -> Any:
    """Build a stage dataclass from its YAML mapping."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping.", config_path=path)

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown key(s) in section '{name}': {unknown}", config_path=path
        )
    values = {key: _none_if_null(value) for key, value in data.items()}
    return cls(**values)


def _none_if_null(value: Any) -> Any:
    if isinstance(value, str) and value.lower() in ("none", "null"):
        return None
    return value


def load_config(config_path: str | Path) -> PipelineConfig:
    """Load a pipeline configuration from a YAML file.

    Parameters
    ----------
    config_path : str | Path
        Path to the configuration YAML file.

    Returns
    -------
    PipelineConfig
        Parsed and validated configuration.

    Raises
    ------
    ConfigurationError
        If the file is missing, unreadable, not valid YAML, or has an
        unexpected structure.
    ValidationError
        If a method name or value is invalid.
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", config_path=path)

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML config: {e}",
            config_path=path,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file: {e}",
            config_path=path,
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("Top level of the config must be a mapping.", config_path=path)

    sections = {
        "normalization": NormalizationConfig,
        "filter": FilterConfig,
        "noiseq": NoiseqConfig,
        "noiseqbio": NoiseqBioConfig,
    }
    top_level = {"factor", "conditions", "assay_name", "layer", "replicates", "q"}
    unknown = sorted(set(data) - top_level - set(sections))
    if unknown:
        raise ConfigurationError(f"Unknown top-level key(s): {unknown}", config_path=path)

    conditions = data.get("conditions")
    config = PipelineConfig(
        factor=str(data.get("factor", "")),
        conditions=[str(c) for c in conditions] if conditions is not None else None,
        assay_name=data.get("assay_name", "gene"),
        layer=data.get("layer", "raw"),
        replicates=str(data.get("replicates", "technical")),
        q=data.get("q"),
        **{name: _parse_section(cls, data.get(name), name, path) for name, cls in sections.items()},
    )
    validate_config(config)
    return config


def save_config(config: PipelineConfig, config_path: str | Path) -> None:
    """Save configuration to a YAML file.

    Parameters
    ----------
    config : PipelineConfig
        Configuration to save.
    config_path : str | Path
        Path where configuration should be saved.

    Raises
    ------
    ConfigurationError
        If file cannot be written.
    """
    path = Path(config_path)

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(asdict(config), f, default_flow_style=False, sort_keys=False)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Failed to save config file: {e}",
            config_path=path,
        ) from e
