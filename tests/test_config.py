"""Tests for configuration dataclasses and YAML persistence."""

from pathlib import Path

import pytest
import yaml

from noiseqpy.config import (
    DEFAULT_Q,
    FilterConfig,
    NoiseqBioConfig,
    NoiseqConfig,
    NormalizationConfig,
    PipelineConfig,
    load_config,
    save_config,
    validate_config,
)
from noiseqpy.core.exceptions import ConfigurationError, ValidationError


def _write(path: Path, data) -> Path:
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f)
    return path


class TestDefaults:
    """Tests for documented defaults."""

    def test_stage_defaults(self):
        assert NormalizationConfig().method == "rpkm"
        assert NormalizationConfig().length_correction == 0.0
        assert FilterConfig().method is None
        bio = NoiseqBioConfig()
        assert (bio.r, bio.adj, bio.a0per, bio.seed) == (50, 1.5, 0.9, 12345)
        assert bio.filter == "cpm"

    @pytest.mark.parametrize("mode", ["technical", "no", "biological"])
    def test_threshold_per_mode(self, mode):
        config = PipelineConfig(factor="tissue", replicates=mode)
        assert config.threshold == DEFAULT_Q[mode]

    def test_explicit_threshold(self):
        assert PipelineConfig(factor="tissue", q=0.7).threshold == 0.7


class TestLoadSave:
    """Tests for YAML round trips and errors."""

    def test_round_trip(self, tmp_path):
        config = PipelineConfig(
            factor="tissue",
            conditions=["brain", "liver"],
            replicates="biological",
            q=0.9,
            normalization=NormalizationConfig(method="tmm", params={"log_ratio_trim": 0.2}),
            filter=FilterConfig(method="cpm", cpm=2.0, cv_cutoff=None),
            noiseqbio=NoiseqBioConfig(r=20, seed=7),
        )
        path = tmp_path / "sub" / "config.yaml"
        save_config(config, path)
        assert path.exists()
        assert load_config(path) == config

    def test_partial_file_uses_defaults(self, tmp_path):
        path = _write(tmp_path / "c.yaml", {"factor": "tissue", "normalization": {"method": "uqua"}})
        config = load_config(path)
        assert config.normalization.method == "uqua"
        assert config.normalization.length_col == "length"
        assert config.noiseq.nss == 5
        assert config.replicates == "technical"

    def test_null_filter(self, tmp_path):
        path = _write(tmp_path / "c.yaml", {"factor": "t", "noiseqbio": {"filter": None}})
        assert load_config(path).noiseqbio.filter is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(tmp_path / "absent.yaml")
        assert exc_info.value.config_path == tmp_path / "absent.yaml"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("factor: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert exc_info.value.config_path == path

    def test_unknown_key(self, tmp_path):
        path = _write(tmp_path / "c.yaml", {"factor": "t", "noiseq": {"kk": 1}})
        with pytest.raises(ConfigurationError, match="kk"):
            load_config(path)

    def test_unknown_section(self, tmp_path):
        path = _write(tmp_path / "c.yaml", {"factor": "t", "plots": {}})
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_method_names_field(self, tmp_path):
        path = _write(tmp_path / "c.yaml", {"factor": "t", "normalization": {"method": "deseq"}})
        with pytest.raises(ValidationError) as exc_info:
            load_config(path)
        assert exc_info.value.field == "normalization.method"


class TestValidate:
    """Tests for validate_config."""

    @pytest.mark.parametrize(
        "config, field",
        [
            (PipelineConfig(), "factor"),
            (PipelineConfig(factor="t", replicates="real"), "replicates"),
            (PipelineConfig(factor="t", conditions=["a"]), "conditions"),
            (PipelineConfig(factor="t", q=2.0), "q"),
            (PipelineConfig(factor="t", filter=FilterConfig(method="mean")), "filter.method"),
            (PipelineConfig(factor="t", filter=FilterConfig(p_adjust="x")), "filter.p_adjust"),
            (
                PipelineConfig(factor="t", normalization=NormalizationConfig(length_correction=-1)),
                "normalization.length_correction",
            ),
            (
                PipelineConfig(
                    factor="t", replicates="biological", noiseqbio=NoiseqBioConfig(filter="x")
                ),
                "noiseqbio.filter",
            ),
            (PipelineConfig(factor="t", noiseq=NoiseqConfig(k=0)), "noiseq.k"),
            (PipelineConfig(factor="t", replicates="no", noiseq=NoiseqConfig(nss=1)), "noiseq.nss"),
            (PipelineConfig(factor="t", replicates="no", noiseq=NoiseqConfig(pnr=0)), "noiseq.pnr"),
            (PipelineConfig(factor="t", replicates="no", noiseq=NoiseqConfig(v=1.0)), "noiseq.v"),
            (
                PipelineConfig(factor="t", replicates="biological", noiseqbio=NoiseqBioConfig(r=0)),
                "noiseqbio.r",
            ),
            (
                PipelineConfig(
                    factor="t", replicates="biological", noiseqbio=NoiseqBioConfig(a0per=1.5)
                ),
                "noiseqbio.a0per",
            ),
            (
                PipelineConfig(factor="t", filter=FilterConfig(method="wilcoxon", alpha=0.0)),
                "filter.alpha",
            ),
            (
                PipelineConfig(factor="t", filter=FilterConfig(method="proportion", cpm=0.0)),
                "filter.cpm",
            ),
        ],
    )
    def test_invalid(self, config, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_config(config)
        assert exc_info.value.field == field

    def test_unused_stage_not_checked(self):
        # NOISeqBIO settings are irrelevant to a technical run
        config = PipelineConfig(factor="t", noiseqbio=NoiseqBioConfig(r=0))
        validate_config(config)
