"""Tests for NOISeq (technical and simulated replicates) and DEResult."""

import numpy as np
import pytest

from noiseqpy.core.exceptions import (
    InsufficientReplicatesError,
    InvalidFactorCardinalityError,
    MissingAnnotationError,
    ValidationError,
)
from noiseqpy.diff_expr import DEResult, diff_expr_noiseq, noiseq_statistics


def _prob_of(result: DEResult, feature: str) -> float:
    idx = list(result.feature_ids).index(feature)
    return float(result.prob[idx])


# =============================================================================
# Statistics
# =============================================================================


class TestStatistics:
    """Tests for M, D and ranking."""

    def test_values(self):
        m, d, ranking = noiseq_statistics(np.array([8.0, 1.0]), np.array([2.0, 4.0]), 0.5)
        np.testing.assert_allclose(m, [2.0, -2.0])
        np.testing.assert_allclose(d, [6.0, 3.0])
        np.testing.assert_allclose(ranking, [-np.sqrt(40.0), np.sqrt(13.0)])

    def test_zero_means_stay_finite(self):
        m, d, ranking = noiseq_statistics(np.array([0.0, 0.0]), np.array([0.0, 3.0]), 0.5)
        assert np.all(np.isfinite(m))
        assert m[0] == 0.0
        assert np.all(np.isfinite(ranking))


# =============================================================================
# Technical replicates
# =============================================================================


class TestNoiseqTechnical:
    """NOISeq-real on the technical replicate fixture."""

    def test_unchanged_feature_not_called(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        assert _prob_of(result, "stable") < 0.5
        assert "stable" not in result.degenes(q=0.8)["feature_id"].to_list()

    def test_changed_feature_called(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        assert _prob_of(result, "changed") >= 0.8
        called = result.degenes(q=0.8)
        assert "changed" in called["feature_id"].to_list()
        assert "changed" in result.degenes(q=0.8, m="down")["feature_id"].to_list()
        assert "changed" not in result.degenes(q=0.8, m="up")["feature_id"].to_list()

    def test_result_bounds_and_shape(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        assert result.n_features == 202
        assert np.all((result.prob >= 0) & (result.prob <= 1))
        assert np.all(np.isfinite(result.m))
        assert np.all(result.d >= 0)
        assert result.method == "noiseq-real"
        assert result.comparison == "A_vs_B"

    def test_metadata(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue", norm="tmm", k=0.5)
        assert result.params["normalization"] == "tmm"
        assert result.params["replicates"] == "technical"
        assert result.params["k"] == 0.5
        # 6 pairs per condition, one (M, D) per feature and pair
        assert result.params["noise_size"] == 12 * 202

    @pytest.mark.parametrize("norm", ["rpkm", "uqua", "tmm", "n"])
    def test_all_normalizations(self, technical_container, norm):
        result = diff_expr_noiseq(technical_container, factor="tissue", norm=norm)
        assert _prob_of(result, "changed") > _prob_of(result, "stable")

    def test_length_correction(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue", length_correction=1.0)
        assert result.params["length_correction"] == 1.0

    def test_k_none_uses_data(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue", k=None)
        assert result.params["k"] > 0

    def test_conditions_order(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue", conditions=["B", "A"])
        assert result.conditions == ("B", "A")
        assert "changed" in result.degenes(q=0.8, m="up")["feature_id"].to_list()

    def test_input_not_mutated(self, technical_container):
        X_before = technical_container.get_layer("gene", "raw").X.copy()
        n_history = len(technical_container.history)
        diff_expr_noiseq(technical_container, factor="tissue")
        np.testing.assert_array_equal(technical_container.get_layer("gene", "raw").X, X_before)
        assert len(technical_container.history) == n_history
        assert set(technical_container.assays["gene"].layers) == {"raw"}

    def test_single_sample_is_an_error(self, single_sample_container):
        with pytest.raises(InsufficientReplicatesError) as exc_info:
            diff_expr_noiseq(single_sample_container, factor="tissue", replicates="technical")
        assert exc_info.value.n_samples == 1

    def test_missing_lengths(self, single_sample_container):
        with pytest.raises(MissingAnnotationError):
            diff_expr_noiseq(
                single_sample_container, factor="tissue", replicates="no", length_correction=1.0
            )

    def test_three_levels_need_conditions(self, container_factory):
        X = np.random.default_rng(0).poisson(50, size=(30, 6)).astype(float)
        container = container_factory(X, ["a", "a", "b", "b", "c", "c"])
        with pytest.raises(InvalidFactorCardinalityError):
            diff_expr_noiseq(container, factor="tissue")
        result = diff_expr_noiseq(container, factor="tissue", conditions=["a", "c"])
        assert result.params["n_samples"] == {"a": 2, "c": 2}

    def test_unknown_level(self, technical_container):
        with pytest.raises(ValidationError) as exc_info:
            diff_expr_noiseq(technical_container, factor="tissue", conditions=["A", "Z"])
        assert exc_info.value.field == "conditions"

    def test_unknown_replicates(self, technical_container):
        with pytest.raises(ValidationError) as exc_info:
            diff_expr_noiseq(technical_container, factor="tissue", replicates="biological")
        assert exc_info.value.field == "replicates"


# =============================================================================
# Simulated replicates
# =============================================================================


class TestNoiseqSimulated:
    """NOISeq-sim with a single sample per condition."""

    def test_changed_ranks_above_stable(self, single_sample_container):
        result = diff_expr_noiseq(single_sample_container, factor="tissue", replicates="no")
        assert result.method == "noiseq-sim"
        assert _prob_of(result, "changed") >= 0.8
        assert _prob_of(result, "changed") > _prob_of(result, "stable")

    def test_reproducible_with_seed(self, single_sample_container):
        a = diff_expr_noiseq(single_sample_container, factor="tissue", replicates="no", seed=1)
        b = diff_expr_noiseq(single_sample_container, factor="tissue", replicates="no", seed=1)
        np.testing.assert_array_equal(a.prob, b.prob)

    def test_noise_size(self, single_sample_container):
        result = diff_expr_noiseq(
            single_sample_container, factor="tissue", replicates="no", nss=4
        )
        # C(4, 2) pairs in each condition
        assert result.params["noise_size"] == 12 * 202
        assert result.params["nss"] == 4

    def test_works_with_replicates_too(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue", replicates="no")
        assert np.all((result.prob >= 0) & (result.prob <= 1))

    @pytest.mark.parametrize("norm", ["n", "rpkm", "uqua"])
    def test_repeated_samples_keep_noise_scale(self, container_factory, norm):
        rates = np.linspace(20, 600, 150)[:, np.newaxis]
        background = np.random.default_rng(5).poisson(rates, size=(150, 2))
        X = np.vstack([background, [[42, 810]]]).astype(float)
        single = container_factory(X, ["A", "B"])
        repeated = container_factory(np.repeat(X, 4, axis=1), ["A"] * 4 + ["B"] * 4)
        r1 = diff_expr_noiseq(single, factor="tissue", replicates="no", norm=norm)
        r4 = diff_expr_noiseq(repeated, factor="tissue", replicates="no", norm=norm)
        np.testing.assert_allclose(r1.d, r4.d)
        np.testing.assert_allclose(r1.prob, r4.prob)
        assert r1.params["noise_size"] == r4.params["noise_size"]

    def test_invalid_nss(self, single_sample_container):
        with pytest.raises(ValidationError) as exc_info:
            diff_expr_noiseq(single_sample_container, factor="tissue", replicates="no", nss=1)
        assert exc_info.value.field == "nss"


# =============================================================================
# DEResult
# =============================================================================


class TestDEResult:
    """Tests for result tables and selection."""

    def test_full_table(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        df = result.to_dataframe()
        assert df.columns[:8] == ["feature_id", "A_mean", "B_mean", "M", "D", "prob", "ranking", "length"]
        assert df.height == 202
        assert df["feature_id"].to_list()[-1] == "changed"

    def test_q_zero_returns_everything(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        assert result.degenes(q=0.0).height == result.n_features

    def test_sorted_by_prob(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        probs = result.degenes(q=0.0)["prob"].to_numpy()
        assert np.all(np.diff(probs) <= 0)

    def test_min_abs_m(self, technical_container):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        selected = result.degenes(q=0.0, min_abs_m=1.0)
        assert np.all(np.abs(selected["M"].to_numpy()) >= 1.0)

    @pytest.mark.parametrize("kwargs", [{"q": 1.5}, {"q": -0.1}, {"m": "both"}])
    def test_invalid_selection(self, technical_container, kwargs):
        result = diff_expr_noiseq(technical_container, factor="tissue")
        with pytest.raises(ValidationError):
            result.degenes(**kwargs)
