"""Tests for the noise model: zero handling, pooling, probabilities, simulation."""

import numpy as np
import pytest

from noiseqpy.core.exceptions import ValidationError
from noiseqpy.diff_expr import (
    NoiseDistribution,
    build_noise,
    pairwise_md,
    replicate_pairs,
    resolve_pseudocount,
    simulate_replicates,
    zero_substitute,
)

# =============================================================================
# Zero substitution
# =============================================================================


class TestZeroSubstitution:
    """Tests for pseudocount handling."""

    def test_explicit_k(self):
        out = zero_substitute(np.array([0.0, 2.0, 0.0]), k=0.5)
        np.testing.assert_array_equal(out, [0.5, 2.0, 0.5])

    def test_default_is_half_min_positive(self):
        X = np.array([[0.0, 4.0], [0.3, 0.0]])
        assert resolve_pseudocount(X) == pytest.approx(0.15)
        out = zero_substitute(X)
        assert out[0, 0] == pytest.approx(0.15)

    def test_idempotent(self):
        rng = np.random.default_rng(0)
        X = rng.poisson(1.0, size=(5, 40)).astype(float)
        once = zero_substitute(X)
        twice = zero_substitute(once)
        np.testing.assert_array_equal(once, twice)
        assert np.all(once > 0)

    def test_input_not_modified(self):
        X = np.array([0.0, 1.0])
        zero_substitute(X, k=1.0)
        assert X[0] == 0.0

    def test_invalid_k(self):
        with pytest.raises(ValidationError) as exc_info:
            zero_substitute(np.ones(3), k=0.0)
        assert exc_info.value.field == "k"

    def test_all_zero_without_k(self):
        with pytest.raises(ValidationError):
            resolve_pseudocount(np.zeros(4))

    def test_pairwise_md_finite_with_zeros(self):
        m, d = pairwise_md(np.array([0.0, 4.0, 8.0]), np.array([2.0, 0.0, 8.0]), 0.5)
        assert np.all(np.isfinite(m))
        np.testing.assert_allclose(m, [np.log2(0.25), np.log2(8.0), 0.0])
        np.testing.assert_allclose(d, [1.5, 3.5, 0.0])


# =============================================================================
# Pooling
# =============================================================================


def _noise_matrix(seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.poisson(rng.uniform(1, 100, 25), size=(6, 25)).astype(float)


class TestPooling:
    """Tests for building and merging noise distributions."""

    def test_replicate_pairs(self):
        pairs = replicate_pairs([np.array([0, 1, 2]), np.array([3, 4])])
        assert pairs == [(0, 1), (0, 2), (1, 2), (3, 4)]

    def test_size(self):
        X = _noise_matrix()
        noise = build_noise(X, [np.arange(3), np.arange(3, 6)], pseudocount=0.5)
        assert noise.size == 6 * X.shape[1]
        assert np.all(noise.d >= 0)

    def test_pooling_associativity(self):
        X = _noise_matrix()
        groups = [np.arange(3), np.arange(3, 6)]
        whole = build_noise(X, groups, pseudocount=0.5)
        first = build_noise(X, groups[:1], pseudocount=0.5)
        second = build_noise(X, groups[1:], pseudocount=0.5)
        np.testing.assert_array_equal(
            first.merge(second).as_multiset(), whole.as_multiset()
        )
        np.testing.assert_array_equal(
            second.merge(first).as_multiset(), whole.as_multiset()
        )

    def test_merge_is_associative(self):
        a = NoiseDistribution(m=[0.1, -0.2], d=[1.0, 2.0])
        b = NoiseDistribution(m=[0.3], d=[0.5])
        c = NoiseDistribution(m=[-1.0, 0.0], d=[4.0, 0.0])
        left = a.merge(b).merge(c)
        right = a.merge(b.merge(c))
        np.testing.assert_array_equal(left.as_multiset(), right.as_multiset())
        np.testing.assert_array_equal(
            NoiseDistribution.pool([a, b, c]).as_multiset(), left.as_multiset()
        )

    def test_parallel_matches_serial(self):
        X = _noise_matrix()
        groups = [np.arange(3), np.arange(3, 6)]
        serial = build_noise(X, groups, pseudocount=0.5, n_jobs=1)
        parallel = build_noise(X, groups, pseudocount=0.5, n_jobs=2)
        np.testing.assert_array_equal(serial.as_multiset(), parallel.as_multiset())

    def test_no_pairs(self):
        X = _noise_matrix()
        with pytest.raises(ValidationError):
            build_noise(X, [np.array([0]), np.array([1])], pseudocount=0.5)

    def test_d_stored_as_magnitude(self):
        noise = NoiseDistribution(m=[1.0], d=[-3.0])
        assert noise.d[0] == 3.0

    def test_compared_by_identity(self):
        a = NoiseDistribution(m=[1.0, -2.0], d=[3.0, 4.0])
        b = NoiseDistribution(m=[1.0, -2.0], d=[3.0, 4.0])
        assert a == a
        assert a != b
        assert len({a, b}) == 2
        np.testing.assert_array_equal(a.as_multiset(), b.as_multiset())


# =============================================================================
# Probability
# =============================================================================


class TestProbability:
    """Tests for NoiseDistribution.probability."""

    def test_fraction_of_dominated_pairs(self):
        noise = NoiseDistribution(m=[0.1, -0.5, 1.0, 2.0], d=[1.0, 3.0, 5.0, 10.0])
        prob = noise.probability(np.array([0.6, -3.0, 0.0]), np.array([4.0, 20.0, 100.0]))
        np.testing.assert_allclose(prob, [0.5, 1.0, 0.0])

    def test_monotone_in_m(self):
        rng = np.random.default_rng(1)
        noise = NoiseDistribution(m=rng.normal(0, 1, 500), d=rng.exponential(10, 500))
        m = np.linspace(0, 4, 40)
        d = np.full_like(m, 12.0)
        prob = noise.probability(m, d)
        assert np.all(np.diff(prob) >= 0)

    def test_monotone_in_d(self):
        rng = np.random.default_rng(2)
        noise = NoiseDistribution(m=rng.normal(0, 1, 500), d=rng.exponential(10, 500))
        d = np.linspace(0, 60, 40)
        m = np.full_like(d, -1.3)
        prob = noise.probability(m, d)
        assert np.all(np.diff(prob) >= 0)

    def test_chunking_and_jobs_do_not_change_result(self):
        rng = np.random.default_rng(4)
        noise = NoiseDistribution(m=rng.normal(0, 1, 300), d=rng.exponential(5, 300))
        m, d = rng.normal(0, 2, 101), rng.exponential(8, 101)
        full = noise.probability(m, d)
        chunked = noise.probability(m, d, n_jobs=2, chunk_cells=1000)
        np.testing.assert_array_equal(full, chunked)
        assert np.all((full >= 0) & (full <= 1))

    def test_empty_noise(self):
        with pytest.raises(ValidationError):
            NoiseDistribution.empty().probability(np.zeros(2), np.zeros(2))


# =============================================================================
# Simulation
# =============================================================================


class TestSimulateReplicates:
    """Tests for multinomial pseudo-replicates."""

    def test_shape_and_depth(self):
        counts = np.arange(1, 101, dtype=float) * 10
        total = counts.sum()
        reps = simulate_replicates(counts, pnr=0.2, nss=5, v=0.02, rng=np.random.default_rng(0))
        assert reps.shape == (5, 100)
        sizes = reps.sum(axis=1)
        assert np.all(sizes >= np.floor(0.2 * total * 0.98))
        assert np.all(sizes <= np.ceil(0.2 * total * 1.02))

    def test_zero_stays_zero(self):
        counts = np.array([0.0, 50.0, 100.0])
        reps = simulate_replicates(counts, rng=np.random.default_rng(1))
        assert np.all(reps[:, 0] == 0)

    def test_seeded(self):
        counts = np.arange(1, 51, dtype=float)
        a = simulate_replicates(counts, rng=np.random.default_rng(12345))
        b = simulate_replicates(counts, rng=np.random.default_rng(12345))
        np.testing.assert_array_equal(a, b)

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"pnr": 0.0}, "pnr"),
            ({"pnr": 1.5}, "pnr"),
            ({"nss": 1}, "nss"),
            ({"v": 1.0}, "v"),
        ],
    )
    def test_invalid(self, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            simulate_replicates(np.ones(10), **kwargs)
        assert exc_info.value.field == field

    def test_all_zero_sample(self):
        with pytest.raises(ValidationError):
            simulate_replicates(np.zeros(10))
