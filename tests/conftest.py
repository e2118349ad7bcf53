"""Shared pytest fixtures for noiseqpy tests.

Fixtures build small count containers for the three replicate regimes:
technical replicates, a single sample per condition, and biological
replicates with a set of truly changed features.
"""

from collections.abc import Callable

import numpy as np
import polars as pl
import pytest

from noiseqpy.core import ExprContainer, read_data

# Counts of the two hand-written features appended to the technical data
STABLE_COUNTS = [100, 102, 98, 101, 100, 99, 103, 100]
CHANGED_COUNTS = [10, 12, 9, 11, 200, 210, 195, 205]


def make_counts_container(
    X: np.ndarray,
    conditions: list[str],
    feature_ids: list[str] | None = None,
    lengths: np.ndarray | None = None,
    factor: str = "tissue",
) -> ExprContainer:
    """Container from a (n_features, n_samples) count array.

    Args:
        X: Counts, features x samples
        conditions: Condition label per sample
        feature_ids: Feature identifiers (default gene_0, gene_1, ...)
        lengths: Optional feature lengths stored as annotation
        factor: Name of the factor column

    Returns:
        ExprContainer with assay "gene" and layer "raw"
    """
    n_features, n_samples = X.shape
    if feature_ids is None:
        feature_ids = [f"gene_{i}" for i in range(n_features)]
    sample_ids = [f"s{j + 1}" for j in range(n_samples)]
    factors = pl.DataFrame({factor: conditions})
    annotation = None
    if lengths is not None:
        annotation = pl.DataFrame({"_index": feature_ids, "length": lengths})
    return read_data(
        X,
        factors,
        annotation=annotation,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
    )


def background_counts(
    n_features: int,
    n_samples: int,
    seed: int = 0,
    low: float = 20.0,
    high: float = 500.0,
) -> np.ndarray:
    """Poisson counts with a fixed per-feature rate shared by all samples."""
    rng = np.random.default_rng(seed)
    rates = rng.uniform(low, high, n_features)
    return rng.poisson(rates[:, np.newaxis], size=(n_features, n_samples)).astype(np.float64)


@pytest.fixture
def container_factory() -> Callable[..., ExprContainer]:
    """Factory building containers from feature x sample arrays."""
    return make_counts_container


@pytest.fixture
def technical_container() -> ExprContainer:
    """4 + 4 technical replicates, 200 unchanged features plus two marker features.

    The last two features are "stable" (no real change) and "changed"
    (about 20-fold higher in condition B).
    """
    X = background_counts(200, 8, seed=1)
    X = np.vstack([X, STABLE_COUNTS, CHANGED_COUNTS])
    ids = [f"gene_{i}" for i in range(200)] + ["stable", "changed"]
    rng = np.random.default_rng(2)
    lengths = rng.integers(500, 5000, len(ids))
    return make_counts_container(X, ["A"] * 4 + ["B"] * 4, feature_ids=ids, lengths=lengths)


@pytest.fixture
def single_sample_container() -> ExprContainer:
    """One sample per condition, same two marker features as the technical data."""
    X = background_counts(200, 2, seed=3)
    X = np.vstack([X, [401, 402], [42, 810]])
    ids = [f"gene_{i}" for i in range(200)] + ["stable", "changed"]
    return make_counts_container(X, ["A", "B"], feature_ids=ids)


def biological_counts(
    n_background: int = 300,
    n_changed: int = 20,
    n_per_condition: int = 4,
    fold: float = 8.0,
    seed: int = 7,
) -> np.ndarray:
    """Gamma-Poisson counts; the last `n_changed` features are up in B."""
    rng = np.random.default_rng(seed)
    n = n_background + n_changed
    base = rng.uniform(30, 400, n)
    rates = np.repeat(base[:, np.newaxis], 2 * n_per_condition, axis=1)
    rates[n_background:, n_per_condition:] *= fold
    # biological variability with a coefficient of variation of about 20%
    shape = 25.0
    lam = rng.gamma(shape, rates / shape)
    return rng.poisson(lam).astype(np.float64)


@pytest.fixture
def biological_container() -> ExprContainer:
    """4 + 4 biological replicates, 20 changed features at the end."""
    X = biological_counts()
    return make_counts_container(X, ["ctrl"] * 4 + ["treat"] * 4)


@pytest.fixture
def small_bio_container() -> ExprContainer:
    """3 + 3 biological replicates: too few label splits for permutations."""
    X = biological_counts(n_per_condition=3, seed=11)
    return make_counts_container(X, ["ctrl"] * 3 + ["treat"] * 3)
