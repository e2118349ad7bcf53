"""Noise model: the empirical distribution of within-condition changes.

The noise distribution pools (M, D) pairs computed between samples of the
same condition. It is built from real replicates when available, or from
pseudo-replicates simulated by multinomial resampling otherwise.

Mathematical Formulation:
    For replicates a, b of one condition and each feature f:
        M_f = log2(a_f / b_f)
        D_f = |a_f - b_f|
    with zeros replaced by a pseudocount beforehand.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import reduce
from itertools import combinations

import numpy as np
from joblib import Parallel, delayed

from noiseqpy.core.exceptions import ValidationError


def resolve_pseudocount(X: np.ndarray, k: float | None = None) -> float:
    """Value that replaces zeros before taking logs.

    Parameters
    ----------
    X : np.ndarray
        Expression values (any shape).
    k : float, optional
        Explicit pseudocount. When None, half of the smallest non-zero
        value of X is used.

    Returns
    -------
    float
        The pseudocount.
    """
    if k is not None:
        if not k > 0:
            raise ValidationError(f"k must be positive or None, got {k}", field="k")
        return float(k)
    positive = np.asarray(X)[np.asarray(X) > 0]
    if positive.size == 0:
        raise ValidationError("Expression matrix has no non-zero values.", field="X")
    return float(positive.min()) / 2.0


def zero_substitute(
    X: np.ndarray,
    k: float | None = None,
    pseudocount: float | None = None,
) -> np.ndarray:
    """Return a copy of X with zeros replaced.

    Parameters
    ----------
    X : np.ndarray
        Expression values.
    k : float, optional
        Pseudocount; None selects half of the smallest non-zero value.
    pseudocount : float, optional
        Already resolved pseudocount, takes precedence over `k`. Use it to
        apply exactly the same value to several arrays.

    Notes
    -----
    Applying the substitution twice is a no-op the second time, as no
    zeros remain.
    """
    X = np.asarray(X, dtype=np.float64)
    if pseudocount is None:
        pseudocount = resolve_pseudocount(X, k)
    return np.where(X == 0, pseudocount, X)


def pairwise_md(
    a: np.ndarray,
    b: np.ndarray,
    pseudocount: float,
) -> tuple[np.ndarray, np.ndarray]:
    """M and D between two expression vectors."""
    a = zero_substitute(a, pseudocount=pseudocount)
    b = zero_substitute(b, pseudocount=pseudocount)
    return np.log2(a / b), np.abs(a - b)


@dataclass(frozen=True, eq=False)
class NoiseDistribution:
    """
    Multiset of (M, D) pairs from within-condition comparisons.

    Only the pooled values are kept, never which replicate pair produced
    them. `merge` is associative and order independent up to row order.

    Attributes
    ----------
    m : np.ndarray
        Noise M values.
    d : np.ndarray
        Noise D values (non-negative).
    """

    m: np.ndarray
    d: np.ndarray

    def __post_init__(self):
        m = np.asarray(self.m, dtype=np.float64).ravel()
        d = np.asarray(self.d, dtype=np.float64).ravel()
        if m.shape != d.shape:
            raise ValidationError(
                f"Noise M and D lengths differ: {m.size} != {d.size}", field="noise"
            )
        object.__setattr__(self, "m", m)
        object.__setattr__(self, "d", np.abs(d))

    @classmethod
    def empty(cls) -> NoiseDistribution:
        return cls(m=np.empty(0), d=np.empty(0))

    @classmethod
    def pool(cls, parts: Iterable[NoiseDistribution]) -> NoiseDistribution:
        """Merge any number of partial distributions."""
        return reduce(cls.merge, parts, cls.empty())

    @property
    def size(self) -> int:
        return self.m.size

    def merge(self, other: NoiseDistribution) -> NoiseDistribution:
        return NoiseDistribution(
            m=np.concatenate([self.m, other.m]),
            d=np.concatenate([self.d, other.d]),
        )

    def as_multiset(self) -> np.ndarray:
        """Pairs as a (size, 2) array in canonical (sorted) order."""
        order = np.lexsort((self.d, self.m))
        return np.column_stack([self.m[order], self.d[order]])

    def probability(
        self,
        m: np.ndarray,
        d: np.ndarray,
        n_jobs: int = 1,
        chunk_cells: int = 2**24,
    ) -> np.ndarray:
        """
        Fraction of noise pairs that are smaller than each feature's change.

        prob_f = #{i : |Mn_i| < |M_f| and Dn_i < |D_f|} / size

        Parameters
        ----------
        m, d : np.ndarray
            Observed M and D per feature.
        n_jobs : int, default=1
            Parallel workers over feature chunks (joblib threads).
        chunk_cells : int
            Upper bound on the comparison block size per chunk.

        Returns
        -------
        np.ndarray
            Probabilities in [0, 1].
        """
        if self.size == 0:
            raise ValidationError("Noise distribution is empty.", field="noise")
        abs_m = np.abs(np.asarray(m, dtype=np.float64))
        abs_d = np.abs(np.asarray(d, dtype=np.float64))
        noise_m = np.abs(self.m)
        noise_d = self.d

        step = max(1, chunk_cells // self.size)
        starts = range(0, abs_m.size, step)

        def _count(start: int) -> np.ndarray:
            qm = abs_m[start:start + step, np.newaxis]
            qd = abs_d[start:start + step, np.newaxis]
            return np.count_nonzero((noise_m < qm) & (noise_d < qd), axis=1)

        counts = Parallel(n_jobs=n_jobs, prefer="threads")(delayed(_count)(s) for s in starts)
        if not counts:
            return np.empty(0, dtype=np.float64)
        return np.concatenate(counts) / self.size


def replicate_pairs(groups: Sequence[np.ndarray]) -> list[tuple[int, int]]:
    """All unordered sample pairs within each group."""
    pairs: list[tuple[int, int]] = []
    for idx in groups:
        pairs.extend(combinations(sorted(int(i) for i in idx), 2))
    return pairs


def _pair_noise(X: np.ndarray, i: int, j: int, pseudocount: float) -> NoiseDistribution:
    m, d = pairwise_md(X[i], X[j], pseudocount)
    return NoiseDistribution(m=m, d=d)


def build_noise(
    X: np.ndarray,
    groups: Sequence[np.ndarray],
    pseudocount: float,
    n_jobs: int = 1,
) -> NoiseDistribution:
    """
    Pool (M, D) over every within-group replicate pair.

    Parameters
    ----------
    X : np.ndarray
        Normalized expression, shape (n_samples, n_features).
    groups : Sequence[np.ndarray]
        Sample indices per condition.
    pseudocount : float
        Zero replacement, identical to the one used for the feature-level
        statistic.
    n_jobs : int, default=1
        Each replicate pair is an independent task.

    Returns
    -------
    NoiseDistribution
        Pooled noise.
    """
    pairs = replicate_pairs(groups)
    if not pairs:
        raise ValidationError(
            "No replicate pairs available to build the noise distribution.", field="groups"
        )
    parts = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_pair_noise)(X, i, j, pseudocount) for i, j in pairs
    )
    return NoiseDistribution.pool(parts)


def simulate_replicates(
    counts: np.ndarray,
    pnr: float = 0.2,
    nss: int = 5,
    v: float = 0.02,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Simulate technical pseudo-replicates from one condition's counts.

    Each replicate is a multinomial draw of size
    round(pnr * total * U(1 - v, 1 + v)) with probabilities proportional to
    `counts`.

    Parameters
    ----------
    counts : np.ndarray
        Raw counts of the condition, shape (n_features,). Average the
        samples of a condition first when it has more than one.
    pnr : float, default=0.2
        Fraction of the total reads per pseudo-replicate.
    nss : int, default=5
        Number of pseudo-replicates (>= 2).
    v : float, default=0.02
        Variability of the replicate size.
    rng : np.random.Generator, optional
        Random generator; defaults to an unseeded one.

    Returns
    -------
    np.ndarray
        Simulated counts, shape (nss, n_features).
    """
    if not 0 < pnr <= 1:
        raise ValidationError(f"pnr must be in (0, 1], got {pnr}", field="pnr")
    if nss < 2:
        raise ValidationError(f"nss must be >= 2, got {nss}", field="nss")
    if not 0 <= v < 1:
        raise ValidationError(f"v must be in [0, 1), got {v}", field="v")

    counts = np.asarray(counts, dtype=np.float64)
    total = counts.sum()
    if total <= 0:
        raise ValidationError("Cannot simulate replicates from an all-zero sample.", field="counts")
    rng = np.random.default_rng() if rng is None else rng

    probs = counts / total
    sizes = np.rint(pnr * total * rng.uniform(1 - v, 1 + v, size=nss)).astype(np.int64)
    sizes = np.maximum(sizes, 1)
    return np.vstack([rng.multinomial(n, probs) for n in sizes]).astype(np.float64)
