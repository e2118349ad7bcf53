"""NOISeq: differential expression against an empirical noise distribution.

For each feature the change between conditions (M, D) is compared with
the changes seen between samples of the same condition. The probability
of differential expression is the fraction of noise pairs whose change
is smaller than the feature's on both M and D.

Two replicate modes are supported:
    - "technical": real replicates (>= 2 samples per condition) give the
      noise pairs (NOISeq-real).
    - "no": each condition's counts are summed and `nss` pseudo-replicates
      are simulated by multinomial resampling (NOISeq-sim).

Reference:
    Tarazona, S., Garcia-Alcalde, F., Dopazo, J., Ferrer, A., & Conesa, A.
    (2011). Differential expression in RNA-seq: a matter of depth.
    Genome Research, 21(12), 2213-2223.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np

from noiseqpy.core.exceptions import ValidationError
from noiseqpy.core.structures import ExprContainer
from noiseqpy.diff_expr.core import ComparisonData, DEResult, prepare_comparison
from noiseqpy.diff_expr.noise import (
    NoiseDistribution,
    build_noise,
    resolve_pseudocount,
    simulate_replicates,
    zero_substitute,
)
from noiseqpy.normalization import normalize_counts

REPLICATE_MODES = ("technical", "no")


def noiseq_statistics(
    mean1: np.ndarray,
    mean2: np.ndarray,
    pseudocount: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    M, D and ranking between two condition expression vectors.

    Returns
    -------
    tuple
        (M, D, ranking) with ranking = -sign(M) * sqrt(M^2 + D^2).
    """
    e1 = zero_substitute(mean1, pseudocount=pseudocount)
    e2 = zero_substitute(mean2, pseudocount=pseudocount)
    m = np.log2(e1 / e2)
    d = np.abs(e1 - e2)
    ranking = -np.sign(m) * np.sqrt(m**2 + d**2)
    return m, d, ranking


def _simulated_noise(
    data: ComparisonData,
    norm: str,
    length_correction: float,
    norm_params: dict[str, Any] | None,
    pseudocount: float,
    pnr: float,
    nss: int,
    v: float,
    seed: int | None,
    n_jobs: int,
) -> NoiseDistribution:
    rng = np.random.default_rng(seed)
    sims = []
    for idx in (data.idx1, data.idx2):
        # mean profile: same proportions as the summed counts, at the mean library size
        counts = data.raw[idx].mean(axis=0)
        reps = simulate_replicates(counts, pnr=pnr, nss=nss, v=v, rng=rng)
        reps *= counts.sum() / reps.sum(axis=1, keepdims=True)
        sims.append(reps)

    sim_X = np.vstack(sims)
    sim_ids = [f"{c}_sim{i + 1}" for c in data.conditions for i in range(nss)]
    sim_norm = normalize_counts(
        sim_X, norm, data.lengths, length_correction, sample_ids=sim_ids, **(norm_params or {})
    )
    groups = [np.arange(nss), np.arange(nss, 2 * nss)]
    return build_noise(sim_norm, groups, pseudocount, n_jobs=n_jobs)


def diff_expr_noiseq(
    container: ExprContainer,
    factor: str,
    conditions: Sequence[str] | None = None,
    assay_name: str = "gene",
    layer: str = "raw",
    k: float | None = 0.5,
    norm: str = "rpkm",
    length_col: str = "length",
    length_correction: float = 0.0,
    norm_params: dict[str, Any] | None = None,
    replicates: str = "technical",
    pnr: float = 0.2,
    nss: int = 5,
    v: float = 0.02,
    seed: int | None = 12345,
    n_jobs: int = 1,
) -> DEResult:
    """NOISeq differential expression for technical or simulated replicates.

    Parameters
    ----------
    container : ExprContainer
        Input data container with raw counts.
    factor : str
        Column in obs defining the conditions.
    conditions : Sequence[str], optional
        The two levels to compare; required if `factor` has more than two.
    assay_name : str, default="gene"
        Assay containing the counts.
    layer : str, default="raw"
        Layer with raw counts.
    k : float | None, default=0.5
        Pseudocount replacing zeros. None uses half the smallest non-zero
        normalized value.
    norm : {"rpkm", "uqua", "tmm", "n"}, default="rpkm"
        Normalization applied to the compared samples.
    length_col : str, default="length"
        Column of var with feature lengths.
    length_correction : float, default=0.0
        Length correction exponent; lengths are needed only when > 0.
    norm_params : dict, optional
        Extra normalization arguments (e.g. {"log_ratio_trim": 0.3}).
    replicates : {"technical", "no"}, default="technical"
        "technical" uses the real replicates; "no" simulates them.
    pnr : float, default=0.2
        Fraction of total reads per simulated replicate ("no" only).
    nss : int, default=5
        Number of simulated replicates per condition ("no" only).
    v : float, default=0.02
        Variability of simulated replicate size ("no" only).
    seed : int | None, default=12345
        Seed for the simulation.
    n_jobs : int, default=1
        joblib workers for noise pooling and probability lookup.

    Returns
    -------
    DEResult
        One row per feature with condition means, M, D, prob and ranking.

    Raises
    ------
    InvalidFactorCardinalityError
        If the factor does not resolve to two levels.
    InsufficientReplicatesError
        If `replicates="technical"` and a condition has a single sample.
    MissingAnnotationError
        If `length_correction` > 0 and lengths are missing.
    DegenerateNormalizationError
        If the chosen normalization cannot scale a sample.

    Notes
    -----
    Suggested thresholds for :meth:`DEResult.degenes`: q = 0.8 with
    technical replicates, q = 0.9 with simulated replicates. The
    probability is a confidence score, not 1 - p-value.
    """
    if replicates not in REPLICATE_MODES:
        raise ValidationError(
            f"Unknown replicates mode: {replicates}. Use one of {REPLICATE_MODES}.",
            field="replicates",
        )
    if k is not None and not k > 0:
        raise ValidationError(f"k must be positive or None, got {k}", field="k")
    if replicates == "no":
        if not 0 < pnr <= 1:
            raise ValidationError(f"pnr must be in (0, 1], got {pnr}", field="pnr")
        if nss < 2:
            raise ValidationError(f"nss must be >= 2, got {nss}", field="nss")
        if not 0 <= v < 1:
            raise ValidationError(f"v must be in [0, 1), got {v}", field="v")

    data = prepare_comparison(
        container,
        factor,
        conditions,
        assay_name,
        layer,
        norm,
        length_col,
        length_correction,
        norm_params,
        min_replicates=2 if replicates == "technical" else 1,
    )

    X = data.normalized
    pseudocount = resolve_pseudocount(X, k)
    mean1 = X[data.idx1].mean(axis=0)
    mean2 = X[data.idx2].mean(axis=0)
    m, d, ranking = noiseq_statistics(mean1, mean2, pseudocount)

    if replicates == "technical":
        noise = build_noise(X, [data.idx1, data.idx2], pseudocount, n_jobs=n_jobs)
        method = "noiseq-real"
    else:
        noise = _simulated_noise(
            data, norm, length_correction, norm_params, pseudocount, pnr, nss, v, seed, n_jobs
        )
        method = "noiseq-sim"

    prob = noise.probability(m, d, n_jobs=n_jobs)

    params: dict[str, Any] = {
        "comparison": f"{data.conditions[0]}_vs_{data.conditions[1]}",
        "factor": factor,
        "normalization": norm,
        "replicates": replicates,
        "k": pseudocount,
        "length_correction": length_correction,
        "noise_size": noise.size,
        "n_samples": {data.conditions[0]: len(data.idx1), data.conditions[1]: len(data.idx2)},
    }
    if replicates == "no":
        params.update({"pnr": pnr, "nss": nss, "v": v, "seed": seed})

    return DEResult(
        feature_ids=data.feature_ids,
        conditions=data.conditions,
        mean1=mean1,
        mean2=mean2,
        m=m,
        d=d,
        prob=prob,
        ranking=ranking,
        annotation=data.annotation,
        method=method,
        params=params,
    )
