"""Factor (sample grouping) helpers shared by filters and engines."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import polars as pl

from noiseqpy.core.exceptions import (
    FactorNotFoundError,
    InvalidFactorCardinalityError,
    ValidationError,
)


def group_indices(obs: pl.DataFrame, factor: str) -> dict[str, np.ndarray]:
    """
    Map each level of `factor` to the row indices of its samples.

    Levels keep their order of first appearance.

    Raises
    ------
    FactorNotFoundError
        If `factor` is not a column of obs.
    ValidationError
        If some sample has no label for `factor`.
    """
    if factor not in obs.columns:
        raise FactorNotFoundError(factor)
    column = obs[factor]
    if column.null_count():
        raise ValidationError(
            f"Factor '{factor}' has {column.null_count()} sample(s) without a label.",
            field=factor,
        )
    labels = np.array([str(v) for v in column.to_list()])
    levels = list(dict.fromkeys(labels.tolist()))
    return {level: np.flatnonzero(labels == level) for level in levels}


def resolve_comparison(
    obs: pl.DataFrame,
    factor: str,
    conditions: Sequence[str] | None = None,
) -> tuple[tuple[str, str], np.ndarray, np.ndarray]:
    """
    Resolve the two levels of a pairwise comparison.

    Parameters
    ----------
    obs : pl.DataFrame
        Sample metadata.
    factor : str
        Comparison factor column.
    conditions : Sequence[str], optional
        The two levels to compare. Required when the factor has more than
        two levels.

    Returns
    -------
    tuple
        ((level1, level2), idx1, idx2)

    Raises
    ------
    InvalidFactorCardinalityError
        If the comparison does not resolve to exactly two levels.
    """
    groups = group_indices(obs, factor)
    if conditions is None:
        if len(groups) != 2:
            raise InvalidFactorCardinalityError(factor, list(groups))
        level1, level2 = list(groups)
    else:
        conditions = [str(c) for c in conditions]
        if len(conditions) != 2 or conditions[0] == conditions[1]:
            raise InvalidFactorCardinalityError(factor, conditions)
        missing = [c for c in conditions if c not in groups]
        if missing:
            raise ValidationError(
                f"Level(s) {missing} not found in factor '{factor}'; available: {list(groups)}",
                field="conditions",
            )
        level1, level2 = conditions
    return (level1, level2), groups[level1], groups[level2]
