from .apply import NORMALIZATION_METHODS, normalize_counts
from .rpkm import norm_rpkm, rpkm
from .tmm import norm_tmm, select_reference, tmm, tmm_factors
from .upper_quartile import norm_uqua, upper_quartile, upper_quartiles

__all__ = [
    "norm_rpkm",
    "norm_uqua",
    "norm_tmm",
    "rpkm",
    "upper_quartile",
    "upper_quartiles",
    "tmm",
    "tmm_factors",
    "select_reference",
    "normalize_counts",
    "NORMALIZATION_METHODS",
]
