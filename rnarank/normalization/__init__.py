"""Expression filtering and library-size normalization.

Key Functions:
    cpm: Counts per million (optionally log2, optionally normalized)
    cpm_filter_mask: Boolean CPM expression predicate per gene
    filter_by_cpm: Drop lowly expressed genes
    calc_norm_factors: TMM / upper-quartile / total-count normalization factors
"""

from .cpm import cpm, cpm_filter_mask, filter_by_cpm
from .tmm import NORMALIZATION_METHODS, calc_norm_factors

__all__ = [
    "cpm",
    "cpm_filter_mask",
    "filter_by_cpm",
    "calc_norm_factors",
    "NORMALIZATION_METHODS",
]
