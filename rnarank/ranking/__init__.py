"""Ranked and thresholded gene lists for enrichment tools."""

from .rank import (
    P_VALUE_FLOOR,
    RankedList,
    SignificantGeneList,
    rank_scores,
    ranked_list,
    significant_genes,
)

__all__ = [
    "RankedList",
    "SignificantGeneList",
    "rank_scores",
    "ranked_list",
    "significant_genes",
    "P_VALUE_FLOOR",
]
