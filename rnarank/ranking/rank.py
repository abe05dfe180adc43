"""Deterministic ranked and thresholded gene lists.

Rank score:

    score_g = sign(logFC_g) * -log10(p_g)

A p-value of exactly zero is clamped to the smallest positive normal double
so that the score stays finite. Genes whose fit failed (NaN p-value) have a
NaN score.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
import polars as pl

from rnarank.core.exceptions import ValidationError
from rnarank.diff_expr.core import ResultTable

__all__ = [
    "RankedList",
    "SignificantGeneList",
    "rank_scores",
    "ranked_list",
    "significant_genes",
    "P_VALUE_FLOOR",
]

P_VALUE_FLOOR = float(np.finfo(np.float64).tiny)


def rank_scores(table: ResultTable) -> np.ndarray:
    """
    Signed significance score per gene, in table order.

    Returns
    -------
    np.ndarray
        ``sign(logFC) * -log10(max(p, tiny))``; NaN where the p-value is NaN.
    """
    p = np.maximum(table.p_values, P_VALUE_FLOOR)
    with np.errstate(invalid="ignore"):
        scores = np.sign(table.log_fc) * -np.log10(p)
    # Normalize -0.0 so equal scores compare and print identically.
    return scores + 0.0


@dataclass(frozen=True)
class RankedList:
    """
    Genes in descending score order.

    Attributes
    ----------
    gene_ids : tuple[str, ...]
        Gene identifiers, highest score first; NaN scores last.
    scores : np.ndarray
        Scores aligned with ``gene_ids``, read-only.
    """

    gene_ids: tuple[str, ...]
    scores: np.ndarray

    def __post_init__(self) -> None:
        scores = np.array(self.scores, dtype=np.float64)
        scores.flags.writeable = False
        object.__setattr__(self, "scores", scores)
        object.__setattr__(self, "gene_ids", tuple(self.gene_ids))

    def __len__(self) -> int:
        return len(self.gene_ids)

    def pairs(self) -> Iterator[tuple[str, float]]:
        """Iterate over ``(gene_id, score)`` in rank order."""
        for gene_id, score in zip(self.gene_ids, self.scores):
            yield gene_id, float(score)

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame({"geneId": list(self.gene_ids), "score": self.scores})


def ranked_list(table: ResultTable) -> RankedList:
    """
    Rank every gene of a result table.

    Genes are sorted by score descending; equal scores are ordered by gene
    id ascending, and genes with a NaN score follow all others, by gene id.
    The ordering is total, so repeated calls return identical lists.
    """
    scores = rank_scores(table)
    ids = table.gene_ids
    nan = np.isnan(scores)
    key = np.where(nan, 0.0, -scores)
    order = sorted(range(len(ids)), key=lambda i: (bool(nan[i]), float(key[i]), ids[i]))
    return RankedList(gene_ids=tuple(ids[i] for i in order), scores=scores[order])


@dataclass(frozen=True)
class SignificantGeneList:
    """
    Genes passing an FDR threshold, in result-table order.

    Attributes
    ----------
    gene_ids : tuple[str, ...]
        All significant genes.
    up : tuple[str, ...]
        Significant genes with positive log fold change.
    down : tuple[str, ...]
        Significant genes with negative log fold change.
    threshold : float
        FDR threshold used (strict ``FDR < threshold``).
    """

    gene_ids: tuple[str, ...]
    up: tuple[str, ...]
    down: tuple[str, ...]
    threshold: float

    def __len__(self) -> int:
        return len(self.gene_ids)

    def __contains__(self, gene_id: object) -> bool:
        return gene_id in self.gene_ids


def significant_genes(table: ResultTable, threshold: float = 0.05) -> SignificantGeneList:
    """
    Select genes with ``FDR < threshold``.

    Raises
    ------
    ValidationError
        If ``threshold`` is outside [0, 1].
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValidationError(
            f"FDR threshold must be in [0, 1], got {threshold}", field="threshold"
        )
    with np.errstate(invalid="ignore"):
        passed = table.fdr < threshold
    up = passed & (table.log_fc > 0)
    down = passed & (table.log_fc < 0)
    ids = table.gene_ids
    return SignificantGeneList(
        gene_ids=tuple(ids[i] for i in np.where(passed)[0]),
        up=tuple(ids[i] for i in np.where(up)[0]),
        down=tuple(ids[i] for i in np.where(down)[0]),
        threshold=float(threshold),
    )
