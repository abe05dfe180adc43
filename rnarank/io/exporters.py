"""Writers for analysis artifacts.

Every writer takes an already computed artifact and a destination path;
parent directories are created on demand.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

import numpy as np
import polars as pl

from rnarank.core.gene_ids import GeneAnnotation
from rnarank.core.structures import NormalizationFactors, ProvenanceLog
from rnarank.diff_expr.core import ResultTable
from rnarank.ranking.rank import RankedList

logger = logging.getLogger(__name__)

__all__ = [
    "write_result_table",
    "write_rank_file",
    "write_gene_list",
    "write_norm_factors",
    "write_normalized_expression",
    "write_history",
]


def _prepare(path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_result_table(table: ResultTable, path: str | Path, *, sep: str = "\t") -> Path:
    """Write a result table (geneId, logFoldChange, pValue, FDR, statistic) in gene order."""
    path = _prepare(path)
    table.to_frame().write_csv(path, separator=sep)
    return path


def write_rank_file(
    ranked: RankedList,
    path: str | Path,
    *,
    annotation: GeneAnnotation | None = None,
) -> Path:
    """Write a GSEA pre-ranked (``.rnk``) file.

    Two tab-separated columns, gene and score, without a header, in rank
    order. Genes with a NaN score are left out since pre-ranked tools
    require numeric scores.

    Parameters
    ----------
    ranked : RankedList
        Ranked genes.
    path : str | Path
        Output file.
    annotation : GeneAnnotation | None, optional
        When given, gene ids are replaced by their symbols. Where several
        ids share a symbol only the one with the largest absolute score is
        written.
    """
    path = _prepare(path)
    keep = ~np.isnan(ranked.scores)
    ids = [g for g, k in zip(ranked.gene_ids, keep) if k]
    scores = ranked.scores[keep]
    if annotation is not None:
        ids = [annotation.symbol(g) for g in ids]
        best: dict[str, int] = {}
        for i, symbol in enumerate(ids):
            if symbol not in best or abs(scores[i]) > abs(scores[best[symbol]]):
                best[symbol] = i
        n_dup = len(ids) - len(best)
        if n_dup:
            logger.warning(
                "%d gene(s) share a symbol with a higher-ranked gene and were left out of %s",
                n_dup,
                path.name,
            )
            rows = sorted(best.values())
            ids = [ids[i] for i in rows]
            scores = scores[rows]
    pl.DataFrame({"gene": ids, "score": scores}).write_csv(
        path, separator="\t", include_header=False
    )
    return path


def write_gene_list(gene_ids: Iterable[str], path: str | Path) -> Path:
    """Write one gene id per line."""
    path = _prepare(path)
    with open(path, "w") as f:
        for gene_id in gene_ids:
            f.write(f"{gene_id}\n")
    return path


def write_norm_factors(factors: NormalizationFactors, path: str | Path, *, sep: str = "\t") -> Path:
    """Write per-sample library sizes and normalization factors."""
    path = _prepare(path)
    factors.to_frame().write_csv(path, separator=sep)
    return path


def write_normalized_expression(frame: pl.DataFrame, path: str | Path, *, sep: str = "\t") -> Path:
    """Write a genes-by-samples normalized expression table."""
    path = _prepare(path)
    frame.write_csv(path, separator=sep)
    return path


def write_history(
    history: Sequence[ProvenanceLog],
    path: str | Path,
    *,
    extra: dict | None = None,
) -> Path:
    """Write the provenance history (and optional run metadata) as JSON."""
    path = _prepare(path)
    payload = dict(extra or {})
    payload["history"] = [
        {
            "timestamp": log.timestamp,
            "action": log.action,
            "params": log.params,
            "software_version": log.software_version,
            "description": log.description,
        }
        for log in history
    ]
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
    return path
