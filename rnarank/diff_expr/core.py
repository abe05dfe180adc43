"""Result container and multiple-testing correction."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import numpy as np
import polars as pl

from rnarank.core.exceptions import DataError, ValidationError

__all__ = ["ResultTable", "adjust_fdr"]


@dataclass(frozen=True)
class ResultTable:
    """
    Result container for one differential expression test.

    Attributes
    ----------
    gene_ids : tuple[str, ...]
        Tested genes, in the order of the input count matrix.
    log_fc : np.ndarray
        Log2 fold changes (exact test) or log2 contrast estimates (GLM).
    p_values : np.ndarray
        Raw p-values; NaN where the per-gene fit failed.
    fdr : np.ndarray
        Benjamini-Hochberg adjusted p-values over this run's genes.
    statistics : np.ndarray
        Test statistic (likelihood ratio for the GLM test, NaN for the
        exact test).
    method : str
        "exact" or "glm_lrt".
    contrast : str
        Name of the tested comparison.
    n_failed : int
        Genes with a failed fit (``p_value`` is NaN).
    params : Mapping[str, Any]
        Parameters used in the analysis, read-only.
    """

    gene_ids: tuple[str, ...]
    log_fc: np.ndarray
    p_values: np.ndarray
    fdr: np.ndarray
    statistics: np.ndarray
    method: str
    contrast: str
    n_failed: int = 0
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        n = len(self.gene_ids)
        for name in ("log_fc", "p_values", "fdr", "statistics"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            if arr.shape != (n,):
                raise DataError(f"ResultTable.{name} has shape {arr.shape}, expected ({n},)")
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)
        object.__setattr__(self, "gene_ids", tuple(self.gene_ids))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def __len__(self) -> int:
        return len(self.gene_ids)

    def to_frame(self) -> pl.DataFrame:
        """
        Convert results to a Polars DataFrame, in gene order.

        Returns
        -------
        pl.DataFrame
            Columns geneId, logFoldChange, pValue, FDR, statistic.
        """
        return pl.DataFrame(
            {
                "geneId": list(self.gene_ids),
                "logFoldChange": self.log_fc,
                "pValue": self.p_values,
                "FDR": self.fdr,
                "statistic": self.statistics,
            }
        )

    def top(self, n: int | None = None) -> pl.DataFrame:
        """Genes sorted by p-value (failed fits last), optionally the first ``n``."""
        df = self.to_frame().sort("pValue", nulls_last=True)
        return df if n is None else df.head(n)


def adjust_fdr(
    p_values: np.ndarray,
    method: str = "bh",
) -> np.ndarray:
    """
    Adjust p-values for multiple testing using False Discovery Rate methods.

    Parameters
    ----------
    p_values : np.ndarray
        Raw p-values to adjust. NaN entries are not counted as tests.
    method : str, default="bh"
        FDR correction method:
        - "bh": Benjamini-Hochberg (step-up)
        - "by": Benjamini-Yekutieli (more conservative, assumes dependence)

    Returns
    -------
    np.ndarray
        Adjusted p-values, NaN where the input is NaN.

    Notes
    -----
    With the m non-NaN p-values sorted ascending, p_(1) <= ... <= p_(m):
        q_(i) = min_{j >= i} p_(j) * m / j
    clipped to 1. Adjusted values are therefore non-decreasing in p and
    never smaller than the raw p-value.

    References
    ----------
    Benjamini, Y., & Hochberg, Y. (1995). Controlling the false discovery
    rate: a practical and powerful approach to multiple testing. Journal of
    the Royal Statistical Society Series B, 57(1), 289-300.
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    n = len(p_values)

    if n == 0:
        return np.array([], dtype=np.float64)

    nan_mask = np.isnan(p_values)

    if nan_mask.all():
        return p_values.copy()

    valid_idx = ~nan_mask
    p_clean = p_values[valid_idx]
    n_valid = len(p_clean)

    sorted_idx = np.argsort(p_clean, kind="stable")
    sorted_p = p_clean[sorted_idx]
    ranks = np.arange(1, n_valid + 1, dtype=np.float64)

    multiplier: float = float(n_valid)
    if method == "by":
        multiplier *= float(np.sum(1.0 / ranks))
    elif method != "bh":
        raise ValidationError(
            f"Unknown FDR correction method: {method}. Use 'bh' or 'by'.",
            field="method",
        )

    adjusted = sorted_p * multiplier / ranks
    adjusted = np.minimum.accumulate(adjusted[::-1])[::-1]
    adjusted = np.clip(adjusted, 0.0, 1.0)

    result = np.full_like(p_values, np.nan, dtype=np.float64)
    result[valid_idx] = adjusted[np.argsort(sorted_idx, kind="stable")]

    return result
