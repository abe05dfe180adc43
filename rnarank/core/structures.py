"""Immutable data structures shared by every pipeline stage.

A CountMatrix holds genes (rows) by samples (columns). Arrays are copied on
construction and flagged read-only, so a stage can never mutate the output
of another stage.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import polars as pl

from rnarank.core.exceptions import DataError, DesignError


def _readonly(values: Any, dtype: type = np.float64) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    arr.flags.writeable = False
    return arr


def _duplicates(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    dup: list[str] = []
    for i in ids:
        if i in seen and i not in dup:
            dup.append(i)
        seen.add(i)
    return dup


@dataclass
class ProvenanceLog:
    """
    Record of one operation performed during an analysis run.
    """

    timestamp: str
    action: str
    params: dict[str, Any]
    software_version: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CountMatrix:
    """
    Raw read counts, genes by samples.

    Attributes
    ----------
    counts : np.ndarray
        Non-negative integer-valued counts of shape (n_genes, n_samples),
        stored as a read-only float64 array.
    gene_ids : tuple[str, ...]
        Unique gene identifiers (row labels). Treated as opaque keys.
    sample_ids : tuple[str, ...]
        Unique sample identifiers (column labels).

    Raises
    ------
    DataError
        If the counts are not a 2D array of finite, non-negative integers,
        if identifiers are duplicated, or if the shape does not match the
        identifiers.
    """

    counts: np.ndarray
    gene_ids: tuple[str, ...]
    sample_ids: tuple[str, ...]

    def __post_init__(self) -> None:
        gene_ids = tuple(str(g) for g in self.gene_ids)
        sample_ids = tuple(str(s) for s in self.sample_ids)
        counts = np.array(self.counts, dtype=np.float64)

        if counts.ndim != 2:
            raise DataError(f"Count matrix must be 2D, got {counts.ndim}D")
        if counts.shape != (len(gene_ids), len(sample_ids)):
            raise DataError(
                f"Shape mismatch: counts {counts.shape} != "
                f"({len(gene_ids)} genes, {len(sample_ids)} samples)"
            )
        if dup := _duplicates(gene_ids):
            raise DataError("duplicate gene identifiers", ids=dup)
        if dup := _duplicates(sample_ids):
            raise DataError("duplicate sample identifiers", ids=dup)
        if not np.all(np.isfinite(counts)):
            bad = np.where(~np.all(np.isfinite(counts), axis=1))[0]
            raise DataError("non-finite counts", ids=[gene_ids[i] for i in bad])
        if np.any(counts < 0):
            bad = np.where(np.any(counts < 0, axis=1))[0]
            raise DataError("negative counts", ids=[gene_ids[i] for i in bad])
        if np.any(counts != np.round(counts)):
            bad = np.where(np.any(counts != np.round(counts), axis=1))[0]
            raise DataError("non-integer counts", ids=[gene_ids[i] for i in bad])

        counts.flags.writeable = False
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "gene_ids", gene_ids)
        object.__setattr__(self, "sample_ids", sample_ids)

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    @property
    def lib_sizes(self) -> np.ndarray:
        """Column sums (total counts per sample)."""
        return self.counts.sum(axis=0)

    def subset_genes(self, mask: np.ndarray | Sequence[bool]) -> CountMatrix:
        """Return a new matrix with the rows selected by a boolean mask.

        Row order among the retained genes is preserved.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_genes,):
            raise DataError(f"Gene mask has shape {mask.shape}, expected ({self.n_genes},)")
        idx = np.where(mask)[0]
        return CountMatrix(
            counts=self.counts[idx, :],
            gene_ids=tuple(self.gene_ids[i] for i in idx),
            sample_ids=self.sample_ids,
        )

    def select_samples(self, sample_ids: Sequence[str]) -> CountMatrix:
        """Return a new matrix with the columns reordered to ``sample_ids``."""
        index = {s: i for i, s in enumerate(self.sample_ids)}
        missing = [s for s in sample_ids if s not in index]
        if missing:
            raise DataError("unknown sample identifiers", ids=missing)
        cols = [index[s] for s in sample_ids]
        return CountMatrix(
            counts=self.counts[:, cols],
            gene_ids=self.gene_ids,
            sample_ids=tuple(sample_ids),
        )

    def to_frame(self, gene_col: str = "gene_id") -> pl.DataFrame:
        """Convert to a polars DataFrame with one column per sample."""
        data: dict[str, Any] = {gene_col: list(self.gene_ids)}
        for j, s in enumerate(self.sample_ids):
            data[s] = self.counts[:, j].astype(np.int64)
        return pl.DataFrame(data)

    @classmethod
    def from_frame(cls, df: pl.DataFrame, gene_col: str | None = None) -> CountMatrix:
        """Build a matrix from a DataFrame whose first (or ``gene_col``) column holds gene ids."""
        if df.width < 2:
            raise DataError("Count table needs a gene column and at least one sample column")
        gene_col = gene_col or df.columns[0]
        if gene_col not in df.columns:
            raise DataError(f"Gene column '{gene_col}' not found")
        sample_cols = [c for c in df.columns if c != gene_col]
        try:
            counts = df.select(sample_cols).to_numpy().astype(np.float64)
        except (TypeError, ValueError) as e:
            raise DataError(f"Sample columns must be numeric: {e}") from e
        return cls(
            counts=counts,
            gene_ids=tuple(df[gene_col].cast(pl.Utf8).to_list()),
            sample_ids=tuple(sample_cols),
        )

    def __repr__(self) -> str:
        return f"<CountMatrix n_genes={self.n_genes}, n_samples={self.n_samples}>"


@dataclass(frozen=True)
class ClassLabels:
    """
    Class assignment of every sample.

    Attributes
    ----------
    sample_ids : tuple[str, ...]
        Unique sample identifiers.
    labels : tuple[str, ...]
        Class of each sample, aligned with ``sample_ids``.
    levels : tuple[str, ...]
        Ordered class levels; defines the column order of the design
        matrix. Defaults to the sorted distinct labels.
    """

    sample_ids: tuple[str, ...]
    labels: tuple[str, ...]
    levels: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        sample_ids = tuple(str(s) for s in self.sample_ids)
        labels = tuple(str(x) for x in self.labels)
        if len(sample_ids) != len(labels):
            raise DataError(
                f"Got {len(labels)} labels for {len(sample_ids)} samples"
            )
        if dup := _duplicates(sample_ids):
            raise DataError("duplicate sample identifiers in class labels", ids=dup)

        levels = tuple(str(x) for x in self.levels) if self.levels else tuple(sorted(set(labels)))
        if dup := _duplicates(levels):
            raise DataError("duplicate class levels", ids=dup)
        undeclared = sorted(set(labels) - set(levels))
        if undeclared:
            raise DataError("labels not among declared levels", ids=undeclared)

        object.__setattr__(self, "sample_ids", sample_ids)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "levels", levels)

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, str],
        levels: Iterable[str] | None = None,
    ) -> ClassLabels:
        """Create labels from a ``{sample_id: class}`` mapping."""
        return cls(
            sample_ids=tuple(mapping.keys()),
            labels=tuple(mapping.values()),
            levels=tuple(levels) if levels is not None else (),
        )

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_classes(self) -> int:
        return len(self.levels)

    def group_sizes(self) -> dict[str, int]:
        """Number of samples per level (zero for unused declared levels)."""
        sizes = dict.fromkeys(self.levels, 0)
        for label in self.labels:
            sizes[label] += 1
        return sizes

    def codes(self) -> np.ndarray:
        """Integer level index of every sample."""
        index = {lvl: i for i, lvl in enumerate(self.levels)}
        return np.array([index[x] for x in self.labels], dtype=np.intp)

    def align(self, samples: CountMatrix | Sequence[str]) -> ClassLabels:
        """Reorder labels to follow a count matrix's sample order.

        Raises
        ------
        DataError
            If the two sample sets differ.
        """
        target = samples.sample_ids if isinstance(samples, CountMatrix) else tuple(samples)
        mapping = dict(zip(self.sample_ids, self.labels, strict=True))
        unlabelled = [s for s in target if s not in mapping]
        if unlabelled:
            raise DataError("samples without a class label", ids=unlabelled)
        extra = [s for s in self.sample_ids if s not in set(target)]
        if extra:
            raise DataError("labelled samples missing from the count matrix", ids=extra)
        return ClassLabels(
            sample_ids=tuple(target),
            labels=tuple(mapping[s] for s in target),
            levels=self.levels,
        )

    def design_matrix(self) -> np.ndarray:
        """One indicator column per level, no intercept.

        Raises
        ------
        DesignError
            If a declared level has no samples.
        """
        empty = [lvl for lvl, n in self.group_sizes().items() if n == 0]
        if empty:
            raise DesignError(f"Class levels without samples: {empty}")
        design = np.zeros((self.n_samples, self.n_classes))
        design[np.arange(self.n_samples), self.codes()] = 1.0
        return design

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame({"sample_id": list(self.sample_ids), "class": list(self.labels)})


@dataclass(frozen=True)
class NormalizationFactors:
    """
    Per-sample scaling factors.

    Attributes
    ----------
    sample_ids : tuple[str, ...]
        Sample identifiers, order-matched with the count matrix.
    factors : np.ndarray
        Strictly positive normalization factors.
    lib_sizes : np.ndarray
        Raw library sizes (column sums).
    method : str
        Method that produced the factors.
    """

    sample_ids: tuple[str, ...]
    factors: np.ndarray
    lib_sizes: np.ndarray
    method: str = "tmm"

    def __post_init__(self) -> None:
        sample_ids = tuple(str(s) for s in self.sample_ids)
        factors = _readonly(self.factors)
        lib_sizes = _readonly(self.lib_sizes)
        if factors.shape != (len(sample_ids),) or lib_sizes.shape != (len(sample_ids),):
            raise DataError(
                f"Expected {len(sample_ids)} factors and library sizes, "
                f"got {factors.shape} and {lib_sizes.shape}"
            )
        if not np.all(np.isfinite(factors)) or np.any(factors <= 0):
            raise DataError("normalization factors must be finite and positive")
        object.__setattr__(self, "sample_ids", sample_ids)
        object.__setattr__(self, "factors", factors)
        object.__setattr__(self, "lib_sizes", lib_sizes)

    @property
    def effective_lib_sizes(self) -> np.ndarray:
        """Library sizes multiplied by the normalization factors."""
        return self.lib_sizes * self.factors

    def check_matches(self, matrix: CountMatrix) -> None:
        """Raise DataError unless the factors were computed for this sample set."""
        if self.sample_ids != matrix.sample_ids:
            raise DataError("normalization factors do not match the count matrix samples")

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "sample_id": list(self.sample_ids),
                "lib_size": self.lib_sizes,
                "norm_factor": self.factors,
                "effective_lib_size": self.effective_lib_sizes,
            }
        )
