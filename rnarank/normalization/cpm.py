"""Counts-per-million and the CPM expression filter."""

from __future__ import annotations

import numpy as np

from rnarank.core.exceptions import DataError, ValidationError
from rnarank.core.structures import CountMatrix, NormalizationFactors

__all__ = [
    "cpm",
    "cpm_filter_mask",
    "filter_by_cpm",
]


def _checked_lib_sizes(
    matrix: CountMatrix,
    norm_factors: NormalizationFactors | None,
) -> np.ndarray:
    if norm_factors is None:
        lib_sizes = matrix.lib_sizes
    else:
        norm_factors.check_matches(matrix)
        lib_sizes = norm_factors.effective_lib_sizes

    zero = np.where(lib_sizes <= 0)[0]
    if zero.size > 0:
        raise DataError(
            "degenerate sample (zero total counts)",
            ids=[matrix.sample_ids[j] for j in zero],
        )
    return lib_sizes


def cpm(
    matrix: CountMatrix,
    norm_factors: NormalizationFactors | None = None,
    log: bool = False,
    prior_count: float = 2.0,
) -> np.ndarray:
    """
    Counts per million.

    Parameters
    ----------
    matrix : CountMatrix
        Raw counts.
    norm_factors : NormalizationFactors, optional
        When given, effective library sizes (library size times factor)
        are used instead of the raw column sums.
    log : bool, default=False
        Return log2-CPM.
    prior_count : float, default=2.0
        Average count added before taking logs. It is scaled in proportion
        to each library size, and the library size is augmented by twice
        the scaled prior, so that small libraries are not over-smoothed.

    Returns
    -------
    np.ndarray
        Array of shape (n_genes, n_samples).

    Raises
    ------
    DataError
        If any sample has zero total counts.
    """
    lib_sizes = _checked_lib_sizes(matrix, norm_factors)

    if not log:
        return matrix.counts / (lib_sizes / 1e6)

    if prior_count < 0:
        raise ValidationError("prior_count must be non-negative", field="prior_count")
    scaled_prior = prior_count * lib_sizes / np.mean(lib_sizes)
    adjusted_lib = lib_sizes + 2.0 * scaled_prior
    return np.log2((matrix.counts + scaled_prior) / adjusted_lib * 1e6)


def cpm_filter_mask(
    matrix: CountMatrix,
    cpm_threshold: float = 1.0,
    min_samples: int = 50,
) -> np.ndarray:
    """
    Boolean mask of genes that pass the CPM expression filter.

    A gene passes when its CPM is strictly greater than ``cpm_threshold``
    in at least ``min_samples`` samples.

    Raises
    ------
    DataError
        If any sample has zero total counts.
    ValidationError
        If ``min_samples < 1`` or ``cpm_threshold < 0``.
    """
    if min_samples < 1:
        raise ValidationError("min_samples must be at least 1", field="min_samples")
    if cpm_threshold < 0:
        raise ValidationError("cpm_threshold must be non-negative", field="cpm_threshold")

    expressed = cpm(matrix) > cpm_threshold
    return expressed.sum(axis=1) >= min_samples


def filter_by_cpm(
    matrix: CountMatrix,
    cpm_threshold: float = 1.0,
    min_samples: int = 50,
) -> CountMatrix:
    """
    Drop lowly expressed genes.

    Parameters
    ----------
    matrix : CountMatrix
        Raw counts.
    cpm_threshold : float, default=1.0
        CPM a sample must exceed to count as expressing the gene.
    min_samples : int, default=50
        Number of expressing samples required to keep the gene.

    Returns
    -------
    CountMatrix
        The retained genes, in their original order, with all samples.

    Examples
    --------
    >>> kept = filter_by_cpm(matrix, cpm_threshold=1.0, min_samples=3)
    >>> matrix.n_genes - kept.n_genes  # number of genes dropped
    """
    return matrix.subset_genes(cpm_filter_mask(matrix, cpm_threshold, min_samples))
