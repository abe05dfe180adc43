from __future__ import annotations

import numpy as np
from scipy.stats import rankdata

from rnarank.core.exceptions import DataError, ValidationError
from rnarank.core.structures import CountMatrix, NormalizationFactors

__all__ = ["calc_norm_factors", "NORMALIZATION_METHODS"]

NORMALIZATION_METHODS = ("tmm", "upperquartile", "none")


def _upper_quartile(counts: np.ndarray, lib_sizes: np.ndarray, p: float) -> np.ndarray:
    # Quantile of each column's proportions (linear interpolation).
    return np.quantile(counts / lib_sizes, p, axis=0)


def _tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float,
    sum_trim: float,
    do_weighting: bool,
    a_cutoff: float,
) -> float:
    """TMM factor of one sample against the reference sample."""
    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((obs / lib_obs) / (ref / lib_ref))
        abs_e = (np.log2(obs / lib_obs) + np.log2(ref / lib_ref)) / 2.0
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    # Genes absent from either sample give infinite M or A values.
    keep = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    log_r, abs_e, v = log_r[keep], abs_e[keep], v[keep]

    if log_r.size == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    trimmed = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)

    with np.errstate(divide="ignore", invalid="ignore"):
        if do_weighting:
            f = np.sum(log_r[trimmed] / v[trimmed]) / np.sum(1.0 / v[trimmed])
        else:
            f = np.mean(log_r[trimmed]) if np.any(trimmed) else np.nan

    if not np.isfinite(f):
        f = 0.0
    return float(2.0**f)


def calc_norm_factors(
    matrix: CountMatrix,
    method: str = "tmm",
    ref_column: int | None = None,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    do_weighting: bool = True,
    a_cutoff: float = -1e10,
    p: float = 0.75,
) -> NormalizationFactors:
    """
    Compute library-size normalization factors.

    Implementation follows edgeR's ``calcNormFactors``.

    Mathematical Formulation (TMM):
        M_g = log2((y_gk / N_k) / (y_gr / N_r))       # log ratio vs reference r
        A_g = 0.5 * log2((y_gk / N_k) * (y_gr / N_r))  # average log expression
        v_g = (N_k - y_gk) / (N_k y_gk) + (N_r - y_gr) / (N_r y_gr)

        After trimming ``logratio_trim`` of the M values and ``sum_trim``
        of the A values on each side:
        f_k = 2 ** (sum(M_g / v_g) / sum(1 / v_g))

    Factors are finally divided by their geometric mean.

    Reference:
        Robinson, M. D., & Oshlack, A. (2010).
        A scaling normalization method for differential expression analysis
        of RNA-seq data. Genome Biology, 11(3), R25.

    Args:
        matrix: Raw counts (genes x samples).
        method: "tmm", "upperquartile" or "none" (total-count scaling only).
        ref_column: Reference sample index for TMM. If None, the sample whose
            upper-quartile proportion is closest to the mean upper quartile.
        logratio_trim: Fraction of M values trimmed from each end.
        sum_trim: Fraction of A values trimmed from each end.
        do_weighting: Precision-weight the trimmed mean of M values.
        a_cutoff: Genes with A values at or below this are ignored.
        p: Quantile used by "upperquartile" and for reference selection.

    Returns:
        NormalizationFactors with strictly positive factors whose geometric
        mean is 1.

    Raises:
        DataError: If a sample has zero total counts or a zero upper quartile.
        ValidationError: If the method or a trimming fraction is invalid.
    """
    if method not in NORMALIZATION_METHODS:
        raise ValidationError(
            f"Unknown normalization method: {method}. Use one of {NORMALIZATION_METHODS}.",
            field="method",
        )
    if not 0 <= logratio_trim < 0.5:
        raise ValidationError("logratio_trim must be in [0, 0.5)", field="logratio_trim")
    if not 0 <= sum_trim < 0.5:
        raise ValidationError("sum_trim must be in [0, 0.5)", field="sum_trim")

    lib_sizes = matrix.lib_sizes
    zero = np.where(lib_sizes <= 0)[0]
    if zero.size > 0:
        raise DataError(
            "degenerate sample (zero total counts)",
            ids=[matrix.sample_ids[j] for j in zero],
        )

    n_samples = matrix.n_samples
    counts = matrix.counts[np.any(matrix.counts > 0, axis=1)]

    if method == "none" or counts.shape[0] == 0:
        factors = np.ones(n_samples)
    elif method == "upperquartile":
        factors = _upper_quartile(counts, lib_sizes, p)
        if np.any(factors <= 0):
            bad = np.where(factors <= 0)[0]
            raise DataError(
                "upper quartile is zero",
                ids=[matrix.sample_ids[j] for j in bad],
            )
    else:
        if ref_column is None:
            f75 = _upper_quartile(counts, lib_sizes, 0.75)
            if np.median(f75) < 1e-20:
                ref_column = int(np.argmax(np.sum(np.sqrt(counts), axis=0)))
            else:
                ref_column = int(np.argmin(np.abs(f75 - np.mean(f75))))
        elif not 0 <= ref_column < n_samples:
            raise ValidationError(
                f"ref_column {ref_column} out of range for {n_samples} samples",
                field="ref_column",
            )

        ref = counts[:, ref_column]
        factors = np.array(
            [
                _tmm_factor(
                    counts[:, j],
                    ref,
                    lib_sizes[j],
                    lib_sizes[ref_column],
                    logratio_trim,
                    sum_trim,
                    do_weighting,
                    a_cutoff,
                )
                for j in range(n_samples)
            ]
        )

    factors = factors / np.exp(np.mean(np.log(factors)))

    return NormalizationFactors(
        sample_ids=matrix.sample_ids,
        factors=factors,
        lib_sizes=lib_sizes,
        method=method,
    )
