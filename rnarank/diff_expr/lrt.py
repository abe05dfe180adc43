"""Likelihood ratio test of a contrast in the one-way NB GLM."""

from __future__ import annotations

import warnings

import numpy as np
from scipy import stats

from rnarank.core.exceptions import DesignError
from rnarank.core.structures import ClassLabels, CountMatrix, NormalizationFactors
from rnarank.diff_expr.contrast import Contrast
from rnarank.diff_expr.core import ResultTable, adjust_fdr
from rnarank.diff_expr.dispersion import DispersionModel
from rnarank.diff_expr.nb_glm import add_prior_count, glm_fit, mglm_one_way

__all__ = ["glm_lrt", "null_design"]


def null_design(design: np.ndarray, contrast: np.ndarray) -> np.ndarray:
    """
    Design of the null model for a contrast.

    The full design is reparameterized so that the contrast becomes a single
    coefficient, which is then dropped.

    Parameters
    ----------
    design : np.ndarray
        Full design (n_samples, n_coefficients).
    contrast : np.ndarray
        Contrast vector of length n_coefficients.

    Returns
    -------
    np.ndarray
        Null design (n_samples, n_coefficients - 1).
    """
    contrast = np.asarray(contrast, dtype=np.float64).reshape(-1, 1)
    q, _ = np.linalg.qr(contrast, mode="complete")
    return np.asarray(design, dtype=np.float64) @ q[:, 1:]


def glm_lrt(
    matrix: CountMatrix,
    labels: ClassLabels,
    norm_factors: NormalizationFactors,
    dispersion: DispersionModel,
    contrast: Contrast,
    prior_count: float = 0.125,
) -> ResultTable:
    """
    Test a contrast of class means with a negative binomial GLM.

    Parameters
    ----------
    matrix : CountMatrix
        Filtered counts.
    labels : ClassLabels
        Class of each sample; at least two classes.
    norm_factors : NormalizationFactors
        Normalization factors for ``matrix``.
    dispersion : DispersionModel
        Fitted dispersions; tagwise values are held fixed.
    contrast : Contrast
        Linear combination of class means to test.
    prior_count : float, default=0.125
        Average prior count added when computing log fold changes.

    Returns
    -------
    ResultTable
        ``statistics`` holds the likelihood ratio and ``log_fc`` the
        contrast of log2 class abundances.

    Raises
    ------
    DesignError
        If fewer than two classes have samples or a declared class is empty.
    ContrastError
        If the contrast names an unknown class.

    Notes
    -----
    Full model: log(mu_gi) = beta_{g,class(i)} + log(effective lib size_i).
    The likelihood ratio LR = D_null - D_full is compared with a chi-square
    distribution on one degree of freedom. Genes whose fit does not
    converge get a NaN p-value and are counted in ``n_failed``.

    Examples
    --------
    >>> c = Contrast.pairwise("tumor", "normal")
    >>> res = glm_lrt(filtered, labels, factors, model, c)
    >>> res.to_frame().sort("pValue").head()
    """
    labels = labels.align(matrix)
    present = [lvl for lvl, n in labels.group_sizes().items() if n > 0]
    if len(present) < 2:
        raise DesignError(f"insufficient groups: {present}")
    design = labels.design_matrix()
    c = contrast.vector(labels.levels)

    norm_factors.check_matches(matrix)
    dispersion.check_matches(matrix)
    phi = dispersion.tagwise

    y = matrix.counts
    codes = labels.codes()
    lib_sizes = norm_factors.effective_lib_sizes
    offset = np.log(lib_sizes)

    full = mglm_one_way(y, codes, offset, phi, n_groups=labels.n_classes)
    null = glm_fit(y, null_design(design, c), offset, phi)

    lr = np.maximum(null.deviance - full.deviance, 0.0)
    p_values = stats.chi2.sf(lr, df=1)

    failed = ~(full.converged & null.converged)
    n_failed = int(np.sum(failed))
    if n_failed:
        warnings.warn(
            f"{n_failed} gene(s) did not converge for contrast '{contrast.name}'; "
            "their p-values are NaN",
            RuntimeWarning,
            stacklevel=2,
        )
        lr[failed] = np.nan
        p_values[failed] = np.nan

    y_aug, offset_aug = add_prior_count(y, lib_sizes, prior_count)
    shrunk = mglm_one_way(y_aug, codes, offset_aug, phi, n_groups=labels.n_classes)
    log_fc = shrunk.beta @ c / np.log(2.0)

    return ResultTable(
        gene_ids=matrix.gene_ids,
        log_fc=log_fc,
        p_values=p_values,
        fdr=adjust_fdr(p_values),
        statistics=lr,
        method="glm_lrt",
        contrast=contrast.name,
        n_failed=n_failed,
        params={"coefficients": dict(contrast.coefficients), "prior_count": prior_count},
    )
