"""Differential expression testing for RNA-seq counts.

This module fits negative binomial models to filtered, normalized counts
and tests for differential expression between classes.

Key Functions:
    estimate_dispersion: Common and tagwise NB dispersions (Cox-Reid APL,
                         weighted-likelihood empirical Bayes)
    exact_test: Exact conditional NB test for two classes
    glm_lrt: NB GLM likelihood ratio test of a contrast
    adjust_fdr: Benjamini-Hochberg / Benjamini-Yekutieli correction

Result Structures:
    DispersionModel: Fitted common and per-gene dispersions
    Contrast: Named zero-sum combination of class means
    ResultTable: Per-gene logFC, p-value and FDR for one comparison
"""

from .contrast import Contrast
from .core import ResultTable, adjust_fdr
from .dispersion import DEFAULT_PRIOR_DF, DispersionModel, estimate_dispersion
from .exact import exact_test
from .lrt import glm_lrt

__all__ = [
    "Contrast",
    "DispersionModel",
    "ResultTable",
    "DEFAULT_PRIOR_DF",
    "adjust_fdr",
    "estimate_dispersion",
    "exact_test",
    "glm_lrt",
]
