"""rnarank: ranked differential expression gene lists from RNA-seq counts.

Turns a genes-by-samples count table into ranked and thresholded gene lists
for pathway enrichment tools (GSEA pre-ranked files, significant gene sets).

Key Features:
    - CPM expression filter
    - TMM / upper-quartile normalization factors
    - Negative binomial dispersion estimation with empirical Bayes shrinkage
    - Exact test for two classes, GLM likelihood ratio test for contrasts
    - Benjamini-Hochberg FDR, deterministic ranked lists

Quick Start:
    >>> from rnarank import read_count_table, read_class_labels, run_analysis
    >>> counts = read_count_table("counts.tsv")
    >>> labels = read_class_labels("labels.tsv")
    >>> result = run_analysis(counts, labels)
    >>> result.significant().up
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core data structures and exceptions
from rnarank.core import (
    ClassLabels,
    ConfigurationError,
    ContrastError,
    CountMatrix,
    DataError,
    DesignError,
    GeneAnnotation,
    NormalizationFactors,
    ProvenanceLog,
    RnaRankError,
    UsageError,
    ValidationError,
    split_gene_id,
)

# Configuration
from rnarank.config import AnalysisConfig, load_config, save_config

# Differential expression
from rnarank.diff_expr import (
    Contrast,
    DispersionModel,
    ResultTable,
    adjust_fdr,
    estimate_dispersion,
    exact_test,
    glm_lrt,
)

# IO
from rnarank.io import read_class_labels, read_count_table

# Normalization
from rnarank.normalization import calc_norm_factors, cpm, filter_by_cpm

# Pipeline
from rnarank.pipeline import AnalysisResult, run_analysis

# Ranking
from rnarank.ranking import RankedList, SignificantGeneList, rank_scores, ranked_list, significant_genes

__all__ = [
    "__version__",
    "CountMatrix",
    "ClassLabels",
    "NormalizationFactors",
    "ProvenanceLog",
    "GeneAnnotation",
    "split_gene_id",
    "RnaRankError",
    "DataError",
    "DesignError",
    "UsageError",
    "ContrastError",
    "ValidationError",
    "ConfigurationError",
    "AnalysisConfig",
    "load_config",
    "save_config",
    "Contrast",
    "DispersionModel",
    "ResultTable",
    "adjust_fdr",
    "estimate_dispersion",
    "exact_test",
    "glm_lrt",
    "read_count_table",
    "read_class_labels",
    "cpm",
    "filter_by_cpm",
    "calc_norm_factors",
    "AnalysisResult",
    "run_analysis",
    "RankedList",
    "SignificantGeneList",
    "rank_scores",
    "ranked_list",
    "significant_genes",
]
