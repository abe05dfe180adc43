"""End-to-end analysis: filter, normalize, fit dispersion, test, rank.

Examples
--------
>>> from rnarank import read_count_table, read_class_labels, run_analysis
>>> result = run_analysis(read_count_table("counts.tsv"), read_class_labels("labels.tsv"))
>>> result.ranked().pairs()
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import numpy as np
import polars as pl

from rnarank import __version__
from rnarank.config.loader import AnalysisConfig, get_default_config, validate_config
from rnarank.core.exceptions import DataError, ValidationError
from rnarank.core.structures import ClassLabels, CountMatrix, NormalizationFactors, ProvenanceLog
from rnarank.diff_expr.contrast import Contrast
from rnarank.diff_expr.core import ResultTable
from rnarank.diff_expr.dispersion import DispersionModel, estimate_dispersion
from rnarank.diff_expr.exact import exact_test
from rnarank.diff_expr.lrt import glm_lrt
from rnarank.normalization.cpm import cpm, filter_by_cpm
from rnarank.normalization.tmm import calc_norm_factors
from rnarank.ranking.rank import RankedList, SignificantGeneList, ranked_list, significant_genes

logger = logging.getLogger(__name__)

__all__ = ["AnalysisResult", "run_analysis", "default_contrasts"]


@dataclass
class AnalysisResult:
    """
    Artifacts of one analysis run.

    Attributes
    ----------
    config : AnalysisConfig
        Configuration the run used.
    counts : CountMatrix
        CPM-filtered counts.
    labels : ClassLabels
        Class labels aligned with ``counts``.
    norm_factors : NormalizationFactors
        Normalization factors of the filtered counts.
    dispersion : DispersionModel
        Fitted dispersion model.
    results : dict[str, ResultTable]
        One result table per tested comparison, keyed by its name.
    n_input_genes : int
        Genes before filtering.
    history : list[ProvenanceLog]
        One entry per pipeline stage.
    """

    config: AnalysisConfig
    counts: CountMatrix
    labels: ClassLabels
    norm_factors: NormalizationFactors
    dispersion: DispersionModel
    results: dict[str, ResultTable]
    n_input_genes: int
    history: list[ProvenanceLog] = field(default_factory=list)

    @property
    def n_filtered(self) -> int:
        """Number of genes removed by the CPM filter."""
        return self.n_input_genes - self.counts.n_genes

    def log_operation(
        self,
        action: str,
        params: dict[str, Any],
        description: str | None = None,
    ) -> None:
        """Append an entry to the history."""
        self.history.append(
            ProvenanceLog(
                timestamp=datetime.now().isoformat(),
                action=action,
                params=params,
                software_version=__version__,
                description=description,
            )
        )

    def _table(self, name: str | None) -> ResultTable:
        if name is None:
            if len(self.results) != 1:
                raise ValidationError(
                    f"Several comparisons were tested, pick one of {list(self.results)}",
                    field="name",
                )
            return next(iter(self.results.values()))
        if name not in self.results:
            raise ValidationError(
                f"No results for '{name}'; available: {list(self.results)}", field="name"
            )
        return self.results[name]

    def ranked(self, name: str | None = None) -> RankedList:
        """Ranked gene list of one comparison (the only one when ``name`` is None)."""
        return ranked_list(self._table(name))

    def significant(
        self,
        name: str | None = None,
        threshold: float | None = None,
    ) -> SignificantGeneList:
        """Genes below the FDR threshold (configured threshold by default)."""
        if threshold is None:
            threshold = self.config.testing.fdr_threshold
        return significant_genes(self._table(name), threshold)

    def normalized_expression(self, prior_count: float | None = None) -> pl.DataFrame:
        """Log2-CPM of the filtered counts using the effective library sizes."""
        if prior_count is None:
            prior_count = self.config.output.log_prior_count
        values = cpm(self.counts, self.norm_factors, log=True, prior_count=prior_count)
        data: dict[str, Any] = {"gene_id": list(self.counts.gene_ids)}
        for j, s in enumerate(self.counts.sample_ids):
            data[s] = values[:, j]
        return pl.DataFrame(data)


def default_contrasts(levels: tuple[str, ...] | list[str]) -> list[Contrast]:
    """
    Contrasts tested when none are configured.

    Two classes give ``second - first``; more classes give one
    one-vs-rest contrast per class.
    """
    levels = list(levels)
    if len(levels) == 2:
        return [Contrast.pairwise(levels[1], levels[0])]
    return [Contrast.one_vs_rest(lvl, levels) for lvl in levels]


def run_analysis(
    counts: CountMatrix,
    labels: ClassLabels,
    config: AnalysisConfig | None = None,
) -> AnalysisResult:
    """
    Run the full differential expression analysis.

    Parameters
    ----------
    counts : CountMatrix
        Raw counts.
    labels : ClassLabels
        Class of every sample in ``counts``.
    config : AnalysisConfig | None, optional
        Analysis settings. Defaults to :func:`get_default_config`.

    Returns
    -------
    AnalysisResult
        Filtered counts, factors, dispersion model and one result table per
        comparison.

    Raises
    ------
    DataError
        If samples do not match, a sample has zero counts, or no gene
        passes the filter.
    DesignError
        If the classes do not support dispersion estimation.
    UsageError
        If the exact test is requested for more than two classes.
    ContrastError
        If a contrast is malformed or names an unknown class.
    """
    config = config or get_default_config()
    validate_config(config)

    labels = labels.align(counts)
    logger.info(
        "Input: %d genes x %d samples, classes %s",
        counts.n_genes,
        counts.n_samples,
        labels.group_sizes(),
    )

    filt = config.filter
    filtered = filter_by_cpm(counts, cpm_threshold=filt.cpm_threshold, min_samples=filt.min_samples)
    if filtered.n_genes == 0:
        raise DataError(
            f"No gene has CPM > {filt.cpm_threshold} in at least {filt.min_samples} samples"
        )
    logger.info("CPM filter kept %d of %d genes", filtered.n_genes, counts.n_genes)

    norm = config.normalization
    factors = calc_norm_factors(
        filtered,
        method=norm.method,
        logratio_trim=norm.logratio_trim,
        sum_trim=norm.sum_trim,
        do_weighting=norm.do_weighting,
    )
    logger.info("Normalization factors (%s): %s", norm.method, np.round(factors.factors, 4))

    disp = config.dispersion
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", RuntimeWarning)
        model = estimate_dispersion(
            filtered,
            labels,
            factors,
            prior_df=disp.prior_df,
            grid_length=disp.grid_length,
            grid_range=disp.grid_range,
            adjust=disp.adjust,
        )
    for w in caught:
        logger.warning("%s", w.message)
    logger.info(
        "Common dispersion %.4g (BCV %.3f), prior weight %.3f",
        model.common,
        np.sqrt(model.common),
        model.shrinkage_weight,
    )

    testing = config.testing
    if testing.method == "exact" and testing.contrasts:
        logger.warning(
            "The exact test ignores the %d configured contrast(s): %s",
            len(testing.contrasts),
            [c.name for c in testing.contrasts],
        )
    if testing.method != "exact" and testing.pair is not None:
        logger.warning("pair %s is only used by the exact test; ignored", list(testing.pair))

    results: dict[str, ResultTable] = {}
    if testing.method == "exact":
        table = exact_test(
            filtered, labels, factors, model, pair=testing.pair, prior_count=testing.prior_count
        )
        results[table.contrast] = table
    else:
        contrasts = testing.contrasts or default_contrasts(labels.levels)
        for contrast in contrasts:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always", RuntimeWarning)
                table = glm_lrt(
                    filtered, labels, factors, model, contrast, prior_count=testing.prior_count
                )
            for w in caught:
                logger.warning("%s", w.message)
            results[contrast.name] = table

    result = AnalysisResult(
        config=config,
        counts=filtered,
        labels=labels,
        norm_factors=factors,
        dispersion=model,
        results=results,
        n_input_genes=counts.n_genes,
    )
    result.log_operation(
        "filter_by_cpm",
        {"cpm_threshold": filt.cpm_threshold, "min_samples": filt.min_samples},
        description=f"Kept {filtered.n_genes} of {counts.n_genes} genes.",
    )
    result.log_operation(
        "calc_norm_factors",
        {"method": norm.method, "factors": factors.factors.tolist()},
        description=f"Normalization factors ({norm.method}).",
    )
    result.log_operation(
        "estimate_dispersion",
        {
            "prior_df": model.prior_df,
            "prior_n": model.prior_n,
            "common": model.common,
            "n_fallback": model.n_fallback,
        },
        description=f"Common dispersion {model.common:.4g}; {model.n_fallback} tagwise fallbacks.",
    )
    for name, table in results.items():
        n_sig = len(significant_genes(table, testing.fdr_threshold))
        logger.info(
            "%s [%s]: %d genes with FDR < %g, %d failed fits",
            name,
            table.method,
            n_sig,
            testing.fdr_threshold,
            table.n_failed,
        )
        result.log_operation(
            table.method,
            {"contrast": name, **table.params, "n_failed": table.n_failed},
            description=f"{n_sig} genes with FDR < {testing.fdr_threshold}.",
        )

    return result
