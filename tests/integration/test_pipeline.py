"""
Integration tests for the complete analysis pipeline.

Tests cover:
- The four-gene scenario under both test methods
- Multi-class runs with default and configured contrasts
- Failure modes surfacing from each pipeline stage
"""

from __future__ import annotations

import logging

import numpy as np
import numpy.testing as npt
import pytest

from rnarank import (
    AnalysisConfig,
    ClassLabels,
    Contrast,
    ContrastError,
    CountMatrix,
    DataError,
    DesignError,
    UsageError,
    ValidationError,
    run_analysis,
)
from rnarank.pipeline import default_contrasts


def scenario_config(method: str = "glm") -> AnalysisConfig:
    config = AnalysisConfig()
    config.filter.min_samples = 3
    config.testing.method = method
    return config


# =============================================================================
# Four-gene scenario
# =============================================================================


class TestScenario:
    """G1 drops about ten-fold from A to B; G2 is flat."""

    @pytest.mark.parametrize("method", ["glm", "exact"])
    def test_strong_change_detected(self, scenario_counts, scenario_labels, method):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config(method))
        (name,) = result.results
        assert name == "B_vs_A"

        table = result.results[name]
        i = table.gene_ids.index("G1")
        assert abs(table.log_fc[i]) > 2
        assert table.log_fc[i] < 0
        assert table.p_values[i] < 0.01
        assert "G1" in result.significant()
        assert "G1" in result.significant().down

    @pytest.mark.parametrize("method", ["glm", "exact"])
    def test_flat_gene_not_detected(self, scenario_counts, scenario_labels, method):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config(method))
        table = result.results["B_vs_A"]
        i = table.gene_ids.index("G2")
        assert abs(table.log_fc[i]) < 0.5
        assert "G2" not in result.significant()

    def test_all_genes_kept(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        assert result.n_input_genes == 4
        assert result.n_filtered == 0
        assert result.counts.gene_ids == ("G1", "G2", "G3", "G4")

    def test_downregulated_gene_ranks_last(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        ranked = result.ranked()
        assert ranked.gene_ids[-1] == "G1"
        assert len(ranked) == 4
        assert np.all(np.diff(ranked.scores) <= 0)

    def test_ranking_is_reproducible(self, scenario_counts, scenario_labels):
        first = run_analysis(scenario_counts, scenario_labels, scenario_config()).ranked()
        second = run_analysis(scenario_counts, scenario_labels, scenario_config()).ranked()
        assert first.gene_ids == second.gene_ids
        npt.assert_allclose(first.scores, second.scores)

    def test_history_records_each_stage(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        actions = [entry.action for entry in result.history]
        assert actions == ["filter_by_cpm", "calc_norm_factors", "estimate_dispersion", "glm_lrt"]
        assert result.history[-1].params["contrast"] == "B_vs_A"

    def test_normalized_expression(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        frame = result.normalized_expression()
        assert frame.shape == (4, 7)
        assert frame.columns[0] == "gene_id"
        # G3 is the most abundant gene in every sample.
        values = frame.drop("gene_id").to_numpy()
        assert np.all(values.argmax(axis=0) == 2)

    def test_dispersion_is_shared(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        assert result.dispersion.common >= 0
        assert result.dispersion.tagwise.shape == (4,)
        assert np.all(result.dispersion.tagwise >= 0)

    def test_pick_unknown_comparison(self, scenario_counts, scenario_labels):
        result = run_analysis(scenario_counts, scenario_labels, scenario_config())
        with pytest.raises(ValidationError):
            result.ranked("A_vs_B")


# =============================================================================
# Simulated data
# =============================================================================


class TestSimulated:
    def test_two_class_recovers_de_genes(self, make_counts):
        matrix, labels = make_counts(n_genes=300, n_de=30, seed=11)
        config = AnalysisConfig()
        config.filter.min_samples = 4
        result = run_analysis(matrix, labels, config)

        sig = result.significant()
        true_de = {f"G{i + 1}" for i in range(30)}
        found = set(sig.up) & true_de
        assert len(found) >= 20
        assert len(set(sig.gene_ids) - true_de) <= 5

    def test_three_class_default_contrasts(self, make_counts):
        matrix, labels = make_counts(n_genes=150, n_per_class=3, n_classes=3, seed=3)
        config = AnalysisConfig()
        config.filter.min_samples = 3
        result = run_analysis(matrix, labels, config)
        assert list(result.results) == ["c0_vs_rest", "c1_vs_rest", "c2_vs_rest"]
        with pytest.raises(ValidationError):
            result.ranked()

    def test_configured_contrast(self, make_counts):
        matrix, labels = make_counts(n_genes=150, n_per_class=3, n_classes=3, seed=4)
        config = AnalysisConfig()
        config.filter.min_samples = 3
        config.testing.contrasts = [Contrast("c2_vs_c0", {"c2": 1, "c0": -1})]
        result = run_analysis(matrix, labels, config)
        assert list(result.results) == ["c2_vs_c0"]
        table = result.results["c2_vs_c0"]
        assert np.nanmedian(table.log_fc[:20]) > 1

    def test_filter_removes_low_genes(self, make_counts):
        matrix, labels = make_counts(n_genes=100, seed=8)
        counts = matrix.counts.copy()
        counts[:10] = 0
        matrix = CountMatrix(counts, matrix.gene_ids, matrix.sample_ids)
        config = AnalysisConfig()
        config.filter.min_samples = 4
        result = run_analysis(matrix, labels, config)
        assert result.n_filtered >= 10
        assert not set(result.counts.gene_ids) & {f"G{i + 1}" for i in range(10)}


class TestFallbackRecording:
    """Per-gene failures are counted in the history and logged."""

    def test_counts_in_history(self, make_counts, failing_glm_fit, non_finite_likelihood, caplog):
        matrix, labels = make_counts()
        config = AnalysisConfig()
        config.filter.min_samples = 4
        with caplog.at_level(logging.WARNING, logger="rnarank.pipeline"):
            result = run_analysis(matrix, labels, config)

        entries = {entry.action: entry.params for entry in result.history}
        assert entries["estimate_dispersion"]["n_fallback"] == non_finite_likelihood
        assert entries["glm_lrt"]["n_failed"] == failing_glm_fit
        assert result.results["c1_vs_c0"].n_failed == failing_glm_fit
        assert "no finite tagwise" in caplog.text
        assert "did not converge" in caplog.text

    def test_failed_genes_never_significant(self, make_counts, failing_glm_fit):
        matrix, labels = make_counts()
        config = AnalysisConfig()
        config.filter.min_samples = 4
        result = run_analysis(matrix, labels, config)
        failed = result.counts.gene_ids[:failing_glm_fit]
        assert not set(failed) & set(result.significant().gene_ids)
        assert set(result.ranked().gene_ids[-failing_glm_fit:]) == set(failed)


class TestIgnoredSettings:
    def test_exact_test_warns_about_contrasts(self, scenario_counts, scenario_labels, caplog):
        config = scenario_config("exact")
        config.testing.contrasts = [Contrast.pairwise("B", "A")]
        with caplog.at_level(logging.WARNING, logger="rnarank.pipeline"):
            result = run_analysis(scenario_counts, scenario_labels, config)
        assert list(result.results) == ["B_vs_A"]
        assert "ignores the 1 configured contrast" in caplog.text

    def test_glm_warns_about_pair(self, scenario_counts, scenario_labels, caplog):
        config = scenario_config()
        config.testing.pair = ("B", "A")
        with caplog.at_level(logging.WARNING, logger="rnarank.pipeline"):
            result = run_analysis(scenario_counts, scenario_labels, config)
        assert list(result.results) == ["B_vs_A"]
        assert "only used by the exact test" in caplog.text

    def test_no_warning_for_consistent_settings(self, scenario_counts, scenario_labels, caplog):
        with caplog.at_level(logging.WARNING, logger="rnarank.pipeline"):
            run_analysis(scenario_counts, scenario_labels, scenario_config())
        assert "ignore" not in caplog.text


def test_default_contrasts():
    (pair,) = default_contrasts(("normal", "tumor"))
    assert pair.name == "tumor_vs_normal"
    assert len(default_contrasts(("a", "b", "c"))) == 3


# =============================================================================
# Failure modes
# =============================================================================


class TestFailures:
    def test_zero_count_sample(self, scenario_labels):
        counts = np.array(
            [
                [100, 110, 0, 10, 12, 11],
                [50, 50, 0, 50, 50, 50],
            ]
        )
        matrix = CountMatrix(counts, ("G1", "G2"), scenario_labels.sample_ids)
        with pytest.raises(DataError, match="S3"):
            run_analysis(matrix, scenario_labels, scenario_config())

    def test_nothing_passes_filter(self, scenario_counts, scenario_labels):
        # Default min_samples exceeds the six samples available.
        with pytest.raises(DataError, match="No gene"):
            run_analysis(scenario_counts, scenario_labels)

    def test_single_class(self, scenario_counts):
        labels = ClassLabels(scenario_counts.sample_ids, ("A",) * 6)
        with pytest.raises(DesignError, match="insufficient groups"):
            run_analysis(scenario_counts, labels, scenario_config())

    def test_exact_test_with_three_classes(self, scenario_counts, three_class_labels):
        config = scenario_config("exact")
        config.filter.min_samples = 2
        with pytest.raises(UsageError):
            run_analysis(scenario_counts, three_class_labels, config)

    def test_unbalanced_contrast(self):
        with pytest.raises(ContrastError, match="unbalanced"):
            Contrast("bad", {"A": 1.0, "B": -0.999})

    def test_contrast_with_unknown_class(self, scenario_counts, scenario_labels):
        config = scenario_config()
        config.testing.contrasts = [Contrast.pairwise("B", "Z")]
        with pytest.raises(ContrastError, match="unknown classes"):
            run_analysis(scenario_counts, scenario_labels, config)

    def test_labels_missing_sample(self, scenario_counts):
        labels = ClassLabels(("S1", "S2", "S3", "S4", "S5"), ("A", "A", "A", "B", "B"))
        with pytest.raises(DataError, match="S6"):
            run_analysis(scenario_counts, labels, scenario_config())
