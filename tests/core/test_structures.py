"""Tests for CountMatrix, ClassLabels and NormalizationFactors."""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import polars as pl
import pytest

from rnarank.core import ClassLabels, CountMatrix, DataError, DesignError, NormalizationFactors

# =============================================================================
# CountMatrix
# =============================================================================


class TestCountMatrix:
    """Construction and validation of count matrices."""

    def test_basic_properties(self, scenario_counts):
        assert scenario_counts.n_genes == 4
        assert scenario_counts.n_samples == 6
        npt.assert_array_equal(scenario_counts.lib_sizes, [380, 398, 380, 297, 286, 292])

    def test_counts_are_read_only(self, scenario_counts):
        with pytest.raises(ValueError):
            scenario_counts.counts[0, 0] = 1.0

    def test_input_array_is_copied(self):
        raw = np.array([[1, 2], [3, 4]])
        matrix = CountMatrix(raw, ("g1", "g2"), ("s1", "s2"))
        raw[0, 0] = 100
        assert matrix.counts[0, 0] == 1

    @pytest.mark.parametrize(
        ("counts", "match"),
        [
            ([[1, -2], [3, 4]], "negative counts"),
            ([[1, 2.5], [3, 4]], "non-integer counts"),
            ([[1, np.nan], [3, 4]], "non-finite counts"),
        ],
    )
    def test_invalid_values(self, counts, match):
        with pytest.raises(DataError, match=match) as exc_info:
            CountMatrix(np.array(counts), ("g1", "g2"), ("s1", "s2"))
        assert exc_info.value.ids == ("g1",)

    def test_duplicate_gene_ids(self):
        with pytest.raises(DataError, match="duplicate gene identifiers"):
            CountMatrix(np.ones((2, 2)), ("g1", "g1"), ("s1", "s2"))

    def test_duplicate_sample_ids(self):
        with pytest.raises(DataError, match="duplicate sample identifiers"):
            CountMatrix(np.ones((2, 2)), ("g1", "g2"), ("s1", "s1"))

    def test_shape_mismatch(self):
        with pytest.raises(DataError, match="Shape mismatch"):
            CountMatrix(np.ones((2, 3)), ("g1", "g2"), ("s1", "s2"))

    def test_not_2d(self):
        with pytest.raises(DataError, match="2D"):
            CountMatrix(np.ones(3), ("g1", "g2", "g3"), ("s1",))

    def test_subset_genes_preserves_order(self, scenario_counts):
        sub = scenario_counts.subset_genes([True, False, True, True])
        assert sub.gene_ids == ("G1", "G3", "G4")
        assert sub.sample_ids == scenario_counts.sample_ids
        npt.assert_array_equal(sub.counts[1], scenario_counts.counts[2])

    def test_subset_genes_wrong_mask(self, scenario_counts):
        with pytest.raises(DataError):
            scenario_counts.subset_genes([True, False])

    def test_select_samples(self, scenario_counts):
        sub = scenario_counts.select_samples(["S6", "S1"])
        assert sub.sample_ids == ("S6", "S1")
        npt.assert_array_equal(sub.counts[:, 0], [11, 50, 200, 31])

    def test_select_unknown_sample(self, scenario_counts):
        with pytest.raises(DataError, match="S9"):
            scenario_counts.select_samples(["S1", "S9"])

    def test_frame_round_trip(self, scenario_counts):
        df = scenario_counts.to_frame()
        assert df.columns == ["gene_id", "S1", "S2", "S3", "S4", "S5", "S6"]
        back = CountMatrix.from_frame(df)
        assert back.gene_ids == scenario_counts.gene_ids
        npt.assert_array_equal(back.counts, scenario_counts.counts)

    def test_from_frame_numeric_gene_ids(self):
        df = pl.DataFrame({"entrez": [7157, 672], "s1": [1, 2], "s2": [3, 4]})
        matrix = CountMatrix.from_frame(df)
        assert matrix.gene_ids == ("7157", "672")
        assert matrix.sample_ids == ("s1", "s2")

    def test_from_frame_missing_gene_column(self):
        df = pl.DataFrame({"g": ["a"], "s1": [1]})
        with pytest.raises(DataError, match="not found"):
            CountMatrix.from_frame(df, gene_col="gene")


# =============================================================================
# ClassLabels
# =============================================================================


class TestClassLabels:
    """Class labels, alignment and design matrices."""

    def test_default_levels_are_sorted(self):
        labels = ClassLabels(("s1", "s2", "s3"), ("tumor", "normal", "tumor"))
        assert labels.levels == ("normal", "tumor")
        npt.assert_array_equal(labels.codes(), [1, 0, 1])
        assert labels.group_sizes() == {"normal": 1, "tumor": 2}

    def test_explicit_levels(self):
        labels = ClassLabels(("s1", "s2"), ("tumor", "normal"), levels=("tumor", "normal"))
        npt.assert_array_equal(labels.codes(), [0, 1])

    def test_undeclared_label(self):
        with pytest.raises(DataError, match="declared levels"):
            ClassLabels(("s1", "s2"), ("a", "b"), levels=("a",))

    def test_length_mismatch(self):
        with pytest.raises(DataError):
            ClassLabels(("s1", "s2"), ("a",))

    def test_from_mapping(self):
        labels = ClassLabels.from_mapping({"s1": "a", "s2": "b"})
        assert labels.sample_ids == ("s1", "s2")
        assert labels.n_classes == 2

    def test_align_reorders(self, scenario_counts):
        labels = ClassLabels(
            ("S6", "S5", "S4", "S3", "S2", "S1"), ("B", "B", "B", "A", "A", "A")
        )
        aligned = labels.align(scenario_counts)
        assert aligned.sample_ids == scenario_counts.sample_ids
        assert aligned.labels == ("A", "A", "A", "B", "B", "B")

    def test_align_unlabelled_sample(self, scenario_counts):
        labels = ClassLabels(("S1", "S2"), ("A", "B"))
        with pytest.raises(DataError, match="without a class label"):
            labels.align(scenario_counts)

    def test_align_extra_sample(self):
        labels = ClassLabels(("s1", "s2", "s3"), ("a", "b", "b"))
        with pytest.raises(DataError, match="missing from the count matrix"):
            labels.align(["s1", "s2"])

    def test_design_matrix(self, scenario_labels):
        design = scenario_labels.design_matrix()
        assert design.shape == (6, 2)
        npt.assert_array_equal(design.sum(axis=0), [3, 3])
        npt.assert_array_equal(design.sum(axis=1), np.ones(6))

    def test_design_matrix_empty_level(self):
        labels = ClassLabels(("s1", "s2"), ("a", "a"), levels=("a", "b"))
        with pytest.raises(DesignError, match="without samples"):
            labels.design_matrix()


# =============================================================================
# NormalizationFactors
# =============================================================================


class TestNormalizationFactors:
    """Per-sample normalization factors."""

    def test_effective_lib_sizes(self):
        nf = NormalizationFactors(("a", "b"), [0.5, 2.0], [100.0, 200.0])
        npt.assert_allclose(nf.effective_lib_sizes, [50.0, 400.0])

    @pytest.mark.parametrize("factors", [[0.0, 1.0], [-1.0, 1.0], [np.inf, 1.0]])
    def test_factors_must_be_positive(self, factors):
        with pytest.raises(DataError):
            NormalizationFactors(("a", "b"), factors, [100.0, 200.0])

    def test_length_mismatch(self):
        with pytest.raises(DataError):
            NormalizationFactors(("a", "b"), [1.0], [100.0, 200.0])

    def test_check_matches(self, scenario_counts):
        nf = NormalizationFactors(("S1", "S2"), [1.0, 1.0], [1.0, 1.0])
        with pytest.raises(DataError, match="do not match"):
            nf.check_matches(scenario_counts)

    def test_to_frame(self):
        nf = NormalizationFactors(("a", "b"), [0.5, 2.0], [100.0, 200.0])
        df = nf.to_frame()
        assert df.columns == ["sample_id", "lib_size", "norm_factor", "effective_lib_size"]
        assert df["effective_lib_size"].to_list() == [50.0, 400.0]
