"""Tests for ranked and significant gene lists."""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from rnarank.core import ValidationError
from rnarank.diff_expr import ResultTable
from rnarank.ranking import P_VALUE_FLOOR, rank_scores, ranked_list, significant_genes


def make_table(gene_ids, log_fc, p_values, fdr=None) -> ResultTable:
    n = len(gene_ids)
    p_values = np.asarray(p_values, dtype=float)
    return ResultTable(
        gene_ids=tuple(gene_ids),
        log_fc=log_fc,
        p_values=p_values,
        fdr=p_values if fdr is None else fdr,
        statistics=np.full(n, np.nan),
        method="exact",
        contrast="b_vs_a",
    )


class TestRankScores:
    def test_signed_log_p(self):
        table = make_table(["a", "b"], [2.0, -1.0], [0.01, 0.001])
        npt.assert_allclose(rank_scores(table), [2.0, -3.0])

    def test_zero_p_value_is_clamped(self):
        table = make_table(["a"], [1.0], [0.0])
        score = rank_scores(table)[0]
        assert np.isfinite(score)
        assert score == pytest.approx(-np.log10(P_VALUE_FLOOR))

    def test_zero_log_fc_gives_zero(self):
        table = make_table(["a", "b"], [0.0, -0.0], [0.5, 0.5])
        scores = rank_scores(table)
        assert scores.tolist() == [0.0, 0.0]
        assert not np.signbit(scores).any()

    def test_failed_fit_is_nan(self):
        table = make_table(["a"], [1.0], [np.nan])
        assert np.isnan(rank_scores(table)[0])


class TestRankedList:
    def test_descending_scores(self):
        table = make_table(["a", "b", "c"], [1.0, -2.0, 3.0], [0.1, 0.01, 0.001])
        ranked = ranked_list(table)
        assert ranked.gene_ids == ("c", "a", "b")
        assert np.all(np.diff(ranked.scores) <= 0)

    def test_ties_broken_by_gene_id(self):
        table = make_table(["z", "m", "a"], [1.0, 1.0, 1.0], [0.05, 0.05, 0.05])
        assert ranked_list(table).gene_ids == ("a", "m", "z")

    def test_nan_scores_last_by_gene_id(self):
        table = make_table(
            ["n2", "x", "n1", "y"], [1.0, -1.0, 1.0, 1.0], [np.nan, 0.1, np.nan, 0.2]
        )
        ranked = ranked_list(table)
        assert ranked.gene_ids == ("y", "x", "n1", "n2")
        assert np.isnan(ranked.scores[2:]).all()

    def test_total_order_covers_all_genes(self):
        rng = np.random.default_rng(5)
        ids = [f"g{i}" for i in range(100)]
        table = make_table(ids, rng.normal(size=100), rng.uniform(size=100))
        ranked = ranked_list(table)
        assert sorted(ranked.gene_ids) == sorted(ids)

    def test_idempotent(self):
        rng = np.random.default_rng(6)
        ids = [f"g{i}" for i in range(50)]
        table = make_table(ids, rng.normal(size=50), np.round(rng.uniform(size=50), 1))
        first = ranked_list(table)
        second = ranked_list(table)
        assert first.gene_ids == second.gene_ids
        npt.assert_array_equal(first.scores, second.scores)

    def test_pairs_and_frame(self):
        table = make_table(["a", "b"], [1.0, -1.0], [0.1, 0.1])
        ranked = ranked_list(table)
        pairs = list(ranked.pairs())
        assert [g for g, _ in pairs] == ["a", "b"]
        assert [s for _, s in pairs] == pytest.approx([1.0, -1.0])
        assert ranked.to_frame()["geneId"].to_list() == ["a", "b"]


class TestSignificantGenes:
    def test_threshold_is_strict_and_order_preserved(self):
        table = make_table(
            ["g1", "g2", "g3", "g4"],
            [1.0, -2.0, 0.5, -1.0],
            [0.001, 0.002, 0.05, 0.01],
            fdr=[0.01, 0.04, 0.05, 0.02],
        )
        sig = significant_genes(table, threshold=0.05)
        assert sig.gene_ids == ("g1", "g2", "g4")
        assert sig.up == ("g1",)
        assert sig.down == ("g2", "g4")
        assert "g3" not in sig
        assert len(sig) == 3

    def test_nan_fdr_never_significant(self):
        table = make_table(["a", "b"], [1.0, 1.0], [np.nan, 0.01], fdr=[np.nan, 0.01])
        assert significant_genes(table).gene_ids == ("b",)

    def test_invalid_threshold(self):
        table = make_table(["a"], [1.0], [0.01])
        with pytest.raises(ValidationError):
            significant_genes(table, threshold=1.5)
