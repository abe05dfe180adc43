"""Tests for compound gene identifier handling."""

from __future__ import annotations

import pytest

from rnarank.core import GeneAnnotation, GeneId, split_gene_id
from rnarank.core.gene_ids import gene_symbols


class TestSplitGeneId:
    def test_symbol_and_entrez(self):
        assert split_gene_id("TP53|7157") == GeneId("TP53", "7157")

    @pytest.mark.parametrize("gene_id", ["?|100130426", "|100130426", "NA|100130426"])
    def test_missing_symbol(self, gene_id):
        parts = split_gene_id(gene_id)
        assert parts.symbol is None
        assert parts.entrez_id == "100130426"

    def test_no_separator(self):
        assert split_gene_id("ENSG00000141510") == GeneId("ENSG00000141510", None)

    def test_custom_separator(self):
        assert split_gene_id("BRCA1:672", sep=":") == GeneId("BRCA1", "672")

    def test_gene_symbols_fall_back_to_id(self):
        assert gene_symbols(["TP53|7157", "?|1234", "MYC"]) == ["TP53", "?|1234", "MYC"]


class TestGeneAnnotation:
    def test_from_gene_ids_skips_missing_symbols(self):
        ann = GeneAnnotation.from_gene_ids(["TP53|7157", "?|1234"])
        assert dict(ann) == {"TP53|7157": "TP53"}
        assert len(ann) == 1

    def test_symbol_lookup(self):
        ann = GeneAnnotation({"g1": "TP53"})
        assert ann.symbol("g1") == "TP53"
        assert ann.symbol("g2") == "g2"
        assert ann["g1"] == "TP53"

    def test_read_only(self):
        source = {"g1": "TP53"}
        ann = GeneAnnotation(source)
        source["g2"] = "MYC"
        assert "g2" not in ann
        with pytest.raises(TypeError):
            ann.symbols["g3"] = "EGFR"
