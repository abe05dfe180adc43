"""Tests for rnarank core structures.

This package contains tests for the fundamental data structures:
- CountMatrix: Genes x samples count table
- ClassLabels: Sample to class mapping and design matrix
- NormalizationFactors: Per-sample scaling factors
- GeneAnnotation: SYMBOL|ENTREZ identifier handling
"""
