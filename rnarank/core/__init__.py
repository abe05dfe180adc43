from .exceptions import (
    ConfigurationError,
    ContrastError,
    DataError,
    DesignError,
    RnaRankError,
    UsageError,
    ValidationError,
)
from .gene_ids import GeneAnnotation, GeneId, gene_symbols, split_gene_id
from .structures import ClassLabels, CountMatrix, NormalizationFactors, ProvenanceLog

__all__ = [
    "CountMatrix",
    "ClassLabels",
    "NormalizationFactors",
    "ProvenanceLog",
    "GeneAnnotation",
    "GeneId",
    "split_gene_id",
    "gene_symbols",
    "RnaRankError",
    "DataError",
    "DesignError",
    "UsageError",
    "ContrastError",
    "ValidationError",
    "ConfigurationError",
]
