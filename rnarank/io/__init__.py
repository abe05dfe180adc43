"""Reading inputs and writing analysis artifacts."""

from .exporters import (
    write_gene_list,
    write_history,
    write_norm_factors,
    write_normalized_expression,
    write_rank_file,
    write_result_table,
)
from .importers import read_class_labels, read_count_table

__all__ = [
    "read_count_table",
    "read_class_labels",
    "write_result_table",
    "write_rank_file",
    "write_gene_list",
    "write_norm_factors",
    "write_normalized_expression",
    "write_history",
]
