"""Readers for count tables and sample class labels."""

from __future__ import annotations

from pathlib import Path

import polars as pl

from rnarank.core.exceptions import DataError
from rnarank.core.structures import ClassLabels, CountMatrix

__all__ = ["read_count_table", "read_class_labels"]


def _read_table(path: Path, sep: str, **kwargs) -> pl.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    try:
        return pl.read_csv(path, separator=sep, **kwargs)
    except (pl.exceptions.ComputeError, pl.exceptions.NoDataError) as e:
        raise DataError(f"Cannot parse {path}: {e}") from e


def read_count_table(
    path: str | Path,
    *,
    sep: str = "\t",
    gene_col: str | None = None,
) -> CountMatrix:
    """Read a delimited count table.

    The file has a header row; the first column (or ``gene_col``) holds
    gene identifiers and every other column holds one sample's counts.

    Parameters
    ----------
    path : str | Path
        Path to the table.
    sep : str, optional
        Field separator. Default is tab.
    gene_col : str | None, optional
        Name of the gene identifier column. Default is the first column.

    Returns
    -------
    CountMatrix
        Genes by samples.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    DataError
        If the table cannot be parsed or holds invalid counts.
    """
    path = Path(path)
    df = _read_table(path, sep, infer_schema_length=10000)
    return CountMatrix.from_frame(df, gene_col=gene_col)


def read_class_labels(
    path: str | Path,
    *,
    sep: str = "\t",
    sample_col: str | None = None,
    class_col: str | None = None,
    levels: list[str] | None = None,
) -> ClassLabels:
    """Read a two-column (sample, class) table with a header row.

    Parameters
    ----------
    path : str | Path
        Path to the table.
    sep : str, optional
        Field separator. Default is tab.
    sample_col, class_col : str | None, optional
        Column names. Default to the first and second columns.
    levels : list[str] | None, optional
        Explicit class level order. Default is the sorted distinct classes.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    DataError
        If the columns are missing or the labels are invalid.
    """
    path = Path(path)
    df = _read_table(path, sep, infer_schema=False)
    if df.width < 2:
        raise DataError(f"Class label table {path} needs a sample and a class column")
    sample_col = sample_col or df.columns[0]
    class_col = class_col or df.columns[1]
    for col in (sample_col, class_col):
        if col not in df.columns:
            raise DataError(f"Column '{col}' not found in {path}")
    if df[class_col].null_count() or df[sample_col].null_count():
        raise DataError(f"Class label table {path} has empty cells")
    return ClassLabels(
        sample_ids=tuple(df[sample_col].to_list()),
        labels=tuple(df[class_col].to_list()),
        levels=tuple(levels) if levels else (),
    )
