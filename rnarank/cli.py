"""Command line interface.

Usage::

    rnarank run --counts counts.tsv --labels labels.tsv --outdir results \\
        --contrast tumor_vs_normal=tumor:1,normal:-1
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path

from rnarank import __version__
from rnarank.config.loader import TEST_METHODS, AnalysisConfig, load_config
from rnarank.core.exceptions import ConfigurationError, ContrastError, RnaRankError
from rnarank.core.gene_ids import GeneAnnotation
from rnarank.diff_expr.contrast import Contrast
from rnarank.io.exporters import (
    write_gene_list,
    write_history,
    write_norm_factors,
    write_normalized_expression,
    write_rank_file,
    write_result_table,
)
from rnarank.io.importers import read_class_labels, read_count_table
from rnarank.pipeline import AnalysisResult, run_analysis

logger = logging.getLogger(__name__)

__all__ = ["main", "parse_contrast", "build_parser"]


def parse_contrast(text: str) -> Contrast:
    """Parse ``NAME=CLASS:COEF,CLASS:COEF`` into a Contrast.

    Raises
    ------
    ContrastError
        If the text is malformed or the coefficients are invalid.
    """
    name, sep, terms = text.partition("=")
    if not sep or not name.strip() or not terms.strip():
        raise ContrastError(f"Contrast must look like NAME=A:1,B:-1, got '{text}'")
    coefficients: dict[str, float] = {}
    for term in terms.split(","):
        cls, colon, coef = term.partition(":")
        if not colon or not cls.strip():
            raise ContrastError(f"Malformed contrast term '{term}' in '{text}'")
        try:
            coefficients[cls.strip()] = float(coef)
        except ValueError as e:
            raise ContrastError(f"Non-numeric coefficient in '{term}'") from e
    return Contrast(name.strip(), coefficients)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="rnarank",
        description="Ranked differential expression gene lists from RNA-seq counts",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser(
        "run",
        help="Filter, normalize, test and write ranked gene lists",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    run.add_argument("--counts", required=True, type=Path, help="Tab-separated count table")
    run.add_argument("--labels", required=True, type=Path, help="Tab-separated sample/class table")
    run.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    run.add_argument(
        "--contrast",
        action="append",
        default=[],
        metavar="NAME=A:1,B:-1",
        help="Contrast to test with the GLM (repeatable)",
    )
    run.add_argument("--method", choices=TEST_METHODS, default=None, help="Test method")
    run.add_argument(
        "--pair",
        nargs=2,
        metavar=("REFERENCE", "TARGET"),
        default=None,
        help="Classes compared by the exact test",
    )
    run.add_argument("--min-samples", type=int, default=None, help="CPM filter sample count")
    run.add_argument("--cpm-threshold", type=float, default=None, help="CPM filter threshold")
    run.add_argument("--fdr", type=float, default=None, help="FDR threshold for gene lists")
    run.add_argument("--outdir", required=True, type=Path, help="Output directory")
    run.add_argument(
        "--symbols",
        action="store_true",
        help="Write gene symbols from SYMBOL|ENTREZ ids in rank files",
    )
    run.add_argument("--verbose", "-v", action="store_true", help="Log progress")
    return parser


def _apply_overrides(config: AnalysisConfig, args: argparse.Namespace) -> AnalysisConfig:
    if args.contrast:
        config.testing.contrasts = [parse_contrast(c) for c in args.contrast]
    if args.method is not None:
        config.testing.method = args.method
    if args.pair is not None:
        config.testing.pair = tuple(args.pair)
    if args.min_samples is not None:
        config.filter.min_samples = args.min_samples
    if args.cpm_threshold is not None:
        config.filter.cpm_threshold = args.cpm_threshold
    if args.fdr is not None:
        config.testing.fdr_threshold = args.fdr
    if args.symbols:
        config.output.use_symbols = True
    config.output.directory = str(args.outdir)
    return config


def _file_stem(name: str) -> str:
    return re.sub(r"[^\w.-]+", "_", name)


def write_outputs(result: AnalysisResult, outdir: Path) -> list[Path]:
    """Write every artifact of an analysis run into ``outdir``."""
    out = result.config.output
    annotation = (
        GeneAnnotation.from_gene_ids(result.counts.gene_ids, sep=out.gene_id_sep)
        if out.use_symbols
        else None
    )
    written = []
    for name, table in result.results.items():
        stem = _file_stem(name)
        significant = result.significant(name)
        written.append(write_result_table(table, outdir / f"{stem}.results.tsv"))
        written.append(
            write_rank_file(result.ranked(name), outdir / f"{stem}.rnk", annotation=annotation)
        )
        written.append(write_gene_list(significant.gene_ids, outdir / f"{stem}.significant.txt"))
        written.append(write_gene_list(significant.up, outdir / f"{stem}.up.txt"))
        written.append(write_gene_list(significant.down, outdir / f"{stem}.down.txt"))

    written.append(write_norm_factors(result.norm_factors, outdir / "norm_factors.tsv"))
    if out.write_normalized:
        written.append(
            write_normalized_expression(
                result.normalized_expression(), outdir / "normalized_expression.tsv"
            )
        )
    written.append(
        write_history(
            result.history,
            outdir / "history.json",
            extra={
                "version": __version__,
                "n_input_genes": result.n_input_genes,
                "n_tested_genes": result.counts.n_genes,
                "common_dispersion": result.dispersion.common,
            },
        )
    )
    return written


def _run(args: argparse.Namespace) -> int:
    if args.config is None:
        config = AnalysisConfig()
    elif not args.config.exists():
        raise ConfigurationError(
            f"Configuration file not found: {args.config}", config_path=args.config
        )
    else:
        config = load_config(args.config)
    config = _apply_overrides(config, args)

    counts = read_count_table(args.counts)
    labels = read_class_labels(args.labels)
    result = run_analysis(counts, labels, config)

    written = write_outputs(result, args.outdir)
    logger.info("Wrote %d files to %s", len(written), args.outdir)
    for name in result.results:
        sig = result.significant(name)
        print(f"{name}: {len(sig)} significant ({len(sig.up)} up, {len(sig.down)} down)")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns
    -------
    int
        0 on success, 1 when the analysis fails.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return _run(args)
    except (RnaRankError, FileNotFoundError) as e:
        logger.error("%s: %s", type(e).__name__, e)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
