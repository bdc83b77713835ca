"""
Command-line interface for batch FASI biomarker analysis.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import load_config
from .constants import LOGGER_NAME
from .data_loader import load_table
from .logger import setup_logging
from .pipeline import PipelineResults, run_pipeline
from .summary_stats import round_for_report

logger = logging.getLogger(LOGGER_NAME)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fasi",
        description="FASI pipeline - fatty acid and stable isotope statistics for macroalgae",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fasi --input FASI_data.csv --outdir results/

  fasi --input FASI_data.xlsx --sheet-name data --config analysis.yaml \\
    --permutations 9999 --seed 42 --outdir results/
        """
    )

    # Required arguments
    parser.add_argument(
        "--input",
        required=True,
        help="Path to CSV or XLSX file"
    )

    # Optional arguments
    parser.add_argument(
        "--sheet-name",
        default=None,
        help="Sheet name for XLSX files (default: first sheet)"
    )
    parser.add_argument(
        "--outdir",
        default="outputs",
        help="Output directory for reports (default: outputs/)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML file with analysis parameters"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Base random seed (overrides config)"
    )
    parser.add_argument(
        "--permutations",
        type=int,
        default=None,
        help="PERMANOVA permutations (overrides config)"
    )
    parser.add_argument(
        "--simper-cutoff",
        type=float,
        default=None,
        help="Cumulative SIMPER contribution for discriminating markers (overrides config)"
    )
    parser.add_argument(
        "--clusters",
        type=int,
        default=None,
        help="Number of groups when cutting the species dendrograms (overrides config)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)"
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional rotating log file"
    )
    return parser


def write_results(results: PipelineResults, outdir: Path, decimals: int) -> list[Path]:
    """Write every result table as CSV plus manifest.json; return the written paths."""
    outdir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, table in results.tables.items():
        path = outdir / f"{name.replace('~', '_by_').replace('+', '_')}.csv"
        round_for_report(table, decimals).to_csv(path, index=False)
        written.append(path)

    manifest_path = outdir / "manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as fh:
        json.dump(results.manifest, fh, indent=2, default=str)
    written.append(manifest_path)
    return written


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main CLI entry point for batch analysis.

    Loads the sample table, runs the pipeline and writes the reports.
    """
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level), log_file=args.log_file)

    config = load_config(args.config).with_overrides(
        seed=args.seed,
        permutations=args.permutations,
        simper_cutoff=args.simper_cutoff,
        cluster_count=args.clusters,
    )
    logger.info("Loading data from: %s", args.input)
    table = load_table(args.input, sheet_name=args.sheet_name)
    logger.info(
        "Data loaded: %d samples, %d isotope and %d fatty acid markers",
        len(table), len(table.isotope_columns), len(table.fa_columns),
    )

    results = run_pipeline(table, config)
    results.manifest["input"] = str(Path(args.input).resolve())

    outdir = Path(args.outdir)
    written = write_results(results, outdir, config.decimals)
    logger.info("Analysis complete! %d reports saved to: %s", len(written), outdir.resolve())
    for path in written:
        logger.debug("  - %s", path.name)

    if results.failures:
        logger.warning("%d analyses failed; see manifest.json", len(results.failures))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
