#!/usr/bin/env python3
"""
Trend Pipeline - Main Entry Point
=================================

Runs the batch trend pipeline for one configured dataset.

Phases:
    1. Ingest - Load and validate the CSV
    2. Normalize - Canonicalize missing/malformed categories
    3. Features - Dates, weekday, day offset, ratios
    4. Aggregate - Grouped measures and cumulative series
    5. Model - Linear trend fit and prediction evaluation

Usage:
    # Run complete pipeline
    python main.py --config config/shootings.yaml --data data/sample/shootings.csv

    # Stop after a phase
    python main.py --config config/covid_us.yaml --data data/sample/covid_us.csv --phase aggregate
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

from trendpipe.data_loader import load_config, print_data_summary
from trendpipe.errors import PipelineError
from trendpipe.pipeline import PHASES, PipelineResult, run_pipeline, export_results


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def print_run_summary(result: PipelineResult, paths: dict) -> None:
    """Print a summary of the run to console."""
    print("\n" + "=" * 70)
    print(f"PIPELINE COMPLETE: {result.name}")
    print("=" * 70)

    if result.records is not None:
        print(f"  • Records: {len(result.records)}")
    for agg_name, buckets in result.aggregates.items():
        print(f"  • Aggregate '{agg_name}': {len(buckets)} buckets")
    for agg_name, error in result.aggregate_errors.items():
        print(f"\n⚠️  Running total for '{agg_name}' not built: {error}")

    if result.model is not None:
        fit = result.model.summary()
        print(f"\nTrend: {fit.y_name} = {fit.intercept:.6g} + {fit.slope:.6g} × {fit.x_name}")
        print(f"  • R²: {fit.r_squared:.4f}")
        print(f"  • Slope p-value: {fit.p_value:.4g}")
        print(f"  • Observations: {fit.n_obs}")
        if result.metrics.get('n_samples'):
            print(f"  • RMSE: {result.metrics['rmse']:.6f}")
    elif result.model_error:
        print(f"\n⚠️  Trend not fit: {result.model_error}")

    if paths:
        print("\nOutputs:")
        for artifact, path in paths.items():
            print(f"  • {artifact}: {path}")
    print("=" * 70 + "\n")


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Batch trend pipeline for event-log and time-series data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --config config/shootings.yaml --data data/sample/shootings.csv
  python main.py --config config/covid_us.yaml --data data/sample/covid_us.csv
  python main.py -c config/shootings.yaml -d data/sample/shootings.csv --phase features
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/shootings.yaml',
        help='Path to configuration file (default: config/shootings.yaml)'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Output directory (default: output.reports_path from config)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Last phase to run (default: all)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write logs to this file'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        return 1

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    config = load_config(args.config)
    level = 'DEBUG' if args.verbose else config.get('logging', {}).get('level', 'INFO')
    setup_logging(level, args.log_file)

    print("\n" + "=" * 70)
    print("TREND PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    try:
        result = run_pipeline(config, args.data, phase=args.phase)

        if result.raw is not None and args.phase == 'ingest':
            print_data_summary(result.raw)

        output_dir = args.output or config.get('output', {}).get('reports_path', 'reports/')
        paths = export_results(result, output_dir)
        print_run_summary(result, paths)
        return 0

    except PipelineError as e:
        logging.error(f"Pipeline aborted: {e}")
        print(f"\n❌ Pipeline aborted: {e}")
        return 1
    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
