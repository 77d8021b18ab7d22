"""Command-line entry point for vegstress runs."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import ConfigurationError, load_pipeline_config
from .export import write_result
from .pipeline import PRODUCTS, run_pipeline

LOGGER = logging.getLogger(__name__)


def configure_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        required=True,
        type=Path,
        help="Path to the YAML run configuration.",
    )
    parser.add_argument(
        "--product",
        required=True,
        choices=sorted(PRODUCTS),
        help="Product to compute: per-month z-score anomalies or a harmonic fit.",
    )
    parser.add_argument(
        "--output-dir",
        required=True,
        type=Path,
        help="Directory for generated GeoTIFFs and series CSV.",
    )
    parser.add_argument(
        "--aoi",
        help="Override the AOI from the configuration (bbox, WKT, GeoJSON or vector file).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vegstress",
        description="Standardized vegetation-stress anomalies from satellite time series.",
    )
    configure_parser(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> None:
    config = load_pipeline_config(args.config)
    if args.aoi:
        config.aoi = args.aoi
    result = run_pipeline(config, args.product)
    written = write_result(result, args.output_dir, config.harmonic.dependent_band)
    LOGGER.info("Wrote %d output file(s) to %s", len(written), args.output_dir)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        run_from_args(args)
    except ConfigurationError as exc:
        parser.error(f"Invalid configuration: {exc}")
    except ValueError as exc:
        LOGGER.error("Run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
