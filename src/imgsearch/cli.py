#!/usr/bin/env python3
"""CLI interface for imgsearch."""

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import TypeAdapter

from .config import (
    PRESETS,
    GenerateConfig,
    QueryConfig,
    default_top_n,
    default_workers,
    expand_preset,
    parse_binding_spec,
)
from .engine import MatchingEngine
from .errors import ConfigurationError, ImageSearchError
from .generator import FeatureGenerator
from .models import MatchResult
from .regions import parse_region
from .registry import FeatureType, MetricType, list_features, list_metrics, resolve_feature, resolve_metric

logger = logging.getLogger(__name__)

_RESULTS_ADAPTER = TypeAdapter(list[MatchResult])


def _split_list(values: Sequence[str] | None) -> list[str]:
    """Flatten repeatable, comma-separated option values."""
    items: list[str] = []
    for value in values or []:
        items.extend(v.strip() for v in value.split(",") if v.strip())
    return items


def _parse_features(values: Sequence[str]) -> list[FeatureType]:
    features = []
    for name in _split_list(values):
        feature = resolve_feature(name)
        if feature is FeatureType.UNKNOWN:
            msg = f"Unknown feature '{name}' (expected one of: {', '.join(list_features())})"
            raise ConfigurationError(msg)
        features.append(feature)
    return features


def _parse_weights(value: str | None) -> list[float] | None:
    if value is None:
        return None
    try:
        return [float(w) for w in _split_list([value])]
    except ValueError:
        msg = f"Invalid weights '{value}' (expected comma-separated numbers)"
        raise ConfigurationError(msg) from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imgsearch",
        description="Content-based image retrieval over precomputed feature databases",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    gen = subparsers.add_parser(
        "generate",
        help="Extract features from an image folder into feature databases",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    gen.add_argument("-i", "--input", type=Path, required=True,
                     help="Folder containing images")
    gen.add_argument("-f", "--feature", action="append", required=True,
                     help=f"Feature type, repeatable or comma-separated ({', '.join(list_features())})")
    gen.add_argument("-p", "--region", type=str, default="whole",
                     help="Image region to describe (whole, top, bottom, center)")
    gen.add_argument("-o", "--output", type=Path, default=None,
                     help="Output database file (single feature only)")
    gen.add_argument("--output-dir", type=Path, default=Path("."),
                     help="Directory for fv_<feature>_<region>.csv databases")
    gen.add_argument("--num-workers", type=int, default=default_workers(),
                     help="Number of worker processes (default: auto-detect CPU count)")
    gen.add_argument("--chunksize", type=int, default=16,
                     help="Images handed to a worker at a time")

    match = subparsers.add_parser(
        "match",
        help="Rank catalog images by similarity to a target image",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    match.add_argument("-t", "--target", type=str, required=True,
                       help="Target image path")
    match.add_argument("-d", "--db", action="append", default=None,
                       help="Binding feature:region:metric[:weight]=db.csv or a "
                            "fv_<feature>_<region>.csv file; repeatable or comma-separated")
    match.add_argument("-m", "--metric", type=str, default=None,
                       help=f"Metric for bare database files ({', '.join(list_metrics())})")
    match.add_argument("-n", "--top", type=int, default=default_top_n(),
                       help="Number of matches to return")
    match.add_argument("--preset", type=str, default=None, choices=sorted(PRESETS),
                       help="Named multi-database query")
    match.add_argument("--data-dir", type=Path, default=Path("."),
                       help="Directory holding the preset's databases")
    match.add_argument("--weights", type=str, default=None,
                       help="Comma-separated per-channel weights for --preset")
    match.add_argument("--num-workers", type=int, default=1,
                       help="Threads used to score bindings")
    match.add_argument("--json", type=Path, default=None,
                       help="Also write matches to this JSON file")

    return parser


def _run_generate(args: argparse.Namespace) -> None:
    cfg = GenerateConfig(
        input_dir=args.input,
        features=_parse_features(args.feature),
        output_dir=args.output_dir,
        region=parse_region(args.region),
        output_file=args.output,
        num_workers=args.num_workers,
        chunksize=args.chunksize,
    )
    reports = FeatureGenerator(cfg).generate()

    for report in reports:
        print(f"{report.feature} ({report.region}): {report.processed} written, "
              f"{report.skipped} skipped -> {report.output}")


def _run_match(args: argparse.Namespace) -> None:
    metric: MetricType | None = None
    if args.metric is not None:
        metric = resolve_metric(args.metric)
        if metric is MetricType.UNKNOWN:
            msg = f"Unknown metric '{args.metric}' (expected one of: {', '.join(list_metrics())})"
            raise ConfigurationError(msg)

    bindings = []
    if args.preset is not None:
        bindings.extend(expand_preset(args.preset, args.data_dir, _parse_weights(args.weights)))
    elif args.weights is not None:
        msg = "--weights requires --preset"
        raise ConfigurationError(msg)
    bindings.extend(parse_binding_spec(spec, metric) for spec in _split_list(args.db))

    cfg = QueryConfig(
        target=args.target,
        bindings=bindings,
        top_n=args.top,
        num_workers=args.num_workers,
    )
    cfg.validate()

    engine = MatchingEngine(num_workers=cfg.num_workers)
    results = engine.run(cfg)
    _print_results(results)

    if args.json is not None:
        args.json.parent.mkdir(parents=True, exist_ok=True)
        # Incomparable distances (+inf) are written as null
        args.json.write_bytes(_RESULTS_ADAPTER.dump_json(results, indent=2))
        logger.info(f"Saved {len(results)} matches to {args.json}")


def _print_results(results: list[MatchResult]) -> None:
    if not results:
        print("No matches (check DBs / feature extraction).")
        return
    print(f"Top {len(results)} matches:")
    for result in results:
        print(f"{result.identifier} {result.distance:.6f}")


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for imgsearch.

    Parses command-line arguments and runs feature generation or matching.
    """
    try:
        parser = _build_parser()
    except ImageSearchError as e:
        print(f"Error: {e}")
        sys.exit(1)
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S"
    )

    try:
        if args.command == "generate":
            _run_generate(args)
        else:
            _run_match(args)
    except ImageSearchError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
