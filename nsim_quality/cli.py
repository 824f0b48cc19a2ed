"""
Command-line Runner
===================

Score one reference/degraded pair or a CSV batch of pairs.

Usage:
    nsim-quality --reference_file ref.wav --degraded_file deg.wav
    nsim-quality --reference_file ref.wav --degraded_file deg.wav --use_speech_mode
    nsim-quality --batch_input_csv pairs.csv --results_csv out/results.csv --workers 4
    nsim-quality --batch_input_csv pairs.csv --results_csv out/results.csv --report_dir out/report

Exit status is 0 on success and 1 when scoring fails.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import EngineConfig
from .engine import create
from .errors import QualityError
from .orchestrator import BatchOrchestrator
from .preprocessing import load_pair
from .reporting import QualityReporter

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Configure logging for the runner."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        handlers=handlers
    )

    # Reduce noise from third-party libraries
    logging.getLogger('matplotlib').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('numba').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsim-quality",
        description="Perceptual audio quality (MOS-LQO) from reference/degraded pairs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Score one pair (audio mode, 48 kHz)
  nsim-quality --reference_file ref.wav --degraded_file deg.wav

  # Speech mode with the raw (unscaled) MOS mapping
  nsim-quality --reference_file ref.wav --degraded_file deg.wav \\
      --use_speech_mode --use_unscaled_speech_mos_mapping

  # Batch of pairs on 4 processes, with plots
  nsim-quality --batch_input_csv pairs.csv --results_csv out/results.csv \\
      --workers 4 --report_dir out/report
        """
    )

    inputs = parser.add_argument_group("inputs")
    inputs.add_argument('--reference_file', type=str, help='Reference (clean) audio file')
    inputs.add_argument('--degraded_file', type=str, help='Degraded audio file')
    inputs.add_argument('--batch_input_csv', type=str,
                        help='CSV with reference,degraded columns')
    inputs.add_argument('--results_csv', type=str, help='Where to write batch results')

    scoring = parser.add_argument_group("scoring")
    scoring.add_argument('--use_speech_mode', action='store_true',
                         help='Speech scoring: narrower band range, VAD, exponential MOS fit')
    scoring.add_argument('--use_unscaled_speech_mos_mapping', action='store_true',
                         help='Speech mode only: report the raw fit instead of scaling to 5.0')
    scoring.add_argument('--similarity_to_quality_model', type=str, default=None,
                         help='Audio-mode regression model (libsvm text or pickled estimator)')
    scoring.add_argument('--allow_unsupported_sample_rates', action='store_true',
                         help='Permit audio mode at rates other than 48 kHz')
    scoring.add_argument('--search_window_radius', type=int, default=None,
                         help='Patch alignment search radius in frames')

    output = parser.add_argument_group("output")
    output.add_argument('--output_debug', type=str, default=None,
                        help='Write per-patch detail as JSON to this path')
    output.add_argument('--workers', '-w', type=int, default=1,
                        help='Batch worker processes (default: 1)')
    output.add_argument('--report_dir', type=str, default=None,
                        help='Write plots and a text summary of batch results here')
    output.add_argument('--log_file', type=str, default=None, help='Also log to this file')
    output.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    return parser


def config_from_args(args: argparse.Namespace, sample_rate: Optional[int] = None) -> EngineConfig:
    options = {
        "sample_rate": sample_rate,
        "use_speech_scoring": args.use_speech_mode,
        "use_unscaled_speech_mos_mapping": args.use_unscaled_speech_mos_mapping,
        "svr_model_path": args.similarity_to_quality_model,
        "allow_unsupported_sample_rates": args.allow_unsupported_sample_rates,
    }
    if args.search_window_radius is not None:
        options["search_window_radius"] = args.search_window_radius
    return EngineConfig(**options)


def run_single(args: argparse.Namespace) -> int:
    reference, degraded = load_pair(args.reference_file, args.degraded_file)
    config = config_from_args(args, reference.sample_rate)

    with create(config) as engine:
        score = engine.measure(reference, degraded)

    print(f"Reference:  {args.reference_file}")
    print(f"Degraded:   {args.degraded_file}")
    print(f"MOS-LQO:    {score.moslqo:.6f}")
    print(f"VNSIM:      {score.vnsim:.6f}")
    if score.skipped_patches:
        print(f"Skipped patches: {score.skipped_patches}")

    if args.output_debug:
        debug = {
            "reference": args.reference_file,
            "degraded": args.degraded_file,
            "config": config.to_dict(),
            "score": score.to_dict(include_patches=True),
        }
        Path(args.output_debug).parent.mkdir(parents=True, exist_ok=True)
        with open(args.output_debug, 'w') as f:
            json.dump(debug, f, indent=2)
        logger.info(f"Saved debug output: {args.output_debug}")

    return 0


def run_batch(args: argparse.Namespace) -> int:
    orchestrator = BatchOrchestrator(
        config_from_args(args),
        n_workers=args.workers,
        show_progress=not args.verbose,
        include_details=bool(args.output_debug),
    )
    df = orchestrator.run(args.batch_input_csv, results_csv=args.results_csv)

    if args.output_debug:
        orchestrator.write_details(args.output_debug)

    if args.report_dir and not df.empty:
        QualityReporter(df, args.report_dir).generate_full_report()

    scored = int(df["moslqo"].notna().sum()) if "moslqo" in df.columns else 0
    print(f"Scored {scored}/{len(df)} pairs -> {args.results_csv}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    single = bool(args.reference_file or args.degraded_file)
    batch = bool(args.batch_input_csv or args.results_csv)
    if single == batch:
        parser.error("give either --reference_file/--degraded_file or "
                     "--batch_input_csv/--results_csv")
    if single and not (args.reference_file and args.degraded_file):
        parser.error("--reference_file and --degraded_file are both required")
    if batch and not (args.batch_input_csv and args.results_csv):
        parser.error("--batch_input_csv and --results_csv are both required")

    setup_logging(args.verbose, args.log_file)

    try:
        return run_single(args) if single else run_batch(args)
    except QualityError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
