"""Command Line Interface for the StageScore pipeline.

Commands:
    process     normalize, ensemble-score and reconcile every production
    reconcile   re-run reconciliation for one stored production
    rebuild     rebuild the site-wide aggregate from the shards
    status      summarize stored shards, snapshots and the last run
"""

import argparse
import asyncio
import contextlib
import signal
import sys
import traceback
from pathlib import Path

from src.etl.ensemble import EnsembleScorer, build_models
from src.etl.errors import RebuildConflict
from src.etl.pipeline.ingest import RawInputLoader
from src.etl.pipeline.orchestrator import (
    RUN_REPORT_FILENAME,
    CancelToken,
    build_orchestrator,
    build_rebuild_coordinator,
    build_store,
)
from src.etl.utils import LIBRARY_LOGGER, read_json, set_level, setup_logger
from src.settings import settings

logger = setup_logger("etl.pipeline.cli")

EXIT_INTERRUPTED = 130


# =============================================================================
# ARGUMENT PARSING
# =============================================================================


def _parse_cli_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments (sys.argv[1:] if None).

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="python -m src",
        description="StageScore - Broadway critic review reconciliation and scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src process                      # Process every production
  python -m src process --production hamilton --no-ensemble
  python -m src reconcile --production hamilton
  python -m src rebuild                      # Rebuild aggregate.json
  python -m src status
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    process_parser = subparsers.add_parser("process", help="Process raw inputs")
    process_parser.add_argument(
        "--production",
        action="append",
        default=None,
        help="Only process this production (repeatable)",
    )
    process_parser.add_argument(
        "--raw-dir",
        type=Path,
        default=None,
        help=f"Raw input directory (default: {settings.paths.raw_dir})",
    )
    process_parser.add_argument(
        "--no-ensemble",
        action="store_true",
        help="Skip ensemble scoring of unrated reviews",
    )
    process_parser.add_argument(
        "--rescore",
        action="store_true",
        help="Rescore reviews already scored by the ensemble",
    )
    process_parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Rebuild the aggregate after processing",
    )

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile one production")
    reconcile_parser.add_argument("--production", required=True, help="Production id")

    subparsers.add_parser("rebuild", help="Rebuild the site-wide aggregate")
    subparsers.add_parser("status", help="Show store status")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)
    return args


# =============================================================================
# COMMAND HANDLERS
# =============================================================================


def _build_scorer(disabled: bool) -> EnsembleScorer | None:
    """Build the ensemble scorer unless disabled or unconfigured."""
    if disabled:
        logger.info("Ensemble scoring disabled")
        return None
    config = settings.ensemble
    if not config.is_configured:
        logger.warning("⚠️ Ensemble endpoint or models not set, unrated reviews stay unrated")
        return None
    return EnsembleScorer(
        build_models(config),
        timeout_seconds=config.timeout_seconds,
        max_attempts=config.max_retries,
    )


async def _run_process(args: argparse.Namespace) -> int:
    """Run the processing pipeline.

    The first SIGINT stops the run between productions.

    Returns:
        Exit code.
    """
    batch = RawInputLoader(args.raw_dir or settings.paths.raw_dir).load()
    token = CancelToken()
    scorer = _build_scorer(args.no_ensemble)
    orchestrator = build_orchestrator(
        settings, scorer=scorer, cancel_token=token, rescore=args.rescore
    )

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    try:
        report = await orchestrator.run(batch, only=args.production)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        if scorer is not None:
            await asyncio.gather(*(model.aclose() for model in scorer.models))

    print(f"\n✅ {report.processed} productions processed, {report.failed} failed")
    for code, count in report.errors.count_by_code().items():
        print(f"  - {code}: {count}")

    if report.cancelled:
        print(f"⚠️ Run cancelled, {len(report.skipped)} productions skipped")
        return EXIT_INTERRUPTED
    if args.rebuild:
        _handle_rebuild()
    return 0


def _handle_process(args: argparse.Namespace) -> None:
    """Handle the process command."""
    settings.paths.ensure_directories()
    exit_code = asyncio.run(_run_process(args))
    if exit_code:
        sys.exit(exit_code)


def _handle_reconcile(args: argparse.Namespace) -> None:
    """Handle the reconcile command."""
    orchestrator = build_orchestrator(settings)
    result = orchestrator.reconcile(args.production)

    print(f"\n🔎 {args.production}: {result.canonical_count} canonical reviews")
    for entry in result.sources:
        print(f"  - {entry.source_type}: {entry.source_count} reviews ({entry.coverage})")
    lines = result.discrepancies()
    if not lines:
        print("\n✅ No discrepancies")
        return
    print(f"\n⚠️ {len(lines)} discrepancies:")
    for line in lines:
        print(f"  {line}")


def _handle_rebuild() -> None:
    """Handle the rebuild command."""
    coordinator = build_rebuild_coordinator(settings)
    path = coordinator.rebuild()
    stats = coordinator.stats
    print(f"\n✅ Aggregate rebuilt: {path}")
    print(f"  {stats.shards} productions, {stats.scored} scored, {stats.pending} pending")


def _handle_status() -> None:
    """Handle the status command."""
    store = build_store(settings)
    coordinator = build_rebuild_coordinator(settings)
    shard_ids = store.production_ids()
    snapshots = sorted(store.sources_dir.glob("*.json"))

    print("\n📂 StageScore status")
    print(f"  Data dir:   {settings.paths.data_dir}")
    print(f"  Shards:     {len(shard_ids)}")
    print(f"  Snapshots:  {len(snapshots)}")

    if coordinator.output_path.exists():
        aggregate = read_json(coordinator.output_path)
        print(f"  Aggregate:  {aggregate.get('count', 0)} productions")
    else:
        print("  Aggregate:  not built")
    if coordinator.lock.is_locked:
        print("  ⚠️ Rebuild in progress (lock held)")

    report_path = settings.paths.reports_dir / RUN_REPORT_FILENAME
    if report_path.exists():
        report = read_json(report_path)
        print(
            f"  Last run:   {report.get('finished_at')} "
            f"({report.get('processed', 0)} processed, {report.get('failed', 0)} failed, "
            f"{report.get('errors', {}).get('total', 0)} errors)"
        )


def _handle_fatal_error(error: Exception) -> None:
    """Handle fatal pipeline error.

    Args:
        error: Exception that caused the failure.
    """
    print(f"\n❌ FATAL ERROR: {error}", file=sys.stderr)
    traceback.print_exc()
    logger.error(f"❌ Pipeline failed: {error}")
    sys.exit(1)


# =============================================================================
# COMMAND DISPATCH
# =============================================================================


def _execute_cli_command(args: argparse.Namespace) -> None:
    """Execute CLI command based on arguments.

    Args:
        args: Parsed command line arguments.
    """
    setup_logger(LIBRARY_LOGGER)
    if args.log_level:
        set_level(args.log_level)

    if args.command == "process":
        _handle_process(args)
    elif args.command == "reconcile":
        _handle_reconcile(args)
    elif args.command == "rebuild":
        _handle_rebuild()
    elif args.command == "status":
        _handle_status()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the pipeline."""
    try:
        args = _parse_cli_arguments(argv)
        _execute_cli_command(args)
    except KeyboardInterrupt:
        logger.warning("⚠️ Pipeline interrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except RebuildConflict as e:
        print(f"\n❌ {e.message}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        _handle_fatal_error(e)


if __name__ == "__main__":
    main()
