#!/usr/bin/env python3
"""
Collection Sync - Main Entry Point

Mirrors Internet Archive collections or FTP directory trees into a local
directory, downloading only items that are new or changed since the last
run.

Usage:
    python -m src.main                                 # Default collection
    python -m src.main 50 softwarelibrary              # First 50 items
    python -m src.main coll1 coll2                     # Several collections
    python -m src.main --source ftp /pub/apple_II      # FTP mirror
    python -m src.main --dry-run --verbose 10 softwarelibrary

Exit codes:
    0  success
    1  validation/dependency error or failed item downloads
    2  network/catalog error
    3  filesystem/state error
"""

import argparse
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import (
    DEFAULT_COLLECTION,
    ConfigurationError,
    Settings,
    check_dependencies,
    load_settings,
    validate_rows,
    validate_target,
)
from src.archive.client import ArchiveClient
from src.ftp.client import FTPClient
from src.storage.state_store import StateStoreError
from src.sync.engine import SyncOrchestrator, overall_exit_code
from src.sync.models import RunSummary
from src.sync.source import RemoteSource

__version__ = "1.0.0"

EXIT_INTERRUPTED = 130


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, enable DEBUG level logging
        quiet: If True, only show warnings and errors
        log_file: Optional file receiving a copy of every record
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that exits with the validation error code."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = _ArgumentParser(
        prog="collection-sync",
        description="Download Internet Archive collections or FTP trees with resume capability",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Positional arguments:
    [rows] [target ...]   Optional item limit followed by collection
                          identifiers (or FTP directories with --source ftp).
                          Default collection: {DEFAULT_COLLECTION}

Examples:
    collection-sync apple_ii_library_4am             # Download specific collection
    collection-sync 50 softwarelibrary               # Download first 50 items
    collection-sync 100 coll1 coll2 coll3            # 100 items from 3 collections
    collection-sync --dry-run 10 softwarelibrary     # Preview what would be downloaded
    collection-sync -r /Volumes/Data/IA 50 softwarelibrary
    collection-sync --source ftp --host ftp.apple.asimov.net /pub/apple_II
    collection-sync --source ftp --delete /pub/apple_II      # Mirror, removing vanished files
        """,
    )

    parser.add_argument(
        "positionals",
        nargs="*",
        metavar="ARG",
        help=argparse.SUPPRESS,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )

    parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Show what would be downloaded without downloading",
    )

    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete local items that are no longer in the remote catalog",
    )

    parser.add_argument(
        "-r", "--root-dir",
        type=Path,
        help="Root directory for collection folders (default: current directory)",
    )

    parser.add_argument(
        "-l", "--log-file",
        type=Path,
        help="Also write log output to this file",
    )

    parser.add_argument(
        "--source",
        choices=["archive", "ftp"],
        help="Remote source kind (default: archive, or SYNC_SOURCE)",
    )

    parser.add_argument(
        "--host",
        help="FTP server hostname (with --source ftp)",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Show local sync status without contacting the remote",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def resolve_positionals(
    positionals: list[str],
    default_target: str,
) -> tuple[Optional[str], list[str]]:
    """
    Split positional arguments into an optional row count and targets.

    A leading all-digit argument is the row count. With no targets left,
    the default target is used.

    Returns:
        (rows or None, targets)
    """
    rows = None
    targets = list(positionals)

    if targets and targets[0].isdigit():
        rows = targets.pop(0)

    if not targets:
        targets = [default_target]

    return rows, targets


def apply_arguments(settings: Settings, args: argparse.Namespace) -> tuple[Settings, list[str]]:
    """
    Override settings with command line flags and validate targets.

    Raises:
        ValidationError: If the row count or a target is invalid
        ConfigurationError: If the resulting settings are invalid
    """
    sync = settings.sync
    ftp = settings.ftp

    if args.source:
        sync = dataclasses.replace(sync, source=args.source)
    if args.host:
        ftp = dataclasses.replace(ftp, host=args.host)

    default_target = ftp.default_dir if sync.source == "ftp" else DEFAULT_COLLECTION
    rows, targets = resolve_positionals(args.positionals, default_target)

    overrides = {}
    if rows is not None:
        overrides["rows"] = validate_rows(rows)
    if args.root_dir is not None:
        overrides["root_dir"] = args.root_dir.expanduser().resolve()
    if args.dry_run:
        overrides["dry_run"] = True
    if args.delete:
        overrides["delete"] = True
    if overrides:
        sync = dataclasses.replace(sync, **overrides)

    targets = [validate_target(sync.source, target) for target in targets]

    return dataclasses.replace(settings, sync=sync, ftp=ftp), targets


def build_source(settings: Settings) -> RemoteSource:
    """Create the transport for the configured source kind."""
    if settings.sync.source == "ftp":
        return FTPClient(
            host=settings.ftp.host,
            port=settings.ftp.port,
            use_tls=settings.ftp.use_tls,
            connect_timeout=settings.ftp.connect_timeout,
            catalog_max_duration=settings.ftp.catalog_max_duration,
            transfer_max_duration=settings.ftp.transfer_max_duration,
        )

    return ArchiveClient(
        base_url=settings.archive.base_url,
        connect_timeout=settings.archive.connect_timeout,
        catalog_max_duration=settings.archive.catalog_max_duration,
        transfer_max_duration=settings.archive.transfer_max_duration,
    )


def show_status(orchestrator: SyncOrchestrator, targets: list[str]) -> None:
    """
    Display local sync status for each target.

    Args:
        orchestrator: Orchestrator holding the run configuration
        targets: Targets to report on
    """
    logger = logging.getLogger(__name__)

    logger.info("=" * 50)
    logger.info("Sync Status")
    logger.info("=" * 50)
    for target in targets:
        status = orchestrator.status(target)
        logger.info(f"{status.target}")
        logger.info(f"  Directory:               {status.directory}")
        logger.info(f"  Tracked items:           {status.tracked}")
        logger.info(f"  Tracked before last run: {status.previous_run}")
    logger.info("=" * 50)


def report(summaries: list[RunSummary]) -> None:
    """Log the final multi-collection summary."""
    logger = logging.getLogger(__name__)

    failed = [summary for summary in summaries if not summary.is_success]

    logger.info("=" * 50)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Total collections processed: {len(summaries)}")
    logger.info(f"Successfully processed:      {len(summaries) - len(failed)}")
    for summary in summaries:
        logger.info(f"  {summary}")

    if failed:
        logger.warning(f"Failed collections:          {len(failed)}")
        for summary in failed:
            if summary.error:
                logger.warning(f"  - {summary.target}: {summary.error}")
        logger.error("Sync completed with errors")
    else:
        logger.info("Sync completed successfully!")


def _terminate(signum, frame) -> None:
    raise SystemExit(128 + signum)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    logger = logging.getLogger(__name__)

    # Unwind through finally blocks on SIGTERM so partial files are removed
    signal.signal(signal.SIGTERM, _terminate)

    logger.info(f"Collection Sync v{__version__}")
    logger.info("=" * 50)

    try:
        settings, targets = apply_arguments(load_settings(env_file=args.env), args)
        check_dependencies(settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Use --help for usage information")
        return 1

    if not (args.verbose or args.quiet):
        logging.getLogger().setLevel(settings.log_level)

    logger.info(f"Processing {len(targets)} target(s): {' '.join(targets)}")
    logger.info(f"Using {settings.sync.rows} rows per target")
    logger.info(f"Root directory: {settings.sync.root_dir}")

    source = build_source(settings)
    orchestrator = SyncOrchestrator(source=source, config=settings.sync)

    try:
        if args.status:
            show_status(orchestrator, targets)
            return 0

        summaries = orchestrator.run(targets)
        report(summaries)
        return overall_exit_code(summaries)

    except StateStoreError as e:
        logger.error(f"State file error: {e}")
        return 3
    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return EXIT_INTERRUPTED
    finally:
        source.close()


if __name__ == "__main__":
    sys.exit(main())
