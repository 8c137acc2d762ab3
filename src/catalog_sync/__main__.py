"""
Entry point for catalog sync runs.

Usage:
    # Direct image links from a sheet export (column A = SKU, other columns = links)
    python -m catalog_sync web --sheet skus.csv --output out/

    # One Drive folder per row (needs DRIVE_API_KEY)
    python -m catalog_sync drive --sheet drive_folders.csv

    # A single pasted link
    python -m catalog_sync gallery --link https://postimg.cc/gallery/AbC123 --name SKU1

    # Dropbox files or shared-folder ZIPs
    python -m catalog_sync dropbox --sheet dropbox.csv

    # Local folder tools (no network)
    python -m catalog_sync categorize ./photos --output categorized.zip
    python -m catalog_sync rename ./photos --group-by folder

Exit status:
    0    completed
    1    partial or failed
    2    fatal configuration or input error
    130  cancelled
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from dotenv import load_dotenv
from prometheus_client import start_http_server

from catalog_sync.archive import ArchiveAssembler, suggest_archive_name
from catalog_sync.config import MODES, SyncConfig
from catalog_sync.drive.client import DriveApiClient
from catalog_sync.fetch import FetchResolver
from catalog_sync.naming import categorize_files, sequence_folder_files
from catalog_sync.pipeline import RunReport, RunStatus, SyncPipeline
from catalog_sync.schemas.assets import ProcessedAsset
from catalog_sync.schemas.groups import SourceGroup
from catalog_sync.sheets import groups_from_links, load_source_groups
from core.download.http_client import create_session
from core.errors.exceptions import ArchiveError, FatalError, PipelineError, ValidationError
from core.logging.setup import generate_run_id, get_logger, setup_logging
from core.resilience.cancellation import CancellationToken

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_FATAL = 2
EXIT_CANCELLED = 130

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def exit_code_for(status: RunStatus) -> int:
    """Map a run's terminal state to a process exit status."""
    return {
        RunStatus.COMPLETED: EXIT_OK,
        RunStatus.PARTIAL: EXIT_INCOMPLETE,
        RunStatus.FAILED: EXIT_INCOMPLETE,
        RunStatus.FATAL: EXIT_FATAL,
        RunStatus.CANCELLED: EXIT_CANCELLED,
    }[status]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Archive path (*.zip) or output directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config file (default: ./config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Log to the console only",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="python -m catalog_sync",
        description="Retrieve catalog images per SKU and package them into one archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for mode in MODES:
        sub = subparsers.add_parser(mode, help=f"Retrieve {mode} references")
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--sheet", type=str, help="CSV/TSV export or text file of groups")
        source.add_argument("--link", type=str, help="Single link (or several, comma separated)")
        sub.add_argument(
            "--name",
            type=str,
            default="Manual_Sync",
            help="Group name for --link (default: Manual_Sync)",
        )
        sub.add_argument(
            "--concurrency",
            type=int,
            default=None,
            help=f"Worker count for {mode} downloads (default: from config)",
        )
        sub.add_argument(
            "--metrics-port",
            type=int,
            default=None,
            help="Expose Prometheus metrics on this port during the run",
        )
        _add_common_arguments(sub)

    categorize = subparsers.add_parser(
        "categorize", help="Group local images into SKU folders by filename prefix"
    )
    categorize.add_argument("source", type=str, help="Local folder")
    _add_common_arguments(categorize)

    rename = subparsers.add_parser(
        "rename", help="Rename local images {group}_{n}.{ext} in natural order"
    )
    rename.add_argument("source", type=str, help="Local folder")
    rename.add_argument(
        "--group-by",
        choices=["folder", "prefix"],
        default="folder",
        help="Group by parent folder or filename prefix (default: folder)",
    )
    _add_common_arguments(rename)

    return parser.parse_args(argv)


def resolve_output_path(output: Optional[str], prefix: str) -> Path:
    """Archive file for --output: the path itself for *.zip, else a new file inside it."""
    if output and output.lower().endswith(".zip"):
        return Path(output)
    return Path(output or ".") / suggest_archive_name(prefix)


def archive_progress_logger(step: float = 25.0) -> Callable[[float], None]:
    """Progress callback that logs archive packaging every ``step`` percent."""
    next_mark = step

    def on_progress(percent: float) -> None:
        nonlocal next_mark
        if percent >= next_mark or percent >= 100:
            logger.info(f"Packaging archive: {percent:.0f}%")
            while next_mark <= percent:
                next_mark += step

    return on_progress


def load_groups(args: argparse.Namespace) -> List[SourceGroup]:
    """Groups from --sheet or --link."""
    if args.sheet:
        return load_source_groups(Path(args.sheet))
    return groups_from_links(args.link or "", args.name)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, token: CancellationToken) -> None:
    """Set up signal handlers for graceful cancellation.

    First SIGINT/SIGTERM cancels the run token: in-flight downloads are
    aborted, results gathered so far are kept and archived. A second signal
    cancels every task immediately.
    """

    def handle_signal(sig: signal.Signals) -> None:
        if not token.cancelled:
            logger.info(f"Received signal {sig.name}, cancelling run...")
            token.cancel(f"Received {sig.name}")
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    # Signal handlers are not supported on Windows
    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


async def run_sync(
    mode: str,
    config: SyncConfig,
    groups: Sequence[SourceGroup],
    token: CancellationToken,
) -> RunReport:
    """Run the retrieval pipeline with one shared HTTP session."""
    async with create_session(max_connections_per_host=config.concurrency_for(mode)) as session:
        fetcher = FetchResolver.from_config(config, session)
        drive_client = DriveApiClient.from_config(config, session) if mode == "drive" else None
        pipeline = SyncPipeline(config, fetcher, drive_client=drive_client)
        return await pipeline.run(groups, mode, token)


def run_mode(args: argparse.Namespace) -> int:
    """Execute one of the retrieval subcommands."""
    mode = args.command
    try:
        config = SyncConfig.load_config(Path(args.config) if args.config else None)
        if args.concurrency is not None:
            config = replace(config, **{f"{mode}_concurrency": args.concurrency})
            config.validate()
        groups = load_groups(args)
    except (FatalError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FATAL

    if not groups:
        logger.error("No groups with links found in the input")
        return EXIT_FATAL

    if args.metrics_port:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    token = CancellationToken()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop, token)

    try:
        report = loop.run_until_complete(run_sync(mode, config, groups, token))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("Run interrupted before completion, nothing archived")
        return EXIT_CANCELLED
    finally:
        loop.close()

    if report.fatal_error:
        logger.error(f"Run stopped: {report.fatal_error}")

    if report.assets:
        output = resolve_output_path(args.output, config.archive_prefix)
        try:
            ArchiveAssembler(config.report_name).write_to(
                output, report.assets, report.outcomes, on_progress=archive_progress_logger()
            )
        except ArchiveError as e:
            logger.error(f"Archive error: {e}")
            return EXIT_FATAL
        logger.info(f"Archive written: {output} ({len(report.assets)} assets)")
    else:
        logger.warning("0 assets retrieved, no archive written")

    return exit_code_for(report.status)


def collect_local_files(source: Path) -> List[str]:
    """Relative POSIX paths of every file under ``source``."""
    return sorted(p.relative_to(source).as_posix() for p in source.rglob("*") if p.is_file())


def run_local(args: argparse.Namespace) -> int:
    """Execute the categorize or rename subcommand."""
    source = Path(args.source)
    if not source.is_dir():
        logger.error(f"Not a directory: {source}")
        return EXIT_FATAL

    paths = collect_local_files(source)
    if args.command == "categorize":
        plans = categorize_files(paths)
    else:
        plans = sequence_folder_files(paths, group_by=args.group_by)

    if not plans:
        logger.warning(f"No images found under {source}")
        return EXIT_INCOMPLETE

    assets = [
        ProcessedAsset(
            original_identifier=plan.source_path,
            assigned_name=plan.assigned_name,
            payload=(source / plan.source_path).read_bytes(),
            group_folder=plan.group_folder,
        )
        for plan in plans
    ]
    output = resolve_output_path(args.output, args.command)
    try:
        ArchiveAssembler().write_to(output, assets, on_progress=archive_progress_logger())
    except ArchiveError as e:
        logger.error(f"Archive error: {e}")
        return EXIT_FATAL

    groups = len({plan.group_folder for plan in plans})
    logger.info(f"Archive written: {output} ({len(assets)} files in {groups} folders)")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    global logger
    load_dotenv()
    args = parse_args(argv)

    # JSON file logs unless JSON_LOGS=false
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))

    setup_logging(
        name="catalog_sync",
        stage=args.command,
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        run_id=generate_run_id(),
        log_to_file=not args.no_log_file,
    )
    logger = get_logger(__name__)

    try:
        if args.command in MODES:
            return run_mode(args)
        return run_local(args)
    except PipelineError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
