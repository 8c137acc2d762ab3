"""
Run orchestration.

A run walks the input groups sequentially. Each group resolves its jobs for
the selected mode, runs them through the bounded batch runner, names the
results and records one GroupOutcome. Only fatal errors and cancellation end
a run early; every other failure becomes a counter and a log event.

Terminal states:
    completed  every group succeeded
    partial    some assets retrieved, not all
    failed     nothing retrieved
    cancelled  caller cancelled; results so far are kept
    fatal      configuration, credential or invalid root link stopped the run
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from catalog_sync import metrics
from catalog_sync.batch import BatchResult, run_batch
from catalog_sync.config import MODES, SyncConfig
from catalog_sync.drive.client import DriveApiClient, extract_folder_id
from catalog_sync.drive.crawler import DirectoryCrawler
from catalog_sync.fetch import FetchResolver
from catalog_sync.gallery import GalleryResolver
from catalog_sync.naming import assign_names, is_local_image, natural_key, safe_folder_name
from catalog_sync.schemas.assets import DriveItem, ProcessedAsset, RetrievedAsset
from catalog_sync.schemas.groups import SourceGroup
from catalog_sync.schemas.outcomes import GroupOutcome, OutcomeStatus
from core.errors.exceptions import (
    ConfigurationError,
    FatalError,
    InvalidReferenceError,
    OperationCancelled,
    ValidationError,
)
from core.logging.context import set_log_context
from core.logging.utilities import LoggedClass
from core.resilience.cancellation import CancellationToken
from core.security import sanitize_error_message

ZIP_MAGIC = b"PK"

_SEVERITY_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class RunStatus(str, Enum):
    """Terminal state of a run."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"
    FATAL = "fatal"


@dataclass
class LogEvent:
    """User-facing progress message."""

    message: str
    severity: str = "info"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RunStats:
    """Running counters for one run."""

    groups_total: int = 0
    groups_processed: int = 0
    assets_saved: int = 0
    errors: int = 0


@dataclass
class RunReport:
    """Everything a run produced."""

    status: RunStatus
    assets: List[ProcessedAsset] = field(default_factory=list)
    outcomes: List[GroupOutcome] = field(default_factory=list)
    failed_count: int = 0
    fatal_error: Optional[str] = None
    stats: RunStats = field(default_factory=RunStats)

    @property
    def has_assets(self) -> bool:
        return bool(self.assets)


class RunObserver:
    """Callbacks for progress reporting. Override what you need."""

    def on_progress(self, done: int, total: int) -> None:
        pass

    def on_log(self, event: LogEvent) -> None:
        pass

    def on_asset_resolved(self, asset: ProcessedAsset) -> None:
        pass

    def on_group_complete(self, outcome: GroupOutcome) -> None:
        pass


@dataclass
class _GroupResult:
    assets: List[RetrievedAsset]
    attempted: int
    failed: int
    cancelled: bool = False
    notes: str = ""
    found: Optional[int] = None


class SyncPipeline(LoggedClass):
    """
    Retrieve every group of a run and collect named assets and outcomes.

    Usage:
        async with FetchResolver.from_config(config) as fetcher:
            pipeline = SyncPipeline(config, fetcher)
            report = await pipeline.run(groups, mode="web", token=token)

    Args:
        config: Run configuration
        fetcher: Fallback fetch resolver
        drive_client: Required for drive mode
        gallery: Gallery resolver; built from the fetcher when omitted
        observer: Progress callbacks
        crawler: Folder crawler; built from drive_client when omitted
    """

    log_component = "pipeline"

    def __init__(
        self,
        config: SyncConfig,
        fetcher: FetchResolver,
        drive_client: Optional[DriveApiClient] = None,
        gallery: Optional[GalleryResolver] = None,
        observer: Optional[RunObserver] = None,
        crawler: Optional[DirectoryCrawler] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.drive_client = drive_client
        self.gallery = gallery or GalleryResolver.from_config(config, fetcher)
        self.observer = observer or RunObserver()
        self.crawler = crawler
        if self.crawler is None and drive_client is not None:
            self.crawler = DirectoryCrawler(
                drive_client,
                concurrency=config.crawl_concurrency,
                max_depth=config.max_crawl_depth,
            )
        self.mode: Optional[str] = None
        self._folder_owners: Dict[str, int] = {}
        super().__init__()

    async def run(
        self,
        groups: Sequence[SourceGroup],
        mode: str,
        token: Optional[CancellationToken] = None,
    ) -> RunReport:
        """
        Process ``groups`` in order.

        Args:
            groups: Input groups
            mode: web, drive, gallery or dropbox
            token: Cancellation token for the whole run

        Returns:
            RunReport; never raises for retrieval, fatal or cancellation
            outcomes, which are reported through RunReport.status

        Raises:
            ConfigurationError: Unknown mode
        """
        if mode not in MODES:
            raise ConfigurationError(f"Unknown mode: {mode}. Choose from {', '.join(MODES)}")

        self.mode = mode
        self._folder_owners = {}
        token = token or CancellationToken()
        report = RunReport(status=RunStatus.COMPLETED, stats=RunStats(groups_total=len(groups)))
        set_log_context(stage=mode)

        self._emit(f"Starting {mode} sync: {len(groups)} groups", "info")

        for index, group in enumerate(groups):
            if token.cancelled:
                report.status = RunStatus.CANCELLED
                break

            folder = safe_folder_name(group.name)
            set_log_context(group=folder)
            self._emit(f"Processing group: {folder}")

            try:
                result = await self._run_group(group, folder, mode, token)
            except OperationCancelled:
                self._record(report, group, folder, index, _GroupResult([], 0, 0, True, "Cancelled."))
                report.status = RunStatus.CANCELLED
                break
            except FatalError as e:
                message = sanitize_error_message(str(e))
                self._log_exception(e, "Run aborted by fatal error")
                self._emit(f"Fatal error at {folder}: {message}", "error")
                report.outcomes.append(GroupOutcome.failed(folder, group.primary_reference, message))
                report.stats.groups_processed += 1
                report.stats.errors += 1
                report.fatal_error = message
                report.status = RunStatus.FATAL
                break
            except Exception as e:
                message = sanitize_error_message(str(e) or type(e).__name__)
                self._log_exception(e, "Group failed", level=logging.WARNING)
                self._emit(f"Sync error at {folder}: {message}", "error")
                self._record(report, group, folder, index, _GroupResult([], 0, 1, notes=message))
                continue

            self._record(report, group, folder, index, result)
            if result.cancelled:
                report.status = RunStatus.CANCELLED
                break

        if report.status == RunStatus.COMPLETED:
            report.status = self._final_status(report)

        self._emit(
            f"Run {report.status.value}: {len(report.assets)} assets, "
            f"{report.failed_count} failures",
            "success" if report.status == RunStatus.COMPLETED else "warning",
        )
        self._log(
            logging.INFO,
            "Run finished",
            status=report.status.value,
            groups=len(report.outcomes),
            records_succeeded=len(report.assets),
            records_failed=report.failed_count,
        )
        return report

    @staticmethod
    def _final_status(report: RunReport) -> RunStatus:
        if all(o.status == OutcomeStatus.SUCCESS for o in report.outcomes):
            return RunStatus.COMPLETED
        if report.assets:
            return RunStatus.PARTIAL
        return RunStatus.FAILED

    def _record(
        self,
        report: RunReport,
        group: SourceGroup,
        folder: str,
        index: int,
        result: _GroupResult,
    ) -> None:
        """Name the group's assets and append its outcome."""
        for asset in result.assets:
            asset.container_path = self._claim_folder(
                safe_folder_name(asset.container_path or folder), index
            )
        processed = assign_names(result.assets)

        found = len(result.assets) if result.found is None else result.found
        notes = result.notes
        if result.cancelled and not notes:
            notes = f"Cancelled: {len(processed)}/{result.attempted} captured."
        outcome = GroupOutcome.from_counts(
            folder,
            group.primary_reference,
            found=found,
            attempted=result.attempted,
            notes=notes,
            assets_found=len(processed),
        )

        report.assets.extend(processed)
        report.outcomes.append(outcome)
        report.failed_count += result.failed
        report.stats.groups_processed += 1
        report.stats.assets_saved += len(processed)
        report.stats.errors += result.failed

        for asset in processed:
            self.observer.on_asset_resolved(asset)
        self.observer.on_group_complete(outcome)

        metrics.record_assets(self.mode or "unknown", len(processed), result.failed)
        metrics.record_group_outcome(outcome.status.value)

        severity = {
            OutcomeStatus.SUCCESS: "success",
            OutcomeStatus.PARTIAL: "warning",
            OutcomeStatus.FAILED: "error",
        }[outcome.status]
        self._emit(f"{folder}: {outcome.status.value} ({outcome.notes})", severity)

    def _claim_folder(self, folder: str, owner: int) -> str:
        """Reserve an archive folder for one group, suffixing on collision."""
        candidate = folder
        suffix = 2
        while self._folder_owners.get(candidate, owner) != owner:
            candidate = f"{folder}_{suffix}"
            suffix += 1
        self._folder_owners[candidate] = owner
        return candidate

    def _emit(self, message: str, severity: str = "info") -> None:
        self.observer.on_log(LogEvent(message=message, severity=severity))
        self._log(_SEVERITY_LEVELS.get(severity, logging.INFO), message)

    def _batch_progress(self, done: int, total: int) -> None:
        self.observer.on_progress(done, total)

    async def _run_group(
        self,
        group: SourceGroup,
        folder: str,
        mode: str,
        token: CancellationToken,
    ) -> _GroupResult:
        if mode == "web":
            return await self._run_web(group, folder, token)
        if mode == "drive":
            return await self._run_drive(group, folder, token)
        if mode == "gallery":
            return await self._run_gallery(group, folder, token)
        return await self._run_dropbox(group, folder, token)

    async def _run_web(
        self, group: SourceGroup, folder: str, token: CancellationToken
    ) -> _GroupResult:
        if not group.references:
            return _GroupResult([], 0, 0, notes="No references.")

        async def produce(reference: str, index: int, tok: Optional[CancellationToken]) -> RetrievedAsset:
            fetched = await self.fetcher.resolve(reference, tok)
            return RetrievedAsset(
                original_identifier=reference,
                payload=fetched.payload,
                content_type=fetched.content_type,
                group_name=folder,
                source_reference=reference,
            )

        batch: BatchResult[RetrievedAsset] = await run_batch(
            group.references,
            produce,
            concurrency=self.config.web_concurrency,
            on_progress=self._batch_progress,
            token=token,
        )
        return _GroupResult(batch.results, batch.total, batch.failed_count, batch.cancelled)

    async def _run_drive(
        self, group: SourceGroup, folder: str, token: CancellationToken
    ) -> _GroupResult:
        if self.drive_client is None or self.crawler is None:
            raise ConfigurationError("Drive mode requires a DriveApiClient")

        folder_id = extract_folder_id(group.primary_reference)
        if not folder_id:
            raise InvalidReferenceError(f'Invalid Drive link in row "{group.name}".')

        crawl = await self.crawler.crawl(
            folder_id, folder, token=token, on_log=lambda msg, sev: self._emit(msg, sev)
        )
        unreadable = len(crawl.failed_containers)
        if not crawl.assets and unreadable:
            if folder_id in crawl.failed_containers:
                notes = "Folder unreadable."
            else:
                notes = f"No images found. {unreadable} folders unreadable."
            self._emit(
                f"Could not read Drive folder for {folder}. "
                "Check the sharing settings and that the Drive API is enabled.",
                "error",
            )
            return _GroupResult([], 0, unreadable, notes=notes)
        if not crawl.assets:
            self._emit(
                "No images detected. Ensure the folder is shared as 'Anyone with the link'.",
                "warning",
            )
            return _GroupResult([], 0, 0, notes="No images found.")

        self._emit(f"Resolved {len(crawl.assets)} images, downloading")

        async def produce(item: DriveItem, index: int, tok: Optional[CancellationToken]) -> RetrievedAsset:
            fetched = await self.drive_client.download_file(item.id, tok)
            return RetrievedAsset(
                original_identifier=item.name,
                payload=fetched.payload,
                content_type=fetched.content_type,
                group_name=folder,
                container_path=crawl.registry.display_name(item.parent_id, folder),
                source_reference=item.id,
            )

        batch: BatchResult[RetrievedAsset] = await run_batch(
            crawl.assets,
            produce,
            concurrency=self.config.drive_concurrency,
            on_progress=self._batch_progress,
            token=token,
        )

        notes = f"{batch.failed_count} items failed." if batch.failed_count else "Sync complete."
        if unreadable:
            notes += f" {unreadable} folders unreadable."
        return _GroupResult(
            batch.results,
            batch.total + unreadable,
            batch.failed_count + unreadable,
            batch.cancelled,
            notes=notes,
        )

    async def _run_gallery(
        self, group: SourceGroup, folder: str, token: CancellationToken
    ) -> _GroupResult:
        links = await self.gallery.collect_links(group.references, token)
        if not links:
            self._emit(f"No assets detected for {folder}", "warning")
            return _GroupResult([], 0, 0, notes="Zero links resolved.")

        async def produce(link: str, index: int, tok: Optional[CancellationToken]) -> RetrievedAsset:
            direct = await self.gallery.resolve_direct(link, tok)
            fetched = await self.fetcher.resolve(direct, tok)
            return RetrievedAsset(
                original_identifier=link,
                payload=fetched.payload,
                content_type=fetched.content_type,
                group_name=folder,
                source_reference=direct,
            )

        batch: BatchResult[RetrievedAsset] = await run_batch(
            links,
            produce,
            concurrency=self.config.gallery_concurrency,
            on_progress=self._batch_progress,
            token=token,
        )
        return _GroupResult(batch.results, batch.total, batch.failed_count, batch.cancelled)

    async def _run_dropbox(
        self, group: SourceGroup, folder: str, token: CancellationToken
    ) -> _GroupResult:
        if not group.references:
            return _GroupResult([], 0, 0, notes="No references.")

        async def produce(
            reference: str, index: int, tok: Optional[CancellationToken]
        ) -> List[RetrievedAsset]:
            fetched = await self.fetcher.resolve(reference, tok)
            if fetched.payload[:2] == ZIP_MAGIC:
                assets = unpack_archive(fetched.payload, reference, folder)
                self._emit(f"Archive extracted: {len(assets)} assets")
                return assets
            if fetched.content_type.startswith("image/"):
                return [
                    RetrievedAsset(
                        original_identifier=reference_basename(reference),
                        payload=fetched.payload,
                        content_type=fetched.content_type,
                        group_name=folder,
                        source_reference=reference,
                    )
                ]
            raise ValidationError("Access denied or not an image (check sharing permissions)")

        batch: BatchResult[List[RetrievedAsset]] = await run_batch(
            group.references,
            produce,
            concurrency=self.config.dropbox_concurrency,
            on_progress=self._batch_progress,
            token=token,
        )
        assets = [asset for chunk in batch.results for asset in chunk]
        notes = f"{len(assets)} items captured." if assets else "Resource unreachable."
        return _GroupResult(
            assets,
            batch.total,
            batch.failed_count,
            batch.cancelled,
            notes=notes,
            found=len(batch.results),
        )


def reference_basename(reference: str) -> str:
    """Last path segment of a URL, query and fragment removed."""
    base = reference.split("#", 1)[0].split("?", 1)[0].rstrip("/")
    return base.rsplit("/", 1)[-1] or "asset"


def unpack_archive(payload: bytes, reference: str, group_name: str) -> List[RetrievedAsset]:
    """
    Image members of a ZIP payload in natural order.

    Raises:
        ValidationError: Corrupt archive or no image members
    """
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            names = sorted(
                (info.filename for info in zf.infolist() if not info.is_dir()),
                key=natural_key,
            )
            members: List[Tuple[str, bytes]] = [
                (name, zf.read(name)) for name in names if is_local_image(name)
            ]
    except zipfile.BadZipFile as e:
        raise ValidationError(f"Corrupt archive from {reference_basename(reference)}", cause=e)

    if not members:
        raise ValidationError("Archive contains no images")

    return [
        RetrievedAsset(
            original_identifier=name,
            payload=data,
            content_type="",
            group_name=group_name,
            source_reference=reference,
        )
        for name, data in members
    ]
