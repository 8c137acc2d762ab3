"""
Archive assembler.

Writes every ProcessedAsset into one ZIP (stored, no compression; images are
already compressed) under ``{group_folder}/{assigned_name}``, plus a run
report (CSV, or an Excel workbook for ``.xlsx`` names) at the archive root
when there are outcomes. Member order is the natural order of assigned
names, so the archive does not depend on the order in which downloads
completed.
"""

import io
import logging
import time
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import polars as pl

from catalog_sync import metrics
from catalog_sync.naming import natural_key
from catalog_sync.schemas.assets import ProcessedAsset
from catalog_sync.schemas.outcomes import GroupOutcome
from core.errors.exceptions import ArchiveError
from core.logging.utilities import LoggedClass

REPORT_COLUMNS = ["SKU", "Status", "Files", "URL", "Date"]

ProgressCallback = Callable[[float], None]


def build_report(outcomes: Sequence[GroupOutcome]) -> pl.DataFrame:
    """One row per group outcome, in input order."""
    return pl.DataFrame(
        {
            "SKU": [o.group_name for o in outcomes],
            "Status": [o.status.value for o in outcomes],
            "Files": [o.assets_found for o in outcomes],
            "URL": [o.primary_reference for o in outcomes],
            "Date": [o.completed_at.strftime("%Y-%m-%d %H:%M:%S UTC") for o in outcomes],
        },
        schema={
            "SKU": pl.Utf8,
            "Status": pl.Utf8,
            "Files": pl.Int64,
            "URL": pl.Utf8,
            "Date": pl.Utf8,
        },
    )


def render_report(outcomes: Sequence[GroupOutcome], report_name: str) -> bytes:
    """Report file contents: an Excel workbook for ``.xlsx`` names, CSV otherwise."""
    frame = build_report(outcomes)
    if report_name.lower().endswith(".xlsx"):
        buffer = io.BytesIO()
        frame.write_excel(buffer, worksheet="Sync Report", autofit=True)
        return buffer.getvalue()
    return frame.write_csv().encode("utf-8")


def suggest_archive_name(prefix: str = "catalog_sync") -> str:
    """``{prefix}_{epoch_ms}.zip``"""
    return f"{prefix}_{int(time.time() * 1000)}.zip"


class ArchiveAssembler(LoggedClass):
    """
    Bundle processed assets and the run report into a ZIP.

    Args:
        report_name: File name of the report at the archive root
    """

    log_component = "archive"

    def __init__(self, report_name: str = "SYNC_REPORT.csv"):
        self.report_name = report_name
        super().__init__()

    def ordered(self, assets: Sequence[ProcessedAsset]) -> List[ProcessedAsset]:
        """Assets in archive order."""
        return sorted(
            assets,
            key=lambda a: (natural_key(a.assigned_name), natural_key(a.group_folder)),
        )

    def assemble(
        self,
        assets: Sequence[ProcessedAsset],
        outcomes: Sequence[GroupOutcome] = (),
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Build the archive in memory.

        Args:
            assets: Final asset list
            outcomes: Per-group outcomes; report is omitted when empty
            on_progress: Called with a percentage after each member, ends at 100

        Returns:
            ZIP bytes

        Raises:
            ArchiveError: Duplicate member path or any write failure
        """
        ordered = self.ordered(assets)

        seen = set()
        for asset in ordered:
            if asset.member_path in seen:
                raise ArchiveError(f"Duplicate archive member: {asset.member_path}")
            seen.add(asset.member_path)
        if outcomes and self.report_name in seen:
            raise ArchiveError(f"Asset path collides with report: {self.report_name}")

        total = len(ordered) + (1 if outcomes else 0)
        done = 0
        stamp = datetime.now(timezone.utc).timetuple()[:6]

        def advance() -> None:
            nonlocal done
            done += 1
            if on_progress is not None:
                on_progress(round(done / total * 100, 2))

        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
                for asset in ordered:
                    info = zipfile.ZipInfo(asset.member_path, date_time=stamp)
                    info.compress_type = zipfile.ZIP_STORED
                    zf.writestr(info, asset.payload)
                    advance()

                if outcomes:
                    report = render_report(outcomes, self.report_name)
                    info = zipfile.ZipInfo(self.report_name, date_time=stamp)
                    info.compress_type = zipfile.ZIP_STORED
                    zf.writestr(info, report)
                    advance()
        except ArchiveError:
            raise
        except Exception as e:
            self._log_exception(e, "Archive assembly failed", members=done)
            raise ArchiveError(f"Archive assembly failed: {e}", cause=e)

        if total == 0 and on_progress is not None:
            on_progress(100.0)

        data = buffer.getvalue()
        metrics.record_archive_size(len(data))
        self._log(
            logging.INFO,
            "Archive assembled",
            members=total,
            archive_bytes=len(data),
        )
        return data

    def write_to(
        self,
        path: Path,
        assets: Sequence[ProcessedAsset],
        outcomes: Sequence[GroupOutcome] = (),
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        Assemble and write the archive to ``path``.

        Raises:
            ArchiveError: Assembly or file write failed
        """
        data = self.assemble(assets, outcomes, on_progress)
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ArchiveError(f"Cannot write archive to {path}: {e}", cause=e)
        return path
