"""Tests for archive assembly and the run report."""

import io
import zipfile
from datetime import datetime, timezone

import polars as pl
import pytest

from catalog_sync.archive import (
    REPORT_COLUMNS,
    ArchiveAssembler,
    build_report,
    render_report,
    suggest_archive_name,
)
from catalog_sync.schemas.assets import ProcessedAsset
from catalog_sync.schemas.outcomes import GroupOutcome, OutcomeStatus
from core.errors.exceptions import ArchiveError


def _processed(folder, name, payload=b"data"):
    return ProcessedAsset(
        original_identifier=name,
        assigned_name=name,
        payload=payload,
        group_folder=folder,
    )


def _outcome(name="SKU1", status=OutcomeStatus.SUCCESS, found=2):
    return GroupOutcome(
        group_name=name,
        primary_reference="http://x/a.jpg",
        status=status,
        assets_found=found,
        notes="2/2 captured.",
        completed_at=datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc),
    )


class TestBuildReport:
    def test_columns_and_values(self):
        df = build_report([_outcome(), _outcome("SKU2", OutcomeStatus.FAILED, 0)])
        assert df.columns == REPORT_COLUMNS
        assert df.row(0) == ("SKU1", "Success", 2, "http://x/a.jpg", "2025-01-15 09:30:00 UTC")
        assert df["Status"].to_list() == ["Success", "Failed"]

    def test_empty(self):
        assert build_report([]).height == 0

    def test_csv_by_default(self):
        data = render_report([_outcome()], "SYNC_REPORT.csv")
        assert data.decode("utf-8").splitlines()[0] == "SKU,Status,Files,URL,Date"

    def test_xlsx_workbook(self):
        data = render_report([_outcome()], "SYNC_REPORT.xlsx")
        with zipfile.ZipFile(io.BytesIO(data)) as workbook:
            assert "xl/workbook.xml" in workbook.namelist()


class TestArchiveAssembler:
    def test_members_in_natural_order_with_report(self):
        assets = [
            _processed("SKU10", "SKU10_1.jpg"),
            _processed("SKU1", "SKU1_2.jpg"),
            _processed("SKU1", "SKU1_1.jpg"),
        ]

        data = ArchiveAssembler().assemble(assets, [_outcome()])

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == [
                "SKU1/SKU1_1.jpg",
                "SKU1/SKU1_2.jpg",
                "SKU10/SKU10_1.jpg",
                "SYNC_REPORT.csv",
            ]
            assert all(i.compress_type == zipfile.ZIP_STORED for i in zf.infolist())
            report = pl.read_csv(zf.read("SYNC_REPORT.csv"))
        assert report["SKU"].to_list() == ["SKU1"]

    def test_member_order_independent_of_input_order(self):
        x = _processed("SKU1", "SKU1_1.jpg", b"x")
        y = _processed("SKU1", "SKU1_2.jpg", b"y")
        z = _processed("SKU2", "SKU2_1.jpg", b"z")
        assembler = ArchiveAssembler()

        first = assembler.assemble([x, y, z], [_outcome()])
        second = assembler.assemble([z, x, y], [_outcome()])

        with zipfile.ZipFile(io.BytesIO(first)) as a, zipfile.ZipFile(io.BytesIO(second)) as b:
            assert a.namelist() == b.namelist()
            assert [a.read(n) for n in a.namelist()] == [b.read(n) for n in b.namelist()]

    def test_excel_report_member(self):
        data = ArchiveAssembler(report_name="SYNC_REPORT.xlsx").assemble(
            [_processed("A", "A_1.jpg")], [_outcome()]
        )
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["A/A_1.jpg", "SYNC_REPORT.xlsx"]
            assert zf.read("SYNC_REPORT.xlsx")[:2] == b"PK"

    def test_no_report_without_outcomes(self):
        data = ArchiveAssembler().assemble([_processed("A", "A_1.jpg")])
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["A/A_1.jpg"]

    def test_payload_preserved(self):
        data = ArchiveAssembler().assemble([_processed("A", "A_1.jpg", b"\xff\xd8abc")])
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.read("A/A_1.jpg") == b"\xff\xd8abc"

    def test_progress_reaches_100(self):
        progress = []
        ArchiveAssembler().assemble(
            [_processed("A", "A_1.jpg"), _processed("A", "A_2.jpg")],
            [_outcome()],
            on_progress=progress.append,
        )
        assert progress == [33.33, 66.67, 100.0]

    def test_empty_archive_reports_completion(self):
        progress = []
        data = ArchiveAssembler().assemble([], on_progress=progress.append)
        assert progress == [100.0]
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == []

    def test_duplicate_member_rejected(self):
        with pytest.raises(ArchiveError, match="Duplicate"):
            ArchiveAssembler().assemble([_processed("A", "A_1.jpg"), _processed("A", "A_1.jpg")])

    def test_report_collision_rejected(self):
        asset = ProcessedAsset(
            original_identifier="r", assigned_name="R.csv", payload=b"x", group_folder="A"
        )
        with pytest.raises(ArchiveError, match="collides"):
            ArchiveAssembler(report_name="A/R.csv").assemble([asset], [_outcome()])

    def test_write_to_creates_parent(self, tmp_path):
        target = tmp_path / "nested" / "out.zip"
        ArchiveAssembler().write_to(target, [_processed("A", "A_1.jpg")])
        assert zipfile.is_zipfile(target)

    def test_write_failure_wrapped(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(ArchiveError, match="Cannot write"):
            ArchiveAssembler().write_to(blocker / "out.zip", [_processed("A", "A_1.jpg")])

    def test_suggested_name(self):
        name = suggest_archive_name("catalog_sync")
        assert name.startswith("catalog_sync_")
        assert name.endswith(".zip")
