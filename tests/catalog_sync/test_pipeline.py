"""Tests for run orchestration across retrieval modes."""

import io
import json
import zipfile
from unittest.mock import AsyncMock, patch

import pytest

from catalog_sync.config import SyncConfig
from catalog_sync.drive.client import DriveApiClient
from catalog_sync.fetch import DirectStrategy, FetchedPayload, FetchResolver
from catalog_sync.pipeline import RunObserver, RunStatus, SyncPipeline, reference_basename, unpack_archive
from catalog_sync.schemas.assets import FOLDER_MIME_TYPE, DriveItem
from catalog_sync.schemas.groups import SourceGroup
from catalog_sync.schemas.outcomes import OutcomeStatus
from conftest import JPEG_BYTES, PNG_BYTES, FakeDownloader, ok
from core.errors.exceptions import (
    ConfigurationError,
    CredentialError,
    ForbiddenError,
    UnreachableError,
    ValidationError,
)
from core.resilience.cancellation import CancellationToken

DRIVE_ROOT = "1RootFolderAbCdEfGhIjKlMnOp"


def relay(markup):
    return ok(json.dumps({"contents": markup}).encode(), "application/json")


class RecordingObserver(RunObserver):
    def __init__(self):
        self.progress = []
        self.events = []
        self.assets = []
        self.outcomes = []

    def on_progress(self, done, total):
        self.progress.append((done, total))

    def on_log(self, event):
        self.events.append(event)

    def on_asset_resolved(self, asset):
        self.assets.append(asset)

    def on_group_complete(self, outcome):
        self.outcomes.append(outcome)


def make_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def config():
    return SyncConfig(web_concurrency=4)


@pytest.fixture
def fetcher(mock_session):
    return FetchResolver(session=mock_session)


class TestWebMode:
    @pytest.mark.asyncio
    async def test_all_references_retrieved(self, config, fetcher):
        fake = FakeDownloader([("http://x/a.jpg", ok()), ("http://x/b.jpg", ok())])
        observer = RecordingObserver()
        pipeline = SyncPipeline(config, fetcher, observer=observer)

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await pipeline.run(
                [SourceGroup(name="SKU1", references=["http://x/a.jpg", "http://x/b.jpg"])], "web"
            )

        assert report.status == RunStatus.COMPLETED
        assert [a.member_path for a in report.assets] == ["SKU1/SKU1_1.jpg", "SKU1/SKU1_2.jpg"]
        assert report.assets[0].original_identifier == "http://x/a.jpg"
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.assets_found == 2
        assert outcome.primary_reference == "http://x/a.jpg"
        assert observer.outcomes == report.outcomes
        assert len(observer.assets) == 2
        assert observer.progress[-1] == (2, 2)

    @pytest.mark.asyncio
    async def test_unreachable_reference_makes_group_partial(self, config, fetcher):
        fake = FakeDownloader([("http://x/a.jpg", ok())])
        pipeline = SyncPipeline(config, fetcher)

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await pipeline.run(
                [SourceGroup(name="SKU1", references=["http://x/a.jpg", "http://x/b.jpg"])], "web"
            )

        assert report.status == RunStatus.PARTIAL
        assert report.failed_count == 1
        assert [a.member_path for a in report.assets] == ["SKU1/SKU1_1.jpg"]
        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.assets_found == 1
        assert outcome.notes == "1/2 captured."
        # Four strategies for each reference, a.jpg accepted on the last
        assert len(fake.calls) == 8

    @pytest.mark.asyncio
    async def test_nothing_retrieved(self, config, fetcher):
        pipeline = SyncPipeline(config, fetcher)
        with patch("catalog_sync.fetch.download_url", new=FakeDownloader()):
            report = await pipeline.run(
                [SourceGroup(name="SKU1", references=["http://x/a.jpg"])], "web"
            )

        assert report.status == RunStatus.FAILED
        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert not report.has_assets

    @pytest.mark.asyncio
    async def test_groups_get_distinct_folders(self, config, fetcher):
        fake = FakeDownloader([("http://x/", ok())])
        pipeline = SyncPipeline(config, fetcher)

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await pipeline.run(
                [
                    SourceGroup(name="SKU 1", references=["http://x/a.jpg"]),
                    SourceGroup(name="SKU_1", references=["http://x/b.jpg"]),
                ],
                "web",
            )

        assert [a.member_path for a in report.assets] == [
            "SKU_1/SKU_1_1.jpg",
            "SKU_1_2/SKU_1_2_1.jpg",
        ]

    @pytest.mark.asyncio
    async def test_cancellation_keeps_partial_results(self, mock_session):
        token = CancellationToken()

        async def first_then_cancel(url):
            token.cancel("user stop")
            return ok()

        fake = FakeDownloader([("http://x/a.jpg", first_then_cancel), ("http://x/", ok())])
        fetcher = FetchResolver(session=mock_session, strategies=[DirectStrategy()])
        pipeline = SyncPipeline(SyncConfig(web_concurrency=1), fetcher)

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await pipeline.run(
                [
                    SourceGroup(
                        name="SKU1",
                        references=["http://x/a.jpg", "http://x/b.jpg", "http://x/c.jpg"],
                    ),
                    SourceGroup(name="SKU2", references=["http://x/d.jpg"]),
                ],
                "web",
                token,
            )

        assert report.status == RunStatus.CANCELLED
        assert [a.member_path for a in report.assets] == ["SKU1/SKU1_1.jpg"]
        assert len(report.outcomes) == 1
        assert report.outcomes[0].notes == "Cancelled: 1/3 captured."
        assert fake.calls == ["http://x/a.jpg"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, config, fetcher):
        token = CancellationToken()
        token.cancel()
        report = await SyncPipeline(config, fetcher).run(
            [SourceGroup(name="SKU1", references=["http://x/a.jpg"])], "web", token
        )
        assert report.status == RunStatus.CANCELLED
        assert report.outcomes == []

    @pytest.mark.asyncio
    async def test_unknown_mode(self, config, fetcher):
        with pytest.raises(ConfigurationError):
            await SyncPipeline(config, fetcher).run([], "ftp")


def drive_client_for(tree, downloads=None):
    async def list_children(folder_id, token=None):
        entry = tree.get(folder_id, [])
        if isinstance(entry, BaseException):
            raise entry
        return list(entry)

    async def download_file(file_id, token=None):
        result = (downloads or {}).get(file_id)
        if result is None:
            raise UnreachableError(f"Extraction failed for asset {file_id}: all 3 strategies failed")
        return result

    client = AsyncMock(spec=DriveApiClient)
    client.list_children = AsyncMock(side_effect=list_children)
    client.download_file = AsyncMock(side_effect=download_file)
    return client


def payload(data=JPEG_BYTES, content_type="image/jpeg"):
    return FetchedPayload(payload=data, content_type=content_type, strategy="drive_media", url="u")


class TestDriveMode:
    @pytest.mark.asyncio
    async def test_nested_folders_named_by_container(self, fetcher):
        tree = {
            DRIVE_ROOT: [
                DriveItem(id="i2", name="img_10.jpg", mime_type="image/jpeg"),
                DriveItem(id="i1", name="img_2.jpg", mime_type="image/jpeg"),
                DriveItem(id="sub", name="Back View", mime_type=FOLDER_MIME_TYPE),
            ],
            "sub": [DriveItem(id="i3", name="b.png", mime_type="image/png")],
        }
        client = drive_client_for(
            tree, {"i1": payload(), "i2": payload(), "i3": payload(PNG_BYTES, "image/png")}
        )
        pipeline = SyncPipeline(SyncConfig(), fetcher, drive_client=client)

        report = await pipeline.run(
            [SourceGroup(name="SKU1", references=[f"https://drive.google.com/drive/folders/{DRIVE_ROOT}"])],
            "drive",
        )

        assert report.status == RunStatus.COMPLETED
        paths = {a.original_identifier: a.member_path for a in report.assets}
        assert paths == {
            "img_2.jpg": "SKU1/SKU1_1.jpg",
            "img_10.jpg": "SKU1/SKU1_2.jpg",
            "b.png": "Back_View/Back_View_1.png",
        }
        assert report.outcomes[0].notes == "Sync complete."
        assert report.outcomes[0].assets_found == 3

    @pytest.mark.asyncio
    async def test_failed_downloads_counted(self, fetcher):
        tree = {
            DRIVE_ROOT: [
                DriveItem(id="i1", name="a.jpg", mime_type="image/jpeg"),
                DriveItem(id="i2", name="b.jpg", mime_type="image/jpeg"),
            ]
        }
        client = drive_client_for(tree, {"i1": payload()})
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client).run(
            [SourceGroup(name="SKU1", references=[DRIVE_ROOT])], "drive"
        )

        assert report.status == RunStatus.PARTIAL
        assert report.outcomes[0].notes == "1 items failed."
        assert report.failed_count == 1

    @pytest.mark.asyncio
    async def test_invalid_root_link_aborts_run(self, fetcher):
        tree = {DRIVE_ROOT: [DriveItem(id="i1", name="a.jpg", mime_type="image/jpeg")]}
        client = drive_client_for(tree, {"i1": payload()})
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client).run(
            [
                SourceGroup(name="BAD", references=["https://example.com/nothing"]),
                SourceGroup(name="SKU2", references=[DRIVE_ROOT]),
            ],
            "drive",
        )

        assert report.status == RunStatus.FATAL
        assert report.fatal_error == 'Invalid Drive link in row "BAD".'
        assert len(report.outcomes) == 1
        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert report.assets == []
        client.list_children.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_root_is_not_reported_as_empty(self, fetcher):
        client = drive_client_for({DRIVE_ROOT: ForbiddenError("Forbidden (403)")})
        observer = RecordingObserver()
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client, observer=observer).run(
            [SourceGroup(name="SKU1", references=[DRIVE_ROOT])], "drive"
        )

        assert report.status == RunStatus.FAILED
        assert report.outcomes[0].notes == "Folder unreadable."
        assert report.failed_count == 1
        assert report.stats.errors == 1
        assert not any("Anyone with the link" in e.message for e in observer.events)

    @pytest.mark.asyncio
    async def test_unreadable_subfolder_counted_as_failure(self, fetcher):
        tree = {
            DRIVE_ROOT: [
                DriveItem(id="i1", name="a.jpg", mime_type="image/jpeg"),
                DriveItem(id="sub", name="Locked", mime_type=FOLDER_MIME_TYPE),
            ],
            "sub": ForbiddenError("Forbidden (403)"),
        }
        client = drive_client_for(tree, {"i1": payload()})
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client).run(
            [SourceGroup(name="SKU1", references=[DRIVE_ROOT])], "drive"
        )

        assert report.outcomes[0].notes == "Sync complete. 1 folders unreadable."
        assert report.outcomes[0].status == OutcomeStatus.PARTIAL
        assert report.status == RunStatus.PARTIAL
        assert report.failed_count == 1
        assert len(report.assets) == 1

    @pytest.mark.asyncio
    async def test_empty_folder(self, fetcher):
        client = drive_client_for({DRIVE_ROOT: []})
        observer = RecordingObserver()
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client, observer=observer).run(
            [SourceGroup(name="SKU1", references=[DRIVE_ROOT])], "drive"
        )

        assert report.outcomes[0].notes == "No images found."
        assert report.status == RunStatus.FAILED
        assert any("Anyone with the link" in e.message for e in observer.events)

    @pytest.mark.asyncio
    async def test_credential_error_is_fatal(self, fetcher):
        client = drive_client_for({DRIVE_ROOT: CredentialError("Drive API_KEY rejected: bad key")})
        report = await SyncPipeline(SyncConfig(), fetcher, drive_client=client).run(
            [
                SourceGroup(name="SKU1", references=[DRIVE_ROOT]),
                SourceGroup(name="SKU2", references=[DRIVE_ROOT]),
            ],
            "drive",
        )

        assert report.status == RunStatus.FATAL
        assert "API_KEY rejected" in report.fatal_error
        assert len(report.outcomes) == 1
        assert client.list_children.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_client_is_fatal(self, fetcher):
        report = await SyncPipeline(SyncConfig(), fetcher).run(
            [SourceGroup(name="SKU1", references=[DRIVE_ROOT])], "drive"
        )
        assert report.status == RunStatus.FATAL


class TestGalleryMode:
    @pytest.mark.asyncio
    async def test_gallery_expanded_and_resolved(self, mock_session):
        gallery_html = '<a href="https://postimg.cc/P1"></a><a href="https://postimg.cc/P2"></a>'

        fake = FakeDownloader(
            [
                ("gallery%2FG1", relay(gallery_html)),
                ("postimg.cc%2FP1", relay('<meta property="og:image" content="https://i.postimg.cc/q/one.jpg">')),
                ("postimg.cc%2FP2", relay('<meta property="og:image" content="https://i.postimg.cc/q/two.png">')),
                ("https://i.postimg.cc/q/one.jpg", ok()),
                ("https://i.postimg.cc/q/two.png", ok(PNG_BYTES, "image/png")),
            ]
        )
        fetcher = FetchResolver(session=mock_session, strategies=[DirectStrategy()])

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await SyncPipeline(SyncConfig(), fetcher).run(
                [SourceGroup(name="SKU1", references=["https://postimg.cc/gallery/G1"])], "gallery"
            )

        assert report.status == RunStatus.COMPLETED
        assert [a.member_path for a in report.assets] == ["SKU1/SKU1_1.jpg", "SKU1/SKU1_2.png"]
        assert report.assets[1].source_reference == "https://i.postimg.cc/q/two.png"

    @pytest.mark.asyncio
    async def test_no_links(self, fetcher):
        with patch("catalog_sync.fetch.download_url", new=FakeDownloader()):
            report = await SyncPipeline(SyncConfig(), fetcher).run(
                [SourceGroup(name="SKU1", references=["https://postimg.cc/gallery/G1"])], "gallery"
            )

        assert report.outcomes[0].notes == "Zero links resolved."
        assert report.status == RunStatus.FAILED


class TestDropboxMode:
    @pytest.mark.asyncio
    async def test_zip_and_single_file(self, mock_session):
        archive = make_zip(
            {"set/p10.jpg": JPEG_BYTES, "set/p2.jpg": JPEG_BYTES, "__MACOSX/p2.jpg": b"x", "readme.txt": b"hi"}
        )
        fake = FakeDownloader(
            [
                ("set.zip", ok(archive, "application/zip")),
                ("single.png", ok(PNG_BYTES, "image/png")),
            ]
        )
        fetcher = FetchResolver(session=mock_session, strategies=[DirectStrategy()])

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await SyncPipeline(SyncConfig(), fetcher).run(
                [
                    SourceGroup(
                        name="SKU1",
                        references=[
                            "https://www.dropbox.com/sh/k/set.zip?dl=0",
                            "https://www.dropbox.com/s/k/single.png?dl=0",
                        ],
                    )
                ],
                "dropbox",
            )

        assert report.status == RunStatus.COMPLETED
        assert sorted(a.original_identifier for a in report.assets) == [
            "set/p10.jpg",
            "set/p2.jpg",
            "single.png",
        ]
        assert report.outcomes[0].assets_found == 3
        assert report.outcomes[0].notes == "3 items captured."
        assert all(c.startswith("https://dl.dropboxusercontent.com/") for c in fake.calls)

    @pytest.mark.asyncio
    async def test_non_image_payload_fails(self, mock_session):
        fake = FakeDownloader([("doc", ok(b"%PDF" + b"0" * 500, "application/pdf"))])
        fetcher = FetchResolver(session=mock_session, strategies=[DirectStrategy()])

        with patch("catalog_sync.fetch.download_url", new=fake):
            report = await SyncPipeline(SyncConfig(), fetcher).run(
                [SourceGroup(name="SKU1", references=["https://www.dropbox.com/s/k/doc?dl=0"])],
                "dropbox",
            )

        assert report.outcomes[0].status == OutcomeStatus.FAILED
        assert report.outcomes[0].notes == "Resource unreachable."


class TestHelpers:
    def test_reference_basename(self):
        assert reference_basename("https://x/a/b.jpg?dl=1#f") == "b.jpg"
        assert reference_basename("https://x/") == "x"

    def test_unpack_archive_natural_order(self):
        assets = unpack_archive(make_zip({"b10.jpg": b"1", "b2.jpg": b"2"}), "ref", "SKU1")
        assert [a.original_identifier for a in assets] == ["b2.jpg", "b10.jpg"]
        assert assets[0].group_name == "SKU1"

    def test_unpack_archive_rejects_bad_input(self):
        with pytest.raises(ValidationError, match="Corrupt"):
            unpack_archive(b"PK not a zip", "ref", "G")
        with pytest.raises(ValidationError, match="no images"):
            unpack_archive(make_zip({"a.txt": b"x"}), "ref", "G")
