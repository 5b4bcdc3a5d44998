"""Tests for the reference store bootstrap and downloader."""

from __future__ import annotations

import gzip
from pathlib import Path

import httpx
import pytest
import respx

from cardvault.config import Settings
from cardvault.exceptions import CorruptStoreError, DownloadFailedError
from cardvault.setup import DataDownloader, SetupManager, SetupPhase, SetupProgress

CATALOG_URL = "https://data.example.test/AllPrintings.sqlite"


@pytest.fixture
def catalog_bytes(tmp_path: Path, make_reference) -> bytes:
    """A valid catalog file as served by the download host."""
    return make_reference(tmp_path / "served" / "catalog.sqlite").read_bytes()


class TestDownloader:
    """Test DataDownloader.download_file."""

    @respx.mock
    async def test_download_writes_file(self, tmp_path: Path):
        respx.get("https://files.test/data.bin").mock(return_value=httpx.Response(200, content=b"x" * 1000))
        updates: list[float] = []
        downloader = DataDownloader(progress_callback=lambda p, _m: updates.append(p))

        dest = await downloader.download_file("https://files.test/data.bin", tmp_path / "data.bin")

        assert dest.read_bytes() == b"x" * 1000
        assert not (tmp_path / "data.bin.part").exists()
        assert updates[-1] == pytest.approx(1.0)

    @respx.mock
    async def test_http_error(self, tmp_path: Path):
        respx.get("https://files.test/data.bin").mock(return_value=httpx.Response(503))

        with pytest.raises(DownloadFailedError) as exc_info:
            await DataDownloader().download_file("https://files.test/data.bin", tmp_path / "data.bin")

        assert exc_info.value.url == "https://files.test/data.bin"
        assert not (tmp_path / "data.bin").exists()
        assert not (tmp_path / "data.bin.part").exists()

    @respx.mock
    async def test_connection_error(self, tmp_path: Path):
        respx.get("https://files.test/data.bin").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(DownloadFailedError):
            await DataDownloader().download_file("https://files.test/data.bin", tmp_path / "data.bin")

    @respx.mock
    async def test_empty_body(self, tmp_path: Path):
        respx.get("https://files.test/data.bin").mock(return_value=httpx.Response(200, content=b""))

        with pytest.raises(DownloadFailedError, match="empty"):
            await DataDownloader().download_file("https://files.test/data.bin", tmp_path / "data.bin")
        assert not (tmp_path / "data.bin").exists()

    @respx.mock
    async def test_gzip_reference_is_decompressed(self, tmp_path: Path, catalog_bytes: bytes):
        url = "https://files.test/AllPrintings.sqlite.gz"
        respx.get(url).mock(return_value=httpx.Response(200, content=gzip.compress(catalog_bytes)))

        dest = await DataDownloader().download_reference(url, tmp_path / "reference.sqlite")

        assert dest.read_bytes() == catalog_bytes
        assert not (tmp_path / "reference.sqlite.gz").exists()

    @respx.mock
    async def test_broken_gzip(self, tmp_path: Path):
        url = "https://files.test/AllPrintings.sqlite.gz"
        respx.get(url).mock(return_value=httpx.Response(200, content=b"not gzip at all"))

        with pytest.raises(DownloadFailedError, match="decompression"):
            await DataDownloader().download_reference(url, tmp_path / "reference.sqlite")
        assert not (tmp_path / "reference.sqlite").exists()


class TestEnsureReferenceStore:
    """Test SetupManager.ensure_reference_store."""

    async def test_existing_valid_file_is_not_downloaded(self, settings: Settings, reference_file: Path):
        with respx.mock(assert_all_called=False) as router:
            route = router.get(CATALOG_URL)
            db = await SetupManager(settings).ensure_reference_store()

        try:
            assert not route.called
            assert await db.verify_integrity() == 7
        finally:
            await db.close()

    @respx.mock
    async def test_missing_file_is_downloaded(self, settings: Settings, catalog_bytes: bytes):
        route = respx.get(CATALOG_URL).mock(return_value=httpx.Response(200, content=catalog_bytes))
        updates: list[SetupProgress] = []

        db = await SetupManager(settings).ensure_reference_store(updates.append)
        try:
            assert route.call_count == 1
            assert settings.reference_db_path.exists()
            assert await db.get_card("lea-black-lotus") is not None
        finally:
            await db.close()

        phases = [u.phase for u in updates]
        assert phases[0] is SetupPhase.CHECKING
        assert SetupPhase.DOWNLOADING in phases
        assert phases[-1] is SetupPhase.COMPLETE

    @respx.mock
    async def test_corrupt_file_is_replaced(self, settings: Settings, catalog_bytes: bytes):
        """Test that a file failing the check is deleted and downloaded again."""
        settings.reference_db_path.parent.mkdir(parents=True, exist_ok=True)
        settings.reference_db_path.write_bytes(b"this is not a database" * 100)
        route = respx.get(CATALOG_URL).mock(return_value=httpx.Response(200, content=catalog_bytes))
        updates: list[SetupProgress] = []

        db = await SetupManager(settings).ensure_reference_store(updates.append)
        try:
            assert route.call_count == 1
            assert await db.verify_integrity() == 7
        finally:
            await db.close()
        assert SetupPhase.RETRYING in [u.phase for u in updates]

    @respx.mock
    async def test_empty_catalog_is_retried_once(
        self, settings: Settings, tmp_path: Path, make_reference
    ):
        """Test that a second failing download is reported as corrupt, without a third attempt."""
        empty = make_reference(tmp_path / "served" / "empty.sqlite", cards=[]).read_bytes()
        route = respx.get(CATALOG_URL).mock(return_value=httpx.Response(200, content=empty))

        with pytest.raises(CorruptStoreError, match="cards table is empty"):
            await SetupManager(settings).ensure_reference_store()

        assert route.call_count == 2
        assert not settings.reference_db_path.exists()

    @respx.mock
    async def test_download_failure(self, settings: Settings):
        respx.get(CATALOG_URL).mock(return_value=httpx.Response(404))
        updates: list[SetupProgress] = []

        with pytest.raises(DownloadFailedError):
            await SetupManager(settings).ensure_reference_store(updates.append)
        assert updates[-1].phase is SetupPhase.ERROR

    @respx.mock
    async def test_retry_download_failure(self, settings: Settings):
        """Test that a failed re-download after a corrupt file propagates."""
        settings.reference_db_path.parent.mkdir(parents=True, exist_ok=True)
        settings.reference_db_path.write_bytes(b"garbage" * 100)
        respx.get(CATALOG_URL).mock(side_effect=httpx.ConnectError("offline"))

        with pytest.raises(DownloadFailedError):
            await SetupManager(settings).ensure_reference_store()
        assert not settings.reference_db_path.exists()
