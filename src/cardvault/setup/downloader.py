"""Downloading of the reference catalog and the daily price file."""

from __future__ import annotations

import gzip
import logging
import shutil
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx

from ..exceptions import DownloadFailedError

logger = logging.getLogger(__name__)

PRICE_FILE_NAME = "AllPricesToday.json"


def _part_path(dest: Path) -> Path:
    return dest.with_name(dest.name + ".part")


def decompress_gzip(src: Path, dest: Path) -> None:
    """Decompress src into dest, replacing dest only once decompression succeeded."""
    part = _part_path(dest)
    try:
        with gzip.open(src, "rb") as f_in, part.open("wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
    except (OSError, EOFError):
        part.unlink(missing_ok=True)
        raise
    part.replace(dest)


class DataDownloader:
    """Downloads the bulk data files this package depends on."""

    def __init__(
        self,
        progress_callback: Callable[[float, str], None] | None = None,
        timeout: httpx.Timeout | None = None,
        user_agent: str = "cardvault",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize downloader.

        Args:
            progress_callback: Called with (progress 0-1, message) during downloads
            timeout: HTTP timeout; defaults to long reads for the catalog (~500MB)
            user_agent: User-Agent header sent with every request
            transport: Custom httpx transport (tests)
        """
        self._progress_callback = progress_callback or (lambda _p, _m: None)
        self._timeout = timeout or httpx.Timeout(connect=60.0, read=600.0, write=60.0, pool=60.0)
        self._headers = {"User-Agent": user_agent}
        self._transport = transport

    def _report(self, progress: float, message: str) -> None:
        """Report progress to callback."""
        self._progress_callback(progress, message)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def download_file(
        self,
        url: str,
        dest: Path,
        base_progress: float = 0.0,
        step_progress: float = 1.0,
        message: str | None = None,
    ) -> Path:
        """Download a file with progress updates.

        The body is written to "<dest>.part" and renamed to dest only after it
        was fully received, so an interrupted download never leaves a file at
        dest.

        Args:
            url: URL to download
            dest: Destination path
            base_progress: Starting progress value (0-1)
            step_progress: Progress range for this download (0-1)
            message: Status message to show

        Raises:
            DownloadFailedError: On transport errors, non-2xx responses,
                truncated or empty bodies.
        """
        if message:
            self._report(base_progress, message)

        dest.parent.mkdir(parents=True, exist_ok=True)
        part = _part_path(dest)
        downloaded = 0
        total = 0
        try:
            async with self._client() as client, client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0))

                with part.open("wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=65536):
                        f.write(chunk)
                        downloaded += len(chunk)
                        if total > 0:
                            self._report(
                                base_progress + step_progress * downloaded / total,
                                message or "Downloading...",
                            )
        except (httpx.HTTPError, OSError) as e:
            part.unlink(missing_ok=True)
            raise DownloadFailedError(url, str(e)) from e

        if downloaded == 0:
            part.unlink(missing_ok=True)
            raise DownloadFailedError(url, "empty response body")
        if total and downloaded < total:
            part.unlink(missing_ok=True)
            raise DownloadFailedError(url, f"truncated body ({downloaded} of {total} bytes)")

        part.replace(dest)
        logger.info("Downloaded %s (%d bytes) to %s", url, downloaded, dest)
        return dest

    async def download_reference(
        self,
        url: str,
        dest: Path,
        base_progress: float = 0.0,
        step_progress: float = 1.0,
    ) -> Path:
        """Download the reference catalog to dest, decompressing .gz archives."""
        if not url.endswith(".gz"):
            return await self.download_file(
                url, dest, base_progress, step_progress, "Downloading card catalog..."
            )

        gz_path = dest.with_name(dest.name + ".gz")
        await self.download_file(
            url, gz_path, base_progress, step_progress * 0.9, "Downloading card catalog..."
        )
        self._report(base_progress + step_progress * 0.9, "Decompressing card catalog...")
        try:
            decompress_gzip(gz_path, dest)
        except (OSError, EOFError) as e:
            raise DownloadFailedError(url, f"decompression failed: {e}") from e
        finally:
            gz_path.unlink(missing_ok=True)
        return dest

    async def download_price_file(self, url: str, dest_dir: Path) -> Path:
        """Download and extract the daily price archive. Returns the JSON path."""
        zip_path = dest_dir / "prices.zip"
        json_path = dest_dir / PRICE_FILE_NAME
        await self.download_file(url, zip_path, message="Downloading price data...")
        try:
            with zipfile.ZipFile(zip_path) as archive:
                names = archive.namelist()
                member = PRICE_FILE_NAME if PRICE_FILE_NAME in names else next(
                    (n for n in names if n.endswith(".json")), None
                )
                if member is None:
                    raise DownloadFailedError(url, "archive contains no JSON file")
                with archive.open(member) as f_in, _part_path(json_path).open("wb") as f_out:
                    shutil.copyfileobj(f_in, f_out)
        except (zipfile.BadZipFile, OSError) as e:
            _part_path(json_path).unlink(missing_ok=True)
            raise DownloadFailedError(url, f"cannot extract price archive: {e}") from e
        finally:
            zip_path.unlink(missing_ok=True)

        _part_path(json_path).replace(json_path)
        if json_path.stat().st_size == 0:
            json_path.unlink()
            raise DownloadFailedError(url, "extracted price file is empty")
        return json_path
