"""Bootstrap of the reference catalog: download, integrity check, one retry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import Settings, get_settings
from ..data.database.reference import ReferenceDatabase
from ..exceptions import CorruptStoreError, DownloadFailedError, StoreError
from .downloader import DataDownloader

logger = logging.getLogger(__name__)

# Attempts at obtaining a file that passes the integrity check
MAX_ATTEMPTS = 2


class SetupPhase(str, Enum):
    """Phases of the reference store bootstrap."""

    CHECKING = "checking"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class SetupProgress:
    """Progress update during setup."""

    phase: SetupPhase
    progress: float  # 0.0 to 1.0
    message: str
    details: str | None = None


class SetupManager:
    """Makes sure a usable reference catalog is present and opens it."""

    def __init__(
        self,
        settings: Settings | None = None,
        downloader: DataDownloader | None = None,
    ) -> None:
        """Initialize setup manager.

        Args:
            settings: Paths and URLs (defaults to get_settings())
            downloader: Downloader to use; one reporting through this manager's
                callback is created when omitted
        """
        self.settings = settings or get_settings()
        self._downloader = downloader
        self._progress_callback: Callable[[SetupProgress], None] | None = None
        self._phase = SetupPhase.CHECKING

    @property
    def db_path(self) -> Path:
        return self.settings.reference_db_path

    def _report(self, progress: float, message: str, details: str | None = None) -> None:
        """Report progress via callback."""
        if self._progress_callback:
            self._progress_callback(
                SetupProgress(phase=self._phase, progress=progress, message=message, details=details)
            )

    def _set_phase(self, phase: SetupPhase, progress: float, message: str) -> None:
        self._phase = phase
        self._report(progress, message)

    def _get_downloader(self) -> DataDownloader:
        if self._downloader is None:
            self._downloader = DataDownloader(
                progress_callback=self._report, user_agent=self.settings.user_agent
            )
        return self._downloader

    async def ensure_reference_store(
        self,
        progress_callback: Callable[[SetupProgress], None] | None = None,
    ) -> ReferenceDatabase:
        """Return an open reference store that passed its integrity check.

        A missing file is downloaded. A file that fails the check (not SQLite,
        no cards table, or an empty one) is deleted and downloaded once more.

        Raises:
            DownloadFailedError: If no file could be downloaded.
            CorruptStoreError: If the freshly downloaded file also fails the check.
        """
        self._progress_callback = progress_callback
        self._set_phase(SetupPhase.CHECKING, 0.0, "Checking card catalog...")

        last_error: StoreError | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            if not self.db_path.exists():
                await self._download(attempt)

            self._set_phase(SetupPhase.VERIFYING, 0.9, "Verifying card catalog...")
            db = ReferenceDatabase(
                self.db_path,
                max_connections=self.settings.db_max_connections,
                settings=self.settings,
            )
            try:
                await db.connect()
                count = await db.verify_integrity()
            except StoreError as e:
                await db.close()
                last_error = e
                logger.warning(
                    "Reference store failed integrity check (attempt %d/%d): %s",
                    attempt,
                    MAX_ATTEMPTS,
                    e.message,
                )
                self._discard()
                if attempt < MAX_ATTEMPTS:
                    self._set_phase(SetupPhase.RETRYING, 0.0, "Card catalog unusable, downloading again...")
                continue

            logger.info("Reference store ready with %d cards", count)
            self._set_phase(SetupPhase.COMPLETE, 1.0, "Card catalog ready")
            return db

        self._set_phase(SetupPhase.ERROR, 1.0, "Card catalog unavailable")
        if isinstance(last_error, CorruptStoreError):
            reason = last_error.reason
        else:
            reason = last_error.message if last_error else "unknown error"
        raise CorruptStoreError(str(self.db_path), reason)

    async def _download(self, attempt: int) -> None:
        self._set_phase(SetupPhase.DOWNLOADING, 0.0, "Downloading card catalog...")
        try:
            await self._get_downloader().download_reference(
                self.settings.reference_db_url, self.db_path, 0.0, 0.9
            )
        except DownloadFailedError:
            self._set_phase(SetupPhase.ERROR, 1.0, "Card catalog download failed")
            logger.exception("Reference download failed (attempt %d)", attempt)
            raise

    def _discard(self) -> None:
        """Delete the catalog file and its SQLite sidecar files."""
        for suffix in ("", "-wal", "-shm", "-journal"):
            Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)
