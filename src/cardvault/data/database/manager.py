"""Database connection management."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ...config import Settings, get_settings
from ...exceptions import StoreError
from ...sources import LorcanaSource, ScryfallSource
from ...tasks import BackgroundTaskQueue
from .app import ApplicationDatabase
from .lorcana import LorcanaDatabase
from .reference import ReferenceDatabase

if TYPE_CHECKING:
    from collections.abc import Callable

    from ...setup import SetupManager, SetupProgress

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the store handles, network sources and background queue.

    Nothing is opened at construction; start() opens the application store
    (required) and the reference store (optional), stop() closes everything.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        setup: SetupManager | None = None,
    ):
        """Initialize the manager.

        Args:
            settings: Paths and tuning (defaults to get_settings()).
            setup: Bootstraps (downloads, verifies) the reference store. Without
                it an existing catalog file is opened and verified as is.
        """
        self._settings = settings or get_settings()
        self._setup = setup
        self._app: ApplicationDatabase | None = None
        self._reference: ReferenceDatabase | None = None
        self._lorcana: LorcanaDatabase | None = None
        self.tasks = BackgroundTaskQueue(self._settings.background_concurrency)
        self.scryfall = ScryfallSource(self._settings)
        self.lorcana_source = LorcanaSource(self._settings)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def app(self) -> ApplicationDatabase:
        """Get the application store."""
        if self._app is None:
            raise RuntimeError("DatabaseManager not started. Call start() first.")
        return self._app

    @property
    def reference(self) -> ReferenceDatabase | None:
        """Get the reference store (None while the catalog is unavailable)."""
        return self._reference

    @property
    def lorcana(self) -> LorcanaDatabase | None:
        """Get the Lorcana store (None until start_lorcana())."""
        return self._lorcana

    async def start(
        self,
        progress_callback: Callable[[SetupProgress], None] | None = None,
    ) -> None:
        """Open the application store and, if possible, the reference store.

        Raises:
            StoreError: If the application store cannot be opened. Reference
                store failures are logged and leave reference as None.
        """
        app = ApplicationDatabase(
            self._settings.app_db_path,
            max_connections=self._settings.db_max_connections,
            settings=self._settings,
        )
        await app.connect()
        self._app = app

        try:
            self._reference = await self._open_reference(progress_callback)
        except StoreError:
            logger.exception("Reference store unavailable, running without catalog")
            self._reference = None

    async def _open_reference(
        self,
        progress_callback: Callable[[SetupProgress], None] | None,
    ) -> ReferenceDatabase | None:
        if self._setup is not None:
            return await self._setup.ensure_reference_store(progress_callback)

        path = self._settings.reference_db_path
        if not path.exists():
            logger.warning("No reference store at %s", path)
            return None
        reference = ReferenceDatabase(
            path, max_connections=self._settings.db_max_connections, settings=self._settings
        )
        try:
            await reference.connect()
            await reference.verify_integrity()
        except StoreError:
            await reference.close()
            raise
        return reference

    async def start_lorcana(self, import_catalog: bool = True) -> LorcanaDatabase:
        """Explicitly open the Lorcana store, importing its catalog if empty."""
        if self._lorcana is None:
            lorcana = LorcanaDatabase(
                self._settings.lorcana_db_path,
                source=self.lorcana_source,
                tasks=self.tasks,
                max_connections=self._settings.db_max_connections,
                settings=self._settings,
            )
            await lorcana.connect()
            self._lorcana = lorcana
        if import_catalog:
            await self._lorcana.initialize()
        return self._lorcana

    async def stop(self) -> None:
        """Finish background work and close every store and client."""
        await self.tasks.close(cancel=True)
        self.tasks = BackgroundTaskQueue(self._settings.background_concurrency)

        if self._lorcana:
            await self._lorcana.close()
            self._lorcana = None

        if self._reference:
            await self._reference.close()
            self._reference = None

        if self._app:
            await self._app.close()
            self._app = None

        await self.scryfall.close()
        await self.lorcana_source.close()
