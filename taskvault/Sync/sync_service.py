# sync_service.py
# Description: Wires the sync core together and runs it for a host (CLI or application)
#
# Imports
import asyncio
from typing import Callable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .change_detector import ChangeDetector
from .command_queue import BatchOutcome, CommandQueue
from .cursor_store import CursorStore
from .errors import RemoteRejection, TaskVaultError
from .intents import Intent
from .location_resolver import LocationResolver
from .models import SyncMode, SyncProgress
from .state import SyncState
from .sync_engine import ReconciliationEngine
from .tree_writer import TreeWriter
from ..config import SyncSettings
from ..Todoist.remote_service import RemoteTaskService
from ..Todoist.todoist_client import TodoistSyncClient
from ..Vault.file_watcher import LocalEdit, VaultWatcher
from ..Vault.filesystem_store import FilesystemTreeStore
#
########################################################################################################################
#
# Classes:

class SyncService:
    """Owns one vault's sync state and every component acting on it."""

    def __init__(self,
                 settings: SyncSettings,
                 remote: Optional[RemoteTaskService] = None,
                 store=None):
        self.settings = settings
        self.store = store or FilesystemTreeStore(settings.vault_root)
        self.remote = remote or TodoistSyncClient(
            settings.api_token, sync_url=settings.sync_url, timeout=settings.timeout_seconds
        )
        self.state = SyncState(cursor_store=CursorStore(settings.cursor_path))
        self.resolver = LocationResolver.from_settings(self.store, self.state, settings)
        self.writer = TreeWriter(self.store, self.state, self.resolver)
        self.engine = ReconciliationEngine(self.remote, self.store, self.state, self.resolver, self.writer)
        self.queue = CommandQueue(self.remote, self.state, self.writer, settings.debounce_seconds)
        self.detector = ChangeDetector(self.store, self.state, self.resolver, self.queue)
        self.watcher = VaultWatcher(settings.vault_root)

        self.is_running = False
        self._sync_task: Optional[asyncio.Task] = None

        # Callbacks for host updates
        self.on_sync_started: Optional[Callable[[SyncMode], None]] = None
        self.on_sync_completed: Optional[Callable[[SyncProgress], None]] = None
        self.on_sync_error: Optional[Callable[[Exception], None]] = None
        self.on_command_rejected: Optional[Callable[[RemoteRejection], None]] = None
        self.on_batch_failed: Optional[Callable[[List[Intent], TaskVaultError], None]] = None

        self.engine.on_sync_started = lambda mode: self._forward(self.on_sync_started, mode)
        self.engine.on_sync_completed = lambda progress: self._forward(self.on_sync_completed, progress)
        self.engine.on_sync_error = lambda error: self._forward(self.on_sync_error, error)
        self.queue.on_command_rejected = lambda rejection: self._forward(self.on_command_rejected, rejection)
        self.queue.on_batch_failed = lambda intents, error: self._forward(self.on_batch_failed, intents, error)

    @staticmethod
    def _forward(callback: Optional[Callable], *args) -> None:
        if callback is not None:
            callback(*args)

    async def run_sync(self, full: bool = False) -> Optional[SyncProgress]:
        """Run one pass; failures are reported, never raised to the host."""
        try:
            return await self.engine.sync(full=full)
        except TaskVaultError as e:
            logger.error(f"Sync pass failed: {e}")
            return None

    def handle_local_edit(self, edit: LocalEdit) -> Optional[Intent]:
        """Watcher callback: feed one edit through the change detector."""
        try:
            return self.detector.handle_edit(edit.path, edit.old_path)
        except Exception as e:
            logger.exception(f"Error handling local edit of {edit.path}: {e}")
            return None

    async def flush(self) -> Optional[BatchOutcome]:
        return await self.queue.flush()

    async def start(self, initial_full: bool = False) -> None:
        """Initial pass, then watch the vault (and sync periodically if configured)."""
        if self.is_running:
            return
        self.is_running = True
        await self.run_sync(full=initial_full)
        self.watcher.start(self.handle_local_edit)
        if self.settings.sync_interval_seconds > 0:
            self._sync_task = asyncio.create_task(self._sync_loop())
        logger.info("Sync service started")

    async def _sync_loop(self) -> None:
        """Periodic incremental passes while running."""
        while self.is_running:
            try:
                await asyncio.sleep(self.settings.sync_interval_seconds)
                await self.run_sync()
            except asyncio.CancelledError:
                break

    async def stop(self) -> None:
        """Stop watching, send what is still queued, release the client."""
        self.is_running = False
        self.watcher.stop()
        if self._sync_task:
            self._sync_task.cancel()
            self._sync_task = None
        await self.queue.close()
        await self.remote.close()
        logger.info("Sync service stopped")

#
# End of sync_service.py
########################################################################################################################
