# file_watcher.py
# Description: Watches the vault for document edits and hands them to the asyncio loop
#
# Imports
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
#
# Third-Party Imports
from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
#
########################################################################################################################
#
# Classes:

@dataclass
class LocalEdit:
    """One document change reported by the watcher (vault-relative paths)."""
    path: str
    old_path: Optional[str] = None


class VaultFileWatcher(FileSystemEventHandler):
    """Forwards markdown create/modify/move events from the observer thread into the loop."""

    def __init__(self, vault_root: Path, loop: asyncio.AbstractEventLoop, callback: Callable[[LocalEdit], None]):
        self.vault_root = Path(vault_root).resolve()
        self.loop = loop
        self.callback = callback

    def _relative(self, src_path) -> Optional[str]:
        path = Path(src_path if isinstance(src_path, str) else src_path.decode())
        if path.suffix != ".md":
            return None
        try:
            relative = path.resolve().relative_to(self.vault_root)
        except ValueError:
            return None
        if any(part.startswith(".") for part in relative.parts):
            return None
        return relative.as_posix()

    def _emit(self, edit: LocalEdit) -> None:
        self.loop.call_soon_threadsafe(self.callback, edit)

    def on_modified(self, event: FileSystemEvent):
        if event.is_directory:
            return
        path = self._relative(event.src_path)
        if path:
            self._emit(LocalEdit(path))

    def on_created(self, event: FileSystemEvent):
        self.on_modified(event)

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            return
        new_path = self._relative(event.dest_path)
        if new_path:
            self._emit(LocalEdit(new_path, old_path=self._relative(event.src_path)))


class VaultWatcher:
    """Owns the watchdog observer for one vault."""

    def __init__(self, vault_root: Path):
        self.vault_root = Path(vault_root)
        self.observer: Optional[Observer] = None

    @property
    def is_running(self) -> bool:
        return self.observer is not None

    def start(self, callback: Callable[[LocalEdit], None]) -> None:
        """Start watching; ``callback`` runs on the current event loop."""
        if self.observer is not None:
            return
        self.vault_root.mkdir(parents=True, exist_ok=True)
        handler = VaultFileWatcher(self.vault_root, asyncio.get_running_loop(), callback)
        self.observer = Observer()
        self.observer.schedule(handler, str(self.vault_root), recursive=True)
        self.observer.start()
        logger.info(f"Watching {self.vault_root} for local edits")

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None
        logger.info("Stopped watching for local edits")

#
# End of file_watcher.py
########################################################################################################################
