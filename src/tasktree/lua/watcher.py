"""
File watching for definition files.

DefinitionWatcher observes a directory with watchdog and calls back with
the path of every changed .lua file. Rapid successive changes to one file
(editors often write twice) are batched with a debounce timer.

    watcher = DefinitionWatcher(Path("tasks"), on_change)
    watcher.start_watching()
    ...
    watcher.stop_watching()
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import TaskTreeError

logger = logging.getLogger(__name__)


class LuaFileHandler(FileSystemEventHandler):
    """Forwards created/modified .lua files to a watcher."""

    def __init__(self, watcher: "DefinitionWatcher") -> None:
        self.watcher = watcher

    def _forward(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(event.src_path)
        if path.suffix == ".lua":
            self.watcher.on_file_changed(path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event)


class DefinitionWatcher:
    """Watch a directory of definition files and report changes.

    Args:
        directory: Directory to watch (recursively).
        callback: Called with the resolved path of each changed file, on the
            debounce timer's thread.
        debounce_ms: Quiet period before a change is reported.
        only: If set, changes to other files are ignored.
    """

    def __init__(
        self,
        directory: Path,
        callback: Callable[[Path], None],
        debounce_ms: int = 200,
        only: Optional[Path] = None,
    ) -> None:
        self._directory = Path(directory)
        self._callback = callback
        self._debounce_ms = debounce_ms
        self._only = only.resolve() if only is not None else None

        self._observer: Optional[Observer] = None
        self._watching = False
        self._watch_lock = threading.Lock()
        self._pending_changes: Dict[Path, threading.Timer] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def is_watching(self) -> bool:
        return self._watching

    @property
    def pending(self) -> int:
        """Changes waiting for their debounce timer."""
        return len(self._pending_changes)

    def start_watching(self) -> None:
        """Start the observer thread. No effect if already watching."""
        with self._watch_lock:
            if self._watching:
                return
            self._observer = Observer()
            self._observer.schedule(LuaFileHandler(self), str(self._directory), recursive=True)
            self._observer.start()
            self._watching = True
            logger.info(f"Started watching {self._directory} for changes")

    def stop_watching(self) -> None:
        """Stop the observer and cancel pending changes."""
        with self._watch_lock:
            if not self._watching:
                return

            if self._observer:
                self._observer.stop()
                self._observer.join(timeout=5.0)
                self._observer = None

            for timer in self._pending_changes.values():
                timer.cancel()
            self._pending_changes.clear()

            self._watching = False
            logger.info("Stopped watching for changes")

    def on_file_changed(self, path: Path) -> None:
        """Schedule a debounced callback for a changed file."""
        path = path.resolve()
        if self._only is not None and path != self._only:
            return

        if path in self._pending_changes:
            self._pending_changes[path].cancel()

        def apply_change() -> None:
            try:
                self._apply_file_change(path)
            finally:
                self._pending_changes.pop(path, None)

        timer = threading.Timer(self._debounce_ms / 1000.0, apply_change)
        timer.daemon = True
        self._pending_changes[path] = timer
        timer.start()

    def _apply_file_change(self, path: Path) -> None:
        logger.info(f"[WATCH] Detected change: {path}")
        try:
            self._callback(path)
        except TaskTreeError as e:
            logger.error(f"[WATCH] Reload of {path} failed: {e}")


__all__ = ["DefinitionWatcher", "LuaFileHandler"]
