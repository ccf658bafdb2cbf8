"""Watchdog event handler that forwards file changes to the coordinator's event loop."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from .config import LOGGER
from .paths import relative_to_root

Notify = Callable[[str], None]


class SiteWatchHandler(FileSystemEventHandler):
    """Runs on the observer thread; every callback is scheduled onto ``loop``."""

    def __init__(
        self,
        root: Path,
        loop: asyncio.AbstractEventLoop,
        *,
        on_change: Notify,
        on_add: Notify,
        on_unlink: Notify,
        accepts: Optional[Callable[[str], bool]] = None,
    ):
        super().__init__()
        self.root = Path(root).resolve()
        self.loop = loop
        self.on_change = on_change
        self.on_add = on_add
        self.on_unlink = on_unlink
        self.accepts = accepts

    def _relative(self, src_path) -> Optional[str]:
        raw = os.fsdecode(src_path)
        p = Path(raw)
        if not p.is_absolute():
            p = self.root / p
        rel = relative_to_root(p, self.root)
        if rel is None:
            return None
        if self.accepts is not None and not self.accepts(rel):
            return None
        return rel

    def _dispatch(self, callback: Notify, src_path) -> None:
        rel = self._relative(src_path)
        if rel is None:
            return
        if self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(callback, rel)
        except RuntimeError as exc:
            LOGGER.warning("Dropped file event for %s: %s", rel, exc)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch(self.on_change, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch(self.on_add, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch(self.on_unlink, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._dispatch(self.on_unlink, event.src_path)
        self._dispatch(self.on_add, event.dest_path)


__all__ = ["SiteWatchHandler"]
