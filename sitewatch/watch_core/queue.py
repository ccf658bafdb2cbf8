"""Debounced, single-flight change queue used by the watcher."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sitewatch.logger import FatalBuildError, SiteWatchError

from .collaborators import maybe_await
from .config import DELAY_SECS, LOGGER
from .paths import normalize_path
from .utils import safe_print


class ChangeQueue:
    """Collects changed paths and runs one build cycle per quiet period.

    Paths added while no cycle is running restart the debounce timer. Paths
    added while a cycle is running only accumulate; when the cycle finishes
    they are drained straight into the next cycle with no extra delay. All
    methods must be called from the event loop thread.
    """

    def __init__(
        self,
        process_cb: Callable[[List[str]], Awaitable[Any]],
        delay: float = DELAY_SECS,
        *,
        on_fatal: Optional[Callable[[BaseException], Any]] = None,
        incremental: bool = False,
    ):
        self._process_cb = process_cb
        self._on_fatal = on_fatal
        self.delay = max(0.0, float(delay))
        self.incremental = incremental
        self._paths: Dict[str, None] = {}
        self._active: List[str] = []
        self._build_running = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopped = False
        self.cycles = 0

    @property
    def build_running(self) -> bool:
        return self._build_running

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active_queue(self) -> List[str]:
        return list(self._active)

    @property
    def pending(self) -> List[str]:
        return list(self._paths)

    def pending_size(self) -> int:
        return len(self._paths)

    def has_all_active(self, predicate: Callable[[str], bool]) -> bool:
        return bool(self._active) and all(predicate(p) for p in self._active)

    def get_incremental_file(self) -> Optional[str]:
        if self.incremental and self._active:
            return self._active[0]
        return None

    def add(self, path: str) -> Optional[str]:
        if self._stopped:
            return None
        p = normalize_path(path)
        self._paths[p] = None
        if self._build_running:
            # seeds the follow-up cycle; no timer while a build is in flight
            return p
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._idle.clear()
        self._timer = loop.call_later(self.delay, self._flush)
        return p

    def _flush(self) -> None:
        self._timer = None
        if self._build_running or self._stopped:
            return
        self._build_running = True
        self._task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        fatal: Optional[BaseException] = None
        try:
            while self._paths and not self._stopped:
                self._active = list(self._paths)
                self._paths.clear()
                self.cycles += 1
                try:
                    await self._process_cb(list(self._active))
                except FatalBuildError as exc:
                    LOGGER.critical(
                        "Build session aborted",
                        extra={"error": str(exc), "batch_size": len(self._active)},
                        exc_info=True,
                    )
                    self._stopped = True
                    fatal = exc
                    break
                except SiteWatchError as exc:
                    LOGGER.error(
                        "Watch cycle failed",
                        extra={"error": str(exc), "batch_size": len(self._active)},
                        exc_info=True,
                    )
                except Exception as exc:
                    LOGGER.critical(
                        "Fatal watch error",
                        extra={"error": str(exc), "batch_size": len(self._active)},
                        exc_info=True,
                    )
                    self._stopped = True
                    fatal = exc
                    break
                if self._paths and not self._stopped:
                    n = len(self._paths)
                    safe_print(
                        f"You saved while the build was running, running again. "
                        f"({n} change{'s' if n != 1 else ''})"
                    )
        finally:
            self._build_running = False
            if self._timer is None:
                self._idle.set()
        if fatal is not None:
            if self._on_fatal is not None:
                await maybe_await(self._on_fatal(fatal))
        elif not self._stopped:
            safe_print("Watching…")

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no cycle is running."""
        while True:
            await self._idle.wait()
            task = self._task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            if self._timer is None and not self._build_running:
                return

    def stop(self) -> None:
        self._stopped = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._build_running:
            self._idle.set()


__all__ = ["ChangeQueue"]
