"""Watch-mode coordinator: wires file events to serialized build cycles."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from rich.console import Console
from watchdog.observers.api import BaseObserver

from sitewatch.logger import BuildError, ContextLogger, SiteWatchError, WatchError

from .collaborators import ExistenceIndex, LoggingReloadServer, PathIndex, ProjectConfig, ReloadServer, WriterFactory
from .config import LOGGER, PROJECT_MANIFEST, ROOT, USE_POLLING, WatchOptions, debounce_delay
from .dependency_graph import DependencyGraph, DependencyResolver, PythonImportResolver
from .events import EventBus, LifecycleEvent, ResourceModifiedEvent, WatchEvent
from .handler import SiteWatchHandler
from .models import BuildRecord, BuildTarget
from .paths import matches_target, normalize_path, starts_with_subpath, strip_leading_dot_slash
from .queue import ChangeQueue
from .reload import ReloadBroadcaster
from .reset_gate import ConfigResetGate
from .session import BuildSession
from .utils import create_observer, safe_print


class WatchCoordinator:
    """Owns the queue, dependency graph and build session for one project."""

    def __init__(
        self,
        config: ProjectConfig,
        writer_factory: WriterFactory,
        options: Optional[WatchOptions] = None,
        *,
        reload_server: Optional[ReloadServer] = None,
        resolver: Optional[DependencyResolver] = None,
        existence_index: Optional[ExistenceIndex] = None,
        events: Optional[EventBus] = None,
        observer_factory: Optional[Callable[[], BaseObserver]] = None,
        console: Optional[Console] = None,
        status_console: Optional[Console] = None,
        root: Optional[Path] = None,
    ):
        self.options = options or WatchOptions()
        self.root = Path(root).resolve() if root is not None else ROOT
        self.events = events or EventBus()
        self.reload_server = reload_server or LoggingReloadServer()
        self.graph = DependencyGraph(
            resolver if resolver is not None else PythonImportResolver(self.root)
        )
        self.session = BuildSession(
            config,
            writer_factory,
            self.options,
            events=self.events,
            graph=self.graph,
            reload_server=self.reload_server,
            console=console,
            status_console=status_console,
            root=self.root,
        )
        self.gate = ConfigResetGate(self.graph, config.get_local_project_config_files)
        self.broadcaster = ReloadBroadcaster(
            self.reload_server,
            includes_dir=lambda: self.config.directories.includes,
            path_prefix=lambda: self.config.path_prefix,
        )
        self.existence_index = existence_index or PathIndex()
        self.queue: Optional[ChangeQueue] = None
        self.observer: Optional[BaseObserver] = None
        self.watched_targets: List[str] = []
        self._observer_factory = observer_factory or (lambda: create_observer(USE_POLLING))
        self._closed = asyncio.Event()
        self._log = ContextLogger(LOGGER, component="watch_coordinator")

    @property
    def config(self) -> ProjectConfig:
        return self.session.config

    # programmatic build API ---------------------------------------------------

    async def execute_build(self, target: BuildTarget | str = BuildTarget.FILES) -> BuildRecord:
        return await self.session.execute_build(target)

    async def write(self) -> BuildRecord:
        return await self.session.write()

    async def to_json(self) -> BuildRecord:
        return await self.session.to_json()

    async def to_ndjson(self) -> BuildRecord:
        return await self.session.to_ndjson()

    async def serve(self, port: Optional[int] = None) -> None:
        await self.reload_server.serve(port)

    # watch targets ----------------------------------------------------------

    async def init_watch(self) -> None:
        self.graph.add([PROJECT_MANIFEST])
        self.graph.add(self.config.get_watch_globs())
        self.graph.add(self.config.get_ignore_files())
        self.graph.add(self.config.get_local_project_config_files())
        self.graph.add(self.config.get_data_files())
        await self._init_watch_dependencies()

    async def _init_watch_dependencies(self) -> None:
        if not self.config.watch_dependencies:
            return

        data_dir = strip_leading_dot_slash(normalize_path(self.config.directories.data or ""))

        def outside_data_dir(path: str) -> bool:
            # the data directory is watched wholesale
            return not data_dir or not starts_with_subpath(path, data_dir)

        await self.graph.add_dependencies(self.config.get_template_files())
        await self.graph.add_dependencies(
            self.config.get_local_project_config_files(), outside_data_dir
        )
        await self.graph.add_dependencies(self.config.get_data_files(), outside_data_dir)

    def get_watched_files(self) -> List[str]:
        return self.graph.get_targets()

    def _watch_new_targets(self, targets: Iterable[str]) -> None:
        added = [t for t in targets if t not in self.watched_targets]
        if added:
            self.watched_targets.extend(added)
            self._log.debug("watching new targets", targets=added)

    def accepts(self, path: str) -> bool:
        """Filter for watcher events: a known target, outside the output directory."""
        if starts_with_subpath(path, self.config.directories.output):
            return False
        return any(matches_target(path, target) for target in self.graph.get_targets())

    # notifications ------------------------------------------------------------

    def _enqueue(self, path: str) -> None:
        if self.queue is None:
            raise WatchError("Change notification received before watch() started")
        rel = normalize_path(path)
        via_reset = self.gate.should_reset([rel])
        self.events.emit_sync(
            LifecycleEvent.RESOURCE_MODIFIED,
            ResourceModifiedEvent(rel, self.graph.get_dependants_of(rel), via_reset),
        )
        self.queue.add(rel)

    def on_change(self, path: str) -> None:
        safe_print(f"File changed: {path}")
        self._enqueue(path)

    def on_add(self, path: str) -> None:
        safe_print(f"File added: {path}")
        self.existence_index.add(path)
        self._enqueue(path)

    def on_unlink(self, path: str) -> None:
        self.existence_index.delete(path)

    # build cycle ----------------------------------------------------------------

    async def _run_cycle(self, active: List[str]) -> None:
        log = self._log.bind(cycle=self.queue.cycles if self.queue is not None else 0)
        reset = self.gate.should_reset(active)
        log.debug("cycle started", files=active, config_reset=reset)

        await self.events.emit(LifecycleEvent.BEFORE_WATCH, WatchEvent(list(active)))
        self.graph.clear_import_cache_for(active)

        if reset:
            await self.session.reset_config()
        self.session.restart()
        await self.session.init(via_config_reset=reset)

        writer = self.session.writer
        incremental_file = self.queue.get_incremental_file() if self.queue is not None else None
        if incremental_file and writer is not None:
            writer.set_incremental_file(incremental_file)
        try:
            record = await self.session.write()
        except Exception as exc:
            await self.reload_server.send_error({"error": exc})
            if isinstance(exc, SiteWatchError):
                raise
            raise BuildError(str(exc)) from exc
        finally:
            if writer is not None:
                writer.reset_incremental_file()

        self.graph.reset()
        await self._init_watch_dependencies()
        self._watch_new_targets(self.graph.get_new_targets_since_last_reset())

        await self.broadcaster.publish(active, record)
        log.debug("cycle finished", ok=record.ok)

    # lifecycle --------------------------------------------------------------------

    async def watch(self) -> None:
        """Run the initial build, then start watching. Fails if the initial build fails."""
        if self.queue is not None:
            raise WatchError("watch() was already started")
        loop = asyncio.get_running_loop()

        record = await self.session.write()
        if record.error is not None:
            raise WatchError("Initial build failed; not entering watch mode") from record.error

        await self.init_watch()
        self.watched_targets = self.get_watched_files()
        self._log.debug("watching for changes", targets=self.watched_targets)

        delay = debounce_delay(self.options, self.config.watch_throttle_wait_time)
        self.queue = ChangeQueue(
            self._run_cycle,
            delay,
            on_fatal=self._on_fatal,
            incremental=self.options.incremental,
        )

        handler = SiteWatchHandler(
            self.root,
            loop,
            on_change=self.on_change,
            on_add=self.on_add,
            on_unlink=self.on_unlink,
            accepts=self.accepts,
        )
        self.observer = self._observer_factory()
        self.observer.schedule(handler, str(self.root), recursive=True)
        self.observer.start()
        self._install_signal_handler(loop)
        safe_print("Watching…")

    def _install_signal_handler(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            loop.add_signal_handler(
                signal.SIGINT, lambda: loop.create_task(self.stop_watch())
            )
        except (NotImplementedError, RuntimeError, ValueError):
            # not supported on this platform/thread; KeyboardInterrupt reaches the CLI instead
            self._log.debug("SIGINT handler not installed")

    async def _on_fatal(self, exc: BaseException) -> None:
        self.session.exit_code = 1
        await self.stop_watch()

    async def stop_watch(self) -> None:
        """Close the reload layer and the watcher; ``wait_closed`` then returns."""
        if self._closed.is_set():
            return
        self._log.debug("Cleaning up watcher and reload server")
        if self.queue is not None:
            self.queue.stop()
        try:
            await self.reload_server.close()
        finally:
            if self.observer is not None:
                self.observer.stop()
                await asyncio.to_thread(self.observer.join)
            try:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
            self._closed.set()

    async def wait_closed(self) -> int:
        await self._closed.wait()
        return self.session.exit_code


__all__ = ["WatchCoordinator"]
