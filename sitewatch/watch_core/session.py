"""One build pass against one output target.

The session owns configuration initialization and the write pipeline. It
holds no lock of its own: the change queue guarantees that watch-mode
passes never overlap, and programmatic callers share a single in-flight
initialization.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from sitewatch.logger import ConfigurationError, ContextLogger, FatalBuildError, SiteWatchError

from .carryover import StateCarryoverCache
from .collaborators import LoggingReloadServer, ProjectConfig, ReloadServer, WritePipeline, WriterFactory
from .config import LOGGER, ROOT, VERSION, WatchOptions
from .dependency_graph import DependencyGraph
from .events import (
    BuildEvent,
    ConfigEvent,
    DirectoriesEvent,
    EnvEvent,
    EventBus,
    ExtensionMapEvent,
    LifecycleEvent,
)
from .models import BuildRecord, BuildTarget, flatten_results, to_ndjson
from .paths import normalize_path, strip_leading_dot_slash
from .utils import pluralize

WRITER_CACHE_KEY = "write_pipeline"


@dataclass
class BuildTelemetry:
    builds: int = 0
    failures: int = 0
    last_elapsed: float = 0.0

    def finish(self, elapsed: float, ok: bool) -> None:
        self.builds += 1
        if not ok:
            self.failures += 1
        self.last_elapsed = elapsed
        LOGGER.debug(
            "build finished",
            extra={"builds": self.builds, "failures": self.failures, "elapsed": round(elapsed, 4)},
        )


class BuildSession:
    def __init__(
        self,
        config: ProjectConfig,
        writer_factory: WriterFactory,
        options: Optional[WatchOptions] = None,
        *,
        events: Optional[EventBus] = None,
        graph: Optional[DependencyGraph] = None,
        reload_server: Optional[ReloadServer] = None,
        carryover: Optional[StateCarryoverCache] = None,
        console: Optional[Console] = None,
        status_console: Optional[Console] = None,
        root: Optional[Path] = None,
    ):
        self.config = config
        self.writer_factory = writer_factory
        self.options = options or WatchOptions()
        self.events = events or EventBus()
        self.graph = graph
        self.reload_server = reload_server or LoggingReloadServer()
        self.carryover = carryover or StateCarryoverCache()
        self.console = console or Console(highlight=False)
        # document and stream builds keep stdout for their output
        self.status_console = status_console or Console(stderr=True, highlight=False)
        self.root = Path(root) if root is not None else ROOT
        self.writer: Optional[WritePipeline] = None
        self.needs_init = True
        self.env: Dict[str, str] = {}
        self.verbose = True
        self.incremental_file: Optional[str] = None
        self.exit_code = 0
        self.start = time.perf_counter()
        self.telemetry = BuildTelemetry()
        self._config_initialized = False
        self._init_task: Optional[asyncio.Future] = None
        self._log = ContextLogger(LOGGER, component="build_session")

    @property
    def source(self) -> str:
        return self.options.source

    @property
    def run_mode(self) -> str:
        return self.options.run_mode

    @property
    def incremental(self) -> bool:
        return self.options.incremental

    def set_incremental_file(self, path: Optional[str]) -> None:
        """Programmatic incremental build of a single file; implies ignore-initial."""
        if path:
            self.options.run_initial_build = False
            self.options.incremental = True
            self.incremental_file = normalize_path(path)

    # environment -----------------------------------------------------------

    def environment_values(self) -> Dict[str, str]:
        values = {"source": self.source, "runMode": self.run_mode}
        config_files = self.config.get_local_project_config_files()
        if config_files:
            config_path = (self.root / strip_leading_dot_slash(config_files[0])).resolve()
            values["config"] = str(config_path)
            values["root"] = str(config_path.parent)
        return values

    def publish_environment(self, env: Dict[str, str]) -> None:
        os.environ["SITEWATCH_VERSION"] = VERSION
        if env.get("root"):
            os.environ["SITEWATCH_ROOT"] = env["root"]
        os.environ["SITEWATCH_SOURCE"] = env["source"]
        os.environ["SITEWATCH_RUN_MODE"] = env["runMode"]

    # initialization ----------------------------------------------------------

    def _apply_options(self) -> None:
        if self.options.path_prefix is not None:
            self.config.path_prefix = self.options.path_prefix
        if self.options.input_dir:
            self.config.directories.input = normalize_path(self.options.input_dir)
        if self.options.output_dir:
            self.config.directories.output = normalize_path(self.options.output_dir)
        if self.options.quiet is not None:
            self.verbose = not self.options.quiet
        else:
            self.verbose = not self.config.quiet_mode

    async def initialize_config(self) -> None:
        self.env = self.environment_values()
        self.publish_environment(self.env)
        try:
            await self.config.init()
        except SiteWatchError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"Configuration failed to initialize: {exc}") from exc
        self._apply_options()
        self._config_initialized = True

    async def init(self, via_config_reset: bool = False) -> None:
        """(Re)create the write pipeline, carrying state over unless this follows a config reset."""
        if not self._config_initialized:
            await self.initialize_config()

        await self.events.emit(LifecycleEvent.CONFIG, ConfigEvent(self.config))
        if self.env:
            await self.events.emit(LifecycleEvent.ENV, EnvEvent(dict(self.env)))
        await self.events.emit(
            LifecycleEvent.EXTENSION_MAP, ExtensionMapEvent(self.config.get_template_formats())
        )

        directories = self.config.directories
        self.reload_server.set_output_dir(directories.output)
        if self.run_mode == "serve":
            self.reload_server.watch_passthrough_copy(self.config.get_passthrough_copy_globs())

        await self.events.emit(LifecycleEvent.DIRECTORIES, DirectoriesEvent(directories.userspace()))

        writer = self.writer_factory(self.config)
        if writer is not None:
            if not via_config_reset:
                self.carryover.sync(WRITER_CACHE_KEY, writer)
            writer.set_run_initial_build(self.options.run_initial_build)
            writer.set_incremental_build(self.options.incremental)
        self.writer = writer

        self._log.debug(
            "session initialized",
            input=directories.input,
            output=directories.output,
            data=directories.data,
            includes=directories.includes,
            formats=self.config.get_template_formats(),
            via_config_reset=via_config_reset,
        )
        self.needs_init = False

    async def ensure_initialized(self) -> None:
        """Initialize once; concurrent callers await the same in-flight initialization."""
        if not self.needs_init:
            return
        task = self._init_task
        if task is None:
            task = self._init_task = asyncio.ensure_future(self.init())
        try:
            await task
        except BaseException:
            if self._init_task is task:
                self._init_task = None
            raise

    async def reset_config(self) -> None:
        self.env = self.environment_values()
        self.publish_environment(self.env)
        try:
            await self.config.reset()
        except SiteWatchError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"Configuration failed to reset: {exc}") from exc
        self._apply_options()

    def restart(self) -> None:
        self.start = time.perf_counter()

    # summary -----------------------------------------------------------------

    def summary_line(self) -> str:
        if self.writer is None:
            raise FatalBuildError("No write pipeline; was the build session initialized?")
        write_count = self.writer.write_count
        skipped_count = self.writer.skipped_count
        copy_count = self.writer.copy_count

        parts = []
        if copy_count:
            parts.append(f"Copied {copy_count} {pluralize(copy_count, 'file', 'files')}")
        skipped = f" (skipped {skipped_count})" if skipped_count else ""
        parts.append(f"Wrote {write_count} {pluralize(write_count, 'file', 'files')}{skipped}")

        elapsed = time.perf_counter() - self.start
        seconds = f"{elapsed:.2f}"
        ret = [" / ".join(parts), f"in {seconds} {pluralize(float(seconds), 'second', 'seconds')}"]
        if write_count >= 10:
            ret.append(f"({elapsed * 1000 / write_count:.1f}ms each, v{VERSION})")
        else:
            ret.append(f"(v{VERSION})")
        return " ".join(ret)

    # build -------------------------------------------------------------------

    def _report(self, exc: BaseException, fatal: bool) -> None:
        if fatal:
            self.exit_code = 1
            self._log.critical(
                "Problem writing templates", exc_info=(type(exc), exc, exc.__traceback__)
            )
        else:
            self._log.error(
                "Problem writing templates", exc_info=(type(exc), exc, exc.__traceback__)
            )

    async def execute_build(self, target: Any = BuildTarget.FILES) -> BuildRecord:
        try:
            target = BuildTarget.parse(target)
        except ValueError:
            raise FatalBuildError(
                f'Invalid build target {target!r}, expected "fs", "json", or "ndjson".'
            ) from None

        await self.ensure_initialized()
        if self.writer is None:
            raise FatalBuildError("Build session did not initialize a write pipeline.")

        if self.incremental_file:
            self.writer.set_incremental_file(self.incremental_file)

        record = BuildRecord(target=target)
        try:
            event = BuildEvent(
                directories=self.config.directories.userspace(),
                run_mode=self.run_mode,
                output_mode=target.value,
                incremental=self.incremental,
            )
            await self.events.emit(LifecycleEvent.BEFORE_BUILD, event)

            if target is BuildTarget.FILES:
                raw = await self.writer.write()
            else:
                raw = await self.writer.get_document(target.value)
            raw = list(raw or [])

            record.copy_results = list(raw[0] or []) if raw else []
            record.template_results = flatten_results(raw[1:])
            if target is BuildTarget.STREAM:
                record.stream = to_ndjson(record.template_results)
            if self.graph is not None:
                record.dependency_snapshot = self.graph.snapshot()

            event.results = list(record.template_results)
            event.uses = record.dependency_snapshot
            await self.events.emit(LifecycleEvent.AFTER_BUILD, event)
        except Exception as exc:
            record.error = exc
            if self.source == "script":
                self._report(exc, fatal=False)
                raise
            self._report(exc, fatal=True)
        finally:
            record.write_count = self.writer.write_count
            record.skipped_count = self.writer.skipped_count
            record.copy_count = self.writer.copy_count
            self.telemetry.finish(time.perf_counter() - self.start, record.error is None)
            out = self.console if target is BuildTarget.FILES else self.status_console
            out.print(
                self.summary_line(),
                style="red" if record.error is not None else "green",
                markup=False,
            )
            LOGGER.debug("Finished writing templates.")
        return record

    async def write(self) -> BuildRecord:
        return await self.execute_build(BuildTarget.FILES)

    async def to_json(self) -> BuildRecord:
        return await self.execute_build(BuildTarget.DOCUMENT)

    async def to_ndjson(self) -> BuildRecord:
        return await self.execute_build(BuildTarget.STREAM)


__all__ = ["BuildSession", "BuildTelemetry", "WRITER_CACHE_KEY"]
