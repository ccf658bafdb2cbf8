"""Interfaces of the collaborators the coordinator drives, plus in-process defaults.

Rendering, configuration-file loading and the dev-server transport live
outside this package; the coordinator only talks to them through these
protocols.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Set, Union, runtime_checkable

from .config import LOGGER
from .paths import normalize_path


@dataclass
class ProjectDirectories:
    input: str = "./"
    output: str = "./_site/"
    data: str = "./_data/"
    includes: str = "./_includes/"
    layouts: Optional[str] = None
    input_file: Optional[str] = None

    def userspace(self) -> Dict[str, Optional[str]]:
        return {
            "input": self.input,
            "inputFile": self.input_file,
            "output": self.output,
            "data": self.data,
            "includes": self.includes,
            "layouts": self.layouts,
        }


@runtime_checkable
class ProjectConfig(Protocol):
    directories: ProjectDirectories
    path_prefix: str
    quiet_mode: bool
    watch_throttle_wait_time: Optional[float]
    watch_dependencies: bool

    async def init(self) -> None: ...

    async def reset(self) -> None: ...

    def get_local_project_config_files(self) -> List[str]: ...

    def get_watch_globs(self) -> List[str]: ...

    def get_ignore_files(self) -> List[str]: ...

    def get_template_files(self) -> List[str]: ...

    def get_data_files(self) -> List[str]: ...

    def get_passthrough_copy_globs(self) -> List[str]: ...

    def get_template_formats(self) -> List[str]: ...


@runtime_checkable
class WritePipeline(Protocol):
    write_count: int
    skipped_count: int
    copy_count: int

    async def write(self) -> List[Any]: ...

    async def get_document(self, mode: str) -> List[Any]: ...

    def set_incremental_file(self, path: str) -> None: ...

    def reset_incremental_file(self) -> None: ...

    def set_run_initial_build(self, value: bool) -> None: ...

    def set_incremental_build(self, value: bool) -> None: ...


WriterFactory = Callable[[ProjectConfig], WritePipeline]


@runtime_checkable
class ReloadServer(Protocol):
    def set_output_dir(self, path: str) -> None: ...

    def watch_passthrough_copy(self, globs: Iterable[str]) -> None: ...

    async def reload(self, payload: Dict[str, Any]) -> None: ...

    async def send_error(self, message: Dict[str, Any]) -> None: ...

    async def serve(self, port: Optional[int] = None) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class ExistenceIndex(Protocol):
    def add(self, path: str) -> None: ...

    def delete(self, path: str) -> None: ...


async def maybe_await(value: Union[Any, Awaitable[Any]]) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class StaticProjectConfig:
    """Plain-data project configuration.

    ``loader`` is called (and awaited if needed) on ``init`` and ``reset``;
    it receives the instance and may refresh any attribute in place.
    """

    config_files: List[str] = field(default_factory=lambda: ["./sitewatch.config.py"])
    directories: ProjectDirectories = field(default_factory=ProjectDirectories)
    path_prefix: str = "/"
    quiet_mode: bool = False
    watch_throttle_wait_time: Optional[float] = None
    watch_dependencies: bool = True
    watch_globs: List[str] = field(default_factory=list)
    ignore_files: List[str] = field(default_factory=lambda: ["./.gitignore"])
    template_files: List[str] = field(default_factory=list)
    data_files: List[str] = field(default_factory=list)
    passthrough_copy_globs: List[str] = field(default_factory=list)
    template_formats: List[str] = field(default_factory=lambda: ["md", "html", "jinja"])
    loader: Optional[Callable[["StaticProjectConfig"], Any]] = None
    init_count: int = 0
    reset_count: int = 0

    async def init(self) -> None:
        self.init_count += 1
        if self.loader is not None:
            await maybe_await(self.loader(self))

    async def reset(self) -> None:
        self.reset_count += 1
        if self.loader is not None:
            await maybe_await(self.loader(self))

    def get_local_project_config_files(self) -> List[str]:
        return [normalize_path(p) for p in self.config_files]

    def get_watch_globs(self) -> List[str]:
        return list(self.watch_globs)

    def get_ignore_files(self) -> List[str]:
        return list(self.ignore_files)

    def get_template_files(self) -> List[str]:
        return list(self.template_files)

    def get_data_files(self) -> List[str]:
        return list(self.data_files)

    def get_passthrough_copy_globs(self) -> List[str]:
        return list(self.passthrough_copy_globs)

    def get_template_formats(self) -> List[str]:
        return list(self.template_formats)


class LoggingReloadServer:
    """Reload layer used in plain watch mode: no transport, payloads are logged."""

    def __init__(self) -> None:
        self.output_dir: Optional[str] = None
        self.passthrough_globs: List[str] = []
        self.closed = False

    def set_output_dir(self, path: str) -> None:
        self.output_dir = path

    def watch_passthrough_copy(self, globs: Iterable[str]) -> None:
        self.passthrough_globs = list(globs)

    async def reload(self, payload: Dict[str, Any]) -> None:
        LOGGER.debug(
            "reload payload",
            extra={"files": payload.get("changedFiles"), "subtype": payload.get("subtype")},
        )

    async def send_error(self, message: Dict[str, Any]) -> None:
        LOGGER.debug("reload error", extra={"error": str(message.get("error"))})

    async def serve(self, port: Optional[int] = None) -> None:
        LOGGER.warning("No dev server configured; serve(%s) ignored", port)

    async def close(self) -> None:
        self.closed = True


class PathIndex:
    """Set-backed existence index updated from add/unlink notifications."""

    def __init__(self) -> None:
        self._paths: Set[str] = set()

    def add(self, path: str) -> None:
        self._paths.add(normalize_path(path))

    def delete(self, path: str) -> None:
        self._paths.discard(normalize_path(path))

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self._paths


@dataclass
class SiteCollaborators:
    """What a ``module:factory`` app hands to the CLI."""

    config: ProjectConfig
    writer_factory: WriterFactory
    reload_server: Optional[ReloadServer] = None
    resolver: Optional[Any] = None


__all__ = [
    "ProjectDirectories",
    "ProjectConfig",
    "WritePipeline",
    "WriterFactory",
    "ReloadServer",
    "ExistenceIndex",
    "StaticProjectConfig",
    "LoggingReloadServer",
    "PathIndex",
    "SiteCollaborators",
    "maybe_await",
]
