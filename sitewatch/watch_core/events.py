"""Lifecycle events emitted by the build session and coordinator.

Each event has one payload type. Listeners run in registration order and
every listener of a phase is awaited before the emitter continues.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import LOGGER


class LifecycleEvent(str, Enum):
    CONFIG = "config"
    ENV = "env"
    EXTENSION_MAP = "extensionmap"
    DIRECTORIES = "directories"
    BEFORE_BUILD = "beforeBuild"
    AFTER_BUILD = "afterBuild"
    BEFORE_WATCH = "beforeWatch"
    RESOURCE_MODIFIED = "resourceModified"


@dataclass
class ConfigEvent:
    config: Any


@dataclass
class EnvEvent:
    env: Dict[str, str]


@dataclass
class ExtensionMapEvent:
    formats: List[str]


@dataclass
class DirectoriesEvent:
    directories: Dict[str, Optional[str]]


@dataclass
class BuildEvent:
    directories: Dict[str, Optional[str]]
    run_mode: str
    output_mode: str
    incremental: bool
    results: Optional[List[Any]] = None
    uses: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class WatchEvent:
    queue: List[str]


@dataclass
class ResourceModifiedEvent:
    path: str
    dependants: List[str]
    via_config_reset: bool


PAYLOAD_TYPES = {
    LifecycleEvent.CONFIG: ConfigEvent,
    LifecycleEvent.ENV: EnvEvent,
    LifecycleEvent.EXTENSION_MAP: ExtensionMapEvent,
    LifecycleEvent.DIRECTORIES: DirectoriesEvent,
    LifecycleEvent.BEFORE_BUILD: BuildEvent,
    LifecycleEvent.AFTER_BUILD: BuildEvent,
    LifecycleEvent.BEFORE_WATCH: WatchEvent,
    LifecycleEvent.RESOURCE_MODIFIED: ResourceModifiedEvent,
}

Listener = Callable[[Any], Any]


class EventBus:
    def __init__(self) -> None:
        self._listeners: Dict[LifecycleEvent, List[Listener]] = {e: [] for e in LifecycleEvent}

    def on(self, event: LifecycleEvent, listener: Listener) -> Listener:
        self._listeners[LifecycleEvent(event)].append(listener)
        return listener

    def off(self, event: LifecycleEvent, listener: Listener) -> None:
        try:
            self._listeners[LifecycleEvent(event)].remove(listener)
        except ValueError:
            pass

    def listener_count(self, event: LifecycleEvent) -> int:
        return len(self._listeners[LifecycleEvent(event)])

    def _check(self, event: LifecycleEvent, payload: Any) -> LifecycleEvent:
        event = LifecycleEvent(event)
        expected = PAYLOAD_TYPES[event]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event.value} expects {expected.__name__}, got {type(payload).__name__}"
            )
        return event

    async def emit(self, event: LifecycleEvent, payload: Any) -> None:
        event = self._check(event, payload)
        for listener in list(self._listeners[event]):
            result = listener(payload)
            if inspect.isawaitable(result):
                await result

    def emit_sync(self, event: LifecycleEvent, payload: Any) -> None:
        """Notify listeners without yielding; async listeners are not supported here."""
        event = self._check(event, payload)
        for listener in list(self._listeners[event]):
            result = listener(payload)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                LOGGER.warning(
                    "Async listener registered for synchronous event %s was skipped", event.value
                )


__all__ = [
    "LifecycleEvent",
    "EventBus",
    "ConfigEvent",
    "EnvEvent",
    "ExtensionMapEvent",
    "DirectoriesEvent",
    "BuildEvent",
    "WatchEvent",
    "ResourceModifiedEvent",
]
