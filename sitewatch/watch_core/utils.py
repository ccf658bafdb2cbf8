"""Misc utilities shared across watch_core modules."""

from __future__ import annotations

from typing import Any, Type

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver


def safe_print(*args: Any, **kwargs: Any) -> None:
    """Best-effort print that swallows IO errors."""
    kwargs.setdefault("flush", True)
    try:
        print(*args, **kwargs)
    except (OSError, ValueError):
        pass


def pluralize(count: float, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def create_observer(use_polling: bool, observer_cls: Type[BaseObserver] = Observer) -> BaseObserver:
    """Create a watchdog observer based on configuration."""
    if use_polling:
        try:
            from watchdog.observers.polling import PollingObserver

            safe_print("[watch_mode] Using polling observer for filesystem events")
            return PollingObserver()
        except ImportError:
            safe_print("[watch_mode] Polling observer unavailable, falling back to default Observer")
    return observer_cls()


__all__ = [
    "safe_print",
    "pluralize",
    "create_observer",
]
