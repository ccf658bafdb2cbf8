"""Core building blocks for the sitewatch build/watch coordinator.

Modules:
    config: shared configuration constants, options and logger
    paths: ChangedPath normalization and URL prefix helpers
    models: build records, output targets and reload payloads
    collaborators: interfaces of the config, write-pipeline and reload layers
    events: lifecycle event enumeration and the ordered event bus
    dependency_graph: declared/discovered watch targets and import edges
    reset_gate: config-reset detection for a batch of changes
    carryover: state carried across write-pipeline recreation
    queue: debounced single-flight change queue
    session: one build pass against one output target
    reload: live-reload payload computation
    handler: watchdog event handler logic
    coordinator: watch-mode composition and process lifecycle
"""

from . import (
    config,
    paths,
    models,
    collaborators,
    events,
    dependency_graph,
    reset_gate,
    carryover,
    queue,
    session,
    reload,
    handler,
    coordinator,
)
from .coordinator import WatchCoordinator
from .session import BuildSession

__all__ = [
    "config",
    "paths",
    "models",
    "collaborators",
    "events",
    "dependency_graph",
    "reset_gate",
    "carryover",
    "queue",
    "session",
    "reload",
    "handler",
    "coordinator",
    "WatchCoordinator",
    "BuildSession",
]
