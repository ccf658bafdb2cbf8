"""Decides whether a batch of changes needs a full configuration reset."""

from __future__ import annotations

from typing import Callable, Iterable, List

from .dependency_graph import DependencyGraph
from .paths import normalize_path


class ConfigResetGate:
    def __init__(self, graph: DependencyGraph, config_files: Callable[[], Iterable[str]]):
        self.graph = graph
        self._config_files = config_files

    def config_files(self) -> List[str]:
        return [normalize_path(p) for p in self._config_files()]

    def should_reset(self, active_queue: Iterable[str]) -> bool:
        changed = {normalize_path(p) for p in active_queue}
        if not changed:
            return False
        entries = self.config_files()
        if changed.intersection(entries):
            return True
        # Only edges that start at a config entry count; template/data edges never do
        for entry in entries:
            if changed.intersection(self.graph.get_dependencies_of(entry)):
                return True
        return False


__all__ = ["ConfigResetGate"]
