"""Watch targets and the file dependency graph.

Declared targets are registered explicitly (globs, config files, data
files). Discovered targets come from resolving the transitive imports of
declared files. Forward (file -> its dependencies) and reverse (file -> its
importers) edges are only ever appended; ``reset()`` just clears the
"new since last reset" marker used to extend the OS watcher incrementally.
"""

from __future__ import annotations

import ast
import asyncio
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set, runtime_checkable

from sitewatch.logger import ContextLogger, DependencyResolutionError

from .config import LOGGER
from .paths import normalize_path, relative_to_root, strip_leading_dot_slash

DependencyFilter = Callable[[str], bool]


@runtime_checkable
class DependencyResolver(Protocol):
    async def resolve(self, path: str) -> Iterable[str]: ...

    def clear(self, paths: Iterable[str]) -> None: ...


class PythonImportResolver:
    """Resolves the transitive closure of local imports for ``.py`` files.

    Only modules that exist under ``root`` are reported; third-party and
    standard-library imports are ignored. Parsed import lists are memoized
    per file until ``clear()`` is called for it.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self._direct: Dict[str, List[str]] = {}

    def clear(self, paths: Iterable[str]) -> None:
        for p in paths:
            self._direct.pop(normalize_path(p), None)

    async def resolve(self, path: str) -> List[str]:
        start = normalize_path(path)
        if not start.endswith(".py"):
            return []
        seen: Set[str] = set()
        order: List[str] = []
        stack = [start]
        while stack:
            current = stack.pop()
            for dep in await self._direct_imports(current):
                if dep == start or dep in seen:
                    continue
                seen.add(dep)
                order.append(dep)
                stack.append(dep)
        return order

    async def _direct_imports(self, path: str) -> List[str]:
        if path in self._direct:
            return self._direct[path]
        file_path = self.root / strip_leading_dot_slash(path)
        source = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        tree = ast.parse(source, filename=str(file_path))
        deps: List[str] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    deps.extend(self._locate(alias.name.split("."), self.root))
            elif isinstance(node, ast.ImportFrom):
                base = self.root
                if node.level:
                    base = file_path.parent
                    for _ in range(node.level - 1):
                        base = base.parent
                parts = node.module.split(".") if node.module else []
                found = self._locate(parts, base) if parts else []
                deps.extend(found)
                # "from pkg import mod" may name submodules
                for alias in node.names:
                    deps.extend(self._locate(parts + [alias.name], base))
        unique = list(dict.fromkeys(deps))
        self._direct[path] = unique
        return unique

    def _locate(self, parts: List[str], base: Path) -> List[str]:
        if not parts:
            return []
        candidate = base.joinpath(*parts)
        for option in (candidate.with_suffix(".py"), candidate / "__init__.py"):
            if option.is_file():
                rel = relative_to_root(option, self.root)
                if rel is not None:
                    return [rel]
        return []


class DependencyGraph:
    def __init__(self, resolver: Optional[DependencyResolver] = None):
        self.resolver = resolver
        self._declared: Dict[str, None] = {}
        self._discovered: Dict[str, None] = {}
        self._new_since_reset: Dict[str, None] = {}
        self._forward: Dict[str, Set[str]] = defaultdict(set)
        self._reverse: Dict[str, Set[str]] = defaultdict(set)
        self.errors: List[DependencyResolutionError] = []
        self._log = ContextLogger(LOGGER, component="dependency_graph")

    def _mark(self, target: str) -> None:
        if target not in self._declared and target not in self._discovered:
            self._new_since_reset[target] = None

    def add(self, paths: Iterable[str]) -> None:
        """Declare watch targets (files, directories or globs); idempotent."""
        if isinstance(paths, str):
            paths = [paths]
        for p in paths:
            if not p:
                continue
            target = normalize_path(p)
            self._mark(target)
            self._declared[target] = None

    async def add_dependencies(
        self,
        paths: Iterable[str],
        filter_fn: Optional[DependencyFilter] = None,
    ) -> List[DependencyResolutionError]:
        """Resolve and record the dependency closure of each path.

        ``filter_fn`` returns False for a candidate dependency that should not
        be recorded. A failure for one path is collected and logged; the
        remaining paths are still resolved.
        """
        if self.resolver is None:
            return []
        if isinstance(paths, str):
            paths = [paths]
        failures: List[DependencyResolutionError] = []
        for p in paths:
            source = normalize_path(p)
            try:
                deps = await self.resolver.resolve(source)
            except Exception as exc:
                err = DependencyResolutionError(source, exc)
                failures.append(err)
                self._log.warning(str(err), path=source)
                continue
            for dep in deps:
                dep = normalize_path(dep)
                if dep == source:
                    continue
                if filter_fn is not None and not filter_fn(dep):
                    continue
                self._forward[source].add(dep)
                self._reverse[dep].add(source)
                self._mark(dep)
                if dep not in self._declared:
                    self._discovered[dep] = None
        self.errors.extend(failures)
        return failures

    def get_dependants_of(self, path: str) -> List[str]:
        return sorted(self._reverse.get(normalize_path(path), ()))

    def get_dependencies_of(self, path: str) -> List[str]:
        return sorted(self._forward.get(normalize_path(path), ()))

    def get_targets(self) -> List[str]:
        return list(dict.fromkeys([*self._declared, *self._discovered]))

    def get_new_targets_since_last_reset(self) -> List[str]:
        return list(self._new_since_reset)

    def reset(self) -> None:
        self._new_since_reset.clear()

    def clear_import_cache_for(self, paths: Iterable[str]) -> None:
        if self.resolver is not None:
            self.resolver.clear([normalize_path(p) for p in paths])

    def is_declared(self, path: str) -> bool:
        return normalize_path(path) in self._declared

    def snapshot(self) -> Dict[str, List[str]]:
        return {src: sorted(deps) for src, deps in self._forward.items()}

    def is_consistent(self) -> bool:
        for src, deps in self._forward.items():
            if any(src not in self._reverse.get(d, ()) for d in deps):
                return False
        for dep, importers in self._reverse.items():
            if any(dep not in self._forward.get(i, ()) for i in importers):
                return False
        return True


__all__ = ["DependencyGraph", "DependencyResolver", "PythonImportResolver", "DependencyFilter"]
