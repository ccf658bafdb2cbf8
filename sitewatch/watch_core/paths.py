"""Path and URL normalization helpers.

Every path the coordinator compares (queue membership, config membership,
dependency lookups) goes through ``normalize_path`` first so Windows
separators and missing ``./`` prefixes cannot produce false negatives.
"""

from __future__ import annotations

import fnmatch
import os
import posixpath
import re
from typing import List, Optional, Union

PathLike = Union[str, "os.PathLike[str]"]

_GLOB_CHARS = re.compile(r"[*?\[]")
_MULTI_SLASH = re.compile(r"/{2,}")


def normalize_separators(path: PathLike) -> str:
    return os.fspath(path).replace("\\", "/")


def add_leading_dot_slash(path: str) -> str:
    if path in ("", "."):
        return "./"
    if path.startswith(("./", "../", "/")) or path == ".." or re.match(r"^[A-Za-z]:/", path):
        return path
    return "./" + path


def strip_leading_dot_slash(path: str) -> str:
    while path.startswith("./"):
        path = path[2:]
    return path


def normalize_path(path: PathLike) -> str:
    """Return the canonical ChangedPath form: forward slashes, collapsed, ``./`` prefixed."""
    raw = normalize_separators(path)
    if not raw:
        return "./"
    trailing = raw.endswith("/") and raw not in ("/", "./")
    collapsed = posixpath.normpath(raw)
    if trailing:
        collapsed += "/"
    return add_leading_dot_slash(collapsed)


def relative_to_root(path: PathLike, root: PathLike) -> Optional[str]:
    """Normalize an absolute watcher path to a root-relative ChangedPath, or None if outside."""
    try:
        rel = os.path.relpath(os.fspath(path), os.fspath(root))
    except ValueError:
        return None
    rel = normalize_separators(rel)
    if rel == ".." or rel.startswith("../"):
        return None
    return normalize_path(rel)


def starts_with_subpath(path: str, subpath: Optional[str]) -> bool:
    """True when ``path`` equals ``subpath`` or lies underneath it."""
    if not subpath:
        return False
    p = strip_leading_dot_slash(normalize_path(path))
    s = strip_leading_dot_slash(normalize_path(subpath)).rstrip("/")
    if not s or s == ".":
        return True
    return p == s or p.startswith(s + "/")


def is_glob(pattern: str) -> bool:
    return bool(_GLOB_CHARS.search(pattern))


def _match_segments(parts: List[str], pattern: List[str]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    return bool(parts) and fnmatch.fnmatchcase(parts[0], head) and _match_segments(parts[1:], rest)


def matches_target(path: str, target: str) -> bool:
    """Match a normalized path against a watch target (exact, directory, or glob).

    Glob wildcards stay inside one path segment; only ``**`` spans directories,
    including none.
    """
    path = normalize_path(path)
    target = normalize_path(target)
    if is_glob(target):
        return _match_segments(path.split("/"), target.split("/"))
    if target.endswith("/"):
        return starts_with_subpath(path, target)
    return path == target


def normalize_path_prefix(prefix: Optional[str]) -> str:
    """``blog`` -> ``/blog/``; empty or None -> ``/``."""
    if not prefix:
        return "/"
    prefix = "/" + normalize_separators(prefix).strip("/") + "/"
    return _MULTI_SLASH.sub("/", prefix)


def join_url_parts(*parts: Optional[str]) -> str:
    joined = "/".join(p for p in parts if p)
    return _MULTI_SLASH.sub("/", joined)


__all__ = [
    "add_leading_dot_slash",
    "strip_leading_dot_slash",
    "normalize_path",
    "relative_to_root",
    "starts_with_subpath",
    "is_glob",
    "matches_target",
    "normalize_path_prefix",
    "join_url_parts",
]
