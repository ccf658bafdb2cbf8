"""Shared configuration and logging helpers for the watch coordinator."""

from __future__ import annotations

import importlib.metadata
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sitewatch.logger import get_logger, safe_bool, safe_float


def build_logger():
    """Create the watch logger; JSON output when SITEWATCH_LOG_JSON is set."""
    try:
        return get_logger(
            "sitewatch.watch",
            json_format=safe_bool(os.environ.get("SITEWATCH_LOG_JSON"), False),
        )
    except Exception:  # pragma: no cover - fallback for logger import issues
        import logging

        return logging.getLogger("sitewatch.watch")


LOGGER = build_logger()

try:
    VERSION = importlib.metadata.version("sitewatch")
except importlib.metadata.PackageNotFoundError:
    VERSION = "0.1.0.dev0"

ROOT = Path(os.environ.get("SITEWATCH_ROOT", ".")).resolve()

# Debounce interval for file system events
DELAY_SECS = safe_float(
    os.environ.get("SITEWATCH_DEBOUNCE_SECS"), 0.0, logger=LOGGER, context="SITEWATCH_DEBOUNCE_SECS"
)

USE_POLLING = safe_bool(
    os.environ.get("SITEWATCH_USE_POLLING"), False, logger=LOGGER, context="SITEWATCH_USE_POLLING"
)

# Input extensions eligible for the style-only reload
STYLESHEET_EXTS = (".css",)

PROJECT_MANIFEST = "./pyproject.toml"

SOURCES = ("cli", "script")
RUN_MODES = ("build", "watch", "serve")


@dataclass
class WatchOptions:
    """Per-run options handed to the build session and coordinator."""

    source: str = "script"
    run_mode: str = "build"
    path_prefix: Optional[str] = None
    incremental: bool = False
    run_initial_build: bool = True
    quiet: Optional[bool] = None
    debounce_secs: Optional[float] = None
    input_dir: Optional[str] = None
    output_dir: Optional[str] = None

    def __post_init__(self) -> None:
        if self.source not in SOURCES:
            raise ValueError(f"source must be one of {SOURCES}, got {self.source!r}")
        if self.run_mode not in RUN_MODES:
            raise ValueError(f"run_mode must be one of {RUN_MODES}, got {self.run_mode!r}")


def debounce_delay(options: WatchOptions, config_delay: Optional[float] = None) -> float:
    """Resolve the debounce delay: explicit option, then project config, then env."""
    if options.debounce_secs is not None:
        return max(0.0, float(options.debounce_secs))
    if config_delay is not None:
        return max(0.0, float(config_delay))
    return max(0.0, DELAY_SECS)


__all__ = [
    "LOGGER",
    "VERSION",
    "ROOT",
    "DELAY_SECS",
    "USE_POLLING",
    "STYLESHEET_EXTS",
    "PROJECT_MANIFEST",
    "WatchOptions",
    "debounce_delay",
]
