"""Shared helpers for CLI commands."""
from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import os
import sys
from pathlib import Path
from typing import Any

# Ensure project root is on sys.path (fallback for development mode)
try:
    import sitewatch.watch_core  # noqa: F401
except ImportError:
    ROOT_DIR = Path(__file__).resolve().parent.parent
    if str(ROOT_DIR) not in sys.path:
        sys.path.insert(0, str(ROOT_DIR))

from sitewatch.logger import ConfigurationError, get_logger, log_and_reraise
from sitewatch.watch_core.collaborators import SiteCollaborators
from sitewatch.watch_core.config import ROOT, WatchOptions
from sitewatch.watch_core.coordinator import WatchCoordinator

DEFAULT_APP = os.environ.get("SITEWATCH_APP", "")
DEFAULT_FACTORY = "create_site"

logger = get_logger("sitewatch.cli")


def load_collaborators(app: str | None) -> SiteCollaborators:
    """Import ``module:factory`` and call the factory.

    The factory takes no arguments and returns a SiteCollaborators bundle.
    """
    app = app or DEFAULT_APP
    if not app:
        raise ConfigurationError("No site app given; pass --app module:factory or set SITEWATCH_APP")
    module_name, _, attr = app.partition(":")
    if str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        log_and_reraise(
            logger,
            "Failed to import site app",
            ConfigurationError(f"Cannot import site app {module_name!r}: {exc}"),
            app=app,
        )
    factory = getattr(module, attr or DEFAULT_FACTORY, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"{module_name} has no callable {attr or DEFAULT_FACTORY!r}")
    site = factory()
    if not isinstance(site, SiteCollaborators):
        raise ConfigurationError(
            f"{app} returned {type(site).__name__}, expected SiteCollaborators"
        )
    return site


def build_options(args: argparse.Namespace, run_mode: str) -> WatchOptions:
    return WatchOptions(
        source="cli",
        run_mode=run_mode,
        path_prefix=getattr(args, "pathprefix", None),
        incremental=bool(getattr(args, "incremental", False)),
        run_initial_build=not getattr(args, "ignore_initial", False),
        quiet=True if getattr(args, "quiet", False) else None,
        input_dir=getattr(args, "input", None),
        output_dir=getattr(args, "output", None),
    )


def make_coordinator(args: argparse.Namespace, run_mode: str) -> WatchCoordinator:
    site = load_collaborators(getattr(args, "app", None))
    return WatchCoordinator(
        site.config,
        site.writer_factory,
        build_options(args, run_mode),
        reload_server=site.reload_server,
        resolver=site.resolver,
        root=ROOT,
    )


def output_json(data: Any) -> None:
    """Write JSON to stdout — single place for all commands."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def run_async(coro) -> Any:
    """Run an async coroutine from sync CLI context."""
    return asyncio.run(coro)
