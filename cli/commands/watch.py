"""Watch and serve commands: rebuild on file changes until interrupted."""
from __future__ import annotations

import argparse
import sys
from typing import Optional

from cli.core import make_coordinator, run_async
from sitewatch.watch_core.coordinator import WatchCoordinator


async def _watch_until_closed(coordinator: WatchCoordinator, port: Optional[int] = None, serve: bool = False) -> int:
    await coordinator.watch()
    if serve:
        await coordinator.serve(port)
    return await coordinator.wait_closed()


def cmd_watch(args: argparse.Namespace) -> None:
    """Build, then rebuild whenever a watched file changes."""
    coordinator = make_coordinator(args, "watch")
    print(f"Watching {coordinator.root}", file=sys.stderr)
    code = run_async(_watch_until_closed(coordinator))
    if code:
        sys.exit(code)


def cmd_serve(args: argparse.Namespace) -> None:
    """Watch mode plus the reload server on --port."""
    coordinator = make_coordinator(args, "serve")
    print(f"Serving {coordinator.root}", file=sys.stderr)
    code = run_async(_watch_until_closed(coordinator, getattr(args, "port", None), serve=True))
    if code:
        sys.exit(code)
