"""Build command: one build pass to files, a JSON document, or NDJSON."""
from __future__ import annotations

import argparse
import sys

from cli.core import make_coordinator, output_json, run_async


def cmd_build(args: argparse.Namespace) -> None:
    """Run a single build pass against the requested output target."""
    coordinator = make_coordinator(args, "build")
    target = getattr(args, "to", "fs") or "fs"
    record = run_async(coordinator.execute_build(target))

    if record.error is None:
        if target == "json":
            output_json([t.to_dict() for t in record.template_results])
        elif target == "ndjson" and record.stream is not None:
            sys.stdout.write(record.stream.getvalue())

    if coordinator.session.exit_code:
        sys.exit(coordinator.session.exit_code)
