"""CLI entry point — argparse dispatcher for all subcommands."""
from __future__ import annotations

import argparse
import json
import sys
import traceback


# ---------------------------------------------------------------------------
# Command registry: command name → (module_path, function_name)
# Lazy-imported at dispatch time to keep startup fast.
# ---------------------------------------------------------------------------
COMMANDS = {
    "build": ("cli.commands.build", "cmd_build"),
    "watch": ("cli.commands.watch", "cmd_watch"),
    "serve": ("cli.commands.watch", "cmd_serve"),
}


# ---------------------------------------------------------------------------
# Shared argparse helpers
# ---------------------------------------------------------------------------
def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--app", help="Site factory as module:function (default: $SITEWATCH_APP)")
    p.add_argument("--input", help="Input directory")
    p.add_argument("--output", help="Output directory")
    p.add_argument("--pathprefix", help="URL path prefix the site is served under")
    p.add_argument("--quiet", action="store_true", help="Don't print every written file")
    p.add_argument("--incremental", action="store_true", help="Only rebuild the changed file")
    p.add_argument(
        "--ignore-initial",
        action="store_true",
        help="Skip processing files on the first run",
    )


# ---------------------------------------------------------------------------
# Parser builder
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    from cli._version import __version__

    parser = argparse.ArgumentParser(
        prog="sitewatch",
        description="Static-site build coordinator with watch mode and live reload",
    )
    parser.add_argument("--debug", action="store_true", help="Show stack traces on error")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # build
    p = sub.add_parser("build", help="Run one build pass")
    _add_common_args(p)
    p.add_argument("--to", default="fs", choices=["fs", "json", "ndjson"], help="Output target")

    # watch
    p = sub.add_parser("watch", help="Rebuild when files change")
    _add_common_args(p)

    # serve
    p = sub.add_parser("serve", help="Watch and run the live-reload server")
    _add_common_args(p)
    p.add_argument("--port", type=int, default=8080, help="Dev server port")

    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def main() -> None:
    parser = build_parser()
    argv = sys.argv[1:]
    debug = False
    if "--debug" in argv:
        debug = True
        argv = [arg for arg in argv if arg != "--debug"]
    args = parser.parse_args(argv)
    args.debug = bool(debug or getattr(args, "debug", False))

    entry = COMMANDS.get(args.command)
    if not entry:
        parser.print_help()
        sys.exit(1)

    mod_path, fn_name = entry
    try:
        import importlib
        mod = importlib.import_module(mod_path)
        fn = getattr(mod, fn_name)
        fn(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as exc:
        json.dump({"ok": False, "error": str(exc)}, sys.stdout, default=str)
        sys.stdout.write("\n")
        if args.debug:
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
