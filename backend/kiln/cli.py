#!/usr/bin/env python3
"""
Kiln CLI - Thin entrypoint for operator commands.

Commands:
- add / remove / list / refresh projects
- set-output / enable / disable per-file settings
- compile a project or a single file and wait for the result
- watch registered projects and build on change
- serve the HTTP API

Design Principles:
==================
- CLI is a dispatcher only
- Surface errors verbatim from the core
- Exit non-zero on failure
- No interactive prompts

Exit Codes:
===========
- 0: Success
- 1: Validation error (bad path, duplicate, unknown id, rejected output)
- 2: Build failure
- 4: System error (corrupt store, invalid settings, unwritable data dir)
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, NoReturn, Optional

from .build.models import BuildOutcome
from .config import ConfigError, KilnSettings, load_settings
from .events import Event, EventType
from .persistence.errors import PersistenceError
from .projects.errors import ProjectError
from .projects.models import FileUpdate
from .runtime import KilnRuntime

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_BUILD_FAILED = 2
EXIT_SYSTEM = 4


def _load_settings(args: argparse.Namespace, watch: bool) -> KilnSettings:
    """
    Raises:
        SystemExit(4): Invalid settings
    """
    try:
        settings = load_settings(args.data_dir)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    return settings.model_copy(update={"watch_enabled": watch and settings.watch_enabled})


def _open_runtime(args: argparse.Namespace, watch: bool = False) -> KilnRuntime:
    """
    Raises:
        SystemExit(4): Corrupt or unreadable project store
    """
    settings = _load_settings(args, watch)
    try:
        return KilnRuntime.open(settings)
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print("The project store was left untouched; back it up before resetting.", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)


def _run_mutation(args: argparse.Namespace, action) -> NoReturn:
    """Open the runtime, apply one manager action, close, exit."""
    runtime = _open_runtime(args)
    try:
        action(runtime)
    except ProjectError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(EXIT_VALIDATION)
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    finally:
        runtime.close()
    sys.exit(EXIT_OK)


def cmd_add(args: argparse.Namespace) -> NoReturn:
    def action(runtime: KilnRuntime) -> None:
        project = runtime.manager.add_project(args.path)
        print(f"✓ Added project {project.id}: {project.root_path}")
        print(f"  Files: {len(project.files)}")

    _run_mutation(args, action)


def cmd_remove(args: argparse.Namespace) -> NoReturn:
    def action(runtime: KilnRuntime) -> None:
        runtime.manager.delete_project(args.project_id)
        print(f"✓ Removed project {args.project_id}")

    _run_mutation(args, action)


def cmd_refresh(args: argparse.Namespace) -> NoReturn:
    def action(runtime: KilnRuntime) -> None:
        records = runtime.manager.refresh_project(args.project_id)
        print(f"✓ Refreshed project {args.project_id}: {len(records)} file(s)")

    _run_mutation(args, action)


def cmd_set_output(args: argparse.Namespace) -> NoReturn:
    def action(runtime: KilnRuntime) -> None:
        record = runtime.manager.update_file(
            args.project_id, args.file_id, FileUpdate(output_path=args.output)
        )
        print(f"✓ {record.source_path} -> {record.resolved_output_path}")

    _run_mutation(args, action)


def cmd_enable(args: argparse.Namespace) -> NoReturn:
    enabled = args.command == "enable"

    def action(runtime: KilnRuntime) -> None:
        record = runtime.manager.change_file_compile(args.project_id, args.file_id, enabled)
        state = "enabled" if record.compile_enabled else "disabled"
        print(f"✓ Compilation {state}: {record.source_path}")

    _run_mutation(args, action)


def cmd_list(args: argparse.Namespace) -> NoReturn:
    runtime = _open_runtime(args)
    try:
        projects = runtime.manager.list_projects()
        if not projects:
            print("No projects registered.")
        for project in projects:
            print(f"{project.id}  {project.name}  {project.root_path}")
            if args.files:
                for record in project.sorted_files():
                    flag = " " if record.compile_enabled else "-"
                    print(f"  {flag} {record.id}  [{record.last_status.value}]  {record.source_path}")
    finally:
        runtime.close()
    sys.exit(EXIT_OK)


def cmd_compile(args: argparse.Namespace) -> NoReturn:
    """
    Build a project (or one of its files) and wait for the outcome.

    Exit codes:
        0: Every target built or skipped
        1: Unknown project or file
        2: At least one build failed
    """
    runtime = _open_runtime(args)
    try:
        try:
            if args.file_id:
                runtime.manager.get_file(args.project_id, args.file_id)
                runtime.coordinator.request_build(args.project_id, args.file_id)
            else:
                runtime.manager.get_project(args.project_id)
                runtime.coordinator.request_project_build(args.project_id)
        except ProjectError as e:
            print(f"✗ {e}", file=sys.stderr)
            sys.exit(EXIT_VALIDATION)

        runtime.coordinator.wait_idle()
        results = [r for r in runtime.coordinator.recent_results() if r.project_id == args.project_id]
    finally:
        runtime.close()

    failed = [r for r in results if r.outcome == BuildOutcome.FAILED]
    for result in results:
        if result.outcome == BuildOutcome.FAILED:
            location = f":{result.line}" if result.line else ""
            print(f"✗ {result.source_path}{location}: {result.error}", file=sys.stderr)
        else:
            print(f"{'✓' if result.outcome == BuildOutcome.SUCCEEDED else '-'} {result.output_path}")

    sys.exit(EXIT_BUILD_FAILED if failed else EXIT_OK)


def cmd_watch(args: argparse.Namespace) -> NoReturn:
    """
    Watch every registered project and build on change until interrupted.

    Exit codes:
        0: Shutdown via signal (normal)
    """
    runtime = _open_runtime(args, watch=True)
    stop = threading.Event()

    def _stop(signum, frame):
        stop.set()

    signal.signal(signal.SIGTERM, _stop)

    runtime.event_bus.subscribe(_print_event)
    runtime.start()
    print(f"Watching {len(runtime.store.all())} project(s). Press Ctrl+C to stop.")
    try:
        while not stop.wait(0.5):
            pass
    except KeyboardInterrupt:
        print("\nWatcher stopped by user.", file=sys.stderr)
    finally:
        runtime.close()
    sys.exit(EXIT_OK)


def _print_event(event: Event) -> None:
    payload = event.payload
    if event.type == EventType.BUILD_SUCCEEDED:
        print(f"✓ {payload.get('output_path')}")
    elif event.type == EventType.BUILD_FAILED:
        print(f"✗ {payload.get('output_path')}: {payload.get('message')}", file=sys.stderr)


def cmd_serve(args: argparse.Namespace) -> NoReturn:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from .main import create_app

    settings = _load_settings(args, watch=not args.no_watch)
    try:
        app = create_app(settings)
    except PersistenceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    sys.exit(EXIT_OK)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kiln",
        description="Kiln - Watch and compile LESS, Sass and CoffeeScript projects",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="User data directory (default: $KILN_DATA_DIR or ~/.kiln)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    p = subparsers.add_parser("add", help="Register a directory as a project")
    p.add_argument("path", help="Project root directory")
    p.set_defaults(func=cmd_add)

    p = subparsers.add_parser("remove", help="Unregister a project (files on disk are kept)")
    p.add_argument("project_id")
    p.set_defaults(func=cmd_remove)

    p = subparsers.add_parser("list", help="List registered projects")
    p.add_argument("--files", action="store_true", help="Also list each project's files")
    p.set_defaults(func=cmd_list)

    p = subparsers.add_parser("refresh", help="Re-scan a project's files")
    p.add_argument("project_id")
    p.set_defaults(func=cmd_refresh)

    p = subparsers.add_parser("set-output", help="Set a file's output path ('' resets to default)")
    p.add_argument("project_id")
    p.add_argument("file_id")
    p.add_argument("output", help="Absolute output path, or '' for the default")
    p.set_defaults(func=cmd_set_output)

    for name, help_text in (("enable", "Enable compilation of a file"), ("disable", "Disable compilation of a file")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("project_id")
        p.add_argument("file_id")
        p.set_defaults(func=cmd_enable)

    p = subparsers.add_parser("compile", help="Build a project or one file and wait")
    p.add_argument("project_id")
    p.add_argument("file_id", nargs="?", default=None)
    p.set_defaults(func=cmd_compile)

    p = subparsers.add_parser("watch", help="Watch all projects and build on change")
    p.set_defaults(func=cmd_watch)

    p = subparsers.add_parser("serve", help="Serve the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8085)
    p.add_argument("--no-watch", action="store_true", help="Do not watch project roots")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """
    Main CLI entrypoint.

    Parses arguments and dispatches to subcommands.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
