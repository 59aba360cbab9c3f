"""CLI entry point for timekeep."""

import argparse
import asyncio
import getpass
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .config import Config, load_config
from .models import Authenticated
from .sync import (
    LocalCache,
    NotAuthenticatedError,
    Notification,
    RemoteClient,
    RemoteError,
    SyncEngine,
)
from .tasks import TASK_FILTERS, TaskBoard, ValidationError
from .timer import PomodoroTimer


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logging.basicConfig(level=level, handlers=[handler])


def _print_notification(note: Notification) -> None:
    stream = sys.stdout if note.level == "info" else sys.stderr
    print(f"[{note.level}] {note.message}", file=stream)


def _build_engine(config: Config) -> tuple[LocalCache, SyncEngine]:
    cache = LocalCache(config.client.cache_path)
    cache.connect()
    remote = RemoteClient(config.client.api_base, timeout=config.client.timeout_seconds)
    engine = SyncEngine(cache, remote, debounce_seconds=config.client.debounce_seconds)
    engine.add_listener(_print_notification)
    return cache, engine


async def _with_board(args: argparse.Namespace, action: Callable[[TaskBoard], Any]) -> int:
    """Start the engine, run one action against the board, and shut down.

    Closing the engine delivers the pending remote write before exit.
    """
    config = load_config(args.config)
    cache, engine = _build_engine(config)
    try:
        await engine.start()
        result = action(TaskBoard(engine))
        if inspect.isawaitable(result):
            result = await result
        return result or 0
    except (ValidationError, NotAuthenticatedError, RemoteError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.aclose()
        cache.close()


def _password(args: argparse.Namespace, prompt: str = "Password: ") -> str:
    return args.password if args.password else getpass.getpass(prompt)


def _format_task(task) -> str:
    mark = "x" if task.done else " "
    parts = [f"[{mark}] {task.id}  {task.title}"]
    if task.due_date:
        parts.append(f"due {task.due_date}")
    parts.append(task.priority)
    if task.category:
        parts.append(f"#{task.category}")
    if task.subtasks:
        done = sum(1 for s in task.subtasks if s.done)
        parts.append(f"subtasks {done}/{len(task.subtasks)}")
    return "  ".join(parts)


# ==================== Server ====================


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the backend server."""
    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    import uvicorn

    from .server import DocumentStore, UserStore, create_app

    users = UserStore(config.server.db_path)
    documents = DocumentStore(config.server.db_path)
    users.connect()
    documents.connect()

    print("Starting timekeep server")
    print(f"URL: http://{config.server.host}:{config.server.port}")

    app = create_app(config, users=users, documents=documents)

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        users.close()
        documents.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show session and sync status."""
    config = load_config(args.config)
    cache, engine = _build_engine(config)
    try:
        await engine.start()
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "api_base": config.client.api_base,
            "server_reachable": await engine.remote.check_health(),
            "sync": engine.get_sync_status(),
            "cache": cache.get_stats(),
        }
    finally:
        await engine.aclose()
        cache.close()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    sync = status_data["sync"]
    print(f"Server: {config.client.api_base} "
          f"({'reachable' if status_data['server_reachable'] else 'unreachable'})")
    if sync["user"]:
        print(f"Mode: user ({sync['user']['name']} <{sync['user']['email']}>)")
    else:
        print("Mode: guest (data stored on this device only)")
    print(f"Tasks: {sync['tasks']}")
    if sync["last_error"]:
        print(f"Last error: {sync['last_error']}")
    return 0


# ==================== Account ====================


async def cmd_register(args: argparse.Namespace) -> int:
    async def action(board: TaskBoard) -> int:
        await board.engine.register(args.name, args.email, _password(args))
        return 0

    return await _with_board(args, action)


async def cmd_login(args: argparse.Namespace) -> int:
    async def action(board: TaskBoard) -> int:
        await board.engine.login(args.email, _password(args))
        return 0

    return await _with_board(args, action)


async def cmd_logout(args: argparse.Namespace) -> int:
    return await _with_board(args, lambda board: board.engine.logout())


async def cmd_whoami(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        state = board.engine.auth_state
        if isinstance(state, Authenticated):
            print(f"{state.display_name} <{state.email}> ({state.user_id})")
        else:
            print("guest")
        return 0

    return await _with_board(args, action)


async def cmd_delete_account(args: argparse.Namespace) -> int:
    if not args.yes:
        answer = input("Permanently delete your account and all cloud data? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Cancelled")
            return 1

    return await _with_board(args, lambda board: board.engine.delete_account())


async def cmd_rename(args: argparse.Namespace) -> int:
    return await _with_board(
        args, lambda board: board.engine.update_display_name(args.name)
    )


async def cmd_passwd(args: argparse.Namespace) -> int:
    return await _with_board(
        args,
        lambda board: board.engine.update_password(_password(args, "New password: ")),
    )


# ==================== Tasks ====================


async def cmd_add(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        task = board.add_task(
            args.title,
            description=args.description,
            due_date=args.due,
            priority=args.priority,
            category=args.category,
            subtasks=args.subtask,
        )
        print(task.id)
        return 0

    return await _with_board(args, action)


async def cmd_list(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        tasks = board.sorted_tasks(args.filter) if args.sorted else board.list_tasks(args.filter)
        if not tasks:
            print("No tasks")
        for task in tasks:
            print(_format_task(task))
            for subtask in task.subtasks:
                print(f"      [{'x' if subtask.done else ' '}] {subtask.id}  {subtask.title}")
        return 0

    return await _with_board(args, action)


async def cmd_subtask(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        if args.action == "add":
            subtask = board.add_subtask(args.task_id, args.value)
            print(subtask.id)
        elif args.action == "rm":
            subtask = board.delete_subtask(args.task_id, args.value)
            print(f"Deleted {subtask.title}")
        else:
            subtask = board.set_subtask_done(
                args.task_id, args.value, args.action == "done"
            )
            task = board.get_task(args.task_id)
            done = sum(1 for s in task.subtasks if s.done)
            print(f"{done} / {len(task.subtasks)} subtasks done")
        return 0

    return await _with_board(args, action)


async def cmd_done(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        stats = board.set_task_done(args.task_id, not args.undo)
        print(f"{stats.done} / {stats.total} done for that day")
        return 0

    return await _with_board(args, action)


async def cmd_edit(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        task = board.update_task(
            args.task_id,
            title=args.title,
            description=args.description,
            due_date=args.due,
            priority=args.priority,
            category=args.category,
            subtasks=args.subtask,
        )
        print(_format_task(task))
        return 0

    return await _with_board(args, action)


async def cmd_rm(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        task = board.delete_task(args.task_id)
        print(f"Deleted {task.title}")
        return 0

    return await _with_board(args, action)


async def cmd_move(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        for task in board.reorder_tasks(args.order):
            print(_format_task(task))
        return 0

    return await _with_board(args, action)


async def cmd_settings(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        settings = board.document.settings
        if args.focus is not None or args.brk is not None:
            board.update_settings(
                args.focus if args.focus is not None else settings.focus_minutes,
                args.brk if args.brk is not None else settings.break_minutes,
            )
        print(f"focus {settings.focus_minutes} min, break {settings.break_minutes} min")
        return 0

    return await _with_board(args, action)


async def cmd_pomodoro(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        duration = args.minutes * 60 if args.minutes else None
        record = board.record_pomodoro(args.mode, duration=duration, task_id=args.task)
        print(f"Recorded {record.mode} session for {board.task_label(record.task_id)}")
        return 0

    return await _with_board(args, action)


def _draw_countdown(timer: PomodoroTimer) -> None:
    print(f"\r{timer.label()}", end="", flush=True)


async def cmd_timer(args: argparse.Namespace) -> int:
    """Run pomodoro sessions live, recording each one as it finishes."""
    async def action(board: TaskBoard) -> int:
        timer = PomodoroTimer(board)
        if args.task:
            timer.bind_task(args.task)
        timer.set_mode(args.mode)

        for _ in range(args.sessions):
            print(f"{timer.mode.capitalize()}: {timer.current_task_label()}")
            record = await timer.run_session(on_tick=_draw_countdown)
            print()
            if record is not None:
                print(f"Recorded {record.mode} session for {board.task_label(record.task_id)}")
        return 0

    return await _with_board(args, action)


async def cmd_stats(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        print(f"Today: {board.today_summary()}")
        print("Last 7 days:")
        for day, pct in board.weekly_completion():
            print(f"  {day}  {pct:3d}%")
        summary = board.pomodoro_summary()
        if summary:
            print("Focus time:")
            for entry in summary:
                minutes = entry["focus_seconds"] // 60
                print(f"  {entry['label']}: {entry['sessions']} sessions, {minutes} min")
        return 0

    return await _with_board(args, action)


async def cmd_export(args: argparse.Namespace) -> int:
    def action(board: TaskBoard) -> int:
        text = board.export_json()
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            print(f"Exported to {args.output}")
        else:
            print(text)
        return 0

    return await _with_board(args, action)


async def cmd_import(args: argparse.Namespace) -> int:
    try:
        text = Path(args.input).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    def action(board: TaskBoard) -> int:
        board.import_json(text)
        print(f"Imported {len(board.document.tasks)} tasks")
        return 0

    return await _with_board(args, action)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="timekeep",
        description="Offline-first task and pomodoro tracker with cloud sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Server
    serve_parser = subparsers.add_parser("serve", help="Start the backend server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    status_parser = subparsers.add_parser("status", help="Show session and sync status")
    status_parser.add_argument("--json", action="store_true", help="Output status as JSON")
    status_parser.set_defaults(func=cmd_status)

    # Account
    register_parser = subparsers.add_parser(
        "register", help="Create an account and upload current guest data"
    )
    register_parser.add_argument("name")
    register_parser.add_argument("email")
    register_parser.add_argument("--password", help="Password (prompted if omitted)")
    register_parser.set_defaults(func=cmd_register)

    login_parser = subparsers.add_parser("login", help="Log in and load cloud data")
    login_parser.add_argument("email")
    login_parser.add_argument("--password", help="Password (prompted if omitted)")
    login_parser.set_defaults(func=cmd_login)

    subparsers.add_parser("logout", help="Return to guest mode").set_defaults(func=cmd_logout)
    subparsers.add_parser("whoami", help="Show the current user").set_defaults(func=cmd_whoami)

    delete_parser = subparsers.add_parser("delete-account", help="Delete your account")
    delete_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    delete_parser.set_defaults(func=cmd_delete_account)

    rename_parser = subparsers.add_parser("rename", help="Change your display name")
    rename_parser.add_argument("name")
    rename_parser.set_defaults(func=cmd_rename)

    passwd_parser = subparsers.add_parser("passwd", help="Change your password")
    passwd_parser.add_argument("--password", help="New password (prompted if omitted)")
    passwd_parser.set_defaults(func=cmd_passwd)

    # Tasks
    add_parser = subparsers.add_parser("add", help="Add a task")
    add_parser.add_argument("title")
    add_parser.add_argument("-d", "--description", default="")
    add_parser.add_argument("--due", default="", help="Due date (YYYY-MM-DD)")
    add_parser.add_argument("-p", "--priority", choices=["low", "medium", "high"], default="medium")
    add_parser.add_argument("--category", default="")
    add_parser.add_argument(
        "--subtask", action="append", default=None, help="Checklist item (repeatable)"
    )
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", help="List tasks")
    list_parser.add_argument("-f", "--filter", choices=TASK_FILTERS, default="all")
    list_parser.add_argument(
        "-s", "--sorted", action="store_true",
        help="Open tasks first, then by due date and priority",
    )
    list_parser.set_defaults(func=cmd_list)

    done_parser = subparsers.add_parser("done", help="Mark a task done")
    done_parser.add_argument("task_id")
    done_parser.set_defaults(func=cmd_done, undo=False)

    undo_parser = subparsers.add_parser("undo", help="Mark a task not done")
    undo_parser.add_argument("task_id")
    undo_parser.set_defaults(func=cmd_done, undo=True)

    edit_parser = subparsers.add_parser("edit", help="Edit a task")
    edit_parser.add_argument("task_id")
    edit_parser.add_argument("--title")
    edit_parser.add_argument("-d", "--description")
    edit_parser.add_argument("--due", help="Due date (YYYY-MM-DD, empty to clear)")
    edit_parser.add_argument("-p", "--priority", choices=["low", "medium", "high"])
    edit_parser.add_argument("--category")
    edit_parser.add_argument(
        "--subtask", action="append", default=None,
        help="Replace the checklist (repeatable)",
    )
    edit_parser.set_defaults(func=cmd_edit)

    rm_parser = subparsers.add_parser("rm", help="Delete a task")
    rm_parser.add_argument("task_id")
    rm_parser.set_defaults(func=cmd_rm)

    move_parser = subparsers.add_parser("move", help="Reorder tasks (listed ids first)")
    move_parser.add_argument("order", nargs="+", metavar="task_id")
    move_parser.set_defaults(func=cmd_move)

    settings_parser = subparsers.add_parser("settings", help="Show or change timer lengths")
    settings_parser.add_argument("--focus", type=int, help="Focus minutes")
    settings_parser.add_argument("--break", dest="brk", type=int, help="Break minutes")
    settings_parser.set_defaults(func=cmd_settings)

    pomodoro_parser = subparsers.add_parser("pomodoro", help="Record a finished session")
    pomodoro_parser.add_argument("mode", choices=["focus", "break"])
    pomodoro_parser.add_argument("--task", help="Task id to credit")
    pomodoro_parser.add_argument("--minutes", type=int, help="Session length (default: settings)")
    pomodoro_parser.set_defaults(func=cmd_pomodoro)

    subtask_parser = subparsers.add_parser("subtask", help="Manage a task's checklist")
    subtask_parser.add_argument("action", choices=["add", "done", "undo", "rm"])
    subtask_parser.add_argument("task_id")
    subtask_parser.add_argument("value", metavar="title|subtask_id")
    subtask_parser.set_defaults(func=cmd_subtask)

    timer_parser = subparsers.add_parser("timer", help="Run a live pomodoro countdown")
    timer_parser.add_argument("--task", help="Task id to credit")
    timer_parser.add_argument("--mode", choices=["focus", "break"], default="focus")
    timer_parser.add_argument(
        "-n", "--sessions", type=int, default=1,
        help="Sessions to run back to back, alternating focus and break",
    )
    timer_parser.set_defaults(func=cmd_timer)

    subparsers.add_parser("stats", help="Show completion and focus stats").set_defaults(func=cmd_stats)

    export_parser = subparsers.add_parser("export", help="Export data as JSON")
    export_parser.add_argument("output", nargs="?", help="File to write (default: stdout)")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Import data from JSON")
    import_parser.add_argument("input", help="JSON file to read")
    import_parser.set_defaults(func=cmd_import)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
