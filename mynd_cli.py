# mynd_cli.py
# Command-line interface for the mynd todo list
# License: MIT
"""
mynd command-line interface.

Discrete commands operate on the todo store directly; `check` runs the todo
notation parser over a file and `lsp` starts the language server.

Usage examples:
  mynd add "water the plants"
  mynd ls
  mynd done 3fa1c2
  mynd below 3fa1c2 9b04de
  mynd check ~/notes/today.todo
  mynd config --format json
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import List, Optional, TextIO

from mynd_config import MyndConfig, SaveFileFormat, load_config, store_config
from mynd_identity import short_id
from mynd_lsp_server import add_server_arguments, configure_logging, run_server
from mynd_parser import Item, parse_text
from mynd_persist import open_database
from mynd_todos import DuplicateTodoError, MyndError, TodoRecord, TodoStore

LOG = logging.getLogger("mynd.cli")


def _open_store(config: MyndConfig) -> TodoStore:
    return TodoStore(open_database(config))


def _format_todo(todo: TodoRecord) -> str:
    mark = "x" if todo.done else " "
    lines = todo.message.splitlines() or [""]
    head = f"{short_id(todo.id)} [{mark}] {lines[0]}"
    rest = [" " * (len(short_id(todo.id)) + 5) + ln for ln in lines[1:]]
    return "\n".join([head] + rest)


# -------------------------
# Commands
# -------------------------
def cmd_add(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    store = _open_store(config)
    message = " ".join(args.message).strip()
    if not message:
        print("mynd: refusing to add an empty todo", file=sys.stderr)
        return 1
    try:
        todo = store.add_message(message)
    except DuplicateTodoError as e:
        print(f"mynd: {e}", file=sys.stderr)
        return 1
    store.flush()
    print(short_id(todo.id), file=out)
    return 0


def cmd_ls(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    todos = _open_store(config).get_all()
    if not args.all:
        todos = [t for t in todos if not t.done]
    if args.json:
        print(json.dumps([t.to_dict() for t in todos], ensure_ascii=False), file=out)
        return 0
    for todo in todos:
        print(_format_todo(todo), file=out)
    return 0


def cmd_rm(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    store = _open_store(config)
    for prefix in args.ids:
        store.remove(store.resolve_id(prefix))
    store.flush()
    return 0


def cmd_done(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    store = _open_store(config)
    todo = store.mark_done(store.resolve_id(args.id))
    store.flush()
    print(_format_todo(todo), file=out)
    return 0


def cmd_clean(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    store = _open_store(config)
    removed = store.remove_done()
    store.flush()
    print(f"removed {removed} done todo(s)", file=out)
    return 0


def cmd_move(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    store = _open_store(config)
    todo_id = store.resolve_id(args.id)
    if args.command == "up":
        store.move_up(todo_id)
    elif args.command == "down":
        store.move_down(todo_id)
    else:
        store.move_below(todo_id, store.resolve_id(args.target))
    store.flush()
    return 0


def cmd_check(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    if args.file == "-":
        text, name = sys.stdin.read(), "<stdin>"
    else:
        with open(args.file, "r", encoding="utf-8", errors="replace") as f:
            text, name = f.read(), args.file
    outcome = parse_text(text)
    for entry in outcome:
        start = entry.span.start
        where = f"{name}:{start.line + 1}:{start.col + 1}"
        if isinstance(entry, Item):
            first = entry.message.splitlines()[0] if entry.message else ""
            print(f"{where}: todo {first}", file=out)
        else:
            print(f"{where}: error: {entry.message}", file=out)
    return 0 if outcome.ok else 1


def cmd_lsp(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    return run_server(args, config)


def cmd_config(args: argparse.Namespace, config: MyndConfig, out: TextIO) -> int:
    if args.format:
        config.save_file_format = SaveFileFormat.parse(args.format)
        path = store_config(config)
        LOG.info("stored config -> %s", path)
    print(json.dumps(config.to_dict(), indent=2), file=out)
    return 0


# -------------------------
# Argparse
# -------------------------
def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mynd", description="mynd todo list")
    p.add_argument("--log-level", default=None, help="logging level (DEBUG/INFO/WARNING/ERROR)")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("add", help="add a todo")
    sp.add_argument("message", nargs="+", help="what to do")
    sp.set_defaults(func=cmd_add)

    sp = sub.add_parser("ls", help="list todos (newest first)")
    sp.add_argument("--json", action="store_true", help="print as JSON")
    sp.add_argument("--all", action="store_true", help="include done todos")
    sp.set_defaults(func=cmd_ls)

    sp = sub.add_parser("rm", help="delete one or more todos")
    sp.add_argument("ids", nargs="+", help="ids (or unique id prefixes) of the todos to delete")
    sp.set_defaults(func=cmd_rm)

    sp = sub.add_parser("done", help="toggle a todo's done flag")
    sp.add_argument("id")
    sp.set_defaults(func=cmd_done)

    sp = sub.add_parser("clean", help="delete all done todos")
    sp.set_defaults(func=cmd_clean)

    for name, helptext in (("up", "move a todo up"), ("down", "move a todo down")):
        sp = sub.add_parser(name, help=helptext)
        sp.add_argument("id")
        sp.set_defaults(func=cmd_move)

    sp = sub.add_parser("below", help="move a todo directly below another")
    sp.add_argument("id")
    sp.add_argument("target")
    sp.set_defaults(func=cmd_move)

    sp = sub.add_parser("check", help="parse a todo document and report errors")
    sp.add_argument("file", help="todo document ('-' for stdin)")
    sp.set_defaults(func=cmd_check)

    sp = sub.add_parser("lsp", help="run the language server")
    add_server_arguments(sp)
    sp.set_defaults(func=cmd_lsp)

    sp = sub.add_parser("config", help="show or change configuration")
    sp.add_argument("--format", choices=[f.value for f in SaveFileFormat], help="save file format")
    sp.set_defaults(func=cmd_config)
    return p


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    args = build_argparser().parse_args(argv)
    out = out or sys.stdout
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level)
        return args.func(args, config, out)
    except MyndError as e:
        print(f"mynd: {e}", file=sys.stderr)
        return 1
    except (OSError, UnicodeError) as e:
        print(f"mynd: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
