"""Command-line entry point -- run the server or inspect stored state."""

from __future__ import annotations

import argparse
import asyncio
import shlex
from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from . import __version__
from .config.settings import cfg
from .messaging.formatting import ack_label, iso
from .messaging.ids import canonical_conversation_id
from .state.documents import JsonCollection
from .state.group_settings import TRIGGERS, GroupSettingsStore
from .state.message_store import MessageStore
from .state.session_state import ClientSession
from .state.watchlist import WatchEntry, display_order_key, manual_order_key

console = Console()


# ---------------------------------------------------------------------------
# Offline views
# ---------------------------------------------------------------------------


def show_status() -> None:
    sessions = JsonCollection(cfg.session_path, "session_id", ClientSession.from_dict)
    session = sessions.get(cfg.session_id)
    if session is None:
        console.print(f"[yellow]No stored session '{cfg.session_id}' in {cfg.data_dir}[/yellow]")
        return
    table = Table(title=f"Session {session.session_id}", show_header=False)
    table.add_row("Last status", session.status)
    table.add_row("Phone", session.phone_number or "-")
    table.add_row("Name", session.pushname or "-")
    table.add_row("Platform", session.platform or "-")
    table.add_row("Last active", iso(session.last_active) or "-")
    table.add_row("Connections", str(session.connections_count))
    console.print(table)


def _watch_entries(manual: bool) -> list[WatchEntry]:
    coll = JsonCollection(cfg.watchlist_path, "conversation_id", WatchEntry.from_dict)
    entries = coll.find(lambda e: e.is_active)
    if manual:
        entries.sort(key=manual_order_key)
    else:
        entries.sort(key=display_order_key, reverse=True)
    return entries


def show_watchlist(manual: bool = False) -> None:
    entries = _watch_entries(manual)
    if not entries:
        console.print("[dim]Watchlist is empty.[/dim]")
        return
    table = Table(title="Watchlist")
    table.add_column("#", justify="right")
    table.add_column("Chat")
    table.add_column("Kind")
    table.add_column("Unread", justify="right")
    table.add_column("Last message")
    for entry in entries:
        name = f"📌 {entry.display_name}" if entry.pinned else entry.display_name
        table.add_row(
            str(entry.order),
            f"{name}\n[dim]{entry.conversation_id}[/dim]",
            entry.kind,
            str(entry.unread_count) if entry.unread_count else "",
            entry.last_message.content,
        )
    console.print(table)


def show_history(chat_id: str, limit: int = 20) -> None:
    store = MessageStore(cfg.messages_dir)
    records = store.get_chat_messages(canonical_conversation_id(chat_id), limit=limit, include_deleted=True)
    if not records:
        console.print(f"[dim]No stored messages for {chat_id}.[/dim]")
        return
    for r in records:
        who = "me" if r.from_me else (r.author or r.sender)
        body = f"[dim strike]{r.body}[/dim strike]" if r.is_deleted else r.body
        if r.is_edited:
            body += " [dim](edited)[/dim]"
        reactions = " ".join(x.emoji for x in r.reactions)
        console.print(
            f"[dim]{iso(r.timestamp)}[/dim] [bold]{who}[/bold] {body} "
            f"[dim]{ack_label(r.ack)}[/dim] {reactions}"
        )


def show_groups() -> None:
    store = GroupSettingsStore(cfg.group_settings_path)
    seen: dict[str, list[str]] = {}
    for trigger in TRIGGERS:
        for config in store.groups_with_trigger(trigger):
            seen.setdefault(config.group_id, []).append(trigger)
    if not seen:
        console.print("[dim]No group has auto-messages enabled.[/dim]")
        return
    table = Table(title="Auto-messages")
    table.add_column("Group")
    table.add_column("Enabled")
    for group_id, triggers in sorted(seen.items()):
        table.add_row(group_id, ", ".join(triggers))
    console.print(table)


# ---------------------------------------------------------------------------
# Interactive shell
# ---------------------------------------------------------------------------

_SHELL_HELP = (
    "[bold]status[/bold]  [bold]watchlist[/bold] [manual]  "
    "[bold]history[/bold] <chat> [limit]  [bold]groups[/bold]  [bold]quit[/bold]"
)


def _shell_commands() -> dict[str, Callable[[list[str]], None]]:
    return {
        "status": lambda _args: show_status(),
        "watchlist": lambda args: show_watchlist(manual=bool(args) and args[0] == "manual"),
        "history": lambda args: show_history(args[0], int(args[1]) if len(args) > 1 else 20),
        "groups": lambda _args: show_groups(),
        "help": lambda _args: console.print(_SHELL_HELP),
    }


async def _shell() -> None:
    cfg.ensure_dirs()
    console.print(f"[bold green]chatrelay[/bold green] v{__version__} -- {cfg.data_dir}\n{_SHELL_HELP}\n")
    history_path = cfg.data_dir / ".cli_history"
    prompt_session: PromptSession[str] = PromptSession(history=FileHistory(str(history_path)))
    commands = _shell_commands()

    while True:
        try:
            line = await asyncio.to_thread(prompt_session.prompt, HTML("<b>relay &gt;</b> "))
        except (EOFError, KeyboardInterrupt):
            break
        try:
            words = shlex.split(line)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            continue
        if not words:
            continue
        name, args = words[0].lower(), words[1:]
        if name in ("quit", "exit"):
            break
        command = commands.get(name)
        if command is None:
            console.print(f"[red]Unknown command:[/red] {name}")
            continue
        try:
            command(args)
        except (IndexError, ValueError):
            console.print(_SHELL_HELP)
    console.print("[dim]Goodbye.[/dim]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatrelay", description="Messaging session relay.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="run the relay server")
    serve.add_argument("--port", type=int, default=None)

    sub.add_parser("status", help="show the stored session")
    wl = sub.add_parser("watchlist", help="list watched chats")
    wl.add_argument("--manual", action="store_true", help="use the drag-reorder order")
    hist = sub.add_parser("history", help="show stored messages of a watched chat")
    hist.add_argument("chat_id")
    hist.add_argument("--limit", type=int, default=20)
    sub.add_parser("groups", help="list groups with auto-messages enabled")
    sub.add_parser("shell", help="interactive inspection shell")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _parser().parse_args(argv)
    if args.command == "serve":
        from .server.app import main as serve

        serve(port=args.port)
    elif args.command == "status":
        show_status()
    elif args.command == "watchlist":
        show_watchlist(manual=args.manual)
    elif args.command == "history":
        show_history(args.chat_id, limit=args.limit)
    elif args.command == "groups":
        show_groups()
    else:
        try:
            asyncio.run(_shell())
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
