"""
Terminal renderer — rich panels and tables for the phone-side views.

Each view is printed as a bordered panel when it is shown. List views mark
the cursor row with "›" so the keyboard bindings in the TUI have something
to point at.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from evenbridge.client.renderers.base import Renderer
from evenbridge.client.state import ClientState, View
from evenbridge.messengers.text import display_name, truncate

HISTORY_TEXT_CHARS = 60


def _time(unix_ts: int) -> str:
    return datetime.fromtimestamp(unix_ts).strftime("%H:%M") if unix_ts else "--:--"


class TerminalRenderer(Renderer):
    def __init__(self, console: Console | None = None) -> None:
        super().__init__()
        self.console = console or Console()
        self.title = "Even Bridge"
        self.status = ""
        self.record_button = "hidden"

    # ─── Views ────────────────────────────────────────────────

    def _render(self, view: View, state: ClientState) -> None:
        body = self._body(view, state)
        if body is None:
            return
        self.console.print(
            Panel(
                body,
                title=f"[bold cyan]{escape(self.title)}[/bold cyan]",
                title_align="left",
                subtitle=f"[dim]{escape(self.status)}[/dim]" if self.status else None,
                border_style="cyan",
                padding=(0, 1),
                expand=True,
            )
        )

    def _body(self, view: View, state: ClientState) -> Any:
        if view == View.MESSENGER_LIST:
            return self._list(
                [display_name(n) for n in state.available_messengers],
                state.messenger_select_index,
                "No messengers configured",
            )
        if view == View.CONTACT_LIST:
            chat = state.chat
            contacts = chat.contacts if chat else []
            return self._list(
                [f"{c.name} [dim]({c.kind})[/dim]" for c in contacts],
                state.list_index,
                "No contacts found",
                markup=True,
            )
        if view == View.FOLDER_LIST:
            folder = state.folder
            folders = folder.folders if folder else []
            return self._list(
                [f"{f.name} ({f.unread_count})" if f.unread_count else f.name for f in folders],
                state.list_index,
                "No folders",
            )
        if view == View.MESSAGE_LIST:
            return self._message_list(state)
        if view == View.CONVERSATION:
            return self._conversation(state)
        if view == View.MESSAGE_VIEW:
            return self._message_view(state)
        if view == View.PREVIEW:
            return Text.from_markup(
                f"[bold]Preview[/bold]\n\n{escape(state.pending_text)}\n\n"
                "[dim]enter: send · esc: cancel[/dim]"
            )
        if view == View.SETTINGS:
            return self._settings(state)
        return None

    def _list(
        self, items: list[str], cursor: int, empty: str, markup: bool = False
    ) -> Any:
        if not items:
            return Text(empty, style="dim")
        table = Table.grid(padding=(0, 1))
        table.add_column(width=1)
        table.add_column()
        for i, item in enumerate(items):
            label = Text.from_markup(item) if markup else Text(item)
            if i == cursor:
                label.stylize("bold cyan")
            table.add_row("›" if i == cursor else " ", label)
        return table

    def _message_list(self, state: ClientState) -> Any:
        folder = state.folder
        if folder is None or not folder.folder_messages:
            return Text("No messages", style="dim")
        table = Table(show_header=True, header_style="dim", box=None, expand=True)
        table.add_column("", width=1)
        table.add_column("From", no_wrap=True, max_width=24)
        table.add_column("Subject", ratio=1)
        table.add_column("", width=5)
        for i, m in enumerate(folder.folder_messages):
            style = "bold cyan" if i == state.list_index else ("" if m.is_read else "bold")
            table.add_row(
                "›" if i == state.list_index else ("•" if not m.is_read else " "),
                Text(m.from_name, style=style),
                Text(f"{m.subject} [{truncate(m.snippet, 40)}]", style=style),
                _time(m.date),
            )
        return table

    def _conversation(self, state: ClientState) -> Any:
        chat = state.chat
        contact = chat.selected_contact if chat else None
        if contact is None:
            return Text("No conversation", style="dim")
        lines: list[Any] = [Text(f"To: {contact.name}", style="bold")]
        messages = list(reversed(chat.conversation_messages))
        if not messages:
            lines.append(Text("No messages yet", style="dim"))
        for m in messages:
            sender = "Me" if m.out else (m.sender_name or contact.name)
            lines.append(
                Text.from_markup(
                    f"[{'green' if m.out else 'magenta'}]{escape(sender)}[/] "
                    f"[dim]{_time(m.date)}[/dim] {escape(m.text)}"
                )
            )
        lines.append(Text("space: record · esc: back", style="dim"))
        return Group(*lines)

    def _message_view(self, state: ClientState) -> Any:
        folder = state.folder
        message = folder.selected_message if folder else None
        if message is None:
            return Text("No message", style="dim")
        header = f"{message.from_name} <{message.from_address}>" if message.from_address else message.from_name
        return Group(
            Text(f"From: {header}", style="bold"),
            Text(f"Subject: {message.subject}", style="bold"),
            Text(""),
            Text(message.body or message.snippet),
            Text(""),
            Text("space: reply · esc: back", style="dim"),
        )

    def _settings(self, state: ClientState) -> Any:
        status = state.settings_status or {}
        table = Table(show_header=True, header_style="dim", box=None)
        table.add_column("Service")
        table.add_column("Configured")
        for service, info in status.items():
            configured = bool((info or {}).get("configured"))
            extra = ""
            if service == "telegram" and configured:
                extra = " (logged in)" if info.get("authenticated") else " (login needed)"
            table.add_row(
                display_name(service),
                Text(("yes" if configured else "no") + extra, style="green" if configured else "red"),
            )
        return table

    # ─── Status & extras ──────────────────────────────────────

    def set_status(self, text: str, error: bool = False) -> None:
        self.status = text
        style = "bold red" if error else "dim magenta"
        self.console.print(Text(f"  {text}", style=style))

    def notice(self, text: str, centered: bool = False) -> None:
        self.console.print(
            Panel(
                Text(text, justify="center" if centered else "left"),
                border_style="dim",
                padding=(0, 1),
            )
        )

    def set_title(self, text: str) -> None:
        self.title = text

    def set_record_button(self, mode: str) -> None:
        self.record_button = mode

    def render_history(self, entries: list[dict]) -> None:
        if not entries:
            return
        table = Table(title="Sent", title_justify="left", header_style="dim", box=None)
        table.add_column("Time", width=5)
        table.add_column("To", no_wrap=True)
        table.add_column("Text")
        for entry in entries:
            try:
                ts = datetime.fromisoformat(entry.get("timestamp", "")).astimezone()
                when = ts.strftime("%H:%M")
            except ValueError:
                when = "--:--"
            table.add_row(
                when,
                entry.get("contact", ""),
                truncate(entry.get("text", ""), HISTORY_TEXT_CHARS),
            )
        self.console.print(table)
