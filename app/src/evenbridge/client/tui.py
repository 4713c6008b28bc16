#!/usr/bin/env python3
"""
Even Bridge TUI — terminal client for the bridge server.

Runs the same session state machine the glasses use, with the keyboard
standing in for the ring gestures:

  ↑ / ↓     scroll (swipe)         enter   tap / pick
  space     double tap (record)    esc     back

Commands (type and press enter):
  /settings                       show configured services
  /save <service> key=value ...   store credentials
  /delete <service>               remove credentials
  /login <phone>  /code <code>  /password <pw>  /reset-login
  /hide  /show                    simulate the display sleeping / waking
  /home                           back to messenger select
  /quit

Usage: evenbridge-tui [--server http://localhost:3000] [--glasses-preview] [--wav FILE]
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import shlex
import sys
from functools import partial

try:
    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import InMemoryHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.patch_stdout import patch_stdout
    from rich.console import Console
    from rich.panel import Panel
except ImportError:
    print("Missing dependencies. Install the terminal client with:")
    print("  pip install -e '.[tui]'")
    sys.exit(1)

import evenbridge.core.config as _config_mod
from evenbridge.client.api import BridgeAPI
from evenbridge.client.audio import MicrophoneSource, WavFileSource
from evenbridge.client.connection import BridgeConnection, ws_url
from evenbridge.client.controller import LIST_STATES, SessionController
from evenbridge.client.history import SentHistory
from evenbridge.client.renderers import ConsoleDisplayBridge, GlassesRenderer, TerminalRenderer
from evenbridge.client.state import InputEvent, InputKind
from evenbridge.core.config import ClientConfig
from evenbridge.core.logging import setup_logging

logger = logging.getLogger("evenbridge.tui")

VERSION = "0.1.0"


class BridgeTUI:
    """Keyboard front end for SessionController."""

    def __init__(
        self,
        settings: ClientConfig,
        glasses_preview: bool = False,
        wav_path: str | None = None,
    ):
        self.settings = settings
        self.console = Console()

        renderers = [TerminalRenderer(self.console)]
        if glasses_preview:
            renderers.append(GlassesRenderer(ConsoleDisplayBridge(self.console)))

        if wav_path:
            audio_factory = partial(WavFileSource, path=wav_path)
        else:
            audio_factory = MicrophoneSource

        self.api = BridgeAPI(settings)
        self.connection = BridgeConnection(
            ws_url(settings.server_url),
            on_message=lambda msg: self.controller.on_server_message(msg),
            reconnect_delay=settings.reconnect_delay,
        )
        self.controller = SessionController(
            self.api,
            self.connection,
            renderers,
            SentHistory(settings.history_path),
            settings=settings,
            audio_source_factory=audio_factory,
        )

    # ── Gestures ──────────────────────────────────────────────────────────

    def _gesture(self, kind: InputKind) -> None:
        self.controller.spawn(self.controller.handle_input(InputEvent(kind)))

    def _back(self) -> None:
        # Lists go back with a double tap, everything else with a swipe
        if self.controller.state.app_state in LIST_STATES:
            self._gesture(InputKind.DOUBLE_TAP)
        else:
            self._gesture(InputKind.SCROLL_UP)

    def _key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("up")
        def _(event):
            self._gesture(InputKind.SCROLL_UP)

        @kb.add("down")
        def _(event):
            self._gesture(InputKind.SCROLL_DOWN)

        @kb.add("enter")
        def _(event):
            buf = event.app.current_buffer
            if buf.text.strip():
                buf.validate_and_handle()
            else:
                self._gesture(InputKind.TAP)

        @kb.add(" ")
        def _(event):
            buf = event.app.current_buffer
            if buf.text:
                buf.insert_text(" ")
            else:
                self._gesture(InputKind.DOUBLE_TAP)

        @kb.add("escape", eager=True)
        def _(event):
            self._back()

        return kb

    # ── Commands ──────────────────────────────────────────────────────────

    async def _command(self, line: str) -> bool:
        """Run a /command. Returns False when the user asked to quit."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.console.print(f"[bold red]Bad command:[/bold red] {e}")
            return True
        cmd, args = parts[0].lower(), parts[1:]
        c = self.controller

        if cmd in ("/quit", "/exit", "/q"):
            return False
        if cmd == "/settings":
            await c.go_to_settings()
        elif cmd == "/save" and args:
            values = dict(arg.split("=", 1) for arg in args[1:] if "=" in arg)
            await c.save_credentials(args[0], values)
        elif cmd == "/delete" and args:
            await c.delete_credentials(args[0])
        elif cmd == "/login" and args:
            await c.telegram_login_start(args[0])
        elif cmd == "/code" and args:
            await c.telegram_login_code(args[0])
        elif cmd == "/password" and args:
            await c.telegram_login_password(" ".join(args))
        elif cmd == "/reset-login":
            await c.telegram_login_reset()
        elif cmd == "/hide":
            await c.set_visibility(False)
        elif cmd == "/show":
            await c.set_visibility(True)
        elif cmd == "/home":
            await c.go_to_messenger_select()
        else:
            self.console.print(f"[dim]Unknown command: {line}[/dim]")
        return True

    # ── Main loop ─────────────────────────────────────────────────────────

    async def run(self) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold cyan]Even Bridge[/bold cyan] v{VERSION} — Terminal Client\n"
                f"Server: {self.settings.server_url}\n"
                "[bold]↑/↓[/bold] scroll · [bold]enter[/bold] tap · "
                "[bold]space[/bold] record · [bold]esc[/bold] back · [bold]/quit[/bold] to exit",
                border_style="dim",
                padding=(0, 1),
            )
        )
        self.console.print()

        self.connection.start()
        try:
            await asyncio.wait_for(self.connection.connected.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            self.console.print(
                f"[bold red]Could not reach {self.settings.server_url}[/bold red], "
                "retrying in the background"
            )
        self.controller.spawn(self.controller.go_to_messenger_select())

        session: PromptSession = PromptSession(
            history=InMemoryHistory(),
            key_bindings=self._key_bindings(),
        )
        try:
            while True:
                try:
                    with patch_stdout():
                        line = await session.prompt_async("› ")
                except (EOFError, KeyboardInterrupt):
                    break
                line = line.strip()
                if line.startswith("/") and not await self._command(line):
                    break
        except Exception as e:
            self.console.print(f"\n[bold red]Error:[/bold red] {e}")
        finally:
            await self.controller.shutdown()
            self.console.print("\n[dim]Goodbye.[/dim]")


def main():
    client = _config_mod.config.client
    parser = argparse.ArgumentParser(description="Even Bridge TUI Client")
    parser.add_argument("--server", default=client.server_url, help="Bridge server URL")
    parser.add_argument(
        "--glasses-preview",
        action="store_true",
        help="Also print what the glasses display would show",
    )
    parser.add_argument("--wav", help="Record from a 16 kHz mono WAV file instead of the mic")
    args = parser.parse_args()

    setup_logging()
    settings = dataclasses.replace(client, server_url=args.server)
    tui = BridgeTUI(settings, glasses_preview=args.glasses_preview, wav_path=args.wav)
    try:
        asyncio.run(tui.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
