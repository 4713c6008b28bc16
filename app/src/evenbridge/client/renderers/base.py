"""
Renderer base class — the controller's only way to put things on screen.

Renderers are told which View to show for the current ClientState; the
controller always hides every other view first. Concrete renderers
implement _render() / _clear() and the status/notice hooks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from evenbridge.client.state import ClientState, View


class Renderer(ABC):
    def __init__(self) -> None:
        self.visible: set[View] = set()

    def show(self, view: View, state: ClientState) -> None:
        self.visible.add(view)
        self._render(view, state)

    def hide(self, view: View) -> None:
        if view in self.visible:
            self.visible.discard(view)
            self._clear(view)

    @abstractmethod
    def _render(self, view: View, state: ClientState) -> None:
        ...

    def _clear(self, view: View) -> None:
        """Remove a view from screen. Page-based displays need nothing here."""

    @abstractmethod
    def set_status(self, text: str, error: bool = False) -> None:
        ...

    def notice(self, text: str, centered: bool = False) -> None:
        """Full-screen transient text (loading, recording, errors)."""

    def set_title(self, text: str) -> None:
        ...

    def set_record_button(self, mode: str) -> None:
        """mode: ready | recording | processing | hidden"""

    def render_history(self, entries: list[dict]) -> None:
        ...
