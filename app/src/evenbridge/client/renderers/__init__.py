"""Renderers for the client session state machine."""

from evenbridge.client.renderers.base import Renderer
from evenbridge.client.renderers.glasses import (
    ConsoleDisplayBridge,
    DisplayBridge,
    GlassesRenderer,
    parse_hub_event,
)
from evenbridge.client.renderers.terminal import TerminalRenderer

__all__ = [
    "Renderer",
    "DisplayBridge",
    "ConsoleDisplayBridge",
    "GlassesRenderer",
    "TerminalRenderer",
    "parse_hub_event",
]
