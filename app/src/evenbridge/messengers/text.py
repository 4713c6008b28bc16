"""Plain-text helpers shared by the adapters."""

from __future__ import annotations

import re
from html.parser import HTMLParser

_BLOCK_TAGS = {
    "p", "div", "br", "tr", "li", "ul", "ol", "table",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "hr",
}
_SKIP_TAGS = {"script", "style", "head", "title"}


def truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars, appending "..." only when something was cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_startendtag(self, tag, attrs):
        # <br/>, <img/>: images contribute nothing
        if tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_data(self, data):
        if not self._skip_depth:
            self._parts.append(data)

    def text(self) -> str:
        return "".join(self._parts)


def strip_html(html: str) -> str:
    """Render an HTML body as readable plain text.

    Scripts, styles and images are dropped, link text is kept without its
    target, block elements become line breaks and entities are decoded.
    """
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    text = parser.text().replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def display_name(name: str) -> str:
    """Capitalize the first letter only: "telegram" -> "Telegram"."""
    return name[:1].upper() + name[1:]
