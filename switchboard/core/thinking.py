"""Separate ``<think>...</think>`` reasoning from user-visible streamed text."""

import re
from dataclasses import dataclass
from typing import List

THINKING_PLACEHOLDER = "🧠 *Thinking...*"

_OPEN = "<think>"
_CLOSE = "</think>"
_MARKER_RE = re.compile(r"</?think>", re.IGNORECASE)


@dataclass
class ThinkingState:
    display: str
    reasoning: str
    in_thinking: bool

    def visible_text(self) -> str:
        """What the chat surface should show right now."""
        if not self.in_thinking:
            return self.display
        if self.display:
            return f"{self.display}\n\n{THINKING_PLACEHOLDER}"
        return THINKING_PLACEHOLDER


def _partial_marker_start(text: str) -> int:
    """Index where a possibly incomplete marker begins at the end of ``text``, or -1."""
    idx = text.rfind("<")
    if idx == -1 or len(text) - idx >= len(_CLOSE):
        return -1
    tail = text[idx:].lower()
    if _OPEN.startswith(tail) or _CLOSE.startswith(tail):
        return idx
    return -1


class ThinkingExtractor:
    """Incremental scanner over a growing text stream.

    Each delta is scanned once. Completed blocks move to ``reasoning``; an
    unterminated ``<think>`` hides everything after it until the closing
    marker arrives. A marker split across deltas is held back until the
    next delta settles it.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self._display = ""
        self._blocks: List[str] = []
        self._current = ""
        self._depth = 0
        self._pending = ""
        self._after_block = False
        self._streamed_reasoning = ""

    def add_reasoning(self, delta: str) -> None:
        """Reasoning delivered on a dedicated channel by the API."""
        self._streamed_reasoning += delta

    def feed(self, delta: str) -> ThinkingState:
        text = self._pending + delta
        self._pending = ""

        last = 0
        for match in _MARKER_RE.finditer(text):
            self._emit(text[last:match.start()])
            last = match.end()
            if match.group(0)[1] == "/":
                if self._depth == 0:
                    self._emit(match.group(0))
                    continue
                self._depth -= 1
                if self._depth == 0:
                    self._blocks.append(self._current)
                    self._current = ""
                    self._after_block = True
            else:
                self._depth += 1

        rest = text[last:]
        cut = _partial_marker_start(rest)
        if cut != -1:
            self._pending = rest[cut:]
            rest = rest[:cut]
        self._emit(rest)
        return self._snapshot(self._display)

    def state(self) -> ThinkingState:
        if self._depth or not self._pending:
            return self._snapshot(self._display)
        return self._snapshot(self._display + self._pending)

    def _emit(self, text: str) -> None:
        if not text:
            return
        if self._depth:
            self._current += text
            return
        if self._after_block:
            # Drop the whitespace doubled up where a block was cut out
            if not self._display or self._display[-1].isspace():
                text = text.lstrip()
            if not text:
                return
            self._after_block = False
        self._display += text

    def _snapshot(self, display: str) -> ThinkingState:
        parts = [b.strip() for b in self._blocks if b.strip()]
        if self._streamed_reasoning.strip():
            parts.insert(0, self._streamed_reasoning.strip())
        return ThinkingState(
            display=display.strip(),
            reasoning="\n\n".join(parts),
            in_thinking=self._depth > 0,
        )
