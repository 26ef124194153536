from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..util import strip_ansi
from .events import Envelope, Event, refine


# Residue of the kitty keyboard protocol query some terminals echo back.
_KEYBOARD_RESIDUE = "[<u"


@dataclass
class StreamDecoder:
    """Frame a chunked pty byte stream into stream-json events.

    Lines are emitted in the order they are terminated, no matter how the
    input was split across ``process`` calls. The unterminated tail stays
    buffered until more input arrives or ``flush`` is called.
    """

    clock: Callable[[], float] = time.monotonic
    on_record: Callable[[Any], None] | None = None
    records: int = 0
    dropped: int = 0
    _buffer: str = field(default="", init=False, repr=False)

    def process(self, chunk: str) -> list[Event]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self.decode_lines(lines)

    def decode_lines(self, lines: Iterable[str]) -> list[Event]:
        events: list[Event] = []
        for line in lines:
            record = self._decode_line(line)
            if record is None:
                continue
            try:
                refined = refine(Envelope.from_record(record), now=self.clock())
            except (TypeError, ValueError, AttributeError):
                # Valid JSON with an unexpected shape is dropped like bad JSON.
                self.dropped += 1
                continue
            self.records += 1
            if self.on_record:
                self.on_record(record)
            events.extend(refined)
        return events

    def flush(self) -> str:
        remaining = self._buffer
        self._buffer = ""
        return remaining

    def _decode_line(self, line: str) -> Any | None:
        cleaned = strip_ansi(line).replace(_KEYBOARD_RESIDUE, "").strip()
        if not cleaned:
            return None
        try:
            record = json.loads(cleaned)
        except ValueError:
            self.dropped += 1
            return None
        return record
