"""Append-only run logs: a raw text transcript and structured runner events."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from .events import RunnerEvent, EventSink
from .util import json_dumps_compact, strip_ansi, utc_now_iso


class NullRunLog:
    path: Path | None = None

    def log(self, message: str) -> None:
        return None

    def log_event(
        self,
        event: str,
        *,
        step: int | None = None,
        iteration: int | None = None,
        **fields: Any,
    ) -> None:
        return None

    def close(self) -> None:
        return None


class RunLog(NullRunLog):
    """Write raw lines and one-JSON-object-per-line runner events to one file.

    ``event_sink`` receives every structured event as a ``RunnerEvent`` too,
    so programmatic callers can observe a run without parsing the file.
    """

    def __init__(self, path: Path, *, event_sink: EventSink | None = None) -> None:
        self.path = path
        self.event_sink = event_sink
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: IO[str] | None = path.open("a", encoding="utf-8")

    def _write(self, line: str) -> None:
        if self._fh is None:
            return
        self._fh.write(line + "\n")
        self._fh.flush()

    def log(self, message: str) -> None:
        self._write(strip_ansi(message))

    def log_event(
        self,
        event: str,
        *,
        step: int | None = None,
        iteration: int | None = None,
        **fields: Any,
    ) -> None:
        record = RunnerEvent(
            event=event,
            timestamp=utc_now_iso(),
            step=step,
            iteration=iteration,
            payload=fields,
        )
        self._write(json_dumps_compact(record.to_record()))
        if self.event_sink:
            self.event_sink(record)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def log_filename(name: str, *, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S")
    base = Path(name).name
    if base.endswith(".txt"):
        base = base[: -len(".txt")]
    return f"{base or 'prompt'}-{stamp}.log"


def open_run_log(
    enabled: bool,
    log_dir: Path,
    name: str,
    *,
    event_sink: EventSink | None = None,
) -> NullRunLog:
    if not enabled:
        return NullRunLog()
    return RunLog(log_dir / log_filename(name), event_sink=event_sink)
