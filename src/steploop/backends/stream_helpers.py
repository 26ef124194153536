from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..logs import NullRunLog
from ..render import EventClassifier, RunState, reset_step
from ..stream.decoder import StreamDecoder
from ..stream.events import Event
from ..util import json_dumps_compact, stream_pty_process


@dataclass(frozen=True)
class StepRun:
    exit_code: int
    full_text: str
    duration_s: float


def run_stream_backend(
    *,
    argv: list[str],
    classifier: EventClassifier,
    state: RunState,
    cwd: Path,
    env: dict[str, str] | None,
    log: NullRunLog,
    clock: Callable[[], float] = time.monotonic,
) -> StepRun:
    """Run one agent step and return its exit code with all agent-authored text."""
    reset_step(state)
    started = clock()
    parts: list[str] = []
    decoder = StreamDecoder(
        clock=clock,
        on_record=lambda record: log.log(json_dumps_compact(record)),
    )

    def classify(events: list[Event]) -> None:
        for event in events:
            try:
                parts.append(classifier.handle(event, state))
            except Exception as exc:
                # Skip the event; the step keeps its exit code and text.
                log.log(f"[classify] dropped {type(event).__name__}: {exc!r}")

    result = stream_pty_process(
        argv,
        cwd=cwd,
        env=env,
        on_chunk=lambda chunk: classify(decoder.process(chunk)),
    )
    tail = decoder.flush()
    if tail.strip():
        classify(decoder.decode_lines([tail]))

    classifier.flush_pending(state)
    classifier.close_open_scope(state)
    return StepRun(
        exit_code=result.returncode,
        full_text="".join(parts),
        duration_s=clock() - started,
    )
