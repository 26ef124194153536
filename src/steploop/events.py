from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(frozen=True)
class RunnerEvent:
    event: str
    timestamp: str
    step: int | None
    iteration: int | None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "type": "runner",
            "event": self.event,
            "timestamp": self.timestamp,
        }
        if self.step is not None:
            record["step"] = self.step
        if self.iteration is not None:
            record["iteration"] = self.iteration
        record.update(self.payload)
        return record


EventSink = Callable[[RunnerEvent], None]
StreamEventSink = Callable[[str, dict[str, Any]], None]
