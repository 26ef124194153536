from __future__ import annotations

import enum


class Signal(str, enum.Enum):
    REPEAT = "repeat"
    BLOCKED = "blocked"
    ERROR = "error"


# Checked in this order; the first sentinel present wins.
SENTINELS: dict[Signal, str] = {
    Signal.REPEAT: ":::RUNNER::REPEAT_STEP:::",
    Signal.BLOCKED: ":::RUNNER::BLOCKED:::",
    Signal.ERROR: ":::RUNNER::ERROR:::",
}


def detect_signal(text: str) -> Signal | None:
    for signal, sentinel in SENTINELS.items():
        if sentinel in text:
            return signal
    return None


def sentinel_help() -> str:
    return "\n".join(
        [
            "Runner control signals (print exactly, on their own line):",
            f"  {SENTINELS[Signal.REPEAT]}  run this step again",
            f"  {SENTINELS[Signal.BLOCKED]}  stop: human input required",
            f"  {SENTINELS[Signal.ERROR]}  stop: unrecoverable failure",
        ]
    )
