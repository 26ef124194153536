"""Pick plain or rich terminal output and build consoles for it."""

from __future__ import annotations

import os
import sys
from typing import IO, Literal, Mapping

from rich.console import Console

OUTPUT_CHOICES = ("auto", "plain", "rich")
OUTPUT_ENV_VAR = "STEPLOOP_OUTPUT"

OutputMode = Literal["plain", "rich"]


def parse_output_choice(raw: object, *, source: str) -> str | None:
    """Normalize an output choice; blank means unset."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValueError(f"{source} must be a string")
    value = raw.strip().lower()
    if not value:
        return None
    if value not in OUTPUT_CHOICES:
        expected = ", ".join(OUTPUT_CHOICES)
        raise ValueError(f"invalid {source} value {raw!r}; expected one of: {expected}")
    return value


def _isatty(stream: IO[str]) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, OSError, ValueError):
        return False


def resolve_output_mode(
    flag: str | None = None,
    *,
    configured: str | None = None,
    env: Mapping[str, str] | None = None,
    is_tty: bool | None = None,
) -> OutputMode:
    """Resolve ``--output``, then $STEPLOOP_OUTPUT, then ``[runner].output``.

    ``auto`` (the default) picks rich output only when stdout is a terminal.
    """
    environ = os.environ if env is None else env
    selected = (
        parse_output_choice(flag, source="--output")
        or parse_output_choice(environ.get(OUTPUT_ENV_VAR), source=OUTPUT_ENV_VAR)
        or parse_output_choice(configured, source="[runner].output")
        or "auto"
    )
    if selected == "auto":
        tty = _isatty(sys.stdout) if is_tty is None else is_tty
        return "rich" if tty else "plain"
    return selected  # type: ignore[return-value]


def color_for_mode(mode: OutputMode) -> bool:
    return mode == "rich"


def make_console(mode: OutputMode, *, file: IO[str] | None = None) -> Console:
    color = color_for_mode(mode)
    return Console(
        file=file or sys.stdout,
        force_terminal=color,
        no_color=not color,
        highlight=False,
        soft_wrap=True,
    )
