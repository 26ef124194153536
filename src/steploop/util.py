from __future__ import annotations

import codecs
import errno
import fcntl
import json
import os
import pty
import re
import struct
import subprocess
import termios
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable


PTY_COLS = 200
PTY_ROWS = 50

# CSI sequences, OSC sequences (BEL or ST terminated), and bare two-byte escapes.
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_run_id() -> str:
    return f"steploop-{uuid.uuid4().hex[:8]}"


def format_duration(ms: float) -> str:
    ms = int(round(ms))
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    mins = ms // 60_000
    secs = round((ms % 60_000) / 1000)
    return f"{mins}m{secs}s"


def json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def env_value(name: str) -> str:
    return os.environ.get(name, "").strip()


def env_flag(name: str) -> bool:
    return env_value(name).lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = env_value(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ExecResult:
    returncode: int


def _set_winsize(fd: int, *, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def stream_pty_process(
    argv: list[str],
    *,
    cwd: Path,
    env: dict[str, str] | None,
    on_chunk: Callable[[str], None],
    cols: int = PTY_COLS,
    rows: int = PTY_ROWS,
) -> ExecResult:
    """Run ``argv`` attached to a pseudo-terminal, feeding decoded output to ``on_chunk``.

    Output arrives in arbitrary chunks; callers are responsible for framing.
    A binary that cannot be started yields exit code 127 instead of raising.
    """
    master, slave = pty.openpty()
    try:
        _set_winsize(slave, cols=cols, rows=rows)
        child_env = dict(os.environ if env is None else env)
        child_env.setdefault("TERM", "xterm-256color")
        child_env["COLUMNS"] = str(cols)
        child_env["LINES"] = str(rows)
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=child_env,
                stdin=slave,
                stdout=slave,
                stderr=slave,
                close_fds=True,
                start_new_session=True,
            )
        except FileNotFoundError:
            os.close(master)
            return ExecResult(returncode=127)
    finally:
        os.close(slave)

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            try:
                data = os.read(master, 4096)
            except OSError as exc:
                # Linux reports EIO on the master once the child side closes.
                if exc.errno == errno.EIO:
                    break
                raise
            if not data:
                break
            text = decoder.decode(data)
            if text:
                on_chunk(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            on_chunk(tail)
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        os.close(master)

    return ExecResult(returncode=proc.wait())
