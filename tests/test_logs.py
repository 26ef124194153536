from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from steploop.events import RunnerEvent
from steploop.logs import NullRunLog, RunLog, log_filename, open_run_log


def test_run_log_writes_plain_lines_and_events(tmp_path: Path) -> None:
    seen: list[RunnerEvent] = []
    path = tmp_path / "logs" / "run.log"
    log = RunLog(path, event_sink=seen.append)
    log.log("\x1b[32mgreen\x1b[0m text")
    log.log_event("iteration_start", step=1, iteration=2, prompt="go")
    log.close()
    log.log("after close")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "green text"
    record = json.loads(lines[1])
    assert record["type"] == "runner"
    assert record["event"] == "iteration_start"
    assert record["step"] == 1
    assert record["iteration"] == 2
    assert record["prompt"] == "go"
    assert record["timestamp"].endswith("Z")
    assert len(lines) == 2
    assert [e.event for e in seen] == ["iteration_start"]


def test_run_log_appends(tmp_path: Path) -> None:
    path = tmp_path / "run.log"
    for message in ("one", "two"):
        log = RunLog(path)
        log.log(message)
        log.close()
    assert path.read_text(encoding="utf-8") == "one\ntwo\n"


def test_event_without_step_omits_keys(tmp_path: Path) -> None:
    path = tmp_path / "run.log"
    log = RunLog(path)
    log.log_event("sequence_complete", total=3)
    log.close()
    record = json.loads(path.read_text(encoding="utf-8"))
    assert "step" not in record
    assert "iteration" not in record
    assert record["total"] == 3


def test_log_filename_uses_base_name_and_timestamp() -> None:
    now = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    assert log_filename("prompts/fix.txt", now=now) == "fix-2025-03-04T05-06-07.log"
    assert log_filename("sequence", now=now) == "sequence-2025-03-04T05-06-07.log"


def test_open_run_log_disabled_is_null(tmp_path: Path) -> None:
    log = open_run_log(False, tmp_path / "logs", "prompt")
    assert isinstance(log, NullRunLog)
    assert log.path is None
    log.log("ignored")
    log.log_event("ignored")
    log.close()
    assert not (tmp_path / "logs").exists()


def test_open_run_log_enabled_creates_file(tmp_path: Path) -> None:
    log = open_run_log(True, tmp_path / "logs", "prompt")
    try:
        assert log.path is not None
        assert log.path.parent == tmp_path / "logs"
        assert log.path.name.startswith("prompt-")
        assert log.path.exists()
    finally:
        log.close()
