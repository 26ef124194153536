"""Tests for StreamDecoder framing."""

from __future__ import annotations

import json

from steploop.stream import (
    AgentText,
    StepResult,
    StreamDecoder,
    SystemInit,
    ToolInvocation,
    ToolResult,
)


def _line(record: dict) -> str:
    return json.dumps(record) + "\n"


def _assistant_text(text: str) -> dict:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


STREAM = "".join(
    [
        _line({"type": "system", "subtype": "init", "model": "m", "tools": ["Read"]}),
        _line(_assistant_text("hello")),
        _line(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}}
                    ]
                },
            }
        ),
        _line(
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]},
            }
        ),
        _line({"type": "result", "duration_ms": 1200}),
    ]
)


def _decode_in_chunks(data: str, size: int) -> list:
    decoder = StreamDecoder(clock=lambda: 0.0)
    events = []
    for i in range(0, len(data), size):
        events.extend(decoder.process(data[i : i + size]))
    return events


def test_chunk_boundaries_do_not_change_events() -> None:
    whole = StreamDecoder(clock=lambda: 0.0).process(STREAM)
    assert len(whole) == 5
    for size in (1, 2, 7, 33, 100, len(STREAM)):
        assert _decode_in_chunks(STREAM, size) == whole


def test_event_order_follows_line_order() -> None:
    events = StreamDecoder(clock=lambda: 0.0).process(STREAM)
    assert [type(e).__name__ for e in events] == [
        "SystemInit",
        "AgentText",
        "ToolInvocation",
        "ToolResult",
        "StepResult",
    ]
    assert events[1] == AgentText(text="hello")
    assert isinstance(events[2], ToolInvocation)
    assert events[2].input == {"file_path": "a.py"}
    assert events[3] == ToolResult(tool_use_id="t1", content="ok")
    assert events[4] == StepResult(duration_ms=1200)


def test_incomplete_line_is_buffered_until_terminated() -> None:
    decoder = StreamDecoder()
    raw = _line(_assistant_text("split"))
    assert decoder.process(raw[:10]) == []
    assert decoder.process(raw[10:-1]) == []
    assert decoder.process("\n") == [AgentText(text="split")]


def test_flush_returns_and_clears_remainder() -> None:
    decoder = StreamDecoder()
    decoder.process('{"type": "res')
    assert decoder.flush() == '{"type": "res'
    assert decoder.flush() == ""


def test_malformed_and_empty_lines_are_dropped() -> None:
    decoder = StreamDecoder()
    data = "not json\n\n   \n{broken\n" + _line(_assistant_text("after"))
    events = decoder.process(data)
    assert events == [AgentText(text="after")]
    assert decoder.dropped == 2
    assert decoder.records == 1


def test_ansi_sequences_are_stripped_before_decoding() -> None:
    decoder = StreamDecoder()
    raw = json.dumps(_assistant_text("colored"))
    data = f"\x1b[?25l\x1b[2K{raw}\x1b[0m[<u\r\n"
    assert decoder.process(data) == [AgentText(text="colored")]


def test_on_record_sees_every_decoded_record() -> None:
    seen: list[object] = []
    decoder = StreamDecoder(on_record=seen.append)
    decoder.process(STREAM)
    assert len(seen) == 5
    assert seen[0]["type"] == "system"


def test_tool_invocation_uses_decoder_clock() -> None:
    times = iter([5.0, 6.0])
    decoder = StreamDecoder(clock=lambda: next(times))
    record = {
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "id": "x", "name": "Bash", "input": {}}]},
    }
    (event,) = decoder.process(_line(record))
    assert event.started_at == 5.0


def test_wrongly_shaped_records_do_not_raise() -> None:
    decoder = StreamDecoder(clock=lambda: 0.0)
    data = (
        '{"type": "system", "subtype": "init", "tools": 5}\n'
        '{"type": "system", "subtype": "init", "mcp_servers": true}\n'
        '{"type": "assistant", "message": {"content": "not a list", "usage": 3}}\n'
        '{"type": "user", "message": []}\n'
        '{"type": "result"}\n'
    )
    events = decoder.process(data)
    assert events == [
        SystemInit(model=""),
        SystemInit(model=""),
        StepResult(duration_ms=None),
    ]
    assert decoder.dropped == 0


def test_refine_failure_is_dropped_and_later_lines_survive(monkeypatch) -> None:
    from steploop.stream import decoder as decoder_mod

    real_refine = decoder_mod.refine

    def flaky_refine(envelope, *, now):
        if envelope.type == "boom":
            raise TypeError("bad shape")
        return real_refine(envelope, now=now)

    monkeypatch.setattr(decoder_mod, "refine", flaky_refine)
    seen: list[object] = []
    decoder = StreamDecoder(on_record=seen.append)
    events = decoder.process('{"type": "boom"}\n' + _line(_assistant_text("after")))

    assert events == [AgentText(text="after")]
    assert decoder.dropped == 1
    assert decoder.records == 1
    assert len(seen) == 1
