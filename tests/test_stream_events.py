from __future__ import annotations

from steploop.stream.events import (
    AgentText,
    Envelope,
    StepResult,
    SystemInit,
    ToolInvocation,
    ToolResult,
    Unrecognized,
    UsageReport,
    refine,
)


def _refine(record: object) -> list:
    return refine(Envelope.from_record(record), now=42.0)


def test_system_init_is_refined() -> None:
    (event,) = _refine(
        {
            "type": "system",
            "subtype": "init",
            "model": "claude-x",
            "tools": ["Read", "Bash"],
            "mcp_servers": [{"name": "db", "status": "connected"}],
        }
    )
    assert event == SystemInit(
        model="claude-x",
        tool_names=("Read", "Bash"),
        mcp_servers=({"name": "db", "status": "connected"},),
    )


def test_other_system_subtypes_are_unrecognized() -> None:
    record = {"type": "system", "subtype": "compact"}
    assert _refine(record) == [Unrecognized(raw=record)]


def test_assistant_blocks_keep_order_and_usage_follows() -> None:
    usage = {"input_tokens": 3}
    events = _refine(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "first"},
                    {"type": "thinking", "thinking": "skipped"},
                    {"type": "tool_use", "id": "t1", "name": "Grep", "input": {"pattern": "x"}},
                ],
                "usage": usage,
            },
        }
    )
    assert events == [
        AgentText(text="first"),
        ToolInvocation(id="t1", name="Grep", input={"pattern": "x"}, started_at=42.0),
        UsageReport(usage=usage),
    ]


def test_tool_result_content_list_is_json_encoded() -> None:
    (event,) = _refine(
        {
            "type": "user",
            "message": {
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "t9",
                        "content": [{"type": "text", "text": "hi"}],
                        "is_error": True,
                    }
                ]
            },
        }
    )
    assert isinstance(event, ToolResult)
    assert event.is_error is True
    assert event.elapsed_ms is None
    assert '"text": "hi"' in event.content


def test_result_without_duration() -> None:
    assert _refine({"type": "result"}) == [StepResult(duration_ms=None)]


def test_unknown_and_non_dict_records_are_unrecognized() -> None:
    assert _refine({"type": "stream_event"}) == [Unrecognized(raw={"type": "stream_event"})]
    assert _refine([1, 2]) == [Unrecognized(raw=[1, 2])]
