"""Typed events refined from the agent's stream-json records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class SystemInit:
    model: str
    tool_names: tuple[str, ...] = ()
    mcp_servers: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class AgentText:
    text: str


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    started_at: float = 0.0


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False
    elapsed_ms: float | None = None


@dataclass(frozen=True)
class StepResult:
    duration_ms: float | None = None


@dataclass(frozen=True)
class UsageReport:
    usage: dict[str, Any]


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


Event = Union[
    SystemInit,
    AgentText,
    ToolInvocation,
    ToolResult,
    StepResult,
    UsageReport,
    Unrecognized,
]


@dataclass(frozen=True)
class Envelope:
    type: str
    payload: dict[str, Any]
    raw: Any = None

    @classmethod
    def from_record(cls, record: Any) -> "Envelope":
        if not isinstance(record, dict):
            return cls(type="", payload={}, raw=record)
        return cls(type=str(record.get("type") or ""), payload=record, raw=record)


def _content_blocks(payload: dict[str, Any]) -> list[dict[str, Any]]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _result_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def refine(envelope: Envelope, *, now: float) -> list[Event]:
    etype = envelope.type
    payload = envelope.payload

    if etype == "system":
        if payload.get("subtype") != "init":
            return [Unrecognized(raw=envelope.raw)]
        tools = payload.get("tools")
        servers = payload.get("mcp_servers")
        if not isinstance(tools, list):
            tools = []
        if not isinstance(servers, list):
            servers = []
        return [
            SystemInit(
                model=str(payload.get("model") or ""),
                tool_names=tuple(str(t) for t in tools if isinstance(t, str)),
                mcp_servers=tuple(s for s in servers if isinstance(s, dict)),
            )
        ]

    if etype == "assistant":
        events: list[Event] = []
        for block in _content_blocks(payload):
            btype = block.get("type")
            if btype == "text":
                events.append(AgentText(text=str(block.get("text") or "")))
            elif btype == "tool_use":
                tool_input = block.get("input")
                events.append(
                    ToolInvocation(
                        id=str(block.get("id") or ""),
                        name=str(block.get("name") or "unknown"),
                        input=tool_input if isinstance(tool_input, dict) else {},
                        started_at=now,
                    )
                )
        message = payload.get("message")
        usage = message.get("usage") if isinstance(message, dict) else None
        if isinstance(usage, dict):
            events.append(UsageReport(usage=usage))
        return events

    if etype == "user":
        return [
            ToolResult(
                tool_use_id=str(block.get("tool_use_id") or ""),
                content=_result_content(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            )
            for block in _content_blocks(payload)
            if block.get("type") == "tool_result"
        ]

    if etype == "result":
        return [StepResult(duration_ms=_as_number(payload.get("duration_ms")))]

    return [Unrecognized(raw=envelope.raw)]
