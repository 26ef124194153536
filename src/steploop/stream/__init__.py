from __future__ import annotations

from .decoder import StreamDecoder
from .events import (
    AgentText,
    Envelope,
    Event,
    StepResult,
    SystemInit,
    ToolInvocation,
    ToolResult,
    Unrecognized,
    UsageReport,
    refine,
)
from .signals import SENTINELS, Signal, detect_signal, sentinel_help

__all__ = [
    "AgentText",
    "Envelope",
    "Event",
    "SENTINELS",
    "Signal",
    "StepResult",
    "StreamDecoder",
    "SystemInit",
    "ToolInvocation",
    "ToolResult",
    "Unrecognized",
    "UsageReport",
    "detect_signal",
    "refine",
    "sentinel_help",
]
