"""Message, token and tool counters for a step and for a whole run."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any

from .util import format_duration


@dataclass
class TokenCounts:
    prompt: int = 0
    cache_write_5m: int = 0
    cache_write_1h: int = 0
    cache_read: int = 0


@dataclass
class RunStats:
    message_count: int = 0
    tokens: TokenCounts = field(default_factory=TokenCounts)
    tools_used: set[str] = field(default_factory=set)
    tool_use_count: int = 0
    output_chars: int = 0


def create_run_stats() -> RunStats:
    return RunStats()


def reset_run_stats(stats: RunStats) -> None:
    stats.message_count = 0
    stats.tokens = TokenCounts()
    stats.tools_used.clear()
    stats.tool_use_count = 0
    stats.output_chars = 0


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def update_token_counts(stats: RunStats, usage: dict[str, Any]) -> None:
    # cache_creation_input_tokens is the sum of the two tiers; count the tiers only.
    cache_creation = usage.get("cache_creation")
    if not isinstance(cache_creation, dict):
        cache_creation = {}
    stats.tokens.prompt += _count(usage.get("input_tokens"))
    stats.tokens.cache_write_5m += _count(cache_creation.get("ephemeral_5m_input_tokens"))
    stats.tokens.cache_write_1h += _count(cache_creation.get("ephemeral_1h_input_tokens"))
    stats.tokens.cache_read += _count(usage.get("cache_read_input_tokens"))


def record_tool_use(stats: RunStats, name: str) -> None:
    stats.tools_used.add(name)
    stats.tool_use_count += 1


def record_output_chars(stats: RunStats, chars: int) -> None:
    stats.output_chars += chars


def increment_message_count(stats: RunStats) -> None:
    stats.message_count += 1


def merge_stats(target: RunStats, source: RunStats) -> None:
    target.message_count += source.message_count
    target.tokens.prompt += source.tokens.prompt
    target.tokens.cache_write_5m += source.tokens.cache_write_5m
    target.tokens.cache_write_1h += source.tokens.cache_write_1h
    target.tokens.cache_read += source.tokens.cache_read
    target.tools_used.update(source.tools_used)
    target.tool_use_count += source.tool_use_count
    target.output_chars += source.output_chars


def clone_stats(stats: RunStats) -> RunStats:
    return replace(
        stats,
        tokens=replace(stats.tokens),
        tools_used=set(stats.tools_used),
    )


def total_input_tokens(tokens: TokenCounts) -> int:
    return tokens.prompt + tokens.cache_write_5m + tokens.cache_write_1h + tokens.cache_read


def estimate_output_tokens(chars: int) -> int:
    """Rough estimate at ~4 characters per token; output is never metered."""
    return math.ceil(chars / 4)


def format_stats_summary(stats: RunStats, duration_ms: float) -> str:
    """Render a one-line summary.

    Example: ``33.0s | 14 msgs | 319,449 in (32 p / 6,579 cw5m / 312,838 cr) |
    ~931 out | 3 tools (Bash, Edit, Read)``
    """
    tokens = stats.tokens
    parts = [format_duration(duration_ms), f"{stats.message_count} msgs"]

    breakdown = [
        f"{value:,} {label}"
        for value, label in (
            (tokens.prompt, "p"),
            (tokens.cache_write_5m, "cw5m"),
            (tokens.cache_write_1h, "cw1h"),
            (tokens.cache_read, "cr"),
        )
        if value > 0
    ]
    inputs = f"{total_input_tokens(tokens):,} in"
    if breakdown:
        inputs += f" ({' / '.join(breakdown)})"
    parts.append(inputs)
    parts.append(f"~{estimate_output_tokens(stats.output_chars):,} out")

    if stats.tool_use_count > 0:
        tools = ", ".join(sorted(stats.tools_used))
        parts.append(f"{stats.tool_use_count} tools ({tools})")

    return " | ".join(parts)
