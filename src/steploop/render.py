"""Classify stream events, keep per-run state, and render them to the console."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Callable, Literal

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from .events import StreamEventSink
from .stats import (
    RunStats,
    create_run_stats,
    increment_message_count,
    merge_stats,
    record_output_chars,
    record_tool_use,
    reset_run_stats,
    update_token_counts,
)
from .stream.events import (
    AgentText,
    Event,
    StepResult,
    SystemInit,
    ToolInvocation,
    ToolResult,
    Unrecognized,
    UsageReport,
)
from .util import format_duration, truncate

Verbosity = Literal["quiet", "normal", "verbose"]

SUBTASK_TOOL = "Task"
DEFAULT_PARALLEL_THRESHOLD_MS = 100

MAX_RESULT_LINES = 10
TRUNCATE_GREP_PATTERN = 30
TRUNCATE_TASK_DESC = 40
TRUNCATE_BASH_CMD = 50
TRUNCATE_TOOL_JSON = 60
TRUNCATE_ERROR = 100
TRUNCATE_MESSAGE = 100
TRUNCATE_VERBOSE_LINE = 150
TRUNCATE_TASK_SUMMARY = 200
TRUNCATE_ANSWER = 500
TRUNCATE_TASK_VERBOSE = 500

_ERROR_PREFIXES = ("<tool_use_error>", "Error:", "error:")
_PLANNING_PREFIXES = ("I'll ", "Let me ")
_NOISE_RE = re.compile(r"\.venv/|node_modules/|\.pnpm/|__pycache__/|\.pyc$")
_BOX_RULE = "─" * 49


@dataclass
class ActiveScope:
    id: str
    name: str
    description: str
    started_at: float
    stats: RunStats = field(default_factory=create_run_stats)


@dataclass
class RunState:
    pending_tools: list[ToolInvocation] = field(default_factory=list)
    last_tool_time: float | None = None
    active_scope: ActiveScope | None = None
    tool_start_times: dict[str, float] = field(default_factory=dict)
    current_step: int = 1
    step_stats: RunStats = field(default_factory=create_run_stats)
    run_stats: RunStats = field(default_factory=create_run_stats)
    # The iteration controller prints its own completion line by default.
    suppress_step_completion: bool = True
    last_step_duration_ms: float | None = None

    def active_stats(self) -> RunStats:
        if self.active_scope is not None:
            return self.active_scope.stats
        return self.step_stats


def reset_step(state: RunState) -> None:
    state.pending_tools = []
    state.last_tool_time = None
    state.active_scope = None
    state.tool_start_times.clear()
    state.last_step_duration_ms = None
    reset_run_stats(state.step_stats)


def _shorten_path(path: str, repo_root: Path | None) -> str:
    if repo_root:
        try:
            return str(Path(path).relative_to(repo_root))
        except ValueError:
            pass
    return path


def _filter_noise(text: str) -> list[str]:
    return [
        line for line in text.splitlines() if line.strip() and not _NOISE_RE.search(line)
    ]


def _one_line(text: str) -> str:
    return re.sub(r"[\r\n]+", " ", text).strip()


@dataclass
class EventClassifier:
    stdout: IO[str]
    verbosity: Verbosity = "normal"
    parallel_threshold_ms: float = DEFAULT_PARALLEL_THRESHOLD_MS
    repo_root: Path | None = None
    event_sink: StreamEventSink | None = None
    clock: Callable[[], float] = time.monotonic
    color: bool | None = None
    show_timestamps: bool = True

    console: Console = field(init=False)

    def __post_init__(self) -> None:
        self.console = Console(
            file=self.stdout,
            highlight=False,
            markup=True,
            soft_wrap=True,
            force_terminal=self.color,
            no_color=self.color is False,
        )

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self.event_sink:
            self.event_sink(event_type, payload)

    def _prefix(self) -> str:
        if not self.show_timestamps:
            return ""
        return f"[dim]{datetime.now().strftime('%H:%M:%S')}[/dim] "

    def _print(self, markup: str) -> None:
        self.console.print(self._prefix() + markup)

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def handle(self, event: Event, state: RunState) -> str:
        """Classify one event; return agent-authored text for signal scanning."""
        if isinstance(event, SystemInit):
            return ""
        if isinstance(event, AgentText):
            return self._handle_text(event, state)
        if isinstance(event, ToolInvocation):
            self._handle_invocation(event, state)
            return ""
        if isinstance(event, ToolResult):
            self._handle_result(event, state)
            return ""
        if isinstance(event, StepResult):
            self._handle_step_result(event, state)
            return ""
        if isinstance(event, UsageReport):
            update_token_counts(state.active_stats(), event.usage)
            return ""
        if isinstance(event, Unrecognized):
            self._handle_unrecognized(event)
        return ""

    # ------------------------------------------------------------------
    # tool batches
    # ------------------------------------------------------------------

    def _tool_summary(self, tool: ToolInvocation) -> str:
        data = tool.input
        name = tool.name
        if name in ("Read", "Write", "Edit"):
            return escape(_shorten_path(str(data.get("file_path") or ""), self.repo_root))
        if name == "Glob":
            return escape(str(data.get("pattern") or ""))
        if name == "Grep":
            pattern = truncate(str(data.get("pattern") or ""), TRUNCATE_GREP_PATTERN)
            return escape(f'"{pattern}"')
        if name == "Bash":
            return escape(truncate(str(data.get("command") or ""), TRUNCATE_BASH_CMD))
        try:
            raw = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError):
            raw = str(data)
        return escape(truncate(raw, TRUNCATE_TOOL_JSON))

    def _print_tool(self, tool: ToolInvocation, *, indented: bool, in_scope: bool) -> None:
        gutter = "  │ " if in_scope else ""
        label = "  → " if indented else "[yellow]\\[TOOL][/yellow] "
        self._print(
            f"{gutter}{label}[cyan]{escape(tool.name)}[/cyan] {self._tool_summary(tool)}"
        )

    def flush_pending(self, state: RunState) -> None:
        pending = state.pending_tools
        if not pending:
            return
        state.pending_tools = []
        if self.verbosity == "quiet":
            return

        in_scope = state.active_scope is not None
        if len(pending) == 1:
            self._print_tool(pending[0], indented=False, in_scope=in_scope)
            return
        gutter = "  │ " if in_scope else ""
        self._print(
            f"{gutter}[yellow]\\[TOOL ×{len(pending)}][/yellow] [dim](parallel)[/dim]"
        )
        for tool in pending:
            self._print_tool(tool, indented=True, in_scope=in_scope)

    # ------------------------------------------------------------------
    # handlers
    # ------------------------------------------------------------------

    def _handle_text(self, event: AgentText, state: RunState) -> str:
        self.flush_pending(state)
        stats = state.active_stats()
        increment_message_count(stats)
        record_output_chars(stats, len(event.text))
        self._emit("stream.text", {"text": event.text})

        display = _one_line(event.text)
        if self.verbosity == "quiet":
            if display and not event.text.startswith(_PLANNING_PREFIXES):
                self._print(
                    f"[green]\\[ANSWER][/green] {escape(truncate(display, TRUNCATE_ANSWER))}"
                )
        elif event.text.strip():
            body = Text(event.text.strip() if self.verbosity == "verbose" else display)
            prefix = Text.from_markup(self._prefix() + "[green]\\[CLAUDE][/green] ")
            self.console.print(Text.assemble(prefix, body))
        return event.text + "\n"

    def _handle_invocation(self, event: ToolInvocation, state: RunState) -> None:
        state.tool_start_times[event.id] = event.started_at
        record_tool_use(state.active_stats(), event.name)
        self._emit("stream.tool", {"id": event.id, "name": event.name, "input": event.input})

        if event.name == SUBTASK_TOOL:
            self._open_scope(event, state)
            state.last_tool_time = event.started_at
            return

        last = state.last_tool_time
        within = (
            last is not None
            and (event.started_at - last) * 1000 < self.parallel_threshold_ms
        )
        if not within:
            self.flush_pending(state)
        state.pending_tools.append(event)
        state.last_tool_time = event.started_at

    def _open_scope(self, event: ToolInvocation, state: RunState) -> None:
        self.flush_pending(state)
        data = event.input
        kind = str(data.get("subagent_type") or "agent")
        description = truncate(
            str(data.get("description") or data.get("prompt") or ""), TRUNCATE_TASK_DESC
        )
        if state.active_scope is not None:
            # Single level only: fold the abandoned scope into the step before replacing it.
            merge_stats(state.step_stats, state.active_scope.stats)
        state.active_scope = ActiveScope(
            id=event.id,
            name=kind,
            description=description,
            started_at=event.started_at,
        )
        self._emit(
            "stream.scope.open",
            {"id": event.id, "name": kind, "description": description},
        )
        if self.verbosity == "quiet":
            return
        self._print(
            f"[yellow]\\[TASK][/yellow] [magenta]{escape(kind)}[/magenta] {escape(description)}"
        )
        self._print(f"  [dim]┌{_BOX_RULE}[/dim]")

    def _handle_result(self, event: ToolResult, state: RunState) -> None:
        self.flush_pending(state)

        elapsed_ms = event.elapsed_ms
        started = state.tool_start_times.pop(event.tool_use_id, None)
        if elapsed_ms is None and started is not None:
            elapsed_ms = (self.clock() - started) * 1000
        duration = f" [dim]({format_duration(elapsed_ms)})[/dim]" if elapsed_ms is not None else ""

        content = event.content
        scope = state.active_scope
        if event.is_error or content.startswith(_ERROR_PREFIXES):
            self._emit(
                "stream.tool.result",
                {"id": event.tool_use_id, "ok": False, "elapsed_ms": elapsed_ms},
            )
            self._print(f"  [red]ERROR: {escape(truncate(content, TRUNCATE_ERROR))}[/red]{duration}")
            return

        if scope is not None and scope.id == event.tool_use_id:
            self._close_scope(scope, content, duration, state)
            return

        self._emit(
            "stream.tool.result",
            {"id": event.tool_use_id, "ok": True, "elapsed_ms": elapsed_ms},
        )
        if self.verbosity != "verbose":
            return
        gutter = "  │ " if scope is not None else ""
        lines = _filter_noise(content)
        for line in lines[:MAX_RESULT_LINES]:
            self._print(f"{gutter}  [dim]{escape(truncate(line, TRUNCATE_VERBOSE_LINE))}[/dim]")
        if len(lines) > MAX_RESULT_LINES:
            self._print(
                f"{gutter}  [dim]... ({len(lines) - MAX_RESULT_LINES} more lines)[/dim]{duration}"
            )
        elif duration:
            self._print(f"{gutter} {duration}")

    def _close_scope(
        self, scope: ActiveScope, content: str, duration: str, state: RunState
    ) -> None:
        merge_stats(state.step_stats, scope.stats)
        state.active_scope = None
        self._emit(
            "stream.scope.close",
            {
                "id": scope.id,
                "name": scope.name,
                "tool_use_count": scope.stats.tool_use_count,
                "message_count": scope.stats.message_count,
            },
        )
        if self.verbosity == "quiet":
            return
        self._print(f"  [dim]└{_BOX_RULE}[/dim]{duration}")
        lines = [line for line in content.splitlines() if line.strip() and "agentId:" not in line]
        if not lines:
            return
        max_len = TRUNCATE_TASK_VERBOSE if self.verbosity == "verbose" else TRUNCATE_TASK_SUMMARY
        summary = re.sub(r"\s+", " ", " ".join(lines))
        self._print(f"  [green]→ {escape(truncate(summary, max_len))}[/green]")

    def close_open_scope(self, state: RunState) -> None:
        """Fold a scope the agent never closed into the step totals."""
        if state.active_scope is None:
            return
        merge_stats(state.step_stats, state.active_scope.stats)
        state.active_scope = None

    def _handle_step_result(self, event: StepResult, state: RunState) -> None:
        self.flush_pending(state)
        state.last_step_duration_ms = event.duration_ms
        self._emit("stream.result", {"duration_ms": event.duration_ms})
        if state.suppress_step_completion or self.verbosity == "quiet":
            return
        duration = format_duration(event.duration_ms) if event.duration_ms else "?"
        self._print(
            f"[blue]\\[RUNNER][/blue] Completed step {state.current_step} in {duration}"
        )

    def _handle_unrecognized(self, event: Unrecognized) -> None:
        if self.verbosity != "verbose":
            return
        raw = event.raw
        kind = raw.get("type") if isinstance(raw, dict) else None
        tag = str(kind or "unknown").upper()
        try:
            dump = json.dumps(raw, ensure_ascii=False)
        except (TypeError, ValueError):
            dump = str(raw)
        self._print(f"[dim]\\[{escape(tag)}] {escape(truncate(dump, TRUNCATE_MESSAGE))}[/dim]")
