"""Drive the agent step by step and turn its control sentinels into outcomes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable, Literal

from rich.console import Console
from rich.markup import escape

from .backends import ClaudeBackend, StepRun, StreamBackend
from .clock import Clock, SystemClock
from .events import StreamEventSink
from .logs import NullRunLog
from .relay import RelayQueue
from .render import (
    DEFAULT_PARALLEL_THRESHOLD_MS,
    EventClassifier,
    RunState,
    Verbosity,
)
from .stats import format_stats_summary, merge_stats
from .stream.signals import Signal, detect_signal
from .util import format_duration, truncate

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_ITERATION_PAUSE_MS = 2000

Status = Literal["ok", "blocked", "error"]

_SEPARATOR = "═" * 60
_ITERATION_RULE = "━" * 60


@dataclass(frozen=True)
class RunnerConfig:
    repo_root: Path
    verbosity: Verbosity = "normal"
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    iteration_pause_ms: int = DEFAULT_ITERATION_PAUSE_MS
    parallel_threshold_ms: int = DEFAULT_PARALLEL_THRESHOLD_MS
    model: str | None = None


@dataclass(frozen=True)
class RunnerIO:
    stdout: IO[str] | None = None
    stderr: IO[str] | None = None


@dataclass(frozen=True)
class IterationOutcome:
    status: Status
    last_text: str
    iterations: int


@dataclass(frozen=True)
class StepPrompt:
    prompt: str
    label: str | None = None
    model: str | None = None


@dataclass(frozen=True)
class SequenceOutcome:
    status: Status
    completed: int
    total: int
    last_text: str


class StepRunner:
    def __init__(
        self,
        cfg: RunnerConfig,
        *,
        backend: StreamBackend | None = None,
        io: RunnerIO | None = None,
        log: NullRunLog | None = None,
        relay: RelayQueue | None = None,
        clock: Clock | None = None,
        state: RunState | None = None,
        stream_event_sink: StreamEventSink | None = None,
        color: bool | None = None,
    ) -> None:
        self.cfg = cfg
        self.backend = backend or ClaudeBackend()
        self.stdout = io.stdout if io and io.stdout else sys.stdout
        self.stderr = io.stderr if io and io.stderr else sys.stderr
        self.log = log or NullRunLog()
        self.relay = relay or RelayQueue()
        self.clock = clock or SystemClock()
        self.state = state or RunState()
        self.console = Console(
            file=self.stdout,
            highlight=False,
            soft_wrap=True,
            force_terminal=color,
            no_color=color is False,
        )
        self.classifier = EventClassifier(
            stdout=self.stdout,
            verbosity=cfg.verbosity,
            parallel_threshold_ms=cfg.parallel_threshold_ms,
            repo_root=cfg.repo_root,
            event_sink=stream_event_sink,
            clock=self.clock.monotonic,
            color=color,
        )

    # ------------------------------------------------------------------
    # output helpers
    # ------------------------------------------------------------------

    def _print(self, markup: str = "") -> None:
        self.console.print(markup)

    def _separator(self) -> None:
        self._print(f"[bold]{_SEPARATOR}[/bold]")

    def _runner_line(self, markup: str) -> None:
        if self.cfg.verbosity != "quiet":
            self._print(f"[blue]\\[RUNNER][/blue] {markup}")

    def _relay(self, message: str) -> None:
        self.relay.send(message, "Runner")

    def _elapsed_ms(self, start: float) -> float:
        return max(0.0, (self.clock.monotonic() - start) * 1000)

    def _terminal(
        self,
        status: Status,
        *,
        headline: str,
        iteration: int,
        start: float,
        text: str,
        reason: str,
    ) -> IterationOutcome:
        elapsed = self._elapsed_ms(start)
        self._print()
        self._separator()
        self._print(f"{headline} | Iterations: {iteration} | Total: {format_duration(elapsed)}")
        self._separator()
        self.log.log(f"\n{reason.upper()} after {iteration} iteration(s), {elapsed / 1000:.0f}s total")
        self.log.log_event(
            "terminal",
            step=self.state.current_step,
            iteration=iteration,
            status=status,
            reason=reason,
            elapsed_ms=round(elapsed),
        )
        self._relay(f"**{status.upper()}** after {iteration} iteration(s) ({format_duration(elapsed)})")
        return IterationOutcome(status=status, last_text=text, iterations=iteration)

    def _record_step(self, run: StepRun) -> None:
        state = self.state
        merge_stats(state.run_stats, state.step_stats)
        if self.cfg.verbosity == "quiet":
            return
        duration_ms = state.last_step_duration_ms
        if duration_ms is None:
            duration_ms = run.duration_s * 1000
        self._print(f"[dim]{escape(format_stats_summary(state.step_stats, duration_ms))}[/dim]")

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    def run_with_signals(
        self,
        prompt: str,
        *,
        label: str | None = None,
        model: str | None = None,
        start: float | None = None,
    ) -> IterationOutcome:
        """Run ``prompt`` until the agent stops asking for a repeat.

        Always returns one of ``ok``, ``blocked`` or ``error``; operational
        failures are reported through the outcome, never raised.
        """
        if start is None:
            start = self.clock.monotonic()
        cfg = self.cfg
        step = self.state.current_step
        iteration = 0
        last_text = ""

        while True:
            iteration += 1
            if iteration > cfg.max_iterations:
                elapsed = self._elapsed_ms(start)
                self._print()
                self._separator()
                self._print(
                    f"[red]MAX ITERATIONS ({cfg.max_iterations})[/red] | Total: {format_duration(elapsed)}"
                )
                self._separator()
                self.log.log(f"\nMAX ITERATIONS reached after {cfg.max_iterations}")
                self.log.log_event(
                    "max_iterations",
                    step=step,
                    iteration=iteration - 1,
                    max_iterations=cfg.max_iterations,
                )
                self._relay(f"**MAX ITERATIONS** ({cfg.max_iterations}) reached")
                return IterationOutcome(
                    status="error", last_text=last_text, iterations=cfg.max_iterations
                )

            if iteration > 1:
                self._print()
                self._print(f"[blue]{_ITERATION_RULE}[/blue]")
                self._print(f"[blue]Claude requested iteration {iteration}[/blue]")
                self._print(f"[blue]{_ITERATION_RULE}[/blue]")
                self._print()
                self.log.log(f"\n--- Iteration {iteration} ---\n")

            preview = truncate(label or prompt, 50)
            self.log.log_event("iteration_start", step=step, iteration=iteration, prompt=preview)
            self._relay(f"Step {step} iteration {iteration}: {preview}")

            run = self.backend.run(
                prompt=prompt,
                cwd=cfg.repo_root,
                state=self.state,
                classifier=self.classifier,
                log=self.log,
                model=model or cfg.model,
                clock=self.clock.monotonic,
            )
            last_text = run.full_text
            self._record_step(run)
            if run.full_text.strip():
                self.relay.send(run.full_text.strip(), "Claude Code")

            signal = detect_signal(run.full_text)
            self.log.log_event(
                "step_complete",
                step=step,
                iteration=iteration,
                exit=run.exit_code,
                signal=signal.value if signal else None,
            )

            if signal is Signal.REPEAT:
                self._print()
                self._separator()
                self._print(
                    f"[yellow]REPEAT[/yellow] | Iteration {iteration} done "
                    f"({format_duration(run.duration_s * 1000)}), repeating..."
                )
                self._separator()
                self.log.log(f"Iteration {iteration} complete, repeat requested")
                self.log.log_event("repeat", step=step, iteration=iteration)
                self.clock.sleep(cfg.iteration_pause_ms / 1000)
                continue

            if signal is Signal.BLOCKED:
                return self._terminal(
                    "blocked",
                    headline="[red]BLOCKED[/red]",
                    iteration=iteration,
                    start=start,
                    text=run.full_text,
                    reason="blocked",
                )

            if signal is Signal.ERROR:
                return self._terminal(
                    "error",
                    headline="[red]ERROR[/red]",
                    iteration=iteration,
                    start=start,
                    text=run.full_text,
                    reason="error",
                )

            if run.exit_code == 0:
                return self._terminal(
                    "ok",
                    headline="[green]COMPLETE[/green]",
                    iteration=iteration,
                    start=start,
                    text=run.full_text,
                    reason="complete",
                )
            return self._terminal(
                "error",
                headline=f"[red]FAILED[/red] (exit {run.exit_code})",
                iteration=iteration,
                start=start,
                text=run.full_text,
                reason="failed",
            )

    def run_sequence(self, steps: Iterable[StepPrompt]) -> SequenceOutcome:
        """Run prompts in order, stopping at the first blocked or failed step."""
        steps = list(steps)
        total = len(steps)
        start = self.clock.monotonic()
        last_text = ""

        for idx, step in enumerate(steps, start=1):
            self.state.current_step = idx
            title = step.label or step.prompt
            self._print(f"[cyan]{_ITERATION_RULE}[/cyan]")
            self._print(f"[cyan]\\[{idx}/{total}][/cyan] {escape(truncate(title, 60))}")
            self._print(f"[cyan]{_ITERATION_RULE}[/cyan]")
            self._print()
            self._runner_line(f'Running step {idx}: "{escape(truncate(step.prompt, 50))}"')
            self.log.log(f"\n=== [{idx}/{total}] {title} ===\n")

            outcome = self.run_with_signals(
                step.prompt, label=step.label, model=step.model, start=start
            )
            last_text = outcome.last_text
            if outcome.status != "ok":
                elapsed = self._elapsed_ms(start)
                self._print()
                self._separator()
                self._print(
                    f"[red]SCRIPT STOPPED[/red] at step {idx}/{total} | Total: {format_duration(elapsed)}"
                )
                self._separator()
                self.log.log(f"\nSCRIPT STOPPED at step {idx}, {elapsed / 1000:.0f}s total")
                self.log.log_event("sequence_stopped", step=idx, status=outcome.status, total=total)
                return SequenceOutcome(
                    status=outcome.status,
                    completed=idx - 1,
                    total=total,
                    last_text=last_text,
                )

        elapsed = self._elapsed_ms(start)
        self._print()
        self._separator()
        self._print(
            f"[green]SCRIPT COMPLETE[/green] | {total} steps | Total: {format_duration(elapsed)}"
        )
        if self.cfg.verbosity != "quiet":
            self._print(f"[dim]{escape(format_stats_summary(self.state.run_stats, elapsed))}[/dim]")
        self._separator()
        self.log.log(f"\nSCRIPT COMPLETE, {total} steps, {elapsed / 1000:.0f}s total")
        self.log.log_event("sequence_complete", total=total)
        return SequenceOutcome(status="ok", completed=total, total=total, last_text=last_text)


def run_prompt(
    cfg: RunnerConfig,
    prompt: str,
    *,
    backend: StreamBackend | None = None,
    io: RunnerIO | None = None,
    log: NullRunLog | None = None,
    relay: RelayQueue | None = None,
    clock: Clock | None = None,
) -> IterationOutcome:
    runner = StepRunner(cfg, backend=backend, io=io, log=log, relay=relay, clock=clock)
    return runner.run_with_signals(prompt)
