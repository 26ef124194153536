"""CLI entry point for steploop."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from . import __version__
from .config import apply_env, load_config
from .logs import open_run_log
from .relay import RelayClient, RelayQueue
from .runner import (
    DEFAULT_ITERATION_PAUSE_MS,
    DEFAULT_MAX_ITERATIONS,
    RunnerConfig,
    RunnerIO,
    StepPrompt,
    StepRunner,
)
from .render import DEFAULT_PARALLEL_THRESHOLD_MS
from .stream.signals import sentinel_help
from .ui import (
    OUTPUT_CHOICES,
    OutputMode,
    color_for_mode,
    make_console,
    resolve_output_mode,
)
from .util import new_run_id, truncate


def _run_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="steploop",
        description="Run a coding agent step by step, driven by its control signals.",
    )
    p.add_argument("prompt", nargs="*", help="One prompt per step")
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show answers")
    verbosity.add_argument(
        "--normal", action="store_true", help="Show tools and text, overriding config"
    )
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show tool results")
    p.add_argument("--model", default=None, help="Model passed to the agent")
    p.add_argument("--max-iterations", type=int, default=None)
    p.add_argument("--pause-ms", type=int, default=None, help="Pause between repeats")
    p.add_argument("--parallel-threshold-ms", type=int, default=None)
    p.add_argument("--log", action="store_true", help="Write a run log")
    p.add_argument("--log-dir", default=None)
    p.add_argument("--relay", action="store_true", help="Mirror messages to DeadDrop")
    p.add_argument("--signals", action="store_true", help="Print the control signal protocol")
    p.add_argument("--version", action="store_true")
    p.add_argument(
        "--output",
        choices=OUTPUT_CHOICES,
        help="Output mode: auto (default), plain, or rich",
    )
    return p


def _print_header(console: Console, *, mode: str, verbosity: str, log_path: Path | None) -> None:
    rule = "═" * 60
    console.print(f"[bold]{rule}[/bold]")
    header = Text()
    header.append("steploop", style="bold")
    header.append(f" {__version__}", style="dim")
    header.append(f" ({verbosity}, {mode})", style="dim")
    console.print(header)
    console.print(f"[bold]{rule}[/bold]")
    if log_path:
        console.print(f"[dim]Log:[/dim] {escape(str(log_path))}")


def _output_mode(args: argparse.Namespace, *, configured: str | None = None) -> OutputMode:
    try:
        return resolve_output_mode(args.output, configured=configured)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(2)


def cmd_run(args: argparse.Namespace, *, repo_root: Path) -> int:
    file_cfg = load_config(repo_root)
    if file_cfg.error:
        console = make_console(_output_mode(args))
        console.print(f"[red]error:[/red] {escape(file_cfg.error)}")
        return 2
    settings = apply_env(file_cfg.runner)
    output_mode = _output_mode(args, configured=settings.output)
    console = make_console(output_mode)

    verbosity = settings.verbosity or "normal"
    if args.quiet:
        verbosity = "quiet"
    elif args.normal:
        verbosity = "normal"
    elif args.verbose:
        verbosity = "verbose"

    def pick(flag: int | None, configured: int | None, default: int) -> int:
        if flag is not None:
            return flag
        if configured is not None:
            return configured
        return default

    cfg = RunnerConfig(
        repo_root=repo_root,
        verbosity=verbosity,
        max_iterations=pick(args.max_iterations, settings.max_iterations, DEFAULT_MAX_ITERATIONS),
        iteration_pause_ms=pick(args.pause_ms, settings.iteration_pause_ms, DEFAULT_ITERATION_PAUSE_MS),
        parallel_threshold_ms=pick(
            args.parallel_threshold_ms,
            settings.parallel_threshold_ms,
            DEFAULT_PARALLEL_THRESHOLD_MS,
        ),
        model=args.model or settings.model,
    )

    run_id = new_run_id()
    mode = "prompt" if len(args.prompt) == 1 else "sequence"
    log = open_run_log(
        bool(args.log or settings.log),
        repo_root / (args.log_dir or settings.log_dir or "logs"),
        mode,
    )
    relay = RelayQueue(RelayClient.from_env(run_id) if args.relay else None)
    if args.relay and not relay.enabled:
        console.print("[yellow]⚠ --relay requested but DEADDROP_API_KEY is not set[/yellow]")

    runner = StepRunner(
        cfg,
        io=RunnerIO(stdout=console.file),
        log=log,
        relay=relay,
        color=color_for_mode(output_mode),
    )

    _print_header(console, mode=mode, verbosity=verbosity, log_path=log.path)
    log.log_event("run_start", run_id=run_id, mode=mode, steps=len(args.prompt))
    try:
        if len(args.prompt) == 1:
            prompt = args.prompt[0]
            console.print(f"[dim]Prompt:[/dim] {escape(truncate(prompt, 80))}")
            console.print()
            log.log(f"Prompt: {prompt}\n")
            status = runner.run_with_signals(prompt).status
        else:
            console.print(f"[dim]Sequence:[/dim] {len(args.prompt)} steps")
            console.print()
            status = runner.run_sequence(StepPrompt(prompt=p) for p in args.prompt).status
    finally:
        relay.close()
        log.close()
    return 0 if status == "ok" else 1


def main(argv: list[str] | None = None) -> None:
    raw = argv if argv is not None else sys.argv[1:]
    args = _run_parser().parse_args(raw)
    if args.version:
        make_console(_output_mode(args)).print(Text(f"steploop {__version__}", style="bold"))
        sys.exit(0)
    if args.signals:
        make_console(_output_mode(args)).print(sentinel_help(), markup=False)
        sys.exit(0)
    if not args.prompt:
        _run_parser().print_help()
        sys.exit(2)

    sys.exit(cmd_run(args, repo_root=Path.cwd()))


if __name__ == "__main__":
    main()
