from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "IterationOutcome",
    "RunnerConfig",
    "RunnerIO",
    "StepPrompt",
    "StepRunner",
    "run_prompt",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .runner import (
        IterationOutcome,
        RunnerConfig,
        RunnerIO,
        StepPrompt,
        StepRunner,
        run_prompt,
    )


def __getattr__(name: str):
    if name in {
        "IterationOutcome",
        "RunnerConfig",
        "RunnerIO",
        "StepPrompt",
        "StepRunner",
        "run_prompt",
    }:
        from . import runner

        return getattr(runner, name)
    raise AttributeError(f"module 'steploop' has no attribute {name!r}")
