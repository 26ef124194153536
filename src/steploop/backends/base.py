from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from ..logs import NullRunLog
from ..render import EventClassifier, RunState
from .stream_helpers import StepRun, run_stream_backend


class StreamBackend:
    name: str

    def build_argv(self, *, prompt: str, model: str | None) -> list[str]:
        raise NotImplementedError

    def run_env(self) -> dict[str, str] | None:
        return None

    def run(
        self,
        *,
        prompt: str,
        cwd: Path,
        state: RunState,
        classifier: EventClassifier,
        log: NullRunLog,
        model: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> StepRun:
        return run_stream_backend(
            argv=self.build_argv(prompt=prompt, model=model),
            classifier=classifier,
            state=state,
            cwd=cwd,
            env=self.run_env(),
            log=log,
            clock=clock,
        )
