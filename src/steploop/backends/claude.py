from __future__ import annotations

from dataclasses import dataclass

from .base import StreamBackend


@dataclass
class ClaudeBackend(StreamBackend):
    name: str = "claude"
    binary: str = "claude"

    def build_argv(self, *, prompt: str, model: str | None) -> list[str]:
        argv = [
            self.binary,
            "-p",
            prompt,
            "--dangerously-skip-permissions",
            "--verbose",
            "--output-format",
            "stream-json",
        ]
        if model:
            argv += ["--model", model]
        return argv
