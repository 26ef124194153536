from __future__ import annotations

from .base import StreamBackend
from .claude import ClaudeBackend
from .stream_helpers import StepRun, run_stream_backend

__all__ = [
    "ClaudeBackend",
    "StepRun",
    "StreamBackend",
    "run_stream_backend",
]
