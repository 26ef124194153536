"""Best-effort relay of runner and agent messages to a DeadDrop endpoint."""

from __future__ import annotations

import queue
import sys
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import IO, Literal, Protocol

from .util import env_value

RelayUser = Literal["Runner", "Claude Code"]

DEFAULT_HOST = "https://deaddrop.bezoan.com"


class RelaySender(Protocol):
    def send(self, content: str, user: RelayUser) -> None:
        ...


@dataclass
class RelayClient:
    api_key: str
    host: str
    run_id: str
    timeout: float = 20.0
    stderr: IO[str] | None = None

    @classmethod
    def from_env(cls, run_id: str) -> "RelayClient | None":
        api_key = env_value("DEADDROP_API_KEY")
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            host=env_value("DEADDROP_HOST") or DEFAULT_HOST,
            run_id=run_id,
        )

    @property
    def url(self) -> str:
        return f"{self.host.rstrip('/')}/v1/messages"

    def _warn(self, message: str) -> None:
        print(f"[DEADDROP] Warning: {message}", file=self.stderr or sys.stderr)

    def send(self, content: str, user: RelayUser) -> None:
        req = urllib.request.Request(
            self.url, data=content.encode("utf-8"), method="POST"
        )
        req.add_header("Content-Type", "text/markdown")
        req.add_header("User-Agent", "steploop/1.0")
        req.add_header("X-API-Key", self.api_key)
        req.add_header("X-DeadDrop-User", user)
        req.add_header("X-DeadDrop-Subject", self.run_id)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                if resp.status // 100 != 2:
                    self._warn(f"Failed to send message ({resp.status})")
        except urllib.error.HTTPError as e:
            self._warn(f"Failed to send message ({e.code})")
        except (urllib.error.URLError, OSError) as e:
            self._warn(str(e))


_STOP = object()


class RelayQueue:
    """Serial FIFO relay: one message in flight, in enqueue order.

    Construct one per run and pass it to every emitter. Without a sender
    the queue is disabled and ``send`` is a no-op.
    """

    def __init__(self, sender: RelaySender | None = None) -> None:
        self.sender = sender
        self._queue: queue.Queue[object] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.sender is not None

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="steploop-relay", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                sender = self.sender
                if sender is None:
                    continue
                content, user = item  # type: ignore[misc]
                try:
                    sender.send(content, user)
                except Exception as exc:
                    print(f"[DEADDROP] Warning: {exc}", file=sys.stderr)
            finally:
                self._queue.task_done()

    def send(self, message: str, user: RelayUser) -> None:
        if self.sender is None:
            return
        self._queue.put((message, user))
        self._ensure_worker()

    def drain(self) -> None:
        """Block until every queued message has been handed to the sender."""
        if self.sender is None:
            return
        self._queue.join()

    def close(self) -> None:
        if self.sender is None or self._worker is None:
            return
        self._queue.put(_STOP)
        self._queue.join()
        self._worker.join()
        self._worker = None
