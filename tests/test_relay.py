from __future__ import annotations

import io
import threading
import urllib.error

import pytest

from steploop import relay as relay_mod
from steploop.relay import RelayClient, RelayQueue


class SlowSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def send(self, content: str, user: str) -> None:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        threading.Event().wait(0.001)
        with self._lock:
            self.in_flight -= 1
            self.sent.append((user, content))


def test_queue_delivers_in_order_one_at_a_time() -> None:
    sender = SlowSender()
    queue = RelayQueue(sender)
    for i in range(20):
        queue.send(f"msg {i}", "Runner" if i % 2 else "Claude Code")
    queue.drain()

    assert [content for _, content in sender.sent] == [f"msg {i}" for i in range(20)]
    assert sender.max_in_flight == 1
    queue.close()


def test_disabled_queue_is_noop() -> None:
    queue = RelayQueue()
    assert queue.enabled is False
    queue.send("ignored", "Runner")
    queue.drain()
    queue.close()


def test_sender_failure_does_not_stop_queue(capsys: pytest.CaptureFixture[str]) -> None:
    sent: list[str] = []

    class Flaky:
        def send(self, content: str, user: str) -> None:
            if content == "bad":
                raise RuntimeError("network down")
            sent.append(content)

    queue = RelayQueue(Flaky())
    queue.send("bad", "Runner")
    queue.send("good", "Runner")
    queue.close()

    assert sent == ["good"]
    assert "network down" in capsys.readouterr().err


def test_from_env_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DEADDROP_API_KEY", raising=False)
    assert RelayClient.from_env("run-1") is None

    monkeypatch.setenv("DEADDROP_API_KEY", "secret")
    monkeypatch.setenv("DEADDROP_HOST", "https://relay.example/")
    client = RelayClient.from_env("run-1")
    assert client is not None
    assert client.url == "https://relay.example/v1/messages"
    assert client.run_id == "run-1"


def test_client_posts_markdown_with_headers(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    class Resp:
        status = 201

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["data"] = req.data
        captured["headers"] = dict(req.header_items())
        captured["timeout"] = timeout
        return Resp()

    monkeypatch.setattr(relay_mod.urllib.request, "urlopen", fake_urlopen)
    client = RelayClient(api_key="k", host="https://h", run_id="r")
    client.send("**hi**", "Runner")

    headers = {k.lower(): v for k, v in captured["headers"].items()}
    assert captured["url"] == "https://h/v1/messages"
    assert captured["data"] == b"**hi**"
    assert headers["content-type"] == "text/markdown"
    assert headers["x-api-key"] == "k"
    assert headers["x-deaddrop-user"] == "Runner"
    assert headers["x-deaddrop-subject"] == "r"


def test_client_warns_instead_of_raising(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError("unreachable")

    monkeypatch.setattr(relay_mod.urllib.request, "urlopen", fake_urlopen)
    err = io.StringIO()
    RelayClient(api_key="k", host="https://h", run_id="r", stderr=err).send("x", "Runner")
    assert err.getvalue().startswith("[DEADDROP] Warning:")


def test_worker_skips_messages_once_sender_is_gone() -> None:
    queue = RelayQueue()
    queue._queue.put(("orphan", "Runner"))
    queue._queue.put(relay_mod._STOP)
    queue._run()
    assert queue._queue.unfinished_tasks == 0
