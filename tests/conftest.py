from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

import pytest

from src.syncbot.events import EventEmitter

# A response is (status, body); body may be dict/list (JSON), str or bytes.
Response = tuple[int, Any]
Responder = Callable[[dict[str, Any]], Response]


@dataclass
class FakeService:
    """In-process stand-in for the coordination service and artifact host."""

    base_url: str = ""
    routes: dict[tuple[str, str], Responder] = field(default_factory=dict)
    requests: list[dict[str, Any]] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def route(self, method: str, path: str, response: Response | list[Response] | Responder) -> None:
        """Register a responder.

        A list is consumed in order, repeating its last entry once exhausted.
        """
        if callable(response):
            self.routes[(method, path)] = response
        elif isinstance(response, list):
            queue = list(response)

            def _next(_req: dict[str, Any]) -> Response:
                return queue.pop(0) if len(queue) > 1 else queue[0]

            self.routes[(method, path)] = _next
        else:
            self.routes[(method, path)] = lambda _req: response

    def hits(self, path: str, method: str = "GET") -> list[dict[str, Any]]:
        with self.lock:
            return [r for r in self.requests if r["path"] == path and r["method"] == method]

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"


def _make_handler(service: FakeService):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, _format: str, *_args: Any) -> None:  # pragma: no cover
            return

        def _dispatch(self, method: str) -> None:
            parsed = urlparse(self.path)
            length = int(self.headers.get("Content-Length") or "0")
            raw = self.rfile.read(length) if length > 0 else b""
            request = {
                "method": method,
                "path": parsed.path,
                "query": {k: v[0] for k, v in parse_qs(parsed.query).items()},
                "body": json.loads(raw) if raw else None,
                "headers": dict(self.headers),
            }
            with service.lock:
                service.requests.append(request)

            responder = service.routes.get((method, parsed.path))
            status, body = responder(request) if responder else (404, {"error": "not found"})

            if isinstance(body, (dict, list)):
                payload = json.dumps(body).encode()
                content_type = "application/json"
            elif isinstance(body, str):
                payload = body.encode()
                content_type = "text/plain; charset=utf-8"
            else:
                payload = body or b""
                content_type = "application/octet-stream"
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def do_GET(self) -> None:
            self._dispatch("GET")

        def do_POST(self) -> None:
            self._dispatch("POST")

    return Handler


@pytest.fixture
def service():
    svc = FakeService()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(svc))
    svc.base_url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, name="fake-service", daemon=True)
    thread.start()
    try:
        yield svc
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


class EventRecorder:
    """Collects ``(event, args)`` tuples from an emitter, thread-safely."""

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: list[tuple[str, tuple[Any, ...]]] = []
        self._cond = threading.Condition()
        emitter.on_any(self._record)

    def _record(self, event: str, *args: Any) -> None:
        with self._cond:
            self.events.append((event, args))
            self._cond.notify_all()

    def names(self, *, include_state: bool = False) -> list[str]:
        with self._cond:
            return [e for e, _ in self.events if include_state or e != "state_change"]

    def states(self) -> list[str]:
        with self._cond:
            return [args[0].value for e, args in self.events if e == "state_change"]

    def args_of(self, event: str) -> list[tuple[Any, ...]]:
        with self._cond:
            return [args for e, args in self.events if e == event]

    def wait_for(self, event: str, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: any(e == event for e, _ in self.events), timeout=timeout)

    def wait_for_state(self, state: str, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(
                lambda: any(e == "state_change" and args[0].value == state for e, args in self.events),
                timeout=timeout,
            )


@pytest.fixture
def recorder_factory():
    return EventRecorder
