#!/usr/bin/env python3
"""Local stand-in for the Hookdeck connection, source and event APIs."""

from __future__ import annotations

import argparse
import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse


class MockHookdeckState:
    def __init__(self, public_base_url: str) -> None:
        self.public_base_url = public_base_url.rstrip("/")
        self.connections: dict[str, dict[str, object]] = {}
        self.sources: dict[str, dict[str, object]] = {}
        self.events: list[dict[str, object]] = []
        self._lock = threading.Lock()

    def upsert_connection(self, config: dict[str, object]) -> dict[str, object]:
        name = str(config.get("name") or "")
        with self._lock:
            existing = self.connections.get(name)
            connection_id = existing["id"] if existing else f"web_mock_{len(self.connections) + 1}"
            source_config = config.get("source") if isinstance(config.get("source"), dict) else {}
            source_id = existing["source"]["id"] if existing else f"src_mock_{len(self.sources) + 1}"  # type: ignore[index]
            source = {
                **source_config,
                "id": source_id,
                "url": f"{self.public_base_url}/e/{source_id}",
            }
            self.sources[source_id] = source
            connection = {
                "id": connection_id,
                "name": name,
                "source": source,
                "destination": config.get("destination") or {},
                "rules": config.get("rules") or [],
            }
            self.connections[name] = connection
            return connection

    def update_source(self, source_id: str, config: dict[str, object]) -> dict[str, object] | None:
        with self._lock:
            source = self.sources.get(source_id)
            if source is None:
                return None
            source.update(config)
            return source

    def search_events(self, term: str) -> list[dict[str, object]]:
        with self._lock:
            return [event for event in self.events if term and term in json.dumps(event.get("data"))]


class MockHookdeckHandler(BaseHTTPRequestHandler):
    server_version = "MockHookdeck/1.0"
    state: MockHookdeckState

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        parsed = urlparse(self.path)
        if parsed.path == "/healthz":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return
        if parsed.path != "/events":
            self._write_json(HTTPStatus.NOT_FOUND, {"message": "not found"})
            return
        if not self._authorized():
            return
        term = parse_qs(parsed.query).get("search_term", [""])[0]
        self._write_json(HTTPStatus.OK, {"models": self.state.search_events(term)})

    def do_PUT(self) -> None:  # noqa: N802 - stdlib handler signature
        if not self._authorized():
            return
        body = self._read_json()
        if body is None:
            self._write_json(HTTPStatus.BAD_REQUEST, {"message": "invalid json"})
            return

        if self.path == "/connections":
            self._write_json(HTTPStatus.OK, self.state.upsert_connection(body))
            return
        if self.path.startswith("/sources/"):
            source = self.state.update_source(self.path.removeprefix("/sources/"), body)
            if source is None:
                self._write_json(HTTPStatus.NOT_FOUND, {"message": "source not found"})
                return
            self._write_json(HTTPStatus.OK, source)
            return
        self._write_json(HTTPStatus.NOT_FOUND, {"message": "not found"})

    def log_message(self, _: str, *args: object) -> None:
        if args:
            print("mock-hookdeck:", *args)

    def _authorized(self) -> bool:
        authorization = self.headers.get("Authorization", "")
        if authorization.lower().startswith("bearer ") and authorization.split(" ", maxsplit=1)[1].strip():
            return True
        self._write_json(HTTPStatus.UNAUTHORIZED, {"message": "missing bearer token"})
        return False

    def _read_json(self) -> dict[str, object] | None:
        length = int(self.headers.get("Content-Length") or 0)
        try:
            payload = json.loads(self.rfile.read(length) or b"{}")
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None

    def _write_json(self, status: HTTPStatus, payload: object) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock the Hookdeck management API for offline development.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54322)
    args = parser.parse_args()

    MockHookdeckHandler.state = MockHookdeckState(public_base_url=f"http://{args.host}:{args.port}")
    server = ThreadingHTTPServer((args.host, args.port), MockHookdeckHandler)
    print(f"mock-hookdeck listening on http://{args.host}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
