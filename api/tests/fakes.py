from __future__ import annotations

import json
from typing import Any

import httpx


HOOKDECK_BASE_URL = "https://hookdeck.test/2025-07-01"
OPENAI_BASE_URL = "https://openai.test/v1"
QUEUE_SOURCE_URL = "https://hkdk.test/e/src_queue"
WEBHOOK_SOURCE_URL = "https://hkdk.test/e/src_webhook"
WEBHOOK_SOURCE_ID = "src_webhook"
SIGNING_SECRET = "hookdeck-signing-secret"


class FakeHookdeck:
    """Records broker calls and answers like the management API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.connections: dict[str, dict[str, Any]] = {}
        self.events_by_term: dict[str, list[dict[str, Any]]] = {}
        self.fail_connection_names: set[str] = set()
        self.status_override: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override is not None:
            return httpx.Response(status_code=self.status_override, json={"message": "nope"}, request=request)

        path = request.url.path.removeprefix("/2025-07-01")
        if request.method == "PUT" and path == "/connections":
            config = json.loads(request.content)
            name = config["name"]
            if name in self.fail_connection_names:
                return httpx.Response(status_code=500, json={"message": "boom"}, request=request)
            existing = self.connections.get(name)
            connection = {
                "id": existing["id"] if existing else f"web_{name}",
                "name": name,
                "source": {
                    "id": WEBHOOK_SOURCE_ID if name == "openai-webhook" else "src_queue",
                    "url": WEBHOOK_SOURCE_URL if name == "openai-webhook" else QUEUE_SOURCE_URL,
                    "name": config["source"]["name"],
                },
                "destination": config["destination"],
            }
            self.connections[name] = connection
            return httpx.Response(status_code=200, json=connection, request=request)
        if request.method == "PUT" and path.startswith("/sources/"):
            source_id = path.removeprefix("/sources/")
            return httpx.Response(
                status_code=200,
                json={"id": source_id, **json.loads(request.content)},
                request=request,
            )
        if request.method == "GET" and path == "/events":
            term = request.url.params.get("search_term", "")
            return httpx.Response(
                status_code=200,
                json={"models": self.events_by_term.get(term, [])},
                request=request,
            )
        return httpx.Response(status_code=404, request=request)

    def calls(self, method: str, path_suffix: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path.endswith(path_suffix)
        ]


class FakeOpenAI:
    def __init__(self) -> None:
        self.responses: dict[str, dict[str, Any]] = {}
        self.fetched: list[str] = []
        self.queued: list[dict[str, Any]] = []
        self.queue_status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == QUEUE_SOURCE_URL:
            self.queued.append({"headers": dict(request.headers), "body": json.loads(request.content)})
            return httpx.Response(status_code=self.queue_status_code, json={"status": "queued"}, request=request)

        prefix = "/v1/responses/"
        if request.method == "GET" and request.url.path.startswith(prefix):
            response_id = request.url.path.removeprefix(prefix)
            self.fetched.append(response_id)
            body = self.responses.get(response_id)
            if body is None:
                return httpx.Response(status_code=404, json={"error": {"message": "not found"}}, request=request)
            return httpx.Response(status_code=200, json=body, request=request)
        return httpx.Response(status_code=404, request=request)


