from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from deepqueue.core.errors import AuthenticationError, ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class HookdeckClient:
    """Thin async client for the broker's connection, source and event APIs."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def upsert_connection(self, config: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request("PUT", "/connections", json=config)
        return _require_object(payload, what=f"connection {config.get('name')}")

    async def update_source(self, source_id: str, config: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request("PUT", f"/sources/{source_id}", json=config)
        return _require_object(payload, what=f"source {source_id}")

    async def list_events(
        self,
        search_term: str,
        *,
        order_by: str = "created_at",
        direction: str = "asc",
    ) -> list[dict[str, Any]]:
        payload = await self._request(
            "GET",
            "/events",
            params={"search_term": search_term, "order_by": order_by, "dir": direction},
        )
        body = _require_object(payload, what="event query")
        models = body.get("models") or []
        if not isinstance(models, list):
            raise UpstreamError("malformed hookdeck event query response: models is not a list")
        return [model for model in models if isinstance(model, dict)]

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.api_key:
            raise ConfigurationError("DQ_HOOKDECK_API_KEY is required")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"hookdeck {method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"hookdeck {method} {path} failed: {exc}") from exc

        if response.status_code in {401, 403}:
            raise AuthenticationError("hookdeck rejected the api key")
        if response.status_code >= 400:
            logger.warning(
                "hookdeck request failed method=%s path=%s status=%s body=%s",
                method,
                path,
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(
                f"hookdeck {method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"malformed hookdeck response for {method} {path}") from exc


def _require_object(payload: Any, *, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise UpstreamError(f"malformed hookdeck response for {what}")
    return payload
