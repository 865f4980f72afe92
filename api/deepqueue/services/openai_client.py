from __future__ import annotations

import json
from typing import Any

import httpx

from deepqueue.core.errors import ConfigurationError, UpstreamError

CORRELATION_METADATA_KEY = "researchId"


def build_research_request(*, research_id: str, question: str, model: str) -> dict[str, Any]:
    """Background deep-research job body; the research id rides in ``metadata``."""
    return {
        "model": model,
        "input": question,
        "background": True,
        "tools": [{"type": "web_search_preview"}],
        "metadata": {CORRELATION_METADATA_KEY: research_id},
    }


def extract_correlation_token(job: dict[str, Any]) -> str | None:
    metadata = job.get("metadata")
    if not isinstance(metadata, dict):
        return None
    value = metadata.get(CORRELATION_METADATA_KEY)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class OpenAIResponsesClient:
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

    async def fetch_response(self, response_id: str) -> dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError("DQ_OPENAI_API_KEY is required")

        url = f"{self.base_url}/responses/{response_id}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"openai response fetch timed out for id={response_id}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"openai response fetch failed for id={response_id}: {exc}") from exc

        if response.status_code != 200:
            raise UpstreamError(
                f"openai response fetch returned {response.status_code} for id={response_id}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"malformed openai response for id={response_id}") from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"malformed openai response for id={response_id}")
        return payload
