from __future__ import annotations

import logging

import httpx
from fastapi import Depends

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import ValidationError
from deepqueue.schemas.research import Research
from deepqueue.services.connections import ConnectionProvisioner, get_connection_provisioner
from deepqueue.services.openai_client import build_research_request
from deepqueue.services.research_store import ResearchStore, get_research_store

logger = logging.getLogger(__name__)


class RequestSubmitter:
    def __init__(
        self,
        research_store: ResearchStore,
        provisioner: ConnectionProvisioner,
        *,
        model: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.research_store = research_store
        self.provisioner = provisioner
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def submit(self, question: str) -> Research:
        if not question or not question.strip():
            raise ValidationError("question is required")

        research = await self.research_store.create(question)
        logger.info("research created id=%s", research.id)

        connections = await self.provisioner.get_connections()
        credential = await self.provisioner.get_source_auth_credential()
        if connections is None or credential is None:
            logger.warning("hookdeck connections not provisioned; research id=%s left pending", research.id)
            return research

        payload = build_research_request(research_id=research.id, question=question, model=self.model)
        headers = {"Authorization": f"Basic {credential.encoded}"}
        try:
            if self._client is not None:
                response = await self._client.post(connections.queue.source_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(connections.queue.source_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("queue hand-off failed for research id=%s: %s", research.id, exc)
            return research

        if response.status_code >= 400:
            logger.error(
                "queue rejected research id=%s status=%s body=%s",
                research.id,
                response.status_code,
                response.text[:500],
            )
            return research

        updated = await self.research_store.update(research.id, {"status": "processing"})
        return updated or research


def get_request_submitter(
    settings: Settings = Depends(get_settings),
    research_store: ResearchStore = Depends(get_research_store),
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> RequestSubmitter:
    return RequestSubmitter(
        research_store,
        provisioner,
        model=settings.openai_model,
        timeout_seconds=settings.http_timeout_seconds,
    )
