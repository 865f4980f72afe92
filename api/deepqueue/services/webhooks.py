from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import Depends
from opentelemetry import trace

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import AuthenticationError, ConfigurationError, ValidationError
from deepqueue.core.security import verify_webhook_signature
from deepqueue.services.openai_client import OpenAIResponsesClient, extract_correlation_token
from deepqueue.services.research_store import ResearchStore, get_research_store

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EVENT_COMPLETED = "response.completed"
EVENT_FAILED = "response.failed"
EVENT_CANCELLED = "response.cancelled"
EVENT_INCOMPLETE = "response.incomplete"

CANCELLED_MESSAGE = "Response cancelled"
INCOMPLETE_MESSAGE = "Response incomplete"
FAILED_FALLBACK_MESSAGE = "Response failed"

WebhookAction = Literal["updated", "ignored", "not_found"]


@dataclass(slots=True)
class WebhookOutcome:
    action: WebhookAction
    event_type: str | None
    research_id: str
    upstream_job_id: str
    status: str | None = None


class WebhookIngestor:
    """Applies verified provider notifications to research records.

    Every accepted delivery maps to at most one overwrite of the target
    record, so broker redeliveries leave the record in the same state.
    """

    def __init__(self, research_store: ResearchStore, upstream: OpenAIResponsesClient) -> None:
        self.research_store = research_store
        self.upstream = upstream

    async def handle_inbound_webhook(
        self,
        raw_body: bytes,
        signatures: Sequence[str | None],
        signing_secret: str | None,
    ) -> WebhookOutcome:
        if not signing_secret:
            raise ConfigurationError("DQ_HOOKDECK_SIGNING_SECRET is required for webhook verification")
        if not verify_webhook_signature(raw_body, signatures, signing_secret):
            raise AuthenticationError("invalid webhook signature")

        payload = _parse_payload(raw_body)
        event_type = payload.get("type") if isinstance(payload.get("type"), str) else None
        job_id = _extract_job_id(payload)

        with tracer.start_as_current_span("webhook.ingest") as span:
            span.set_attribute("webhook.event_type", event_type or "unknown")
            job = await self.upstream.fetch_response(job_id)
            research_id = extract_correlation_token(job)
            if research_id is None:
                raise ValidationError(f"no research id in metadata of upstream job {job_id}")
            span.set_attribute("research.id", research_id)

            upstream_job_id = job.get("id") if isinstance(job.get("id"), str) else job_id
            fields = build_transition(event_type, job, upstream_job_id=upstream_job_id)
            if fields is None:
                logger.warning(
                    "unmapped webhook event type=%s research_id=%s job_id=%s",
                    event_type,
                    research_id,
                    upstream_job_id,
                )
                return WebhookOutcome(
                    action="ignored",
                    event_type=event_type,
                    research_id=research_id,
                    upstream_job_id=upstream_job_id,
                )

            updated = await self.research_store.update(research_id, fields)
            if updated is None:
                logger.warning(
                    "webhook references unknown research id=%s job_id=%s type=%s",
                    research_id,
                    upstream_job_id,
                    event_type,
                )
                return WebhookOutcome(
                    action="not_found",
                    event_type=event_type,
                    research_id=research_id,
                    upstream_job_id=upstream_job_id,
                )

            logger.info(
                "research transitioned id=%s status=%s job_id=%s",
                research_id,
                updated.status,
                upstream_job_id,
            )
            return WebhookOutcome(
                action="updated",
                event_type=event_type,
                research_id=research_id,
                upstream_job_id=upstream_job_id,
                status=updated.status,
            )


def build_transition(event_type: str | None, job: dict[str, Any], *, upstream_job_id: str) -> dict[str, Any] | None:
    if event_type == EVENT_COMPLETED:
        return {
            "status": "completed",
            "result": _serialize(job),
            "error": None,
            "upstream_job_id": upstream_job_id,
        }
    if event_type == EVENT_FAILED:
        return {
            "status": "failed",
            "error": _upstream_error_message(job) or FAILED_FALLBACK_MESSAGE,
            "result": _serialize(job),
            "upstream_job_id": upstream_job_id,
        }
    if event_type == EVENT_CANCELLED:
        return {"status": "cancelled", "error": CANCELLED_MESSAGE, "upstream_job_id": upstream_job_id}
    if event_type == EVENT_INCOMPLETE:
        return {"status": "incomplete", "error": INCOMPLETE_MESSAGE, "upstream_job_id": upstream_job_id}
    return None


def _parse_payload(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("webhook body must be a JSON object")
    return payload


def _extract_job_id(payload: dict[str, Any]) -> str:
    data = payload.get("data")
    job_id = data.get("id") if isinstance(data, dict) else None
    if not isinstance(job_id, str) or not job_id:
        raise ValidationError("webhook payload carries no upstream job id")
    return job_id


def _upstream_error_message(job: dict[str, Any]) -> str | None:
    error = job.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def _serialize(job: dict[str, Any]) -> str:
    return json.dumps(job, indent=2)


def get_webhook_ingestor(
    settings: Settings = Depends(get_settings),
    research_store: ResearchStore = Depends(get_research_store),
) -> WebhookIngestor:
    upstream = OpenAIResponsesClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_api_url,
        timeout_seconds=settings.http_timeout_seconds,
    )
    return WebhookIngestor(research_store, upstream)
