from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import Depends
from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import UpstreamError
from deepqueue.core.security import generate_basic_auth
from deepqueue.schemas.hookdeck import (
    BasicAuthCredential,
    QueueConnection,
    StoredConnections,
    WebhookConnection,
)
from deepqueue.services.hookdeck import HookdeckClient
from deepqueue.services.kv_store import KeyValueStore, get_kv_store

CONNECTIONS_KEY = "hookdeck:connections"
SOURCE_AUTH_KEY = "hookdeck:source-auth"

QUEUE_CONNECTION_NAME = "openai-queue"
WEBHOOK_CONNECTION_NAME = "openai-webhook"
WEBHOOK_PROVIDER = "openai"

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HookdeckClientFactory = Callable[[str], HookdeckClient]


class ConnectionProvisioner:
    """Creates the queue and webhook connections once and caches their addresses.

    The cached record under ``hookdeck:connections`` is the idempotency
    backbone: when present, no broker call is made and the stored source
    credential is never rotated.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        *,
        client_factory: HookdeckClientFactory,
        upstream_responses_url: str,
    ) -> None:
        self.kv_store = kv_store
        self.client_factory = client_factory
        self.upstream_responses_url = upstream_responses_url

    async def ensure_connections(
        self,
        hookdeck_api_key: str,
        openai_api_key: str,
        app_url: str,
        *,
        signing_secret: str | None = None,
    ) -> StoredConnections:
        existing = await self.get_connections()
        if existing is not None:
            logger.info("using cached hookdeck connections queue_id=%s", existing.queue.id)
            return existing

        with tracer.start_as_current_span("hookdeck.ensure_connections"):
            logger.info("creating hookdeck connections")
            credential = generate_basic_auth()
            await self.kv_store.set(SOURCE_AUTH_KEY, credential.model_dump())

            client = self.client_factory(hookdeck_api_key)
            queue_response = await client.upsert_connection(
                self._queue_connection_config(credential=credential, openai_api_key=openai_api_key)
            )
            webhook_response = await client.upsert_connection(
                self._webhook_connection_config(app_url=app_url, signing_secret=signing_secret)
            )

            connections = StoredConnections(
                queue=_parse_queue_connection(queue_response),
                webhook=_parse_webhook_connection(webhook_response),
            )
            await self.kv_store.set(CONNECTIONS_KEY, connections.model_dump())
            logger.info(
                "hookdeck connections created queue_id=%s webhook_id=%s webhook_source_id=%s",
                connections.queue.id,
                connections.webhook.id,
                connections.webhook.source_id,
            )
            return connections

    async def get_connections(self) -> StoredConnections | None:
        raw = await self.kv_store.get(CONNECTIONS_KEY)
        if raw is None:
            return None
        return StoredConnections.model_validate(raw)

    async def get_source_auth_credential(self) -> BasicAuthCredential | None:
        raw = await self.kv_store.get(SOURCE_AUTH_KEY)
        if raw is None:
            return None
        return BasicAuthCredential.model_validate(raw)

    async def clear_connections(self) -> None:
        await self.kv_store.delete(CONNECTIONS_KEY)
        await self.kv_store.delete(SOURCE_AUTH_KEY)
        logger.info("cleared cached hookdeck connections")

    async def update_webhook_source(self, source_id: str, secret: str, hookdeck_api_key: str) -> dict[str, Any]:
        """Bind the provider's signing secret to the inbound source."""
        client = self.client_factory(hookdeck_api_key)
        source = await client.update_source(
            source_id,
            {
                "verification": {
                    "type": "OPENAI",
                    "configs": {"webhook_secret_key": secret},
                }
            },
        )
        logger.info("updated hookdeck webhook source verification source_id=%s", source_id)
        return source

    def _queue_connection_config(self, *, credential: BasicAuthCredential, openai_api_key: str) -> dict[str, Any]:
        return {
            "name": QUEUE_CONNECTION_NAME,
            "source": {
                "name": "deepqueue-source",
                "allowed_http_methods": ["POST"],
                "custom_response": {
                    "content_type": "json",
                    "body": '{"status":"queued"}',
                },
            },
            "destination": {
                "name": "openai-api",
                "url": self.upstream_responses_url,
                "auth_method": {
                    "type": "BEARER_TOKEN",
                    "config": {"token": openai_api_key},
                },
            },
            "rules": [
                {
                    "type": "filter",
                    "headers": {"authorization": f"Basic {credential.encoded}"},
                }
            ],
        }

    @staticmethod
    def _webhook_connection_config(*, app_url: str, signing_secret: str | None) -> dict[str, Any]:
        destination: dict[str, Any] = {
            "name": "deepqueue-webhook",
            "url": f"{app_url.rstrip('/')}/api/webhooks/{WEBHOOK_PROVIDER}",
        }
        if signing_secret:
            destination["auth_method"] = {
                "type": "HOOKDECK_SIGNATURE",
                "config": {"webhook_secret_key": signing_secret},
            }
        return {
            "name": WEBHOOK_CONNECTION_NAME,
            "source": {
                "name": "openai-webhook-source",
                "allowed_http_methods": ["POST"],
                "verification": {"type": "OPENAI"},
            },
            "destination": destination,
        }


def _parse_queue_connection(payload: dict[str, Any]) -> QueueConnection:
    source = payload.get("source") if isinstance(payload.get("source"), dict) else {}
    try:
        return QueueConnection(id=payload.get("id"), source_url=source.get("url"))
    except PydanticValidationError as exc:
        raise UpstreamError("malformed hookdeck connection response for queue connection") from exc


def _parse_webhook_connection(payload: dict[str, Any]) -> WebhookConnection:
    source = payload.get("source") if isinstance(payload.get("source"), dict) else {}
    try:
        return WebhookConnection(
            id=payload.get("id"),
            source_url=source.get("url"),
            source_id=source.get("id"),
        )
    except PydanticValidationError as exc:
        raise UpstreamError("malformed hookdeck connection response for webhook connection") from exc


def get_connection_provisioner(
    settings: Settings = Depends(get_settings),
    kv_store: KeyValueStore = Depends(get_kv_store),
) -> ConnectionProvisioner:
    return build_connection_provisioner(settings, kv_store)


def build_connection_provisioner(settings: Settings, kv_store: KeyValueStore) -> ConnectionProvisioner:
    def client_factory(api_key: str) -> HookdeckClient:
        return HookdeckClient(
            api_key=api_key,
            base_url=settings.hookdeck_api_url,
            timeout_seconds=settings.http_timeout_seconds,
        )

    return ConnectionProvisioner(
        kv_store,
        client_factory=client_factory,
        upstream_responses_url=f"{settings.openai_api_url.rstrip('/')}/responses",
    )
