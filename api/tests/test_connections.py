from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from fakes import (
    HOOKDECK_BASE_URL,
    QUEUE_SOURCE_URL,
    WEBHOOK_SOURCE_ID,
    WEBHOOK_SOURCE_URL,
    FakeHookdeck,
)
from deepqueue.core.errors import AuthenticationError, UpstreamError
from deepqueue.schemas.hookdeck import StoredConnections
from deepqueue.services.connections import CONNECTIONS_KEY, SOURCE_AUTH_KEY, ConnectionProvisioner
from deepqueue.services.hookdeck import HookdeckClient
from deepqueue.services.kv_store import InMemoryKeyValueStore

APP_URL = "https://deepqueue.example.com"


def _provisioner(kv_store: InMemoryKeyValueStore, fake_hookdeck: FakeHookdeck) -> ConnectionProvisioner:
    transport = httpx.MockTransport(fake_hookdeck.handler)

    def client_factory(api_key: str) -> HookdeckClient:
        return HookdeckClient(
            api_key=api_key,
            base_url=HOOKDECK_BASE_URL,
            client=httpx.AsyncClient(transport=transport),
        )

    return ConnectionProvisioner(
        kv_store,
        client_factory=client_factory,
        upstream_responses_url="https://openai.test/v1/responses",
    )


def test_ensure_connections_creates_queue_and_webhook(fake_hookdeck: FakeHookdeck) -> None:
    kv_store = InMemoryKeyValueStore()
    provisioner = _provisioner(kv_store, fake_hookdeck)

    connections = asyncio.run(provisioner.ensure_connections("hk-key", "sk-openai", APP_URL))

    assert connections.queue.source_url == QUEUE_SOURCE_URL
    assert connections.webhook.source_url == WEBHOOK_SOURCE_URL
    assert connections.webhook.source_id == WEBHOOK_SOURCE_ID

    puts = fake_hookdeck.calls("PUT", "/connections")
    assert [json.loads(request.content)["name"] for request in puts] == ["openai-queue", "openai-webhook"]
    assert all(request.headers["Authorization"] == "Bearer hk-key" for request in puts)

    queue_config = json.loads(puts[0].content)
    credential = asyncio.run(provisioner.get_source_auth_credential())
    assert credential is not None
    assert queue_config["destination"]["auth_method"]["config"]["token"] == "sk-openai"
    assert queue_config["rules"][0]["headers"]["authorization"] == f"Basic {credential.encoded}"

    webhook_config = json.loads(puts[1].content)
    assert webhook_config["destination"]["url"] == f"{APP_URL}/api/webhooks/openai"
    assert webhook_config["source"]["verification"] == {"type": "OPENAI"}


def test_ensure_connections_is_idempotent(fake_hookdeck: FakeHookdeck) -> None:
    kv_store = InMemoryKeyValueStore()
    provisioner = _provisioner(kv_store, fake_hookdeck)

    async def run() -> tuple[StoredConnections, StoredConnections, object, object]:
        first = await provisioner.ensure_connections("hk-key", "sk-openai", APP_URL)
        credential_before = await kv_store.get(SOURCE_AUTH_KEY)
        second = await provisioner.ensure_connections("hk-key", "sk-openai", APP_URL)
        credential_after = await kv_store.get(SOURCE_AUTH_KEY)
        return first, second, credential_before, credential_after

    first, second, credential_before, credential_after = asyncio.run(run())

    assert first == second
    assert credential_before == credential_after
    assert len(fake_hookdeck.requests) == 2


def test_partial_failure_does_not_cache_and_retry_reuses_upserts(fake_hookdeck: FakeHookdeck) -> None:
    kv_store = InMemoryKeyValueStore()
    provisioner = _provisioner(kv_store, fake_hookdeck)
    fake_hookdeck.fail_connection_names.add("openai-webhook")

    with pytest.raises(UpstreamError):
        asyncio.run(provisioner.ensure_connections("hk-key", "sk-openai", APP_URL))
    assert asyncio.run(kv_store.get(CONNECTIONS_KEY)) is None

    fake_hookdeck.fail_connection_names.clear()
    connections = asyncio.run(provisioner.ensure_connections("hk-key", "sk-openai", APP_URL))

    assert connections.queue.id == "web_openai-queue"
    assert sorted(fake_hookdeck.connections) == ["openai-queue", "openai-webhook"]
    assert asyncio.run(kv_store.get(CONNECTIONS_KEY)) is not None


def test_rejected_broker_key_raises_authentication_error(fake_hookdeck: FakeHookdeck) -> None:
    kv_store = InMemoryKeyValueStore()
    provisioner = _provisioner(kv_store, fake_hookdeck)
    fake_hookdeck.status_override = 401

    with pytest.raises(AuthenticationError):
        asyncio.run(provisioner.ensure_connections("bad-key", "sk-openai", APP_URL))
    assert asyncio.run(provisioner.get_connections()) is None


def test_malformed_broker_response_raises_upstream_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, json={"id": "web_1", "source": {}}, request=request)

    transport = httpx.MockTransport(handler)
    provisioner = ConnectionProvisioner(
        InMemoryKeyValueStore(),
        client_factory=lambda api_key: HookdeckClient(
            api_key=api_key,
            base_url=HOOKDECK_BASE_URL,
            client=httpx.AsyncClient(transport=transport),
        ),
        upstream_responses_url="https://openai.test/v1/responses",
    )

    with pytest.raises(UpstreamError, match="malformed"):
        asyncio.run(provisioner.ensure_connections("hk-key", "sk-openai", APP_URL))


def test_unreachable_broker_raises_upstream_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = httpx.MockTransport(handler)
    provisioner = ConnectionProvisioner(
        InMemoryKeyValueStore(),
        client_factory=lambda api_key: HookdeckClient(
            api_key=api_key,
            base_url=HOOKDECK_BASE_URL,
            client=httpx.AsyncClient(transport=transport),
        ),
        upstream_responses_url="https://openai.test/v1/responses",
    )

    with pytest.raises(UpstreamError):
        asyncio.run(provisioner.ensure_connections("hk-key", "sk-openai", APP_URL))


def test_read_only_lookups_return_none_before_provisioning(fake_hookdeck: FakeHookdeck) -> None:
    provisioner = _provisioner(InMemoryKeyValueStore(), fake_hookdeck)

    assert asyncio.run(provisioner.get_connections()) is None
    assert asyncio.run(provisioner.get_source_auth_credential()) is None
    assert fake_hookdeck.requests == []


def test_clear_connections_forces_reprovisioning(fake_hookdeck: FakeHookdeck) -> None:
    kv_store = InMemoryKeyValueStore()
    provisioner = _provisioner(kv_store, fake_hookdeck)

    async def run() -> None:
        await provisioner.ensure_connections("hk-key", "sk-openai", APP_URL)
        await provisioner.clear_connections()
        assert await provisioner.get_connections() is None
        assert await provisioner.get_source_auth_credential() is None
        await provisioner.ensure_connections("hk-key", "sk-openai", APP_URL)

    asyncio.run(run())
    assert len(fake_hookdeck.calls("PUT", "/connections")) == 4
    assert sorted(fake_hookdeck.connections) == ["openai-queue", "openai-webhook"]


def test_update_webhook_source_binds_provider_secret(fake_hookdeck: FakeHookdeck) -> None:
    provisioner = _provisioner(InMemoryKeyValueStore(), fake_hookdeck)

    source = asyncio.run(provisioner.update_webhook_source(WEBHOOK_SOURCE_ID, "whsec_openai", "hk-key"))

    (request,) = fake_hookdeck.calls("PUT", f"/sources/{WEBHOOK_SOURCE_ID}")
    assert json.loads(request.content) == {
        "verification": {"type": "OPENAI", "configs": {"webhook_secret_key": "whsec_openai"}}
    }
    assert source["id"] == WEBHOOK_SOURCE_ID
