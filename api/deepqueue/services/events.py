from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends

from deepqueue.core.config import Settings, get_settings
from deepqueue.schemas.events import TimelineEvent
from deepqueue.services.connections import ConnectionProvisioner, get_connection_provisioner
from deepqueue.services.hookdeck import HookdeckClient

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class EventCorrelator:
    """Rebuilds the outbound/inbound timeline of one research request.

    The outbound leg is searchable by the internal research id, the inbound
    leg only by the provider's job id, so both terms are queried.
    """

    def __init__(self, client: HookdeckClient, provisioner: ConnectionProvisioner) -> None:
        self.client = client
        self.provisioner = provisioner

    async def get_correlated_events(self, request_id: str, upstream_job_id: str | None = None) -> list[TimelineEvent]:
        events = await self.client.list_events(request_id, order_by="created_at", direction="asc")
        if upstream_job_id:
            inbound = await self.client.list_events(upstream_job_id, order_by="created_at", direction="asc")
            seen = {event["id"] for event in events if event.get("id") is not None}
            events = [*events, *(event for event in inbound if event.get("id") is None or event["id"] not in seen)]

        if not events:
            return []

        connections = await self.provisioner.get_connections()
        inbound_source_id = connections.webhook.source_id if connections is not None else None
        if inbound_source_id is None:
            logger.info("no cached webhook source; every event for id=%s classified outbound", request_id)

        # sorted() is stable, so equal timestamps keep broker order.
        ordered = sorted(events, key=_created_at)
        return [to_timeline_event(event, inbound_source_id=inbound_source_id) for event in ordered]


def to_timeline_event(event: dict[str, Any], *, inbound_source_id: str | None) -> TimelineEvent:
    is_inbound = inbound_source_id is not None and event.get("source_id") == inbound_source_id
    return TimelineEvent(
        id=str(event.get("id")),
        type="inbound" if is_inbound else "outbound",
        status=event.get("status"),
        timestamp=str(event.get("created_at") or ""),
        data=event.get("data"),
    )


def _created_at(event: dict[str, Any]) -> datetime:
    raw = event.get("created_at")
    if not isinstance(raw, str) or not raw:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_event_correlator(
    settings: Settings = Depends(get_settings),
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> EventCorrelator:
    client = HookdeckClient(
        api_key=settings.hookdeck_api_key,
        base_url=settings.hookdeck_api_url,
        timeout_seconds=settings.http_timeout_seconds,
    )
    return EventCorrelator(client, provisioner)
