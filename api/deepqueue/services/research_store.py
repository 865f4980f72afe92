from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends

from deepqueue.schemas.research import Research
from deepqueue.services.kv_store import KeyValueStore, get_kv_store

RESEARCH_KEY_PREFIX = "research:"
IMMUTABLE_FIELDS = frozenset({"id", "question", "created_at"})
STATUS_RANK = {
    "pending": 0,
    "processing": 1,
    "completed": 2,
    "failed": 2,
    "cancelled": 2,
    "incomplete": 2,
}

logger = logging.getLogger(__name__)


def research_key(research_id: str) -> str:
    return f"{RESEARCH_KEY_PREFIX}{research_id}"


class ResearchStore:
    """Research records over the shared key-value store, one key per record."""

    def __init__(self, kv_store: KeyValueStore) -> None:
        self.kv_store = kv_store

    async def create(self, question: str) -> Research:
        now = datetime.now(timezone.utc)
        research = Research(
            id=str(uuid.uuid4()),
            question=question,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        await self.save(research)
        return research

    async def save(self, research: Research) -> None:
        await self.kv_store.set(research_key(research.id), research.model_dump(mode="json"))

    async def get(self, research_id: str) -> Research | None:
        raw = await self.kv_store.get(research_key(research_id))
        if raw is None:
            return None
        return Research.model_validate(raw)

    async def list(self) -> list[Research]:
        rows = await self.kv_store.list(RESEARCH_KEY_PREFIX)
        researches = [Research.model_validate(row) for row in rows if isinstance(row, dict) and row.get("id")]
        researches.sort(key=lambda research: research.created_at, reverse=True)
        return researches

    async def update(self, research_id: str, fields: dict[str, Any]) -> Research | None:
        """Merge ``fields`` onto the stored record and stamp ``updated_at``.

        Returns ``None`` when no record exists; callers treat that as nothing
        to update. Status only moves forward: an update that would move the
        record back (a terminal record to `pending` or `processing`, or
        `processing` to `pending`) is dropped and the stored record returned.
        """
        existing = await self.get(research_id)
        if existing is None:
            logger.info("research update skipped; record not found id=%s", research_id)
            return None

        status = fields.get("status")
        if status in STATUS_RANK and STATUS_RANK[status] < STATUS_RANK[existing.status]:
            logger.info(
                "research update skipped; status would move back id=%s from=%s to=%s",
                research_id,
                existing.status,
                status,
            )
            return existing

        merged = existing.model_dump()
        merged.update({key: value for key, value in fields.items() if key not in IMMUTABLE_FIELDS})
        merged["updated_at"] = _next_timestamp(existing.updated_at)
        updated = Research.model_validate(merged)
        await self.save(updated)
        return updated


def _next_timestamp(previous: datetime) -> datetime:
    now = datetime.now(timezone.utc)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def get_research_store(kv_store: KeyValueStore = Depends(get_kv_store)) -> ResearchStore:
    return ResearchStore(kv_store)
