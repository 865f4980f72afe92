from __future__ import annotations

import copy
import json
import logging
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> list[Any]: ...

    async def close(self) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._values.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def list(self, prefix: str) -> list[Any]:
        return [copy.deepcopy(value) for key, value in self._values.items() if key.startswith(prefix)]

    async def close(self) -> None:
        self._values.clear()


class PostgresKeyValueStore:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get(self, key: str) -> Any | None:
        pool = await self._get_pool()
        raw = await pool.fetchval("select value from kv_store where key = $1", key)
        return self._decode(raw)

    async def set(self, key: str, value: Any) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            insert into kv_store (key, value, updated_at)
            values ($1, $2::jsonb, now())
            on conflict (key) do update
            set value = excluded.value,
                updated_at = excluded.updated_at
            """,
            key,
            json.dumps(value),
        )

    async def delete(self, key: str) -> None:
        pool = await self._get_pool()
        await pool.execute("delete from kv_store where key = $1", key)

    async def list(self, prefix: str) -> list[Any]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            "select value from kv_store where key like $1 || '%' order by key",
            self._escape_like(prefix),
        )
        return [self._decode(row["value"]) for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise ConfigurationError("DQ_DATABASE_URL is required for the postgres store")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            await pool.execute(
                """
                create table if not exists kv_store (
                  key text primary key,
                  value jsonb not null,
                  updated_at timestamptz not null default now()
                )
                """
            )
        except (OSError, asyncpg.PostgresError) as exc:  # pragma: no cover - depends on environment
            raise UpstreamError("store unavailable") from exc

        self._pool = pool
        return self._pool

    @staticmethod
    def _decode(raw: Any) -> Any | None:
        if raw is None:
            return None
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @staticmethod
    def _escape_like(prefix: str) -> str:
        return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_kv_store(settings: Settings) -> KeyValueStore:
    if settings.kv_backend == "postgres":
        logger.info("using postgres key-value store")
        return PostgresKeyValueStore(
            database_url=settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
        )
    logger.info("using in-memory key-value store; state is lost on restart")
    return InMemoryKeyValueStore()


@lru_cache
def get_kv_store() -> KeyValueStore:
    return build_kv_store(get_settings())
