"""Deal registries: in-memory for tests and single-process use, Postgres via asyncpg.

Both store full deal snapshots, so a caller holding a Deal object never
shares mutable state with the registry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import asyncpg

from ..core.config import ProvstoreConfig, get_config
from ..core.exceptions import TransientNetworkError
from .models import Deal

logger = logging.getLogger(__name__)


class InMemoryDealRegistry:
    """Dict-backed registry."""

    def __init__(self):
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, deal_id: str) -> Deal | None:
        record = self._records.get(deal_id)
        return Deal.from_dict(record) if record else None

    async def put(self, deal: Deal) -> None:
        async with self._lock:
            self._records[deal.deal_id] = deal.to_dict()

    async def list_by_dataset(self, dataset_id: str) -> list[Deal]:
        return [
            Deal.from_dict(r)
            for r in self._records.values()
            if r["params"]["dataset_id"] == dataset_id
        ]

    def __len__(self) -> int:
        return len(self._records)


# =============================================================================
# POSTGRES
# =============================================================================

SCHEMA_STATEMENTS = [
    (
        "create table deals",
        """
        CREATE TABLE IF NOT EXISTS deals (
            deal_id TEXT PRIMARY KEY,
            dataset_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            piece_cid TEXT NOT NULL,
            state TEXT NOT NULL,
            record JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
    ),
    ("index deals by dataset", "CREATE INDEX IF NOT EXISTS idx_deals_dataset ON deals (dataset_id)"),
    ("index deals by state", "CREATE INDEX IF NOT EXISTS idx_deals_state ON deals (state)"),
    (
        "create table deal_audit",
        """
        CREATE TABLE IF NOT EXISTS deal_audit (
            deal_id TEXT NOT NULL REFERENCES deals (deal_id),
            seq INTEGER NOT NULL,
            at TIMESTAMPTZ NOT NULL,
            from_state TEXT,
            to_state TEXT NOT NULL,
            cause TEXT NOT NULL,
            details JSONB NOT NULL DEFAULT '{}'::jsonb,
            PRIMARY KEY (deal_id, seq)
        )
        """,
    ),
]

_UPSERT_DEAL = """
    INSERT INTO deals (deal_id, dataset_id, provider, piece_cid, state, record, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6::jsonb, now())
    ON CONFLICT (deal_id) DO UPDATE
    SET state = EXCLUDED.state, record = EXCLUDED.record, updated_at = now()
"""

_INSERT_AUDIT = """
    INSERT INTO deal_audit (deal_id, seq, at, from_state, to_state, cause, details)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
    ON CONFLICT (deal_id, seq) DO NOTHING
"""


class PostgresDealRegistry:
    """asyncpg-backed registry.

    The full record lives in ``deals.record``; audit entries are also written
    to ``deal_audit`` as insert-only rows so history survives any later
    overwrite of the record column.
    """

    def __init__(self, pool: asyncpg.Pool | None = None, config: ProvstoreConfig | None = None):
        self._pool = pool
        self._config = config or get_config()

    async def connect(self) -> None:
        if self._pool is not None:
            return
        c = self._config
        try:
            self._pool = await asyncpg.create_pool(
                host=c.db_host,
                port=c.db_port,
                database=c.db_name,
                user=c.db_user,
                password=c.db_password,
                min_size=c.db_pool_min_size,
                max_size=c.db_pool_max_size,
            )
        except (OSError, asyncpg.PostgresError) as e:
            raise TransientNetworkError(f"Cannot connect to deal registry: {e}") from e
        logger.info(f"Connected deal registry to {c.db_host}:{c.db_port}/{c.db_name}")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgresDealRegistry.connect() has not been called")
        return self._pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            for description, sql in SCHEMA_STATEMENTS:
                try:
                    await conn.execute(sql)
                except asyncpg.PostgresError as e:
                    raise RuntimeError(f"Schema step '{description}' failed: {e}") from e

    async def get(self, deal_id: str) -> Deal | None:
        async with self.pool.acquire() as conn:
            record = await conn.fetchval("SELECT record FROM deals WHERE deal_id = $1", deal_id)
        if record is None:
            return None
        return Deal.from_dict(json.loads(record) if isinstance(record, str) else record)

    async def put(self, deal: Deal) -> None:
        record = deal.to_dict()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    _UPSERT_DEAL,
                    deal.deal_id,
                    deal.dataset_id,
                    deal.provider,
                    deal.piece_cid,
                    deal.state.value,
                    json.dumps(record),
                )
                await conn.executemany(
                    _INSERT_AUDIT,
                    [
                        (
                            deal.deal_id,
                            seq,
                            entry.at,
                            entry.from_state.value if entry.from_state else None,
                            entry.to_state.value,
                            entry.cause,
                            json.dumps(entry.details, default=str),
                        )
                        for seq, entry in enumerate(deal.audit)
                    ],
                )

    async def list_by_dataset(self, dataset_id: str) -> list[Deal]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT record FROM deals WHERE dataset_id = $1 ORDER BY deal_id", dataset_id
            )
        return [
            Deal.from_dict(json.loads(r["record"]) if isinstance(r["record"], str) else r["record"])
            for r in rows
        ]
