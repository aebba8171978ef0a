"""Tests for the deal registries and the registry migration."""

from __future__ import annotations

import importlib.util
import json
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from provstore.core.exceptions import TransientNetworkError
from provstore.deals import Deal, DealState, InMemoryDealRegistry, PostgresDealRegistry
from provstore.deals.registry import SCHEMA_STATEMENTS
from provstore.optimizer import DealParameters

T0 = datetime(2026, 1, 1, tzinfo=UTC)
MIGRATION = Path(__file__).resolve().parents[2] / "migrations" / "001_deal_registry.py"


def make_deal(deal_id: str = "d1", dataset_id: str = "ds") -> Deal:
    params = DealParameters(
        dataset_id=dataset_id,
        piece_cid="baga6ea4seaq",
        raw_size=1000,
        padded_size=1024,
        provider="f01001",
        provider_address="sim://f01001",
        price_per_epoch=10,
        duration_epochs=518400,
        verified=False,
        replication_factor=1,
    )
    return Deal(deal_id, params)


def _async_cm(value):
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=None)
    return cm


@pytest.fixture
def mock_conn():
    conn = AsyncMock()
    conn.transaction = MagicMock(return_value=_async_cm(None))
    return conn


@pytest.fixture
def mock_pool(mock_conn):
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=_async_cm(mock_conn))
    pool.close = AsyncMock()
    return pool


# ============================================================================
# In-memory registry
# ============================================================================


class TestInMemoryRegistry:
    """Dict-backed registry semantics."""

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        registry = InMemoryDealRegistry()
        deal = make_deal()
        await registry.put(deal)
        assert await registry.get("d1") == deal
        assert await registry.get("missing") is None
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_snapshots_are_isolated(self):
        registry = InMemoryDealRegistry()
        deal = make_deal()
        await registry.put(deal)
        deal.transition(DealState.PROPOSED, T0, "submitted")
        stored = await registry.get("d1")
        assert stored.state == DealState.DRAFTED
        stored.transition(DealState.FAILED, T0, "local change")
        assert (await registry.get("d1")).state == DealState.DRAFTED

    @pytest.mark.asyncio
    async def test_list_by_dataset(self):
        registry = InMemoryDealRegistry()
        await registry.put(make_deal("a", "ds1"))
        await registry.put(make_deal("b", "ds1"))
        await registry.put(make_deal("c", "ds2"))
        assert sorted(d.deal_id for d in await registry.list_by_dataset("ds1")) == ["a", "b"]
        assert await registry.list_by_dataset("none") == []


# ============================================================================
# Postgres registry
# ============================================================================


class TestPostgresRegistry:
    """asyncpg queries issued by the Postgres registry."""

    def test_pool_requires_connect(self):
        registry = PostgresDealRegistry()
        with pytest.raises(RuntimeError):
            _ = registry.pool

    @pytest.mark.asyncio
    async def test_connect_uses_config(self, fast_config, mock_pool):
        with patch("provstore.deals.registry.asyncpg.create_pool", AsyncMock(return_value=mock_pool)) as create:
            registry = PostgresDealRegistry(config=fast_config)
            await registry.connect()
            await registry.connect()
        create.assert_awaited_once()
        kwargs = create.await_args.kwargs
        assert kwargs["host"] == fast_config.db_host
        assert kwargs["database"] == fast_config.db_name
        assert registry.pool is mock_pool

    @pytest.mark.asyncio
    async def test_connect_failure_is_transient(self, fast_config):
        with patch("provstore.deals.registry.asyncpg.create_pool", AsyncMock(side_effect=OSError("refused"))):
            registry = PostgresDealRegistry(config=fast_config)
            with pytest.raises(TransientNetworkError):
                await registry.connect()

    @pytest.mark.asyncio
    async def test_close(self, mock_pool):
        registry = PostgresDealRegistry(pool=mock_pool)
        await registry.close()
        mock_pool.close.assert_awaited_once()
        with pytest.raises(RuntimeError):
            _ = registry.pool

    @pytest.mark.asyncio
    async def test_ensure_schema(self, mock_pool, mock_conn):
        registry = PostgresDealRegistry(pool=mock_pool)
        await registry.ensure_schema()
        assert mock_conn.execute.await_count == len(SCHEMA_STATEMENTS)

    @pytest.mark.asyncio
    async def test_ensure_schema_failure(self, mock_pool, mock_conn):
        mock_conn.execute.side_effect = asyncpg.PostgresError("boom")
        registry = PostgresDealRegistry(pool=mock_pool)
        with pytest.raises(RuntimeError, match="create table deals"):
            await registry.ensure_schema()

    @pytest.mark.asyncio
    async def test_put_writes_record_and_audit(self, mock_pool, mock_conn):
        deal = make_deal()
        deal.transition(DealState.PROPOSED, T0, "submitted")
        deal.transition(DealState.PUBLISHING, T0, "included")
        registry = PostgresDealRegistry(pool=mock_pool)
        await registry.put(deal)

        mock_conn.transaction.assert_called_once()
        args = mock_conn.execute.await_args.args
        assert args[1:6] == ("d1", "ds", "f01001", "baga6ea4seaq", "publishing")
        assert json.loads(args[6]) == deal.to_dict()

        rows = mock_conn.executemany.await_args.args[1]
        assert [(r[1], r[3], r[4]) for r in rows] == [(0, "drafted", "proposed"), (1, "proposed", "publishing")]

    @pytest.mark.asyncio
    async def test_get_decodes_json_string(self, mock_pool, mock_conn):
        deal = make_deal()
        mock_conn.fetchval.return_value = json.dumps(deal.to_dict())
        registry = PostgresDealRegistry(pool=mock_pool)
        assert await registry.get("d1") == deal
        assert mock_conn.fetchval.await_args.args[1] == "d1"

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_pool, mock_conn):
        mock_conn.fetchval.return_value = None
        registry = PostgresDealRegistry(pool=mock_pool)
        assert await registry.get("nope") is None

    @pytest.mark.asyncio
    async def test_list_by_dataset(self, mock_pool, mock_conn):
        a, b = make_deal("a"), make_deal("b")
        mock_conn.fetch.return_value = [{"record": json.dumps(a.to_dict())}, {"record": b.to_dict()}]
        registry = PostgresDealRegistry(pool=mock_pool)
        assert await registry.list_by_dataset("ds") == [a, b]


# ============================================================================
# Migration
# ============================================================================


def _load_migration():
    spec = importlib.util.spec_from_file_location("migration_001", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestMigration:
    """The migration runs the registry schema inside a transaction."""

    def test_metadata(self):
        migration = _load_migration()
        assert migration.version == "001"
        assert migration.description == "deal_registry"

    @pytest.mark.asyncio
    async def test_up(self, mock_conn):
        migration = _load_migration()
        await migration.up(mock_conn)
        mock_conn.transaction.assert_called_once()
        assert mock_conn.execute.await_count == len(SCHEMA_STATEMENTS)

    @pytest.mark.asyncio
    async def test_down_drops_audit_first(self, mock_conn):
        migration = _load_migration()
        await migration.down(mock_conn)
        statements = [c.args[0] for c in mock_conn.execute.await_args_list]
        assert statements == ["DROP TABLE IF EXISTS deal_audit", "DROP TABLE IF EXISTS deals"]

    @pytest.mark.asyncio
    async def test_failed_step(self, mock_conn):
        mock_conn.execute.side_effect = Exception("syntax error")
        migration = _load_migration()
        with pytest.raises(RuntimeError, match="Migration 001"):
            await migration.up(mock_conn)
