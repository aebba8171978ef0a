"""Migration 001: deal registry tables.

Creates ``deals`` (one JSONB record per deal, indexed by dataset and state)
and ``deal_audit`` (one row per recorded transition). The statements are the
ones PostgresDealRegistry.ensure_schema runs, so either path yields the same
schema.
"""

from provstore.deals.registry import SCHEMA_STATEMENTS

version = "001"
description = "deal_registry"

_DOWN_STATEMENTS = [
    ("drop table deal_audit", "DROP TABLE IF EXISTS deal_audit"),
    ("drop table deals", "DROP TABLE IF EXISTS deals"),
]


async def _run(conn, statements) -> None:
    for step, sql in statements:
        try:
            await conn.execute(sql)
        except Exception as exc:
            raise RuntimeError(f"Migration {version} step '{step}' failed: {exc}") from exc


async def up(conn) -> None:
    """Create the deal registry tables."""
    async with conn.transaction():
        await _run(conn, SCHEMA_STATEMENTS)


async def down(conn) -> None:
    """Drop the deal registry tables and every recorded deal with them."""
    async with conn.transaction():
        await _run(conn, _DOWN_STATEMENTS)
