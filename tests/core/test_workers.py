"""Tests for the CPU worker pool and logging setup."""

from __future__ import annotations

import asyncio
import json
import logging
import threading

import pytest

from provstore.core.log import JsonFormatter, configure_logging, short_cid
from provstore.core.workers import WorkerPool


def _thread_name(_: int) -> str:
    return threading.current_thread().name


def _boom() -> None:
    raise ValueError("boom")


class TestWorkerPool:
    """Blocking work runs off the event loop."""

    @pytest.mark.asyncio
    async def test_runs_on_worker_threads(self):
        with WorkerPool(2) as pool:
            names = await asyncio.gather(*(pool.run(_thread_name, i) for i in range(4)))
        assert all(n.startswith("provstore-worker") for n in names)

    @pytest.mark.asyncio
    async def test_errors_propagate_and_are_counted(self):
        pool = WorkerPool(1)
        try:
            with pytest.raises(ValueError):
                await pool.run(_boom)
            assert await pool.run(sum, [1, 2, 3]) == 6
            stats = pool.get_stats()
            assert stats["submitted"] == 2
            assert stats["failed"] == 1
            assert stats["completed"] == 1
        finally:
            pool.shutdown()

    @pytest.mark.asyncio
    async def test_restart_after_shutdown(self):
        pool = WorkerPool(1)
        assert await pool.run(len, b"abc") == 3
        pool.shutdown()
        assert await pool.run(len, b"abcd") == 4
        pool.shutdown()

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"kind": "green"}])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            WorkerPool(**kwargs)


class TestLogging:
    """Handler installation and formatting."""

    def test_configure_is_idempotent(self):
        logger = configure_logging("DEBUG")
        configure_logging("INFO")
        named = [h for h in logger.handlers if h.get_name() == "provstore-stream"]
        assert len(named) == 1
        assert logger.level == logging.INFO

    def test_json_formatter_includes_context(self):
        record = logging.LogRecord("provstore.deals", logging.INFO, __file__, 1, "moved %s", ("on",), None)
        record.deal_id = "d1"
        record.state = "active"
        entry = json.loads(JsonFormatter().format(record))
        assert entry["msg"] == "moved on"
        assert entry["deal_id"] == "d1"
        assert entry["state"] == "active"
        assert "provider" not in entry

    def test_short_cid(self):
        assert short_cid("bafy") == "bafy"
        assert short_cid("b" * 40) == "b" * 16 + "..."
