"""Shared fixtures: a fast config, a provider catalog and a simulated network."""

from __future__ import annotations

import os
import random
from datetime import UTC, datetime, timedelta

import pytest

from provstore.core.config import ProvstoreConfig, clear_config_cache
from provstore.core.workers import WorkerPool
from provstore.deals import DealManager, InMemoryDealRegistry, StorageService
from provstore.optimizer import StorageProvider
from provstore.transport import SimulatedLedger, SimulatedProviderNetwork


class FakeClock:
    """Settable UTC clock for expiry and verification timing."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PROVSTORE_* variables from the host out of every test."""
    for name in list(os.environ):
        if name.startswith("PROVSTORE_"):
            monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def fast_config() -> ProvstoreConfig:
    return ProvstoreConfig(
        chunk_size=1024,
        fanout=4,
        inclusion_timeout=2.0,
        poll_base_delay=0.001,
        poll_max_delay=0.005,
        max_status_polls=10,
        call_timeout=2.0,
        retry_attempts=3,
        retry_base_delay=0.001,
        retry_max_delay=0.005,
        worker_pool_size=2,
        challenge_count=4,
    )


@pytest.fixture
def catalog() -> list[StorageProvider]:
    return [
        StorageProvider("f01001", "sim://f01001", 1_000_000, 100_000, region="eu", reliability=0.99),
        StorageProvider("f01002", "sim://f01002", 1_000_000, 100_000, region="eu", reliability=0.99),
        StorageProvider("f01003", "sim://f01003", 1_000_000, None, region="us", reliability=0.99),
        StorageProvider("f01004", "sim://f01004", 3_000_000, 300_000, region="asia", reliability=0.90),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger()


@pytest.fixture
def network(catalog) -> SimulatedProviderNetwork:
    return SimulatedProviderNetwork.from_catalog(catalog)


@pytest.fixture
def registry() -> InMemoryDealRegistry:
    return InMemoryDealRegistry()


@pytest.fixture
def manager(ledger, network, registry, fast_config, clock):
    pool = WorkerPool(2)
    mgr = DealManager(
        ledger,
        network,
        registry,
        config=fast_config,
        clock=clock,
        pool=pool,
        rng=random.Random(7),
    )
    yield mgr
    pool.shutdown(wait=True)


@pytest.fixture
def service(manager, catalog) -> StorageService:
    return StorageService(manager, catalog)


@pytest.fixture
def dataset_dir(tmp_path):
    """A small directory tree with nested files."""
    root = tmp_path / "dataset"
    (root / "docs").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha " * 500)
    (root / "docs" / "b.bin").write_bytes(bytes(range(256)) * 40)
    (root / "docs" / "empty.txt").write_bytes(b"")
    return root
