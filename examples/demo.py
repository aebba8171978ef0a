#!/usr/bin/env python3
"""provstore demo: store, verify and renew a dataset on a simulated network.

Nothing leaves the process: the ledger and the providers are the in-memory
simulations from ``provstore.transport.memory``. Providers really hold the
piece bytes, so the possession checks below are real.

Usage:
    pip install -e .
    python examples/demo.py
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import tempfile

from provstore.core.config import ProvstoreConfig
from provstore.core.log import configure_logging
from provstore.deals import DealManager, InMemoryDealRegistry, StorageService
from provstore.optimizer import StorageProvider, format_fil
from provstore.proofs.signing import generate_keypair
from provstore.transport import SimulatedLedger, SimulatedProviderNetwork

CATALOG = [
    StorageProvider("f01001", "sim://f01001", 2_000_000, region="eu", reliability=0.99),
    StorageProvider("f01002", "sim://f01002", 2_000_000, region="eu", reliability=0.99),
    StorageProvider("f01003", "sim://f01003", 2_000_000, region="us", reliability=0.99),
    StorageProvider("f01004", "sim://f01004", 5_000_000, region="asia", reliability=0.95),
]


def pp(label: str, data) -> None:
    """Pretty-print a result."""
    print(f"\n{'=' * 60}")
    print(f"  {label}")
    print(f"{'=' * 60}")
    print(json.dumps(data, indent=2, default=str))


async def run(workdir: str) -> int:
    for i in range(3):
        with open(os.path.join(workdir, f"part-{i}.bin"), "wb") as f:
            f.write(os.urandom(3 << 20))

    config = ProvstoreConfig(poll_base_delay=0.01, poll_max_delay=0.05, retry_base_delay=0.01)
    key, _ = generate_keypair()
    ledger = SimulatedLedger()
    network = SimulatedProviderNetwork.from_catalog(CATALOG)
    manager = DealManager(ledger, network, InMemoryDealRegistry(), signing_key=key, config=config)
    service = StorageService(manager, CATALOG)

    print("[1/4] Storing dataset with 2 replicas...")
    plan = await service.store_dataset(workdir, "1.0", 2, dataset_id="demo")
    pp("Plan", [{"provider": p.provider, "cost": format_fil(p.total_cost)} for p in plan])

    deals = await service.get_deals("demo")
    await manager.wait_for([d.deal_id for d in deals], timeout=30)

    print("[2/4] Deal states")
    for deal in await service.get_deals("demo"):
        print(f"  {deal.deal_id[:8]}  {deal.provider}  {deal.state.value}")

    print("[3/4] Verifying possession...")
    first = deals[0].deal_id
    result = await service.verify_deal(first)
    pp("Verification", {"verified": result.verified, "samples": len(result.proof.samples) if result.proof else 0})

    print("[4/4] Renewing and retrieving...")
    renewed = await service.renew_deal(first, config.deal_duration_epochs)
    data = await service.retrieve_dataset(first, "part-1.bin")
    pp("Renewal", {"state": renewed.state.value, "expires_at": renewed.expires_at, "retrieved_bytes": len(data)})

    pp("Manager stats", manager.get_stats())
    await manager.stop()
    return 0


def main() -> int:
    configure_logging("WARNING")
    with tempfile.TemporaryDirectory() as workdir:
        return asyncio.run(run(workdir))


if __name__ == "__main__":
    sys.exit(main())
