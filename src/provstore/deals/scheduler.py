"""Background jobs: periodic possession checks and expiry sweeps."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from ..core.exceptions import ProvstoreError
from .manager import DealManager
from .models import LIVE_STATES

logger = logging.getLogger(__name__)


class DealScheduler:
    """Runs verification and expiry checks for every deal the manager knows.

    A deal is verified when it was never verified or its last success is
    older than ``verify_interval``. The sweep runs every ``tick`` seconds.
    """

    def __init__(self, manager: DealManager, tick: float = 60.0):
        self.manager = manager
        self.tick = tick
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stats = {"sweeps": 0, "verified": 0, "verify_errors": 0, "expiry_checks": 0}

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks.append(asyncio.create_task(self._sweep_loop()))
        logger.info(f"Deal scheduler started (tick {self.tick}s)")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Deal scheduler stopped")

    def _due_for_verification(self, deal) -> bool:
        if deal.state not in LIVE_STATES:
            return False
        if deal.last_verified_at is None:
            return True
        interval = timedelta(seconds=self.manager.config.verify_interval)
        return self.manager.now() - deal.last_verified_at >= interval

    async def sweep(self) -> dict[str, Any]:
        """One pass over all known deals. Returns counts for this pass."""
        summary = {"checked": 0, "verified": 0, "failed_verifications": 0, "errors": 0}
        for deal_id in self.manager.known_deals:
            try:
                deal = await self.manager.check_expiry(deal_id)
                self._stats["expiry_checks"] += 1
                summary["checked"] += 1
                if self._due_for_verification(deal):
                    result = await self.manager.verify_deal(deal_id)
                    if result.verified:
                        summary["verified"] += 1
                        self._stats["verified"] += 1
                    else:
                        summary["failed_verifications"] += 1
            except ProvstoreError as e:
                summary["errors"] += 1
                self._stats["verify_errors"] += 1
                logger.warning(f"Scheduled check of deal {deal_id} failed: {e}")
            except Exception:
                summary["errors"] += 1
                self._stats["verify_errors"] += 1
                logger.exception(f"Unexpected error checking deal {deal_id}")
        self._stats["sweeps"] += 1
        return summary

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
                await asyncio.sleep(self.tick)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Deal sweep failed")
                await asyncio.sleep(self.tick)

    def get_stats(self) -> dict[str, Any]:
        return dict(self._stats)
