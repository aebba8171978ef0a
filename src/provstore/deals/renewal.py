"""Renewal planning across many deals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from ..core import defaults
from .models import LIVE_STATES, Deal


@dataclass
class RenewalPlan:
    renew_soon: list[dict]
    renew_later: list[dict]
    expired: list[dict]

    def to_dict(self) -> dict:
        return {"renew_soon": self.renew_soon, "renew_later": self.renew_later, "expired": self.expired}


def renewal_threshold(duration_epochs: int) -> timedelta:
    """How long before expiry a deal should be renewed: a quarter of its term, at most a week."""
    quarter = duration_epochs * defaults.EPOCH_SECONDS / 4
    return timedelta(seconds=min(quarter, 7 * 24 * 3600))


def needs_renewal(deal: Deal, now: datetime) -> bool:
    if deal.state not in LIVE_STATES or deal.expires_at is None:
        return False
    return deal.expires_at - now <= renewal_threshold(deal.params.duration_epochs)


def renewal_plan(
    deals: Iterable[Deal],
    now: datetime,
    lookahead: timedelta = timedelta(seconds=defaults.RENEWAL_LOOKAHEAD_SECONDS),
) -> RenewalPlan:
    """Sort live deals into renew-soon (inside ``lookahead``), renew-later and expired.

    Each entry carries a ``renew_by`` time that leaves a quarter of the
    lookahead as margin before expiry.
    """
    plan = RenewalPlan([], [], [])
    margin = lookahead / 4
    for deal in deals:
        if deal.expires_at is None or deal.state not in LIVE_STATES:
            continue
        remaining = deal.expires_at - now
        entry = {
            "deal_id": deal.deal_id,
            "dataset_id": deal.dataset_id,
            "provider": deal.provider,
            "expires_at": deal.expires_at.isoformat(),
            "renew_by": (deal.expires_at - margin).isoformat(),
            "remaining_seconds": int(remaining.total_seconds()),
        }
        if remaining <= timedelta(0):
            plan.expired.append(entry)
        elif remaining <= lookahead:
            plan.renew_soon.append(entry)
        else:
            plan.renew_later.append(entry)
    for bucket in (plan.renew_soon, plan.renew_later, plan.expired):
        bucket.sort(key=lambda e: e["expires_at"])
    return plan
