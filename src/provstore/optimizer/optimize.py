"""Choosing providers, replica count and duration under a cost budget.

Total cost is ``sum(price_per_epoch_i) * duration`` where each provider's
per-epoch price is its per-GiB price scaled to the padded piece size. For a
fixed duration and replica count the cheapest feasible selection is simply
the ``k`` cheapest eligible providers, so the search over provider subsets
is exact without enumerating them. Ties at equal price go to the more
reliable provider, then to one whose declared region is not yet used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from ..archive.piece import padded_piece_size
from ..core.config import get_config
from ..core.exceptions import BudgetInfeasible, MalformedInput
from .costs import atto_to_fil, fil_to_atto, price_per_epoch
from .models import DealParameters, StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedProvider:
    """An eligible provider with its price for a specific piece."""

    provider: StorageProvider
    price_per_epoch: int

    @property
    def sort_key(self) -> tuple:
        return (self.price_per_epoch, -self.provider.reliability, self.provider.provider_id)


def rank_providers(
    catalog: Iterable[StorageProvider],
    padded_size: int,
    verified: bool = False,
) -> list[RankedProvider]:
    """Eligible providers for a piece, cheapest first, then most reliable."""
    ranked = [
        RankedProvider(p, price_per_epoch(p, padded_size, verified))
        for p in catalog
        if p.accepts(padded_size, verified)
    ]
    ranked.sort(key=lambda r: r.sort_key)
    return ranked


def select_providers(ranked: Sequence[RankedProvider], count: int) -> list[RankedProvider]:
    """Pick ``count`` providers of minimum total price.

    Within a group of equally priced, equally reliable providers, one in an
    unused region is preferred. Providers with no declared region never
    clash.
    """
    remaining = list(ranked)
    chosen: list[RankedProvider] = []
    used_regions: set[str] = set()
    for _ in range(min(count, len(remaining))):
        head = remaining[0]
        tier = [
            r
            for r in remaining
            if r.price_per_epoch == head.price_per_epoch and r.provider.reliability == head.provider.reliability
        ]
        pick = next((r for r in tier if not r.provider.region or r.provider.region not in used_regions), tier[0])
        chosen.append(pick)
        remaining.remove(pick)
        if pick.provider.region:
            used_regions.add(pick.provider.region)
    return chosen


def optimize(
    size_bytes: int,
    budget_fil: Decimal | int | float | str,
    min_replicas: int,
    provider_catalog: Iterable[StorageProvider],
    *,
    durations: Iterable[int] | None = None,
    max_replicas: int | None = None,
    verified: bool = False,
    dataset_id: str = "",
    piece_cid: str = "",
    padded_size: int | None = None,
) -> list[DealParameters]:
    """Return one DealParameters per replica for the cheapest feasible plan.

    Searches every candidate duration and replica count between
    ``min_replicas`` and ``max_replicas``. The cheapest plan within budget
    wins; equal-cost plans prefer more replicas, then longer duration.
    Raises BudgetInfeasible rather than returning fewer than
    ``min_replicas`` deals or a plan over budget.
    """
    config = get_config()
    if size_bytes <= 0:
        raise MalformedInput("size_bytes must be positive")
    if min_replicas < 1:
        raise MalformedInput("min_replicas must be at least 1")
    max_replicas = max_replicas or min_replicas
    if max_replicas < min_replicas:
        raise MalformedInput("max_replicas must not be below min_replicas")
    candidates = sorted(set(durations or [config.deal_duration_epochs]))
    for duration in candidates:
        if duration < config.min_deal_duration_epochs:
            raise MalformedInput(
                f"Duration {duration} is below the minimum of {config.min_deal_duration_epochs} epochs"
            )
        if duration > config.max_deal_duration_epochs:
            raise MalformedInput(
                f"Duration {duration} is above the maximum of {config.max_deal_duration_epochs} epochs"
            )

    padded = padded_size or padded_piece_size(size_bytes)
    budget = fil_to_atto(budget_fil)
    ranked = rank_providers(list(provider_catalog), padded, verified)
    if len(ranked) < min_replicas:
        raise BudgetInfeasible(
            f"Only {len(ranked)} eligible providers for {min_replicas} replicas",
            {"eligible": len(ranked), "min_replicas": min_replicas, "padded_size": padded},
        )

    best: tuple[tuple, int, list[RankedProvider]] | None = None
    cheapest_seen: int | None = None
    for duration in candidates:
        for replicas in range(min_replicas, min(max_replicas, len(ranked)) + 1):
            chosen = select_providers(ranked, replicas)
            cost = sum(r.price_per_epoch for r in chosen) * duration
            if cheapest_seen is None or cost < cheapest_seen:
                cheapest_seen = cost
            if cost > budget:
                continue
            key = (cost, -replicas, -duration)
            if best is None or key < best[0]:
                best = (key, duration, chosen)

    if best is None:
        raise BudgetInfeasible(
            f"Cheapest plan costs {atto_to_fil(cheapest_seen or 0)} FIL, budget is {atto_to_fil(budget)} FIL",
            {"cheapest": str(cheapest_seen), "budget": str(budget), "min_replicas": min_replicas},
        )

    (total, _, _), duration, chosen = best
    logger.info(
        f"Selected {len(chosen)} providers for {size_bytes} bytes over {duration} epochs, "
        f"total {atto_to_fil(total)} FIL"
    )
    return [
        DealParameters(
            dataset_id=dataset_id,
            piece_cid=piece_cid,
            raw_size=size_bytes,
            padded_size=padded,
            provider=r.provider.provider_id,
            provider_address=r.provider.address,
            price_per_epoch=r.price_per_epoch,
            duration_epochs=duration,
            verified=verified,
            replication_factor=len(chosen),
            replica_index=i,
        )
        for i, r in enumerate(chosen)
    ]


def plan_cost(plan: Sequence[DealParameters]) -> int:
    """Total attoFIL of a plan."""
    return sum(p.total_cost for p in plan)


def recommend_providers(
    catalog: Iterable[StorageProvider],
    size_bytes: int,
    duration_epochs: int | None = None,
    verified: bool = False,
    limit: int = 5,
) -> list[dict]:
    """Ranked provider summaries with estimated total cost, for display."""
    duration = duration_epochs or get_config().deal_duration_epochs
    padded = padded_piece_size(size_bytes)
    return [
        {
            "provider": r.provider.provider_id,
            "region": r.provider.region,
            "reliability": r.provider.reliability,
            "price_per_epoch": r.price_per_epoch,
            "estimated_cost": r.price_per_epoch * duration,
            "estimated_cost_fil": str(atto_to_fil(r.price_per_epoch * duration)),
        }
        for r in rank_providers(catalog, padded, verified)[:limit]
    ]
