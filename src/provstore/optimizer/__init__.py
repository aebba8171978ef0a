"""Storage optimizer: provider selection, cost estimates and chunking plans."""

from .chunking import ChunkingPlan, chunking_strategy, distribute_pieces
from .costs import atto_to_fil, estimate_cost, fil_to_atto, format_fil, price_per_epoch
from .models import DealParameters, StorageProvider
from .optimize import (
    RankedProvider,
    optimize,
    plan_cost,
    rank_providers,
    recommend_providers,
    select_providers,
)

__all__ = [
    "StorageProvider",
    "DealParameters",
    "optimize",
    "plan_cost",
    "rank_providers",
    "select_providers",
    "recommend_providers",
    "RankedProvider",
    "chunking_strategy",
    "distribute_pieces",
    "ChunkingPlan",
    "estimate_cost",
    "price_per_epoch",
    "fil_to_atto",
    "atto_to_fil",
    "format_fil",
]
