"""Chunking plans for large payloads.

Two decisions are made here. First, how to cut a payload into DAG chunks:
a proof for one chunk carries the chunk plus one node per tree level, and
each node is ``arity`` links wide, so small chunks and narrow trees give
short proofs but many chunks, each paying a fixed framing cost in transfer.
The plan minimizes the sum of those two costs over a fixed grid of chunk
sizes and arities. Second, payloads above the sector threshold are split
into several pieces so each fits a provider sector.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence

from ..core import defaults
from ..core.exceptions import MalformedInput
from .models import StorageProvider

CHUNK_SIZES = (256 * 1024, 512 * 1024, 1 << 20, 2 << 20)
ARITIES = (2, 4, 8, 16, 32, 64, 128, defaults.DEFAULT_FANOUT)

LINK_BYTES = 48  # encoded link: CID, Tsize and map framing
SECTION_OVERHEAD = 40  # CAR section framing plus CID, per chunk
PROOFS_PER_TRANSFER = 64  # verifications expected over the life of one upload


@dataclass(frozen=True)
class ChunkingPlan:
    chunk_size: int
    chunk_count: int
    tree_arity: int
    depth: int
    piece_size: int
    piece_count: int

    @property
    def needs_splitting(self) -> bool:
        return self.piece_count > 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _depth(chunk_count: int, arity: int) -> int:
    depth = 0
    span = 1
    while span < chunk_count:
        span *= arity
        depth += 1
    return depth


def _piece_split(size_bytes: int) -> tuple[int, int]:
    """Piece size and count for a payload."""
    if size_bytes <= defaults.CHUNKING_THRESHOLD:
        return size_bytes, 1
    if size_bytes <= 512 * defaults.GIB:
        piece = 16 * defaults.GIB
    elif size_bytes <= defaults.TIB:
        piece = 32 * defaults.GIB
    else:
        piece = 64 * defaults.GIB
    return piece, -(-size_bytes // piece)


def chunking_cost(size_bytes: int, chunk_size: int, arity: int) -> int:
    """Relative cost of a chunk size and arity: proof bytes plus transfer overhead."""
    chunk_count = max(1, -(-size_bytes // chunk_size))
    depth = _depth(chunk_count, arity)
    proof_bytes = min(chunk_size, size_bytes) + depth * arity * LINK_BYTES
    transfer_overhead = chunk_count * (SECTION_OVERHEAD + LINK_BYTES)
    return proof_bytes * PROOFS_PER_TRANSFER + transfer_overhead


def chunking_strategy(size_bytes: int) -> ChunkingPlan:
    """Chunk size, chunk count and tree arity for ``size_bytes``.

    Payloads that fit in one tree of default chunks use the defaults;
    larger ones get the cheapest point of the grid.
    """
    if size_bytes <= 0:
        raise MalformedInput("size_bytes must be positive")
    piece_size, piece_count = _piece_split(size_bytes)

    threshold = defaults.DEFAULT_CHUNK_SIZE * defaults.DEFAULT_FANOUT
    if size_bytes <= threshold:
        chunk_size, arity = defaults.DEFAULT_CHUNK_SIZE, defaults.DEFAULT_FANOUT
    else:
        chunk_size, arity = min(
            ((c, a) for c in CHUNK_SIZES for a in ARITIES),
            key=lambda ca: (chunking_cost(size_bytes, ca[0], ca[1]), -ca[0], ca[1]),
        )

    chunk_count = max(1, -(-size_bytes // chunk_size))
    return ChunkingPlan(
        chunk_size=chunk_size,
        chunk_count=chunk_count,
        tree_arity=arity,
        depth=_depth(chunk_count, arity),
        piece_size=piece_size,
        piece_count=piece_count,
    )


def distribute_pieces(plan: ChunkingPlan, providers: Sequence[StorageProvider]) -> dict[str, list[int]]:
    """Assign piece indices to providers round-robin."""
    if not providers:
        raise MalformedInput("No providers to distribute pieces over")
    assignment: dict[str, list[int]] = {p.provider_id: [] for p in providers}
    for index in range(plan.piece_count):
        assignment[providers[index % len(providers)].provider_id].append(index)
    return assignment
