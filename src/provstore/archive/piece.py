"""Piece commitments over padded archive bytes.

Scheme version 1:

* The archive bytes get a single ``0x80`` marker byte appended, then are
  zero-filled up to the padded piece size. The marker keeps ``x`` and
  ``x + b"\\x00"`` from committing to the same value.
* The padded size is the smallest power of two that is at least 128 bytes,
  at least the sector size hint and larger than the archive.
* The padded bytes are split into 32-byte leaves. A leaf node is
  ``sha256(leaf)`` and an inner node is ``sha256(left || right)``; every node
  has the top two bits of its last byte cleared (254-bit truncation).
* The commitment is the root of that binary tree. Subtrees that lie wholly
  in the zero fill are taken from a precomputed table instead of hashed.

The resulting piece CID uses the ``fil-commitment-unsealed`` codec with a
``sha2-256-trunc254-padded`` multihash.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from ..addressing.cid import (
    FIL_COMMITMENT_UNSEALED,
    SHA2_256_TRUNC254_PADDED,
    ContentId,
    Multihash,
)
from ..core import defaults
from ..core.exceptions import MalformedInput, PayloadTooLarge

logger = logging.getLogger(__name__)

SCHEME_VERSION = defaults.PIECE_SCHEME_VERSION
LEAF_SIZE = 32
PAD_MARKER = b"\x80"


def _trunc254(digest: bytes) -> bytes:
    return digest[:31] + bytes([digest[31] & 0x3F])


def hash_leaf(chunk: bytes) -> bytes:
    return _trunc254(hashlib.sha256(chunk).digest())


def hash_pair(left: bytes, right: bytes) -> bytes:
    return _trunc254(hashlib.sha256(left + right).digest())


@lru_cache(maxsize=64)
def zero_subtree(level: int) -> bytes:
    """Root of an all-zero subtree with ``2**level`` leaves."""
    if level == 0:
        return hash_leaf(bytes(LEAF_SIZE))
    below = zero_subtree(level - 1)
    return hash_pair(below, below)


def _next_pow2(n: int) -> int:
    return 1 << max(0, (n - 1).bit_length())


def padded_piece_size(raw_size: int, sector_size_hint: int = 0) -> int:
    """Padded size for ``raw_size`` archive bytes. Raises PayloadTooLarge above the maximum."""
    if raw_size < 0 or sector_size_hint < 0:
        raise MalformedInput("Sizes must be non-negative")
    size = max(defaults.MIN_PIECE_SIZE, _next_pow2(raw_size + len(PAD_MARKER)), _next_pow2(sector_size_hint))
    if size > defaults.MAX_PIECE_SIZE:
        raise PayloadTooLarge(
            f"Piece of {raw_size} bytes needs {size} bytes, above the {defaults.MAX_PIECE_SIZE} byte maximum",
            {"raw_size": raw_size, "padded_size": size, "max": defaults.MAX_PIECE_SIZE},
        )
    return size


@dataclass(frozen=True)
class PieceCommitment:
    """Commitment to one padded piece."""

    root: bytes
    raw_size: int
    padded_size: int
    version: int = SCHEME_VERSION

    @property
    def cid(self) -> ContentId:
        return ContentId(1, FIL_COMMITMENT_UNSEALED, Multihash(SHA2_256_TRUNC254_PADDED, self.root))

    @property
    def depth(self) -> int:
        return (self.padded_size // LEAF_SIZE).bit_length() - 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "piece_cid": str(self.cid),
            "root": self.root.hex(),
            "raw_size": self.raw_size,
            "padded_size": self.padded_size,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PieceCommitment:
        return cls(
            root=bytes.fromhex(d["root"]),
            raw_size=d["raw_size"],
            padded_size=d["padded_size"],
            version=d.get("version", SCHEME_VERSION),
        )


class PieceTree:
    """The binary Merkle tree behind a piece commitment.

    Only nodes covering the archive bytes are stored; anything to their right
    is a zero subtree.
    """

    def __init__(self, data: bytes, padded_size: int):
        self.data = bytes(data)
        self.padded_size = padded_size
        self.depth = (padded_size // LEAF_SIZE).bit_length() - 1
        payload = self.data + PAD_MARKER
        payload += bytes(-len(payload) % LEAF_SIZE)
        self._payload = payload
        leaves = [hash_leaf(payload[i : i + LEAF_SIZE]) for i in range(0, len(payload), LEAF_SIZE)]
        self.levels: list[list[bytes]] = [leaves]
        for level in range(self.depth):
            nodes = self.levels[-1]
            parents = []
            for i in range(0, len(nodes), 2):
                right = nodes[i + 1] if i + 1 < len(nodes) else zero_subtree(level)
                parents.append(hash_pair(nodes[i], right))
            self.levels.append(parents)

    @classmethod
    def build(cls, data: bytes, sector_size_hint: int = 0) -> PieceTree:
        return cls(data, padded_piece_size(len(data), sector_size_hint))

    @property
    def root(self) -> bytes:
        return self.levels[-1][0]

    @property
    def leaf_count(self) -> int:
        return self.padded_size // LEAF_SIZE

    @property
    def data_leaf_count(self) -> int:
        """Leaves that hold archive bytes or the pad marker."""
        return len(self.levels[0])

    def commitment(self) -> PieceCommitment:
        return PieceCommitment(root=self.root, raw_size=len(self.data), padded_size=self.padded_size)

    def leaf(self, index: int) -> bytes:
        """The 32 padded bytes at leaf ``index``."""
        if not 0 <= index < self.leaf_count:
            raise MalformedInput(f"Leaf index {index} out of range")
        start = index * LEAF_SIZE
        chunk = self._payload[start : start + LEAF_SIZE]
        return chunk if chunk else bytes(LEAF_SIZE)

    def path(self, index: int) -> list[bytes]:
        """Sibling hashes from leaf ``index`` up to (not including) the root."""
        if not 0 <= index < self.leaf_count:
            raise MalformedInput(f"Leaf index {index} out of range")
        siblings = []
        for level in range(self.depth):
            nodes = self.levels[level]
            sibling = index ^ 1
            siblings.append(nodes[sibling] if sibling < len(nodes) else zero_subtree(level))
            index >>= 1
        return siblings


def verify_piece_path(leaf: bytes, index: int, path: list[bytes], root: bytes) -> bool:
    """Recompute the root from a leaf and its sibling path."""
    if len(leaf) != LEAF_SIZE or index < 0 or index >= (1 << len(path)):
        return False
    node = hash_leaf(leaf)
    for sibling in path:
        node = hash_pair(sibling, node) if index & 1 else hash_pair(node, sibling)
        index >>= 1
    return hmac.compare_digest(node, root)


def piece_commitment(archive_bytes: bytes, sector_size_hint: int = 0) -> PieceCommitment:
    """Commit to ``archive_bytes`` padded up to the nearest sector size at least ``sector_size_hint``."""
    tree = PieceTree.build(archive_bytes, sector_size_hint)
    commitment = tree.commitment()
    logger.debug(f"Piece commitment {commitment.cid} over {len(archive_bytes)} -> {tree.padded_size} bytes")
    return commitment
