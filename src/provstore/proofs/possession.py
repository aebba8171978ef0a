"""Possession proofs: challenge/response over the piece commitment tree.

The challenge seed (taken from an unpredictable source such as a ledger
beacon) and the piece CID determine which leaves are challenged. The prover
answers with those leaves and their sibling paths; the verifier derives the
same indices on its own and checks every path against the recorded
commitment. Answering needs the actual piece bytes at challenge time.
"""

from __future__ import annotations

import hashlib
import logging

from ..addressing.cid import ContentId
from ..archive.piece import LEAF_SIZE, PAD_MARKER, PieceCommitment, PieceTree, verify_piece_path
from ..core import defaults
from ..core.exceptions import MalformedInput, NotFound
from .models import PathSample, Proof, ProofKind

logger = logging.getLogger(__name__)


def challenged_indices(piece_cid: ContentId | str, seed: bytes, raw_size: int, count: int) -> list[int]:
    """Leaf indices selected by ``seed``.

    Indices are drawn from the leaves that hold archive bytes; the zero fill
    beyond them is answerable without the data and is never challenged.
    """
    if isinstance(piece_cid, str):
        piece_cid = ContentId.parse(piece_cid)
    if count < 1:
        raise MalformedInput("Challenge count must be at least 1")
    data_leaves = -(-(raw_size + len(PAD_MARKER)) // LEAF_SIZE)
    base = hashlib.sha256(piece_cid.to_bytes() + seed).digest()
    indices = []
    for i in range(count):
        draw = hashlib.sha256(base + i.to_bytes(4, "big")).digest()
        indices.append(int.from_bytes(draw[:8], "big") % data_leaves)
    return indices


def generate_possession_proof(
    piece_cid: ContentId | str,
    challenge_seed: bytes,
    piece_data: bytes | PieceTree,
    count: int = defaults.CHALLENGE_COUNT,
    sector_size_hint: int = 0,
) -> Proof:
    """Answer a possession challenge for ``piece_cid`` from the piece bytes.

    Deterministic for a given ``(piece_cid, challenge_seed)``. Raises NotFound
    if the supplied data does not commit to ``piece_cid``.
    """
    tree = piece_data if isinstance(piece_data, PieceTree) else PieceTree.build(piece_data, sector_size_hint)
    commitment = tree.commitment()
    if isinstance(piece_cid, str):
        piece_cid = ContentId.parse(piece_cid)
    if commitment.cid != piece_cid:
        raise NotFound(f"Held data does not match piece {piece_cid}", {"piece_cid": str(piece_cid)})

    samples = [
        PathSample(index=i, leaf_value=tree.leaf(i), merkle_path=tree.path(i))
        for i in challenged_indices(piece_cid, challenge_seed, commitment.raw_size, count)
    ]
    return Proof(
        kind=ProofKind.POSSESSION,
        piece_cid=str(piece_cid),
        challenge=challenge_seed,
        samples=samples,
    )


def verify_possession_proof(
    proof: Proof,
    commitment: PieceCommitment,
    challenge_seed: bytes,
    count: int = defaults.CHALLENGE_COUNT,
) -> bool:
    """Check a possession proof against the commitment recorded for the deal.

    The verifier re-derives the challenged indices from its own seed, so a
    proof built for a different challenge never verifies.
    """
    if proof.kind != ProofKind.POSSESSION:
        return False
    if proof.piece_cid != str(commitment.cid) or proof.challenge != challenge_seed:
        return False
    expected = challenged_indices(commitment.cid, challenge_seed, commitment.raw_size, count)
    if [s.index for s in proof.samples] != expected:
        return False
    for sample in proof.samples:
        if len(sample.merkle_path) != commitment.depth:
            return False
        if not verify_piece_path(sample.leaf_value, sample.index, sample.merkle_path, commitment.root):
            logger.debug(f"Possession sample {sample.index} failed for {commitment.cid}")
            return False
    return proof.signature_valid()


class PossessionProver:
    """Prover side held by whoever stores pieces (used by simulated providers)."""

    def __init__(self):
        self._trees: dict[ContentId, PieceTree] = {}

    def store(self, data: bytes, sector_size_hint: int = 0) -> PieceCommitment:
        tree = PieceTree.build(data, sector_size_hint)
        commitment = tree.commitment()
        self._trees[commitment.cid] = tree
        return commitment

    def drop(self, piece_cid: ContentId) -> None:
        self._trees.pop(piece_cid, None)

    def holds(self, piece_cid: ContentId) -> bool:
        return piece_cid in self._trees

    def data(self, piece_cid: ContentId) -> bytes:
        tree = self._trees.get(piece_cid)
        if tree is None:
            raise NotFound(f"Piece {piece_cid} not held", {"piece_cid": str(piece_cid)})
        return tree.data

    def prove(self, piece_cid: ContentId, challenge_seed: bytes, count: int = defaults.CHALLENGE_COUNT) -> Proof:
        tree = self._trees.get(piece_cid)
        if tree is None:
            raise NotFound(f"Piece {piece_cid} not held", {"piece_cid": str(piece_cid)})
        return generate_possession_proof(piece_cid, challenge_seed, tree, count)
