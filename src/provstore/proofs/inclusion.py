"""Inclusion proofs: a block's path through the archive DAG up to a root.

The proof carries the target block and every ancestor block. The verifier
re-hashes each block, checks that it links to the one below, and compares
the CID it ends at with the expected root.
"""

from __future__ import annotations

import hmac
import logging

from ..addressing.cid import DAG_CBOR, ContentId, make_cid
from ..addressing import dagcbor
from ..archive.models import Archive
from ..core.exceptions import CorruptArchive, MalformedInput, NotFound
from .models import Proof, ProofKind

logger = logging.getLogger(__name__)


def generate_inclusion_proof(archive: Archive, target_cid: ContentId | str) -> Proof:
    """Build the inclusion proof for ``target_cid``.

    Raises NotFound if the block is not in the archive.
    """
    if isinstance(target_cid, str):
        target_cid = ContentId.parse(target_cid)
    leaf = archive.get(target_cid)
    if leaf is None:
        raise NotFound(f"Block {target_cid} is not in the archive", {"cid": str(target_cid)})

    parents = archive.walk(strict=False)
    if target_cid not in parents:
        raise CorruptArchive(f"Block {target_cid} is not reachable from any root", {"cid": str(target_cid)})

    path: list[bytes] = []
    cursor = parents[target_cid]
    root = target_cid
    while cursor is not None:
        block = archive.get(cursor)
        if block is None:
            raise CorruptArchive(f"Ancestor block {cursor} is missing", {"cid": str(cursor)})
        path.append(block)
        root = cursor
        cursor = parents[cursor]

    return Proof(
        kind=ProofKind.INCLUSION,
        piece_cid=str(root),
        challenge=target_cid.to_bytes(),
        merkle_path=path,
        leaf_value=leaf,
    )


def _recompute_root(proof: Proof) -> ContentId:
    child = ContentId.decode(proof.challenge)
    if not child.matches(proof.leaf_value):
        raise MalformedInput("Leaf bytes do not match the target CID")
    for block in proof.merkle_path:
        parent = make_cid(block, DAG_CBOR)
        links = set(dagcbor.iter_links(dagcbor.decode(block)))
        if child not in links:
            raise MalformedInput(f"Block {parent} does not link to {child}")
        child = parent
    return child


def verify_inclusion_proof(proof: Proof, expected_root: ContentId | str) -> bool:
    """Recompute the path hash by hash and compare the result to ``expected_root``.

    Returns False for any malformed or altered proof. A signed proof must also
    carry a valid signature.
    """
    if proof.kind != ProofKind.INCLUSION:
        return False
    try:
        if isinstance(expected_root, str):
            expected_root = ContentId.parse(expected_root)
        computed = _recompute_root(proof)
    except MalformedInput as e:
        logger.debug(f"Inclusion proof rejected: {e.message}")
        return False
    if proof.piece_cid != str(computed):
        return False
    if not hmac.compare_digest(computed.to_bytes(), expected_root.to_bytes()):
        return False
    return proof.signature_valid()
