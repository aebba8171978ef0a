"""Proof data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .signing import canonical_json, sign_data, verify_signature, public_key_bytes


class ProofKind(StrEnum):
    INCLUSION = "inclusion"
    POSSESSION = "possession"


@dataclass
class PathSample:
    """One challenged leaf of a piece and its sibling path to the piece root."""

    index: int
    leaf_value: bytes
    merkle_path: list[bytes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "leaf_value": self.leaf_value.hex(),
            "merkle_path": [h.hex() for h in self.merkle_path],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PathSample:
        return cls(
            index=int(d["index"]),
            leaf_value=bytes.fromhex(d["leaf_value"]),
            merkle_path=[bytes.fromhex(h) for h in d["merkle_path"]],
        )


@dataclass
class Proof:
    """A short-lived proof produced on demand and consumed by one verification.

    Inclusion proofs: ``piece_cid`` is the archive root, ``challenge`` is the
    binary target CID, ``leaf_value`` the target block and ``merkle_path`` the
    encoded ancestor blocks from the target's parent up to the root.

    Possession proofs: ``piece_cid`` is the piece CID, ``challenge`` the seed,
    and ``samples`` carries one leaf plus sibling path per challenged index.
    """

    kind: ProofKind
    piece_cid: str
    challenge: bytes
    merkle_path: list[bytes] = field(default_factory=list)
    leaf_value: bytes = b""
    samples: list[PathSample] = field(default_factory=list)
    deal_id: str | None = None
    signature: bytes | None = None
    signer: bytes | None = None

    def body(self) -> dict[str, Any]:
        """Everything except the signature fields."""
        return {
            "kind": self.kind.value,
            "piece_cid": self.piece_cid,
            "challenge": self.challenge.hex(),
            "merkle_path": [p.hex() for p in self.merkle_path],
            "leaf_value": self.leaf_value.hex(),
            "samples": [s.to_dict() for s in self.samples],
            "deal_id": self.deal_id,
        }

    def signing_payload(self) -> bytes:
        return canonical_json(self.body())

    def sign(self, key) -> Proof:
        self.signature = sign_data(self.signing_payload(), key)
        self.signer = public_key_bytes(key)
        return self

    def signature_valid(self) -> bool:
        """True if unsigned, else whether the attached signature checks out."""
        if self.signature is None and self.signer is None:
            return True
        if self.signature is None or self.signer is None:
            return False
        return verify_signature(self.signing_payload(), self.signature, self.signer)

    def to_dict(self) -> dict[str, Any]:
        d = self.body()
        d["signature"] = self.signature.hex() if self.signature else None
        d["signer"] = self.signer.hex() if self.signer else None
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Proof:
        return cls(
            kind=ProofKind(d["kind"]),
            piece_cid=d["piece_cid"],
            challenge=bytes.fromhex(d["challenge"]),
            merkle_path=[bytes.fromhex(p) for p in d.get("merkle_path", [])],
            leaf_value=bytes.fromhex(d.get("leaf_value", "")),
            samples=[PathSample.from_dict(s) for s in d.get("samples", [])],
            deal_id=d.get("deal_id"),
            signature=bytes.fromhex(d["signature"]) if d.get("signature") else None,
            signer=bytes.fromhex(d["signer"]) if d.get("signer") else None,
        )
