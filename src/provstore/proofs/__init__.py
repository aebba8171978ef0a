"""Proof engine: inclusion proofs, possession proofs and signatures."""

from .inclusion import generate_inclusion_proof, verify_inclusion_proof
from .models import PathSample, Proof, ProofKind
from .possession import (
    PossessionProver,
    challenged_indices,
    generate_possession_proof,
    verify_possession_proof,
)
from .signing import generate_keypair, public_key_bytes, sign_data, verify_signature

__all__ = [
    "Proof",
    "ProofKind",
    "PathSample",
    "generate_inclusion_proof",
    "verify_inclusion_proof",
    "generate_possession_proof",
    "verify_possession_proof",
    "challenged_indices",
    "PossessionProver",
    "sign_data",
    "verify_signature",
    "generate_keypair",
    "public_key_bytes",
]
