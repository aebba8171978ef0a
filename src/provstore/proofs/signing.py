"""Ed25519 signing for proofs and ledger payloads.

Private keys are caller-supplied and used only for the duration of the call;
nothing here logs, caches or persists key material.
"""

from __future__ import annotations

import json
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

SIGNATURE_SIZE = 64
PUBLIC_KEY_SIZE = 32


def generate_keypair() -> tuple[Ed25519PrivateKey, bytes]:
    """New signing key and its raw 32-byte public key."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key().public_bytes_raw()


def load_private_key(key: Ed25519PrivateKey | bytes) -> Ed25519PrivateKey:
    if isinstance(key, Ed25519PrivateKey):
        return key
    if len(key) != 32:
        raise ValueError("Ed25519 private key must be 32 raw bytes")
    return Ed25519PrivateKey.from_private_bytes(key)


def public_key_bytes(key: Ed25519PrivateKey | bytes) -> bytes:
    return load_private_key(key).public_key().public_bytes_raw()


def sign_data(data: bytes, key: Ed25519PrivateKey | bytes) -> bytes:
    """Sign ``data`` and return the 64-byte signature."""
    return load_private_key(key).sign(data)


def verify_signature(data: bytes, signature: bytes, public_key: Ed25519PublicKey | bytes) -> bool:
    """True only if ``signature`` is a valid signature of ``data`` by ``public_key``."""
    try:
        if not isinstance(public_key, Ed25519PublicKey):
            if len(public_key) != PUBLIC_KEY_SIZE:
                return False
            public_key = Ed25519PublicKey.from_public_bytes(public_key)
        if len(signature) != SIGNATURE_SIZE:
            return False
        public_key.verify(signature, data)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False


def canonical_json(obj: Any) -> bytes:
    """Deterministic JSON bytes used as the signed message."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
