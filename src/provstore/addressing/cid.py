"""Content identifiers (CIDs) and the multiformats pieces they are built from.

A CID is ``<version><codec><multihash>``, each field an unsigned varint except
the multihash digest itself. Version 1 CIDs render as lowercase base32 with a
``b`` multibase prefix; version 0 CIDs (bare sha2-256 dag-pb multihashes)
render as base58btc and are accepted on input only.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import BinaryIO

import base58

from ..core.exceptions import MalformedInput

# Multicodec codes
RAW = 0x55
DAG_PB = 0x70
DAG_CBOR = 0x71
FIL_COMMITMENT_UNSEALED = 0xF101

# Multihash codes
SHA2_256 = 0x12
SHA2_256_TRUNC254_PADDED = 0x1012

CODEC_NAMES = {
    RAW: "raw",
    DAG_PB: "dag-pb",
    DAG_CBOR: "dag-cbor",
    FIL_COMMITMENT_UNSEALED: "fil-commitment-unsealed",
}

_MAX_VARINT_BYTES = 9


# =============================================================================
# VARINTS
# =============================================================================


def encode_varint(value: int) -> bytes:
    """Encode an unsigned integer as a LEB128 varint."""
    if value < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buf: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint at ``offset``. Returns ``(value, next_offset)``."""
    value = 0
    shift = 0
    for i in range(_MAX_VARINT_BYTES):
        pos = offset + i
        if pos >= len(buf):
            raise MalformedInput("Truncated varint", {"offset": offset})
        byte = buf[pos]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if byte == 0 and i > 0:
                raise MalformedInput("Non-minimal varint", {"offset": offset})
            return value, pos + 1
        shift += 7
    raise MalformedInput("Varint too long", {"offset": offset})


def read_varint(stream: BinaryIO) -> int | None:
    """Read a varint from a stream. Returns None on a clean end of stream."""
    value = 0
    shift = 0
    for i in range(_MAX_VARINT_BYTES):
        b = stream.read(1)
        if not b:
            if i == 0:
                return None
            raise MalformedInput("Truncated varint at end of stream")
        byte = b[0]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value
        shift += 7
    raise MalformedInput("Varint too long")


# =============================================================================
# MULTIHASH
# =============================================================================


@dataclass(frozen=True)
class Multihash:
    """A self-describing digest: hash function code plus digest bytes."""

    code: int
    digest: bytes

    def to_bytes(self) -> bytes:
        return encode_varint(self.code) + encode_varint(len(self.digest)) + self.digest

    @classmethod
    def read(cls, buf: bytes, offset: int = 0) -> tuple[Multihash, int]:
        code, offset = decode_varint(buf, offset)
        length, offset = decode_varint(buf, offset)
        end = offset + length
        if end > len(buf):
            raise MalformedInput("Truncated multihash digest")
        return cls(code, bytes(buf[offset:end])), end

    @classmethod
    def sha2_256(cls, data: bytes) -> Multihash:
        return cls(SHA2_256, hashlib.sha256(data).digest())


def hash_bytes(code: int, data: bytes) -> bytes:
    """Digest ``data`` with the hash function named by a multihash code."""
    if code == SHA2_256:
        return hashlib.sha256(data).digest()
    raise MalformedInput(f"Unsupported multihash function 0x{code:x}")


# =============================================================================
# CID
# =============================================================================


@dataclass(frozen=True)
class ContentId:
    """An immutable, versioned content identifier."""

    version: int
    codec: int
    multihash: Multihash

    def __post_init__(self) -> None:
        if self.version not in (0, 1):
            raise MalformedInput(f"Unsupported CID version {self.version}")
        if self.version == 0 and (self.codec != DAG_PB or self.multihash.code != SHA2_256):
            raise MalformedInput("CIDv0 must be a sha2-256 dag-pb multihash")

    @property
    def digest(self) -> bytes:
        return self.multihash.digest

    @property
    def codec_name(self) -> str:
        return CODEC_NAMES.get(self.codec, f"0x{self.codec:x}")

    def to_bytes(self) -> bytes:
        if self.version == 0:
            return self.multihash.to_bytes()
        return encode_varint(1) + encode_varint(self.codec) + self.multihash.to_bytes()

    def encode(self) -> str:
        raw = self.to_bytes()
        if self.version == 0:
            return base58.b58encode(raw).decode("ascii")
        return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")

    def to_v1(self) -> ContentId:
        if self.version == 1:
            return self
        return ContentId(1, self.codec, self.multihash)

    def matches(self, data: bytes) -> bool:
        """True if ``data`` hashes to this CID's digest."""
        return hash_bytes(self.multihash.code, data) == self.digest

    def __str__(self) -> str:
        return self.encode()

    def __repr__(self) -> str:
        return f"ContentId({self.encode()})"

    @classmethod
    def read(cls, buf: bytes, offset: int = 0) -> tuple[ContentId, int]:
        """Decode a binary CID embedded in ``buf``. Returns ``(cid, next_offset)``."""
        if len(buf) - offset >= 34 and buf[offset] == SHA2_256 and buf[offset + 1] == 0x20:
            mh, end = Multihash.read(buf, offset)
            return cls(0, DAG_PB, mh), end
        version, pos = decode_varint(buf, offset)
        if version != 1:
            raise MalformedInput(f"Unsupported CID version {version}")
        codec, pos = decode_varint(buf, pos)
        mh, end = Multihash.read(buf, pos)
        return cls(1, codec, mh), end

    @classmethod
    def decode(cls, raw: bytes) -> ContentId:
        """Decode a complete binary CID; trailing bytes are an error."""
        cid, end = cls.read(raw, 0)
        if end != len(raw):
            raise MalformedInput("Trailing bytes after CID")
        return cid

    @classmethod
    def parse(cls, text: str) -> ContentId:
        """Parse a CID string (base32 ``b...`` for v1, base58btc ``Qm...`` for v0)."""
        text = (text or "").strip()
        if not text:
            raise MalformedInput("Empty CID string")
        if text.startswith("Qm") and len(text) == 46:
            try:
                raw = base58.b58decode(text)
            except ValueError as e:
                raise MalformedInput(f"Invalid base58 CID: {text}") from e
            return cls.decode(raw)
        if text[0] != "b":
            raise MalformedInput(f"Unsupported multibase prefix {text[0]!r}")
        body = text[1:].upper()
        body += "=" * (-len(body) % 8)
        try:
            raw = base64.b32decode(body)
        except ValueError as e:
            raise MalformedInput(f"Invalid base32 CID: {text}") from e
        return cls.decode(raw)


def is_valid_cid(text: str) -> bool:
    try:
        ContentId.parse(text)
    except MalformedInput:
        return False
    return True


def make_cid(data: bytes, codec: int = RAW) -> ContentId:
    """CIDv1 of ``data`` under ``codec`` using sha2-256."""
    return ContentId(1, codec, Multihash.sha2_256(data))


EMPTY_CID = make_cid(b"", RAW)
