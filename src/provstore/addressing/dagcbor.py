"""dag-cbor encoding: canonical CBOR with CIDs carried as tag 42.

Tag 42 wraps the binary CID prefixed with a 0x00 multibase byte, as IPLD
requires. Map keys are emitted in canonical (length-first) order so that the
same node always encodes to the same bytes.
"""

from __future__ import annotations

from typing import Any

import cbor2

from ..core.exceptions import MalformedInput
from .cid import ContentId

CID_TAG = 42


def _encode_cid(encoder: cbor2.CBOREncoder, value: Any) -> None:
    if isinstance(value, ContentId):
        encoder.encode(cbor2.CBORTag(CID_TAG, b"\x00" + value.to_bytes()))
        return
    raise TypeError(f"Cannot dag-cbor encode {type(value).__name__}")


def _resolve(value: Any) -> Any:
    """Replace tag-42 values with ContentIds; any other tag is not dag-cbor."""
    if isinstance(value, cbor2.CBORTag):
        if value.tag != CID_TAG:
            raise MalformedInput(f"Unsupported CBOR tag {value.tag}")
        raw = value.value
        if not isinstance(raw, bytes) or not raw or raw[0] != 0:
            raise MalformedInput("Malformed CID link in dag-cbor")
        return ContentId.decode(raw[1:])
    if isinstance(value, dict):
        return {k: _resolve(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v) for v in value]
    return value


def encode(obj: Any) -> bytes:
    """Encode ``obj`` (dicts, lists, str, bytes, int, bool, None, ContentId)."""
    return cbor2.dumps(obj, canonical=True, default=_encode_cid)


def decode(data: bytes) -> Any:
    """Decode dag-cbor bytes. Raises MalformedInput on anything malformed.

    Input must be exactly one value in canonical form: trailing bytes, stray
    break markers and non-canonical encodings are all rejected by re-encoding
    the decoded value and comparing.
    """
    try:
        value = _resolve(cbor2.loads(data))
        canonical = encode(value)
    except MalformedInput:
        raise
    except (cbor2.CBORError, ValueError, TypeError) as e:
        raise MalformedInput(f"Invalid dag-cbor: {e}") from e
    if canonical != bytes(data):
        raise MalformedInput("Invalid dag-cbor: not a single canonical value")
    return value


def iter_links(obj: Any):
    """Yield every CID reachable inside a decoded dag-cbor value, in document order."""
    if isinstance(obj, ContentId):
        yield obj
    elif isinstance(obj, dict):
        for value in obj.values():
            yield from iter_links(value)
    elif isinstance(obj, (list, tuple)):
        for item in obj:
            yield from iter_links(item)
