"""Computing CIDs for byte strings and streams."""

from __future__ import annotations

import logging
from typing import BinaryIO

from ..core.config import get_config
from ..core.exceptions import EmptyInput, MalformedInput
from .cid import EMPTY_CID, RAW, ContentId, make_cid
from .dag import FileTreeBuilder

logger = logging.getLogger(__name__)


def _resolve_policy(empty_policy: str | None) -> str:
    policy = empty_policy or get_config().empty_input_policy
    if policy not in ("reject", "empty_cid"):
        raise MalformedInput(f"Unknown empty-input policy {policy!r}")
    return policy


def address_of(data: bytes, codec: int = RAW, *, empty_policy: str | None = None) -> ContentId:
    """Return the CIDv1 (sha2-256) of ``data``.

    Empty input is handled by the empty-input policy: ``"reject"`` raises
    :class:`EmptyInput`, ``"empty_cid"`` returns :data:`EMPTY_CID`. The policy
    defaults to the configured one.
    """
    if not data:
        if _resolve_policy(empty_policy) == "reject":
            raise EmptyInput("Refusing to address empty input")
        return EMPTY_CID
    return make_cid(bytes(data), codec)


def iter_chunks(reader: BinaryIO, chunk_size: int):
    """Yield exactly ``chunk_size`` bytes per chunk (the last may be shorter).

    Short reads from the underlying stream are coalesced so chunk boundaries
    depend only on the byte content and ``chunk_size``.
    """
    if chunk_size <= 0:
        raise MalformedInput("chunk_size must be positive")
    buf = bytearray()
    while True:
        piece = reader.read(chunk_size - len(buf))
        if not piece:
            break
        buf.extend(piece)
        if len(buf) == chunk_size:
            yield bytes(buf)
            buf.clear()
    if buf:
        yield bytes(buf)


def address_of_stream(
    reader: BinaryIO,
    chunk_size: int,
    *,
    fanout: int | None = None,
    empty_policy: str | None = None,
) -> ContentId:
    """Address a stream without buffering it.

    The stream is cut into ``chunk_size`` chunks and linked into the same
    balanced file DAG the archive builder produces, so the result equals the
    root CID of that file inside an archive built with the same parameters.
    A stream that fits in one chunk addresses to ``address_of`` of its bytes.
    """
    builder = FileTreeBuilder(fanout or get_config().fanout)
    for chunk in iter_chunks(reader, chunk_size):
        builder.add_chunk(chunk)
    root = builder.finish()
    if root.size == 0:
        return address_of(b"", empty_policy=empty_policy)
    logger.debug(f"Addressed stream of {root.size} bytes as {root.cid}")
    return root.cid
