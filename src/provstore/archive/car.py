"""CARv1 serialization.

Layout::

    varint(len(header)) | header (dag-cbor {"version": 1, "roots": [cid, ...]})
    varint(len(cid) + len(data)) | cid | data      (repeated per block)

Decoding is single-pass: blocks are yielded as they are read, so large
archives can be inspected without holding them in memory.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO, Iterator

from ..addressing import dagcbor
from ..addressing.cid import ContentId, encode_varint, read_varint
from ..core.exceptions import CorruptArchive, MalformedInput
from .models import Archive, Block

logger = logging.getLogger(__name__)

CAR_VERSION = 1
MAX_HEADER_SIZE = 1 << 20
MAX_SECTION_SIZE = 1 << 24


def encode_header(roots: list[ContentId]) -> bytes:
    header = dagcbor.encode({"version": CAR_VERSION, "roots": list(roots)})
    return encode_varint(len(header)) + header


def encode_section(cid: ContentId, data: bytes) -> bytes:
    raw = cid.to_bytes()
    return encode_varint(len(raw) + len(data)) + raw + data


def write_archive(archive: Archive, stream: BinaryIO) -> int:
    """Write ``archive`` to ``stream``. Returns the number of bytes written."""
    written = stream.write(encode_header(archive.roots))
    for block in archive:
        written += stream.write(encode_section(block.cid, block.data))
    return written


def serialize_archive(archive: Archive) -> bytes:
    buf = io.BytesIO()
    write_archive(archive, buf)
    return buf.getvalue()


def _as_stream(source: bytes | bytearray | memoryview | BinaryIO) -> BinaryIO:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(source))
    return source


def _read_exact(stream: BinaryIO, n: int, what: str) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        raise CorruptArchive(f"Truncated {what}: expected {n} bytes, got {len(data)}")
    return data


def read_header(stream: BinaryIO) -> list[ContentId]:
    """Read the CAR header and return its root CIDs."""
    try:
        length = read_varint(stream)
    except MalformedInput as e:
        raise CorruptArchive(f"Bad header length: {e.message}") from e
    if length is None:
        raise CorruptArchive("Empty archive stream")
    if length == 0 or length > MAX_HEADER_SIZE:
        raise CorruptArchive(f"Implausible header length {length}")
    raw = _read_exact(stream, length, "header")
    try:
        header = dagcbor.decode(raw)
    except MalformedInput as e:
        raise CorruptArchive(f"Header does not decode: {e.message}") from e
    if not isinstance(header, dict) or header.get("version") != CAR_VERSION:
        raise CorruptArchive("Unsupported CAR header", {"header": repr(header)[:200]})
    roots = header.get("roots")
    if not isinstance(roots, list) or not all(isinstance(r, ContentId) for r in roots):
        raise CorruptArchive("CAR header roots must be a list of CIDs")
    return roots


def iter_blocks(stream: BinaryIO, verify: bool = True) -> Iterator[Block]:
    """Yield blocks from a stream positioned just after the header."""
    index = 0
    while True:
        try:
            length = read_varint(stream)
        except MalformedInput as e:
            raise CorruptArchive(f"Bad section length at block {index}: {e.message}") from e
        if length is None:
            return
        if length == 0 or length > MAX_SECTION_SIZE:
            raise CorruptArchive(f"Implausible section length {length} at block {index}")
        section = _read_exact(stream, length, f"block {index}")
        try:
            cid, offset = ContentId.read(section, 0)
        except MalformedInput as e:
            raise CorruptArchive(f"Bad CID in block {index}: {e.message}") from e
        block = Block(cid, section[offset:])
        if verify:
            try:
                ok = block.verify()
            except MalformedInput as e:
                raise CorruptArchive(f"Cannot verify block {cid}: {e.message}") from e
            if not ok:
                raise CorruptArchive(f"Block bytes do not match {cid}", {"index": index, "cid": str(cid)})
        yield block
        index += 1


def parse_archive(source: bytes | BinaryIO, verify: bool = True) -> Archive:
    """Decode a CARv1 byte string or stream into an :class:`Archive`."""
    stream = _as_stream(source)
    archive = Archive(roots=read_header(stream))
    for block in iter_blocks(stream, verify=verify):
        archive.add(block.cid, block.data)
    logger.debug(f"Parsed archive with {len(archive)} blocks and {len(archive.roots)} roots")
    return archive


def read_roots(source: bytes | BinaryIO) -> list[ContentId]:
    return read_header(_as_stream(source))


def list_blocks(source: bytes | BinaryIO) -> list[dict[str, Any]]:
    """List ``{"cid", "size", "codec"}`` for every block, without verifying hashes."""
    stream = _as_stream(source)
    read_header(stream)
    return [
        {"cid": str(block.cid), "size": len(block.data), "codec": block.cid.codec_name}
        for block in iter_blocks(stream, verify=False)
    ]


def verify_archive_integrity(source: bytes | BinaryIO) -> dict[str, Any]:
    """Check hashes, root presence and reachability. Never raises on bad data."""
    report: dict[str, Any] = {"valid": False, "blocks": 0, "errors": []}
    try:
        archive = parse_archive(source, verify=True)
        missing = archive.missing()
        dangling = archive.dangling()
    except CorruptArchive as e:
        report["errors"].append(e.message)
        return report
    report["blocks"] = len(archive)
    report["roots"] = [str(r) for r in archive.roots]
    if missing:
        report["errors"].append(f"{len(missing)} linked blocks missing")
        report["missing"] = [str(c) for c in missing]
    if dangling:
        report["errors"].append(f"{len(dangling)} unreachable blocks")
        report["dangling"] = [str(c) for c in dangling]
    if not archive.roots:
        report["errors"].append("no roots declared")
    report["valid"] = not report["errors"]
    return report


def save_archive(archive: Archive, path: str | Path) -> int:
    with open(path, "wb") as f:
        return write_archive(archive, f)


def load_archive(path: str | Path, verify: bool = True) -> Archive:
    with open(path, "rb") as f:
        return parse_archive(f, verify=verify)
