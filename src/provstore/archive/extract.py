"""Reading files back out of an archive."""

from __future__ import annotations

from ..addressing.cid import DAG_CBOR, RAW, ContentId
from ..addressing.dag import NODE_DIRECTORY, NODE_FILE, decode_node
from ..core.exceptions import CorruptArchive, MalformedInput, NotFound
from .models import Archive


def _block(archive: Archive, cid: ContentId) -> bytes:
    data = archive.get(cid)
    if data is None:
        raise CorruptArchive(f"Block {cid} is referenced but missing", {"cid": str(cid)})
    return data


def _node(archive: Archive, cid: ContentId) -> dict:
    try:
        return decode_node(_block(archive, cid))
    except MalformedInput as e:
        raise CorruptArchive(f"Block {cid} is not a valid node: {e.message}", {"cid": str(cid)}) from e


def _read(archive: Archive, cid: ContentId, out: bytearray) -> None:
    if cid.codec == RAW:
        out.extend(_block(archive, cid))
        return
    if cid.codec != DAG_CBOR:
        raise CorruptArchive(f"Unexpected codec {cid.codec_name} in file tree")
    node = _node(archive, cid)
    if node["Type"] != NODE_FILE:
        raise MalformedInput("Path refers to a directory, not a file")
    start = len(out)
    for link in node["Links"]:
        _read(archive, link["Hash"], out)
    if len(out) - start != node.get("Size"):
        raise CorruptArchive(f"File node {cid} size mismatch", {"cid": str(cid)})


def resolve_path(archive: Archive, path: str) -> ContentId:
    """Follow directory entries from the root to ``path``."""
    cid = archive.root
    for part in [p for p in path.strip("/").split("/") if p]:
        if cid.codec != DAG_CBOR:
            raise NotFound(f"Path not found: {path}", {"path": path})
        node = _node(archive, cid)
        if node["Type"] != NODE_DIRECTORY:
            raise NotFound(f"Path not found: {path}", {"path": path})
        for link in node["Links"]:
            if link.get("Name") == part:
                cid = link["Hash"]
                break
        else:
            raise NotFound(f"Path not found: {path}", {"path": path})
    return cid


def extract_file(archive: Archive, path: str) -> bytes:
    """Reconstruct one file's bytes.

    Raises NotFound if ``path`` is absent and CorruptArchive if any block on
    the way is missing or inconsistent. Never returns a truncated file.
    """
    cid = resolve_path(archive, path)
    out = bytearray()
    _read(archive, cid, out)
    return bytes(out)


def list_files(archive: Archive) -> list[tuple[str, int]]:
    """All file paths under the root with their sizes, sorted by path."""
    files: list[tuple[str, int]] = []

    def visit(cid: ContentId, prefix: str) -> None:
        if cid.codec == DAG_CBOR:
            node = _node(archive, cid)
            if node["Type"] == NODE_DIRECTORY:
                for link in node["Links"]:
                    name = link.get("Name", "")
                    visit(link["Hash"], f"{prefix}/{name}" if prefix else name)
                return
            files.append((prefix, node.get("Size", 0)))
            return
        files.append((prefix, len(_block(archive, cid))))

    visit(archive.root, "")
    return sorted(files)
