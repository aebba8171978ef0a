"""Merkle-DAG node layout for files and directories.

Files are split into fixed-size raw chunks. Chunks are grouped under
dag-cbor ``file`` nodes of at most ``fanout`` links, level by level, giving a
balanced tree whose root addresses the whole file. Directories are dag-cbor
``directory`` nodes whose links carry entry names, sorted by name.

Node shape::

    {"Type": "file", "Size": <bytes>, "Links": [{"Hash": cid, "Tsize": n}, ...]}
    {"Type": "directory", "Size": <bytes>, "Links": [{"Hash": cid, "Name": s, "Tsize": n}, ...]}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from ..core.exceptions import MalformedInput
from . import dagcbor
from .cid import DAG_CBOR, RAW, ContentId, make_cid

NODE_FILE = "file"
NODE_DIRECTORY = "directory"

BlockSink = Callable[[ContentId, bytes], None]


@dataclass(frozen=True)
class DagLink:
    """A link to a child block and the content size beneath it."""

    cid: ContentId
    size: int
    name: str | None = None

    def to_node(self) -> dict[str, Any]:
        entry: dict[str, Any] = {"Hash": self.cid, "Tsize": self.size}
        if self.name is not None:
            entry["Name"] = self.name
        return entry


def encode_node(kind: str, links: list[DagLink]) -> tuple[ContentId, bytes]:
    """Encode a file or directory node. Returns ``(cid, block_bytes)``."""
    if kind == NODE_DIRECTORY:
        links = sorted(links, key=lambda link: link.name or "")
    node = {
        "Type": kind,
        "Size": sum(link.size for link in links),
        "Links": [link.to_node() for link in links],
    }
    data = dagcbor.encode(node)
    return make_cid(data, DAG_CBOR), data


def decode_node(data: bytes) -> dict[str, Any]:
    """Decode and shape-check a file or directory node."""
    node = dagcbor.decode(data)
    if not isinstance(node, dict) or node.get("Type") not in (NODE_FILE, NODE_DIRECTORY):
        raise MalformedInput("Block is not a file or directory node")
    links = node.get("Links")
    if not isinstance(links, list):
        raise MalformedInput("Node has no link list")
    for entry in links:
        if not isinstance(entry, dict) or not isinstance(entry.get("Hash"), ContentId):
            raise MalformedInput("Node link is missing its Hash")
    return node


class FileTreeBuilder:
    """Incrementally builds the balanced DAG for one file.

    Feed chunks in order with :meth:`add_chunk`; :meth:`finish` returns the
    root link. Only one pending link list per tree level is held in memory,
    so arbitrarily large inputs can be addressed from a stream. Every block
    produced is handed to ``sink`` (if given) in the order it is created.
    """

    def __init__(self, fanout: int, sink: BlockSink | None = None):
        if fanout < 2:
            raise ValueError("fanout must be at least 2")
        self.fanout = fanout
        self._sink = sink
        self._levels: list[list[DagLink]] = []
        self._chunks = 0

    def _emit(self, cid: ContentId, data: bytes) -> None:
        if self._sink is not None:
            self._sink(cid, data)

    def _push(self, level: int, link: DagLink) -> None:
        while len(self._levels) <= level:
            self._levels.append([])
        pending = self._levels[level]
        pending.append(link)
        if len(pending) == self.fanout:
            self._levels[level] = []
            cid, data = encode_node(NODE_FILE, pending)
            self._emit(cid, data)
            self._push(level + 1, DagLink(cid, sum(link.size for link in pending)))

    def add_chunk(self, chunk: bytes) -> None:
        cid = make_cid(chunk, RAW)
        self._emit(cid, chunk)
        self._chunks += 1
        self._push(0, DagLink(cid, len(chunk)))

    def finish(self) -> DagLink:
        """Close all partially filled levels and return the root link."""
        if self._chunks == 0:
            cid = make_cid(b"", RAW)
            self._emit(cid, b"")
            return DagLink(cid, 0)

        carry: DagLink | None = None
        top = len(self._levels) - 1
        for level, pending in enumerate(self._levels):
            if not pending:
                continue
            items = pending + ([carry] if carry is not None else [])
            if level == top and len(items) == 1:
                return items[0]
            cid, data = encode_node(NODE_FILE, items)
            self._emit(cid, data)
            carry = DagLink(cid, sum(link.size for link in items))
        assert carry is not None
        return carry
