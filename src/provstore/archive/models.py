"""In-memory archive model: root CIDs plus an ordered set of CID-addressed blocks."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterator

from ..addressing import dagcbor
from ..addressing.cid import DAG_CBOR, ContentId
from ..core.exceptions import CorruptArchive, MalformedInput


@dataclass(frozen=True)
class Block:
    """One archive block: its CID and raw bytes."""

    cid: ContentId
    data: bytes

    def links(self) -> list[ContentId]:
        """CIDs this block links to. Raw blocks have none."""
        if self.cid.codec != DAG_CBOR:
            return []
        return list(dagcbor.iter_links(dagcbor.decode(self.data)))

    def verify(self) -> bool:
        return self.cid.matches(self.data)


@dataclass
class Archive:
    """A merkle-DAG snapshot of one dataset.

    Blocks are keyed by CID; insertion order is kept for serialization but is
    not significant for equality.
    """

    roots: list[ContentId]
    blocks: dict[ContentId, bytes] = field(default_factory=dict)

    def add(self, cid: ContentId, data: bytes) -> None:
        if cid not in self.blocks:
            self.blocks[cid] = data

    def get(self, cid: ContentId) -> bytes | None:
        return self.blocks.get(cid)

    def __contains__(self, cid: object) -> bool:
        return cid in self.blocks

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self) -> Iterator[Block]:
        for cid, data in self.blocks.items():
            yield Block(cid, data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Archive):
            return NotImplemented
        return set(self.roots) == set(other.roots) and self.blocks == other.blocks

    @property
    def root(self) -> ContentId:
        """The single declared root. Raises if the archive has zero or several."""
        if len(self.roots) != 1:
            raise MalformedInput(f"Archive has {len(self.roots)} roots, expected exactly one")
        return self.roots[0]

    @property
    def total_size(self) -> int:
        return sum(len(data) for data in self.blocks.values())

    def walk(self, strict: bool = True) -> dict[ContentId, ContentId | None]:
        """Breadth-first walk from all roots.

        Returns ``{cid: parent_cid}`` for every reached block. With ``strict``,
        a link to a block missing from the archive raises CorruptArchive;
        otherwise missing blocks are skipped.
        """
        parents: dict[ContentId, ContentId | None] = {}
        queue: deque[ContentId] = deque()
        for root in self.roots:
            if root not in parents:
                parents[root] = None
                queue.append(root)
        while queue:
            cid = queue.popleft()
            data = self.blocks.get(cid)
            if data is None:
                if strict:
                    raise CorruptArchive(f"Block {cid} is referenced but missing", {"cid": str(cid)})
                continue
            try:
                children = Block(cid, data).links()
            except MalformedInput as e:
                raise CorruptArchive(f"Block {cid} does not decode: {e.message}", {"cid": str(cid)}) from e
            for child in children:
                if child not in parents:
                    parents[child] = cid
                    queue.append(child)
        return parents

    def dangling(self) -> list[ContentId]:
        """Blocks not reachable from any root."""
        reached = self.walk(strict=False)
        return [cid for cid in self.blocks if cid not in reached]

    def missing(self) -> list[ContentId]:
        """Linked CIDs whose blocks are absent."""
        reached = self.walk(strict=False)
        return [cid for cid in reached if cid not in self.blocks]

    def check(self) -> None:
        """Raise CorruptArchive unless every block hashes to its CID and is reachable."""
        if not self.roots:
            raise CorruptArchive("Archive declares no roots")
        for block in self:
            if not block.verify():
                raise CorruptArchive(f"Block bytes do not match {block.cid}", {"cid": str(block.cid)})
        self.walk(strict=True)
        orphans = self.dangling()
        if orphans:
            raise CorruptArchive(
                f"Archive has {len(orphans)} unreachable blocks",
                {"dangling": [str(c) for c in orphans[:10]]},
            )
