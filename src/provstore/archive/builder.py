"""Building archives from files and directory trees."""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Iterable

from ..addressing.dag import NODE_DIRECTORY, DagLink, FileTreeBuilder, encode_node
from ..addressing.hashing import iter_chunks
from ..core.config import get_config
from ..core.exceptions import MalformedInput
from .models import Archive

logger = logging.getLogger(__name__)


class _Walker:
    """Adds every block for a set of paths into one archive."""

    def __init__(self, archive: Archive, chunk_size: int, fanout: int):
        self.archive = archive
        self.chunk_size = chunk_size
        self.fanout = fanout
        self._active_dirs: set[str] = set()
        self.files = 0

    def add_stream(self, stream) -> DagLink:
        builder = FileTreeBuilder(self.fanout, sink=self.archive.add)
        for chunk in iter_chunks(stream, self.chunk_size):
            builder.add_chunk(chunk)
        self.files += 1
        return builder.finish()

    def add_path(self, path: Path) -> DagLink:
        if path.is_dir():
            return self._add_directory(path)
        if path.is_file():
            with open(path, "rb") as f:
                return self.add_stream(f)
        if not path.exists():
            raise FileNotFoundError(2, "No such file or directory", str(path))
        raise MalformedInput(f"Unsupported file type: {path}", {"path": str(path)})

    def _add_directory(self, path: Path) -> DagLink:
        real = os.path.realpath(path)
        if real in self._active_dirs:
            raise MalformedInput(f"Directory cycle at {path}", {"path": str(path)})
        self._active_dirs.add(real)
        try:
            links = []
            for entry in sorted(os.listdir(path)):
                child = self.add_path(path / entry)
                links.append(DagLink(child.cid, child.size, entry))
        finally:
            self._active_dirs.discard(real)
        cid, data = encode_node(NODE_DIRECTORY, links)
        self.archive.add(cid, data)
        return DagLink(cid, sum(link.size for link in links))


def _wrap_roots(walker: _Walker, named: list[tuple[str, DagLink]]) -> DagLink:
    names = [name for name, _ in named]
    if len(set(names)) != len(names):
        raise MalformedInput("Root paths have clashing names", {"names": names})
    links = [DagLink(link.cid, link.size, name) for name, link in named]
    cid, data = encode_node(NODE_DIRECTORY, links)
    walker.archive.add(cid, data)
    return DagLink(cid, sum(link.size for link in links))


def _finish(walker: _Walker, root: DagLink) -> Archive:
    archive = walker.archive
    archive.roots = [root.cid]
    archive.check()
    logger.info(
        f"Built archive {root.cid} with {len(archive)} blocks from {walker.files} files ({root.size} bytes)"
    )
    return archive


def build_archive(
    root_paths: str | Path | Iterable[str | Path],
    chunk_size: int | None = None,
    fanout: int | None = None,
) -> Archive:
    """Build an archive from one or more files or directories.

    A single path becomes the archive root directly. Several paths are
    wrapped in a directory node keyed by their base names. Any I/O error
    while walking raises :class:`MalformedInput` and nothing is returned.
    """
    config = get_config()
    chunk_size = chunk_size or config.chunk_size
    fanout = fanout or config.fanout
    if isinstance(root_paths, (str, Path)):
        root_paths = [root_paths]
    paths = [Path(p) for p in root_paths]
    if not paths:
        raise MalformedInput("No input paths given")

    walker = _Walker(Archive(roots=[]), chunk_size, fanout)
    try:
        named = [(p.resolve().name or str(p), walker.add_path(p)) for p in paths]
    except OSError as e:
        raise MalformedInput(f"Cannot read input: {e}", {"path": getattr(e, "filename", None)}) from e

    root = named[0][1] if len(named) == 1 else _wrap_roots(walker, named)
    return _finish(walker, root)


def archive_from_bytes(
    name: str,
    data: bytes,
    chunk_size: int | None = None,
    fanout: int | None = None,
) -> Archive:
    """Build an archive holding one in-memory file, wrapped in a directory under ``name``."""
    config = get_config()
    walker = _Walker(Archive(roots=[]), chunk_size or config.chunk_size, fanout or config.fanout)
    link = walker.add_stream(io.BytesIO(data))
    root = _wrap_roots(walker, [(name, link)])
    return _finish(walker, root)
