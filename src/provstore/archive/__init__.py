"""Archive codec: building, serializing and committing to content-addressed archives."""

from .builder import archive_from_bytes, build_archive
from .car import (
    list_blocks,
    load_archive,
    parse_archive,
    read_roots,
    save_archive,
    serialize_archive,
    verify_archive_integrity,
    write_archive,
)
from .extract import extract_file, list_files, resolve_path
from .models import Archive, Block
from .piece import (
    PieceCommitment,
    PieceTree,
    padded_piece_size,
    piece_commitment,
    verify_piece_path,
)

__all__ = [
    "Archive",
    "Block",
    "build_archive",
    "archive_from_bytes",
    "serialize_archive",
    "write_archive",
    "parse_archive",
    "read_roots",
    "list_blocks",
    "verify_archive_integrity",
    "save_archive",
    "load_archive",
    "extract_file",
    "list_files",
    "resolve_path",
    "PieceCommitment",
    "PieceTree",
    "piece_commitment",
    "padded_piece_size",
    "verify_piece_path",
]
