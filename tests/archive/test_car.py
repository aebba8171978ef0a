"""Tests for archive building, CAR serialization, integrity checks and extraction."""

from __future__ import annotations

import io
import os

import pytest

from provstore.addressing.cid import RAW, make_cid
from provstore.archive import (
    Archive,
    archive_from_bytes,
    build_archive,
    extract_file,
    list_blocks,
    list_files,
    load_archive,
    parse_archive,
    read_roots,
    save_archive,
    serialize_archive,
    verify_archive_integrity,
)
from provstore.archive.car import encode_section
from provstore.core.exceptions import CorruptArchive, MalformedInput, NotFound


# ============================================================================
# Building
# ============================================================================


class TestBuildArchive:
    """Archives built from files and directories."""

    def test_directory_archive(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        assert len(archive.roots) == 1
        files = dict(list_files(archive))
        assert files == {"a.txt": 3000, "docs/b.bin": 10240, "docs/empty.txt": 0}

    def test_deterministic(self, dataset_dir):
        a = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        b = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        assert a.root == b.root
        assert serialize_archive(a) == serialize_archive(b)

    def test_root_changes_with_content(self, dataset_dir):
        before = build_archive(dataset_dir, chunk_size=1024, fanout=4).root
        (dataset_dir / "a.txt").write_bytes(b"alpha " * 499 + b"alphb ")
        assert build_archive(dataset_dir, chunk_size=1024, fanout=4).root != before

    def test_single_file_root_is_file_dag(self, tmp_path):
        path = tmp_path / "one.txt"
        path.write_bytes(b"hello")
        archive = build_archive(path, chunk_size=1024, fanout=4)
        assert archive.root == make_cid(b"hello", RAW)
        assert extract_file(archive, "") == b"hello"

    def test_several_paths_wrapped_in_directory(self, tmp_path):
        (tmp_path / "x").write_bytes(b"x" * 10)
        (tmp_path / "y").write_bytes(b"y" * 20)
        archive = build_archive([tmp_path / "x", tmp_path / "y"], chunk_size=1024, fanout=4)
        assert extract_file(archive, "y") == b"y" * 20
        assert dict(list_files(archive)) == {"x": 10, "y": 20}

    def test_clashing_root_names(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        (tmp_path / "a" / "f").write_bytes(b"1")
        (tmp_path / "b" / "f").write_bytes(b"2")
        with pytest.raises(MalformedInput):
            build_archive([tmp_path / "a" / "f", tmp_path / "b" / "f"])

    def test_missing_path(self, tmp_path):
        with pytest.raises(MalformedInput):
            build_archive(tmp_path / "nope")

    def test_no_paths(self):
        with pytest.raises(MalformedInput):
            build_archive([])

    def test_directory_cycle(self, tmp_path):
        root = tmp_path / "loop"
        root.mkdir()
        (root / "f").write_bytes(b"data")
        try:
            os.symlink(root, root / "self")
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        with pytest.raises(MalformedInput):
            build_archive(root, chunk_size=1024, fanout=4)

    def test_duplicate_content_stored_once(self, tmp_path):
        (tmp_path / "d").mkdir()
        (tmp_path / "d" / "one").write_bytes(b"same" * 100)
        (tmp_path / "d" / "two").write_bytes(b"same" * 100)
        archive = build_archive(tmp_path / "d", chunk_size=1024, fanout=4)
        # one raw chunk plus the directory
        assert len(archive) == 2

    def test_archive_from_bytes(self):
        archive = archive_from_bytes("note.txt", b"n" * 5000, chunk_size=1024, fanout=4)
        assert extract_file(archive, "note.txt") == b"n" * 5000


# ============================================================================
# Serialization
# ============================================================================


class TestSerialization:
    """CARv1 encode/decode."""

    def test_round_trip(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        data = serialize_archive(archive)
        parsed = parse_archive(data)
        assert parsed == archive
        assert parsed.root == archive.root
        assert serialize_archive(parsed) == data

    def test_round_trip_through_stream_and_file(self, dataset_dir, tmp_path):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        path = tmp_path / "out.car"
        written = save_archive(archive, path)
        assert written == path.stat().st_size
        assert load_archive(path) == archive
        assert parse_archive(io.BytesIO(path.read_bytes())) == archive

    def test_read_roots(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        assert read_roots(serialize_archive(archive)) == [archive.root]

    def test_list_blocks(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        listed = list_blocks(serialize_archive(archive))
        assert len(listed) == len(archive)
        assert {entry["codec"] for entry in listed} == {"raw", "dag-cbor"}

    def test_equality_ignores_block_order(self):
        a = make_cid(b"a")
        one = Archive(roots=[a], blocks={a: b"a"})
        two = Archive(roots=[a])
        two.add(a, b"a")
        assert one == two

    @pytest.mark.parametrize("data", [b"", b"\x05abc", b"\xa1\x00"])
    def test_bad_header(self, data):
        with pytest.raises(CorruptArchive):
            parse_archive(data)

    def test_truncated_block(self, dataset_dir):
        data = serialize_archive(build_archive(dataset_dir, chunk_size=1024, fanout=4))
        with pytest.raises(CorruptArchive):
            parse_archive(data[:-10])

    def test_altered_block_fails_hash_check(self, dataset_dir):
        data = bytearray(serialize_archive(build_archive(dataset_dir, chunk_size=1024, fanout=4)))
        data[-1] ^= 0xFF
        with pytest.raises(CorruptArchive):
            parse_archive(bytes(data))
        # Without verification the bytes are accepted as-is.
        parse_archive(bytes(data), verify=False)


# ============================================================================
# Integrity and extraction
# ============================================================================


class TestIntegrity:
    """verify_archive_integrity reports rather than raises."""

    def test_valid(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        report = verify_archive_integrity(serialize_archive(archive))
        assert report["valid"] is True
        assert report["blocks"] == len(archive)
        assert report["errors"] == []

    def test_missing_block_reported(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        victim = next(c for c in archive.blocks if c != archive.root)
        del archive.blocks[victim]
        report = verify_archive_integrity(serialize_archive(archive))
        assert report["valid"] is False
        assert str(victim) in report["missing"]

    def test_unreachable_block_reported(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        stray = make_cid(b"stray")
        archive.add(stray, b"stray")
        report = verify_archive_integrity(serialize_archive(archive))
        assert report["valid"] is False
        assert report["dangling"] == [str(stray)]

    def test_garbage(self):
        report = verify_archive_integrity(b"\x00\x01\x02")
        assert report["valid"] is False
        assert report["errors"]

    def test_check_raises(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        archive.add(make_cid(b"stray"), b"stray")
        with pytest.raises(CorruptArchive):
            archive.check()


class TestExtract:
    """Reconstructing files."""

    def test_extract_round_trip(self, dataset_dir):
        archive = parse_archive(serialize_archive(build_archive(dataset_dir, chunk_size=1024, fanout=4)))
        assert extract_file(archive, "docs/b.bin") == (dataset_dir / "docs" / "b.bin").read_bytes()
        assert extract_file(archive, "/a.txt") == (dataset_dir / "a.txt").read_bytes()
        assert extract_file(archive, "docs/empty.txt") == b""

    def test_missing_path(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        with pytest.raises(NotFound):
            extract_file(archive, "docs/nope")
        with pytest.raises(NotFound):
            extract_file(archive, "a.txt/inner")

    def test_directory_is_not_a_file(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        with pytest.raises(MalformedInput):
            extract_file(archive, "docs")

    def test_missing_chunk_is_corruption_not_truncation(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        first_chunk = make_cid(bytes(range(256)) * 4, RAW)
        assert first_chunk in archive
        del archive.blocks[first_chunk]
        with pytest.raises(CorruptArchive):
            extract_file(archive, "docs/b.bin")

    def test_corrupt_section_detected_by_parse(self):
        cid = make_cid(b"good")
        header_only = serialize_archive(Archive(roots=[cid]))
        with pytest.raises(CorruptArchive):
            parse_archive(header_only + encode_section(cid, b"evil"))
