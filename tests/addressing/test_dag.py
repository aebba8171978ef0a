"""Tests for dag-cbor encoding and the file/directory node layout."""

from __future__ import annotations

import cbor2
import pytest

from provstore.addressing import dagcbor
from provstore.addressing.cid import DAG_CBOR, RAW, make_cid
from provstore.addressing.dag import (
    NODE_DIRECTORY,
    NODE_FILE,
    DagLink,
    FileTreeBuilder,
    decode_node,
    encode_node,
)
from provstore.archive import build_archive
from provstore.core.exceptions import MalformedInput


class TestDagCbor:
    """Canonical encoding with tag-42 links."""

    def test_cid_round_trip(self):
        cid = make_cid(b"leaf")
        decoded = dagcbor.decode(dagcbor.encode({"link": cid, "n": 1}))
        assert decoded == {"link": cid, "n": 1}

    def test_key_order_is_canonical(self):
        a = dagcbor.encode({"b": 1, "aa": 2, "a": 3})
        b = dagcbor.encode({"a": 3, "aa": 2, "b": 1})
        assert a == b

    def test_iter_links_in_document_order(self):
        c1, c2 = make_cid(b"1"), make_cid(b"2")
        obj = dagcbor.decode(dagcbor.encode({"Links": [{"Hash": c1}, {"Hash": c2}]}))
        assert list(dagcbor.iter_links(obj)) == [c1, c2]

    def test_unencodable_type(self):
        with pytest.raises(TypeError):
            dagcbor.encode({"x": object()})

    def test_garbage_is_malformed(self):
        with pytest.raises(MalformedInput):
            dagcbor.decode(b"\xff\xff\xff")

    def test_foreign_tag_rejected(self):
        with pytest.raises(MalformedInput):
            dagcbor.decode(cbor2.dumps(cbor2.CBORTag(99, b"x")))

    def test_link_without_multibase_prefix_rejected(self):
        raw = cbor2.dumps({"l": cbor2.CBORTag(42, make_cid(b"x").to_bytes())})
        with pytest.raises(MalformedInput):
            dagcbor.decode(raw)

    def test_stray_break_marker_rejected(self):
        with pytest.raises(MalformedInput):
            dagcbor.decode(b"\xff")

    def test_trailing_bytes_rejected(self):
        data = dagcbor.encode({"n": 1})
        with pytest.raises(MalformedInput):
            dagcbor.decode(data + b"\x00")

    def test_non_canonical_rejected(self):
        # map keys in the wrong order: "b" before "a"
        with pytest.raises(MalformedInput):
            dagcbor.decode(b"\xa2\x61b\x01\x61a\x02")

    def test_nested_links_decode(self):
        c1, c2 = make_cid(b"1"), make_cid(b"2", RAW)
        obj = {"a": [c1, {"b": c2}], "n": None}
        assert dagcbor.decode(dagcbor.encode(obj)) == obj

    def test_directory_archive_blocks_decode(self, dataset_dir):
        archive = build_archive(dataset_dir, chunk_size=1024, fanout=4)
        archive.check()
        nodes = [data for cid, data in archive.blocks.items() if cid.codec == DAG_CBOR]
        assert nodes
        for data in nodes:
            assert isinstance(decode_node(data), dict)


class TestNodes:
    """File and directory nodes."""

    def test_directory_links_sorted_by_name(self):
        a = DagLink(make_cid(b"a"), 1, "zeta")
        b = DagLink(make_cid(b"b"), 1, "alpha")
        cid1, data1 = encode_node(NODE_DIRECTORY, [a, b])
        cid2, data2 = encode_node(NODE_DIRECTORY, [b, a])
        assert (cid1, data1) == (cid2, data2)
        node = decode_node(data1)
        assert [link["Name"] for link in node["Links"]] == ["alpha", "zeta"]
        assert node["Size"] == 2

    def test_file_links_keep_order(self):
        a = DagLink(make_cid(b"a"), 1)
        b = DagLink(make_cid(b"b"), 1)
        assert encode_node(NODE_FILE, [a, b]) != encode_node(NODE_FILE, [b, a])

    def test_node_cid_is_dag_cbor(self):
        cid, data = encode_node(NODE_FILE, [DagLink(make_cid(b"a"), 1)])
        assert cid.codec == DAG_CBOR
        assert cid.matches(data)

    def test_decode_rejects_non_node(self):
        with pytest.raises(MalformedInput):
            decode_node(dagcbor.encode({"Type": "symlink", "Links": []}))
        with pytest.raises(MalformedInput):
            decode_node(dagcbor.encode({"Type": "file", "Links": [{"Name": "x"}]}))


class TestFileTreeBuilder:
    """Balanced file trees built incrementally."""

    def _build(self, chunks, fanout=3):
        blocks = {}
        builder = FileTreeBuilder(fanout, sink=lambda cid, data: blocks.setdefault(cid, data))
        for chunk in chunks:
            builder.add_chunk(chunk)
        return builder.finish(), blocks

    def test_single_chunk_is_raw_leaf(self):
        root, blocks = self._build([b"only"])
        assert root.cid == make_cid(b"only", RAW)
        assert root.size == 4
        assert len(blocks) == 1

    def test_no_chunks_is_empty_raw_block(self):
        root, blocks = self._build([])
        assert root.cid == make_cid(b"", RAW)
        assert root.size == 0
        assert blocks[root.cid] == b""

    @pytest.mark.parametrize("count", [2, 3, 4, 9, 10, 28])
    def test_sizes_and_reachability(self, count):
        chunks = [bytes([i]) * 7 for i in range(count)]
        root, blocks = self._build(chunks)
        assert root.size == 7 * count

        # Walk the tree and reassemble the file in order.
        def read(cid):
            if cid.codec == RAW:
                return blocks[cid]
            node = decode_node(blocks[cid])
            assert len(node["Links"]) <= 3
            return b"".join(read(link["Hash"]) for link in node["Links"])

        assert read(root.cid) == b"".join(chunks)

    def test_deterministic(self):
        chunks = [bytes([i]) * 5 for i in range(20)]
        assert self._build(chunks)[0] == self._build(list(chunks))[0]

    def test_fanout_must_be_at_least_two(self):
        with pytest.raises(ValueError):
            FileTreeBuilder(1)
