"""Tests for piece padding and commitments."""

from __future__ import annotations

import pytest

from provstore.addressing.cid import FIL_COMMITMENT_UNSEALED, SHA2_256_TRUNC254_PADDED, ContentId
from provstore.archive import PieceCommitment, PieceTree, padded_piece_size, piece_commitment, verify_piece_path
from provstore.archive.piece import LEAF_SIZE, hash_leaf, hash_pair, zero_subtree
from provstore.core import defaults
from provstore.core.exceptions import PayloadTooLarge


class TestPaddedSize:
    """Padded sizes are powers of two with room for the marker byte."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(0, 128), (1, 128), (127, 128), (128, 256), (255, 256), (256, 512), (1000, 1024), (1 << 20, 2 << 20)],
    )
    def test_sizes(self, raw, expected):
        assert padded_piece_size(raw) == expected

    def test_hint_raises_size(self):
        assert padded_piece_size(100, 4096) == 4096
        assert padded_piece_size(5000, 4096) == 8192

    def test_maximum(self):
        assert padded_piece_size(defaults.MAX_PIECE_SIZE - 1) == defaults.MAX_PIECE_SIZE
        with pytest.raises(PayloadTooLarge):
            padded_piece_size(defaults.MAX_PIECE_SIZE)


class TestCommitment:
    """Piece commitment values and CIDs."""

    def test_stable(self):
        data = bytes(range(256)) * 20
        assert piece_commitment(data) == piece_commitment(bytes(data))

    def test_changes_with_any_byte(self):
        data = bytearray(b"\x00" * 3000)
        before = piece_commitment(bytes(data))
        data[2999] = 1
        assert piece_commitment(bytes(data)).root != before.root

    def test_trailing_zero_is_distinguished(self):
        assert piece_commitment(b"abc").root != piece_commitment(b"abc\x00").root

    def test_hint_changes_root(self):
        assert piece_commitment(b"abc").root != piece_commitment(b"abc", 4096).root

    def test_cid_shape(self):
        c = piece_commitment(b"x" * 500)
        cid = c.cid
        assert cid.codec == FIL_COMMITMENT_UNSEALED
        assert cid.multihash.code == SHA2_256_TRUNC254_PADDED
        assert cid.digest == c.root
        assert ContentId.parse(str(cid)) == cid

    def test_truncated_to_254_bits(self):
        for data in (b"a", b"b" * 1000, bytes(5000)):
            assert piece_commitment(data).root[31] & 0xC0 == 0

    def test_matches_manual_tree(self):
        data = b"q" * 100
        payload = data + b"\x80" + bytes(128 - 101)
        leaves = [hash_leaf(payload[i : i + LEAF_SIZE]) for i in range(0, 128, LEAF_SIZE)]
        expected = hash_pair(hash_pair(leaves[0], leaves[1]), hash_pair(leaves[2], leaves[3]))
        assert piece_commitment(data).root == expected

    def test_zero_subtree_table(self):
        tree = PieceTree(b"", 1024)
        # everything right of the first leaf is zero fill
        assert tree.path(0)[-1] == zero_subtree(tree.depth - 1)

    def test_dict_round_trip(self):
        c = piece_commitment(b"z" * 700)
        assert PieceCommitment.from_dict(c.to_dict()) == c
        assert c.to_dict()["version"] == defaults.PIECE_SCHEME_VERSION


class TestPieceTree:
    """Leaf paths prove against the commitment root."""

    @pytest.mark.parametrize("index", [0, 1, 7, 20, 31])
    def test_every_leaf_proves(self, index):
        tree = PieceTree.build(bytes(range(200)) * 3)
        assert tree.leaf_count == 32
        assert verify_piece_path(tree.leaf(index), index, tree.path(index), tree.root)

    def test_wrong_index_fails(self):
        tree = PieceTree.build(bytes(range(200)) * 3)
        assert not verify_piece_path(tree.leaf(3), 4, tree.path(3), tree.root)

    def test_altered_leaf_fails(self):
        tree = PieceTree.build(bytes(range(200)) * 3)
        leaf = bytearray(tree.leaf(2))
        leaf[0] ^= 1
        assert not verify_piece_path(bytes(leaf), 2, tree.path(2), tree.root)

    def test_data_leaf_count(self):
        tree = PieceTree.build(b"d" * 100)
        # 100 bytes + marker span four leaves
        assert tree.data_leaf_count == 4
        assert tree.commitment().depth == 2
