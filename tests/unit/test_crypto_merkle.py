"""
Unit tests for the incremental Merkle tree and the commitment tree.
"""

import pytest

from zkteam.crypto.hashing import PoseidonHasher
from zkteam.crypto.merkle import (
    TREE_DEPTH,
    CommitmentTree,
    IncrementalMerkleTree,
    MerkleProof,
)
from zkteam.errors import NotFoundError, TreeFullError


def add(left, right):
    return left * 3 + right + 1


class TestIncrementalMerkleTree:
    """Test the IncrementalMerkleTree class."""

    def test_empty_root_is_zero_hash(self):
        """Test an empty tree's root is the top zero hash."""
        tree = IncrementalMerkleTree(depth=3, hasher=add)
        expected = 0
        for _ in range(3):
            expected = add(expected, expected)
        assert tree.root == expected
        assert len(tree) == 0

    def test_root_matches_manual_computation(self):
        """Test the root of a small tree against a hand computation."""
        tree = IncrementalMerkleTree([1, 2, 3], depth=2, hasher=add)
        assert tree.root == add(add(1, 2), add(3, 0))

    def test_seeded_equals_inserted(self):
        """Test seeding and inserting one by one agree."""
        seeded = IncrementalMerkleTree([5, 6, 7, 8, 9], depth=4, hasher=add)
        inserted = IncrementalMerkleTree(depth=4, hasher=add)
        for leaf in [5, 6, 7, 8, 9]:
            inserted.insert(leaf)
        assert seeded.root == inserted.root

    def test_update(self):
        """Test updating a leaf recomputes the root."""
        tree = IncrementalMerkleTree([1, 2, 3], depth=2, hasher=add)
        tree.update(1, 0)
        assert tree.root == IncrementalMerkleTree([1, 0, 3], depth=2, hasher=add).root

    def test_update_out_of_range(self):
        """Test updating a missing index fails."""
        tree = IncrementalMerkleTree([1], depth=2, hasher=add)
        with pytest.raises(IndexError):
            tree.update(3, 1)

    def test_full_tree(self):
        """Test inserting beyond capacity raises TreeFullError."""
        tree = IncrementalMerkleTree([1, 2], depth=1, hasher=add)
        with pytest.raises(TreeFullError):
            tree.insert(3)
        with pytest.raises(TreeFullError):
            IncrementalMerkleTree([1, 2, 3], depth=1, hasher=add)

    def test_invalid_depth(self):
        """Test zero depth is rejected."""
        with pytest.raises(ValueError):
            IncrementalMerkleTree(depth=0)

    def test_proofs_verify(self):
        """Test every leaf's proof verifies against the root."""
        tree = IncrementalMerkleTree([4, 5, 6, 7, 8], depth=3, hasher=add)
        for index in range(5):
            proof = tree.create_proof(index)
            assert proof.root == tree.root
            assert len(proof.siblings) == 3
            assert tree.verify_proof(proof)

    def test_path_indices(self):
        """Test path indices record the side at each level."""
        tree = IncrementalMerkleTree([4, 5, 6, 7], depth=2, hasher=add)
        assert tree.create_proof(0).path_indices == (0, 0)
        assert tree.create_proof(3).path_indices == (1, 1)

    def test_verify_rejects_wrong_leaf(self):
        """Test a proof for a different leaf fails."""
        tree = IncrementalMerkleTree([4, 5], depth=2, hasher=add)
        proof = tree.create_proof(0)
        forged = MerkleProof(
            leaf=99, siblings=proof.siblings, path_indices=proof.path_indices, root=proof.root
        )
        assert not tree.verify_proof(forged)
        assert not tree.verify_proof(None)

    def test_verify_rejects_length_mismatch(self):
        """Test siblings and indices must have equal length."""
        proof = MerkleProof(leaf=1, siblings=(2, 3), path_indices=(0,), root=0)
        assert not proof.verify(add)


class TestCommitmentTree:
    """Test the CommitmentTree class."""

    def test_default_depth(self):
        """Test commitments live in a depth-20 Poseidon tree."""
        tree = CommitmentTree([11])
        proof = tree.get_proof(11)
        assert len(proof.siblings) == TREE_DEPTH
        assert proof.verify()

    def test_root_uses_poseidon(self):
        """Test the root matches a Poseidon tree over the same leaves."""
        leaves = [11, 22, 33]
        expected = IncrementalMerkleTree(leaves, hasher=PoseidonHasher.node_hash)
        assert CommitmentTree(leaves).get_root() == expected.root

    def test_discard_zeroes_leaf(self):
        """Test discarding replaces the leaf by zero."""
        tree = CommitmentTree([11, 22, 33])
        tree.discard(22)
        assert tree.leaves == [11, 0, 33]
        assert tree.get_root() == CommitmentTree([11, 0, 33]).get_root()
        assert not tree.contains(22)
        assert tree.leaf_count == 3

    def test_discard_unknown(self):
        """Test discarding a missing commitment raises NotFoundError."""
        tree = CommitmentTree([11])
        with pytest.raises(NotFoundError):
            tree.discard(12)

    def test_zero_is_never_found(self):
        """Test the zero leaf cannot be proven or discarded."""
        tree = CommitmentTree([11, 0])
        assert not tree.contains(0)
        with pytest.raises(NotFoundError):
            tree.get_proof(0)

    def test_insert_changes_root(self):
        """Test inserting a commitment changes the root."""
        tree = CommitmentTree([11])
        before = tree.get_root()
        tree.insert(22)
        assert tree.get_root() != before
        assert tree.get_proof(22).verify()
