"""
Incremental Merkle tree for commitment membership proofs.

The tree has a fixed depth and arity 2. Empty positions take the zero hash
of their level, so the root only depends on the inserted leaves and their
order. The commitment tree is never persisted: it is rebuilt from the
account's event log before every operation that needs it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from ..errors import NotFoundError, TreeFullError
from .hashing import PoseidonHasher

logger = logging.getLogger(__name__)

TREE_DEPTH = 20
ZERO_VALUE = 0

NodeHasher = Callable[[int, int], int]

_zero_cache: dict = {}


def _zero_hashes(hasher: NodeHasher, depth: int, zero_value: int) -> Tuple[int, ...]:
    """Zero hash of every level, computed once per (hasher, depth, zero)."""
    key = (hasher, depth, zero_value)
    if key not in _zero_cache:
        zeros = [zero_value]
        for _ in range(depth):
            zeros.append(hasher(zeros[-1], zeros[-1]))
        _zero_cache[key] = tuple(zeros)
    return _zero_cache[key]


@dataclass(frozen=True)
class MerkleProof:
    """Proof of inclusion in a Merkle tree."""

    leaf: int
    siblings: Tuple[int, ...]
    path_indices: Tuple[int, ...]  # 0 = current node is the left child
    root: int

    def compute_root(self, hasher: NodeHasher = PoseidonHasher.node_hash) -> int:
        """Root implied by the leaf and its authentication path."""
        current = self.leaf
        for sibling, index in zip(self.siblings, self.path_indices):
            if index:
                current = hasher(sibling, current)
            else:
                current = hasher(current, sibling)
        return current

    def verify(self, hasher: NodeHasher = PoseidonHasher.node_hash) -> bool:
        """Verify that this proof is valid."""
        if len(self.siblings) != len(self.path_indices):
            return False
        return self.compute_root(hasher) == self.root


class IncrementalMerkleTree:
    """Fixed-depth binary Merkle tree filled left to right."""

    def __init__(
        self,
        leaves: Iterable[int] = (),
        depth: int = TREE_DEPTH,
        zero_value: int = ZERO_VALUE,
        hasher: NodeHasher = PoseidonHasher.node_hash,
    ):
        """
        Initialize the tree and insert ``leaves`` in order.

        Args:
            leaves: Initial leaves
            depth: Number of levels above the leaves
            zero_value: Value of an empty leaf
            hasher: Two-to-one node hash
        """
        if depth < 1:
            raise ValueError("Merkle tree depth must be positive")

        self.depth = depth
        self.zero_value = zero_value
        self.hasher = hasher
        self.zeroes = _zero_hashes(hasher, depth, zero_value)
        self.capacity = 2**depth

        leaves = list(leaves)
        if len(leaves) > self.capacity:
            raise TreeFullError(
                f"Cannot seed {len(leaves)} leaves into a tree of capacity {self.capacity}"
            )

        # nodes[0] are the leaves, nodes[depth] holds the root once non-empty
        self.nodes: List[List[int]] = [leaves]
        for level in range(depth):
            children = self.nodes[level]
            parents = []
            for i in range(0, len(children), 2):
                left = children[i]
                right = children[i + 1] if i + 1 < len(children) else self.zeroes[level]
                parents.append(hasher(left, right))
            self.nodes.append(parents)

    @property
    def leaves(self) -> List[int]:
        return list(self.nodes[0])

    @property
    def root(self) -> int:
        top = self.nodes[self.depth]
        return top[0] if top else self.zeroes[self.depth]

    def get_root(self) -> int:
        """Get the root of the tree."""
        return self.root

    def __len__(self) -> int:
        return len(self.nodes[0])

    def index_of(self, leaf: int) -> int:
        """Index of the first occurrence of ``leaf``, -1 if absent."""
        try:
            return self.nodes[0].index(leaf)
        except ValueError:
            return -1

    def insert(self, leaf: int) -> None:
        """Append a leaf."""
        if len(self.nodes[0]) >= self.capacity:
            raise TreeFullError(f"Merkle tree is full ({self.capacity} leaves)")

        self.nodes[0].append(leaf)
        self._update_path(len(self.nodes[0]) - 1)

    def update(self, index: int, leaf: int) -> None:
        """Overwrite the leaf at ``index``."""
        if index < 0 or index >= len(self.nodes[0]):
            raise IndexError(f"Leaf index {index} out of range")

        self.nodes[0][index] = leaf
        self._update_path(index)

    def _update_path(self, index: int) -> None:
        node = self.nodes[0][index]
        for level in range(self.depth):
            children = self.nodes[level]
            if index % 2 == 0:
                sibling = (
                    children[index + 1]
                    if index + 1 < len(children)
                    else self.zeroes[level]
                )
                node = self.hasher(node, sibling)
            else:
                node = self.hasher(children[index - 1], node)

            index //= 2
            parents = self.nodes[level + 1]
            if index < len(parents):
                parents[index] = node
            else:
                parents.append(node)

    def create_proof(self, index: int) -> MerkleProof:
        """Inclusion proof for the leaf at ``index``."""
        if index < 0 or index >= len(self.nodes[0]):
            raise IndexError(f"Leaf index {index} out of range")

        leaf = self.nodes[0][index]
        siblings = []
        path_indices = []

        for level in range(self.depth):
            children = self.nodes[level]
            is_right = index % 2
            sibling_index = index - 1 if is_right else index + 1
            if sibling_index < len(children):
                siblings.append(children[sibling_index])
            else:
                siblings.append(self.zeroes[level])
            path_indices.append(is_right)
            index //= 2

        return MerkleProof(
            leaf=leaf,
            siblings=tuple(siblings),
            path_indices=tuple(path_indices),
            root=self.root,
        )

    def verify_proof(self, proof: Optional[MerkleProof]) -> bool:
        """Verify a Merkle proof against this tree's hasher."""
        if proof is None:
            return False
        return proof.verify(self.hasher)

    def __repr__(self) -> str:
        return f"IncrementalMerkleTree(depth={self.depth}, leaves={len(self)})"


class CommitmentTree:
    """Commitment ledger view: insert, discard and prove commitment hashes."""

    def __init__(self, commitment_hashes: Iterable[int] = (), depth: int = TREE_DEPTH):
        self._tree = IncrementalMerkleTree(commitment_hashes, depth=depth)

    @property
    def leaf_count(self) -> int:
        return len(self._tree)

    @property
    def leaves(self) -> List[int]:
        """Leaves in insertion order, discarded ones as zero."""
        return self._tree.leaves

    def _locate(self, commitment_hash: int) -> int:
        # Discarded leaves are zero; the zero value is never a real commitment.
        index = -1
        if commitment_hash != ZERO_VALUE:
            index = self._tree.index_of(commitment_hash)
        if index < 0:
            raise NotFoundError(
                f"Commitment hash {commitment_hash} not found in tree",
                commitment_hash=commitment_hash,
            )
        return index

    def contains(self, commitment_hash: int) -> bool:
        return commitment_hash != ZERO_VALUE and self._tree.index_of(commitment_hash) >= 0

    def insert(self, commitment_hash: int) -> None:
        self._tree.insert(commitment_hash)

    def discard(self, commitment_hash: int) -> None:
        """Replace a commitment by the zero leaf."""
        index = self._locate(commitment_hash)
        self._tree.update(index, ZERO_VALUE)
        logger.debug(f"Discarded commitment at leaf {index}")

    def get_root(self) -> int:
        return self._tree.root

    def get_proof(self, commitment_hash: int) -> MerkleProof:
        return self._tree.create_proof(self._locate(commitment_hash))

    def __repr__(self) -> str:
        return f"CommitmentTree(root={self.get_root()}, leaves={self.leaf_count})"
