"""
Input assembly for allowance updates.

An administrator's update needs only the values the account checks next
to an ECDSA signature (``SignatureInputs``). A user's spend needs the full
witness of the spend circuit: the old commitment's membership in the
current tree, the new commitment's membership in the tree after insertion,
and the arithmetic linking the two allowances (``ProofInputs``).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from ..crypto.encryption import ZERO_ALLOWANCE, decrypt_allowance, encrypt_allowance
from ..crypto.hashing import PoseidonHasher
from ..crypto.merkle import CommitmentTree
from ..errors import InsufficientAllowanceError, ValidationError, ZeroAllowanceError
from .events import EventLogCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureInputs:
    """Values for an administrator-signed allowance update."""

    new_allowance: int
    old_nullifier_hash: int
    new_commitment_hash: int
    new_root: int
    encrypted_allowance: bytes


@dataclass(frozen=True)
class ProofInputs:
    """Witness and public values for a proved spend."""

    value: int
    old_allowance: int
    old_nullifier: int
    old_secret: int
    old_nullifier_hash: int
    old_commitment_hash: int
    old_root: int
    old_tree_siblings: Tuple[int, ...]
    old_tree_path_indices: Tuple[int, ...]
    new_allowance: int
    new_nullifier: int
    new_secret: int
    new_nullifier_hash: int
    new_commitment_hash: int
    new_root: int
    new_tree_siblings: Tuple[int, ...]
    new_tree_path_indices: Tuple[int, ...]
    encrypted_allowance: bytes

    def private_witnesses(self, call_data_hash: int) -> Dict[str, Any]:
        """Circuit input signals, keyed by their circuit names."""
        return {
            "value": self.value,
            "oldAllowance": self.old_allowance,
            "oldNullifier": self.old_nullifier,
            "oldSecret": self.old_secret,
            "oldTreeSiblings": list(self.old_tree_siblings),
            "oldTreePathIndices": list(self.old_tree_path_indices),
            "newAllowance": self.new_allowance,
            "newNullifier": self.new_nullifier,
            "newSecret": self.new_secret,
            "newTreeSiblings": list(self.new_tree_siblings),
            "newTreePathIndices": list(self.new_tree_path_indices),
            "callDataHash": call_data_hash,
        }

    def public_outputs(self) -> List[int]:
        """Leading public signals, in circuit order."""
        return [
            self.old_nullifier_hash,
            self.old_root,
            self.new_commitment_hash,
            self.new_root,
        ]


async def get_logged_allowance(
    events: EventLogCache, nullifier_hash: int, key: bytes, nonce: bytes
) -> int:
    """Decrypt the allowance logged under ``nullifier_hash``."""
    encrypted = await events.get_encrypted_allowance(nullifier_hash)
    if encrypted == ZERO_ALLOWANCE:
        raise ZeroAllowanceError(field="nullifier_hash", value=nullifier_hash)
    return decrypt_allowance(encrypted, key, nonce).allowance


class ProofInputBuilder:
    """Builds update inputs against the current commitment tree."""

    def __init__(self, events: EventLogCache, hasher: type = PoseidonHasher):
        self.events = events
        self.hasher = hasher

    async def build_tree(self) -> CommitmentTree:
        return CommitmentTree(await self.events.get_commitment_hashes())

    async def generate_signature_inputs(
        self,
        old_nullifier: int,
        new_allowance: int,
        new_nullifier: int,
        new_secret: int,
        new_key: bytes,
        new_nonce: bytes,
    ) -> SignatureInputs:
        """Inputs for granting ``new_allowance`` with an owner signature."""
        old_nullifier_hash = self.hasher.nullifier_hash(old_nullifier)
        new_commitment_hash = self.hasher.commitment_hash(
            new_nullifier, new_secret, new_allowance
        )

        tree = await self.build_tree()
        tree.insert(new_commitment_hash)

        return SignatureInputs(
            new_allowance=new_allowance,
            old_nullifier_hash=old_nullifier_hash,
            new_commitment_hash=new_commitment_hash,
            new_root=tree.get_root(),
            encrypted_allowance=encrypt_allowance(new_allowance, new_key, new_nonce),
        )

    async def generate_proof_inputs(
        self,
        value: int,
        old_nullifier_hash: int,
        old_nullifier: int,
        old_secret: int,
        old_key: bytes,
        old_nonce: bytes,
        new_nullifier: int,
        new_secret: int,
        new_key: bytes,
        new_nonce: bytes,
    ) -> ProofInputs:
        """
        Inputs for spending ``value`` from the current allowance.

        Args:
            value: Amount to spend
            old_nullifier_hash: Log key holding the current encrypted allowance
            old_nullifier: Nullifier revealed by this spend
            old_secret: Secret of the current commitment
            old_key: Key the current allowance is encrypted under
            old_nonce: Nonce the current allowance is encrypted under
            new_nullifier: Nullifier of the next commitment
            new_secret: Secret of the next commitment
            new_key: Key to encrypt the remaining allowance under
            new_nonce: Nonce to encrypt the remaining allowance under

        Returns:
            Complete proof inputs
        """
        if value < 0:
            raise ValidationError(
                "Spend value must be non-negative", field="value", value=value, expected=">= 0"
            )

        old_allowance = await get_logged_allowance(
            self.events, old_nullifier_hash, old_key, old_nonce
        )
        if value > old_allowance:
            raise InsufficientAllowanceError(
                "Insufficient allowance",
                field="value",
                value=value,
                expected=f"<= {old_allowance}",
            )
        new_allowance = old_allowance - value

        revealed_nullifier_hash = self.hasher.nullifier_hash(old_nullifier)
        old_commitment_hash = self.hasher.commitment_hash(
            old_nullifier, old_secret, old_allowance
        )

        tree = await self.build_tree()
        old_root = tree.get_root()
        old_proof = tree.get_proof(old_commitment_hash)

        new_nullifier_hash = self.hasher.nullifier_hash(new_nullifier)
        new_commitment_hash = self.hasher.commitment_hash(
            new_nullifier, new_secret, new_allowance
        )
        tree.insert(new_commitment_hash)
        new_proof = tree.get_proof(new_commitment_hash)

        logger.debug(f"Spend of {value} leaves {new_allowance} after root {old_root}")

        return ProofInputs(
            value=value,
            old_allowance=old_allowance,
            old_nullifier=old_nullifier,
            old_secret=old_secret,
            old_nullifier_hash=revealed_nullifier_hash,
            old_commitment_hash=old_commitment_hash,
            old_root=old_root,
            old_tree_siblings=old_proof.siblings,
            old_tree_path_indices=old_proof.path_indices,
            new_allowance=new_allowance,
            new_nullifier=new_nullifier,
            new_secret=new_secret,
            new_nullifier_hash=new_nullifier_hash,
            new_commitment_hash=new_commitment_hash,
            new_root=tree.get_root(),
            new_tree_siblings=new_proof.siblings,
            new_tree_path_indices=new_proof.path_indices,
            encrypted_allowance=encrypt_allowance(new_allowance, new_key, new_nonce),
        )
