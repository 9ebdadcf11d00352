"""
Detection and remediation of tampered allowance records.

A holder of a user key can log an encrypted allowance that differs from the
allowance committed in the tree (the circuit does not see the ciphertext).
The administrator, who can re-derive every user chain, replays each chain,
tags the logs it can account for, and discards the commitments it cannot.
"""

import logging
from typing import Any, List, Optional, Sequence

from ..crypto.hashing import PoseidonHasher
from ..crypto.encryption import decrypt_allowance
from ..errors import AuthenticationError
from ..ledger.base import DiscardEntry
from ..wallet.key_derivation import ExtendedKey, Triplet, derive_user_key, generate_triplet
from .account import AccountState
from .events import LogEntry

logger = logging.getLogger(__name__)

DISCARD_BATCH_SIZE = 5


class AnomalyDetector:
    """Replays user chains against the event log and discards rogue commitments."""

    def __init__(
        self,
        account: AccountState,
        admin_root: ExtendedKey,
        signer: Any = None,
        batch_size: Optional[int] = None,
    ):
        self.account = account
        self.admin_root = admin_root
        self.signer = signer
        self.batch_size = batch_size or account.ledger_config.discard_batch_size or DISCARD_BATCH_SIZE

    def _user_root(self, user_index: int) -> ExtendedKey:
        return derive_user_key(self.admin_root, self.account.account_index, user_index)

    async def check_user(self, user_index: int) -> None:
        """Tag every log produced along ``user_index``'s chain."""
        user_root = self._user_root(user_index)
        last_index = await self.account.get_last_index(user_root)
        if last_index == 0:
            return

        old = generate_triplet(user_root, 0)
        for step in range(1, last_index + 1):
            current = generate_triplet(user_root, step)
            log = self.account.events.get_log_by_nullifier(
                PoseidonHasher.nullifier_hash(old.nullifier)
            )
            if log is not None:
                log.user_index = user_index
                if not log.valid and not log.discarded:
                    self._verify(log, old, current, user_index, step)
            old = current

    def _verify(
        self, log: LogEntry, old: Triplet, current: Triplet, user_index: int, step: int
    ) -> None:
        try:
            allowance = decrypt_allowance(log.encrypted_allowance, old.key, old.nonce).allowance
        except AuthenticationError:
            log.valid = False
            logger.warning(
                f"User #{user_index} step {step}: allowance does not decrypt "
                f"(commitment {log.commitment_hash})"
            )
            return

        expected = PoseidonHasher.commitment_hash(current.nullifier, current.secret, allowance)
        log.valid = expected == log.commitment_hash
        if not log.valid:
            logger.warning(
                f"User #{user_index} step {step}: commitment {log.commitment_hash} "
                f"does not match logged allowance"
            )

    async def check_integrity(self, user_index_limit: int) -> List[int]:
        """
        Check users ``0..user_index_limit`` (inclusive).

        Returns:
            Commitment hashes of every log that is neither valid nor discarded
        """
        await self.account.refresh()
        for user_index in range(user_index_limit + 1):
            await self.check_user(user_index)

        anomalies = [
            log.commitment_hash
            for log in self.account.events.logs
            if not log.valid and not log.discarded
        ]
        if anomalies:
            logger.info(f"Integrity check found {len(anomalies)} anomalous commitment(s)")
        return anomalies

    async def discard_commitment_hashes(self, commitment_hashes: Sequence[int]) -> List[str]:
        """
        Discard ``commitment_hashes`` on the ledger.

        Proofs are taken against one tree, discarding each hash in it before
        proving the next, and sent in batches of ``batch_size``; each batch
        is confirmed before the next is sent.

        Returns:
            Transaction hashes, one per batch
        """
        if not commitment_hashes:
            return []

        tree = await self.account.build_tree()
        entries = []
        for commitment_hash in commitment_hashes:
            proof = tree.get_proof(commitment_hash)
            entries.append(
                DiscardEntry(
                    commitment_hash=commitment_hash,
                    tree_siblings=proof.siblings,
                    tree_path_indices=proof.path_indices,
                )
            )
            tree.discard(commitment_hash)

        transaction_hashes = []
        for start in range(0, len(entries), self.batch_size):
            batch = entries[start : start + self.batch_size]
            tx_hash = await self.account.ledger.send_discard(
                self.account.address, batch, self.signer
            )
            await self.account.ledger.wait_for_transaction(tx_hash)
            transaction_hashes.append(tx_hash)
            logger.info(f"Discarded {len(batch)} commitment(s) in {tx_hash}")

        return transaction_hashes
