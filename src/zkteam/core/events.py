"""
Cached replica of the account's event log.

Execution events add a log entry (nullifier hash, commitment hash and
encrypted allowance); discard events mark an existing entry. The replica
only ever grows, and all reads and writes happen under one lock per
instance so concurrent callers never observe a half-applied refresh.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..crypto.encryption import ZERO_ALLOWANCE
from ..errors import LedgerConsistencyError
from ..ledger.base import EventKind, LedgerClient

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """One execution recorded by the account contract."""

    nullifier_hash: int
    commitment_hash: int
    encrypted_allowance: bytes
    transaction_hash: str
    block_number: int
    discarded: bool = False
    # Set by the anomaly detector once the owning user chain is known.
    user_index: Optional[int] = None
    valid: Optional[bool] = None


class EventLogCache:
    """Incrementally refreshed view of an account's execution and discard events."""

    def __init__(self, ledger: LedgerClient, account_address: str):
        self.ledger = ledger
        self.account_address = account_address
        self._lock = asyncio.Lock()
        self._cursor = 0
        self._logs: List[LogEntry] = []
        self._by_commitment: Dict[int, LogEntry] = {}
        self._by_nullifier: Dict[int, LogEntry] = {}

    @property
    def cursor(self) -> int:
        """Next block to fetch."""
        return self._cursor

    @property
    def logs(self) -> List[LogEntry]:
        return list(self._logs)

    async def refresh(self) -> List[LogEntry]:
        """Fetch events since the cursor and fold them into the replica."""
        async with self._lock:
            if not await self.ledger.is_deployed(self.account_address):
                return []

            head = await self.ledger.get_block_number()
            if head < self._cursor:
                return list(self._logs)

            executions = await self.ledger.query_events(
                self.account_address, EventKind.EXECUTION, self._cursor, head
            )
            discards = await self.ledger.query_events(
                self.account_address, EventKind.DISCARD, self._cursor, head
            )

            # Nothing is applied until every discard resolves to a known entry.
            fresh: List[LogEntry] = []
            fresh_by_commitment: Dict[int, LogEntry] = {}
            fresh_nullifiers = set()
            for event in executions:
                nullifier_hash, commitment_hash, encrypted_allowance = event.args
                if nullifier_hash in self._by_nullifier or nullifier_hash in fresh_nullifiers:
                    logger.debug(f"Skipping repeated execution for nullifier {nullifier_hash}")
                    continue
                entry = LogEntry(
                    nullifier_hash=nullifier_hash,
                    commitment_hash=commitment_hash,
                    encrypted_allowance=bytes(encrypted_allowance),
                    transaction_hash=event.transaction_hash,
                    block_number=event.block_number,
                )
                fresh.append(entry)
                fresh_nullifiers.add(nullifier_hash)
                fresh_by_commitment[commitment_hash] = entry

            discarded = []
            for event in discards:
                (commitment_hash,) = event.args
                entry = fresh_by_commitment.get(commitment_hash) or self._by_commitment.get(
                    commitment_hash
                )
                if entry is None:
                    raise LedgerConsistencyError(
                        f"Discard event for unknown commitment hash {commitment_hash}",
                        metadata={"transaction_hash": event.transaction_hash},
                    )
                discarded.append(entry)

            for entry in fresh:
                self._logs.append(entry)
                self._by_commitment[entry.commitment_hash] = entry
                self._by_nullifier[entry.nullifier_hash] = entry
            for entry in discarded:
                entry.discarded = True

            if fresh or discarded:
                logger.info(
                    f"Indexed blocks {self._cursor}..{head} of {self.account_address}: "
                    f"{len(fresh)} execution(s), {len(discarded)} discard(s)"
                )
            self._cursor = head + 1
            return list(self._logs)

    async def get_encrypted_allowance(self, nullifier_hash: int) -> bytes:
        """Encrypted allowance recorded under ``nullifier_hash``, or the zero sentinel."""
        await self.refresh()
        entry = self._by_nullifier.get(nullifier_hash)
        return entry.encrypted_allowance if entry is not None else ZERO_ALLOWANCE

    async def get_commitment_hashes(self) -> List[int]:
        """Commitment hashes in insertion order, discarded ones as 0."""
        await self.refresh()
        return [0 if entry.discarded else entry.commitment_hash for entry in self._logs]

    def get_log_by_nullifier(self, nullifier_hash: int) -> Optional[LogEntry]:
        return self._by_nullifier.get(nullifier_hash)

    def get_log_by_commitment(self, commitment_hash: int) -> Optional[LogEntry]:
        return self._by_commitment.get(commitment_hash)
