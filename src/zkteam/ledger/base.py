"""
External ledger interface.

The account contract, entry point, bundler and factory are reached only
through ``LedgerClient``. Every method is a coroutine: event queries,
submissions and receipt lookups are network I/O.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from ..core.operation import UserOperation


class EventKind(Enum):
    """Account contract events replayed by the cache."""

    EXECUTION = "ZkTeamExecution"
    DISCARD = "ZkTeamDiscard"


@dataclass(frozen=True)
class LedgerEvent:
    """One emitted event.

    ``EXECUTION`` args: (nullifier_hash, commitment_hash, encrypted_allowance).
    ``DISCARD`` args: (commitment_hash,).
    """

    kind: EventKind
    args: Tuple[Any, ...]
    transaction_hash: str
    block_number: int


@dataclass(frozen=True)
class DiscardEntry:
    """Commitment to discard together with its inclusion proof."""

    commitment_hash: int
    tree_siblings: Tuple[int, ...]
    tree_path_indices: Tuple[int, ...]

    def to_abi(self) -> Tuple[int, List[int], List[int]]:
        return (
            self.commitment_hash,
            list(self.tree_siblings),
            list(self.tree_path_indices),
        )


@dataclass
class OperationReceipt:
    """Outcome of a submitted user operation."""

    operation_hash: str
    transaction_hash: str
    success: bool = True
    metadata: dict = field(default_factory=dict)


class LedgerClient(ABC):
    """Reader/writer for the account's ledger."""

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain head."""

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Chain id used in operation hashes."""

    @abstractmethod
    async def is_deployed(self, address: str) -> bool:
        """Whether code exists at ``address`` (false for a phantom account)."""

    @abstractmethod
    async def get_nonce(self, address: str) -> int:
        """Entry-point nonce of a deployed account."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Balance of ``address`` in wei."""

    @abstractmethod
    async def get_account_address(self, owner: str, index: int) -> str:
        """Counterfactual account address from the factory."""

    @abstractmethod
    async def query_events(
        self, account: str, kind: EventKind, from_block: int, to_block: int
    ) -> List[LedgerEvent]:
        """Events of ``kind`` emitted by ``account`` in ``[from_block, to_block]``."""

    @abstractmethod
    async def estimate_gas(self, sender: str, to: str, call_data: bytes) -> int:
        """Gas estimate for calling ``to`` with ``call_data``."""

    @abstractmethod
    async def submit_operation(self, operation: "UserOperation") -> str:
        """Hand an operation to the bundler; returns the operation hash."""

    @abstractmethod
    async def get_operation_receipt(self, operation_hash: str) -> Optional[OperationReceipt]:
        """Receipt of a submitted operation, ``None`` while not mined."""

    @abstractmethod
    async def send_discard(
        self, account: str, entries: Sequence[DiscardEntry], signer: Any
    ) -> str:
        """Send one remediation transaction; returns its hash."""

    @abstractmethod
    async def wait_for_transaction(self, transaction_hash: str) -> None:
        """Block until ``transaction_hash`` is confirmed."""
