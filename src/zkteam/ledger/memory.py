"""
In-memory ledger.

A deterministic stand-in for the chain, the entry point, the bundler and
the account factory. It enforces what the account contract enforces
(nullifiers are single use, admin operations carry the owner's signature,
proved operations reference the current root, discards carry a valid
inclusion proof) and emits the same events, so the client stack can be
exercised end to end without a node.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address

from ..core.operation import UserOperation, get_user_operation_hash
from ..crypto.encryption import ZERO_ALLOWANCE
from ..crypto.merkle import MerkleProof, CommitmentTree
from ..errors import LedgerError, NotFoundError, OperationRejectedError
from .abi import decode_execute, decode_init_code, decode_proof_signature
from .base import (
    DiscardEntry,
    EventKind,
    LedgerClient,
    LedgerEvent,
    OperationReceipt,
)

logger = logging.getLogger(__name__)

ECDSA_SIGNATURE_LENGTH = 65
PUBLIC_SIGNAL_COUNT = 6
DEFAULT_CHAIN_ID = 31337
DEFAULT_FACTORY = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
DEFAULT_ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
BASE_GAS = 50_000


@dataclass
class SimulatedAccount:
    """State of one deployed (or counterfactual) account contract."""

    address: str
    owner: str
    salt: int
    deployed: bool = False
    nonce: int = 0
    balance: int = 0
    nullifiers: Dict[int, bytes] = field(default_factory=dict)
    tree: CommitmentTree = field(default_factory=CommitmentTree)
    calls: List[Tuple[str, int, bytes]] = field(default_factory=list)
    events: List[LedgerEvent] = field(default_factory=list)


# (operation, decoded proof signature, account) -> accepted
ProofChecker = Callable[[UserOperation, Tuple[Any, ...], SimulatedAccount], bool]


class InMemoryLedger(LedgerClient):
    """Single-process simulation of the account's ledger."""

    def __init__(
        self,
        chain_id: int = DEFAULT_CHAIN_ID,
        entry_point: str = DEFAULT_ENTRY_POINT,
        factory_address: str = DEFAULT_FACTORY,
        auto_mine: bool = True,
        proof_checker: Optional[ProofChecker] = None,
    ):
        self.chain_id = chain_id
        self.entry_point = to_checksum_address(entry_point)
        self.factory_address = to_checksum_address(factory_address)
        self.auto_mine = auto_mine
        self.proof_checker = proof_checker or check_public_signals

        self.block_number = 0
        self.accounts: Dict[str, SimulatedAccount] = {}
        self.balances: Dict[str, int] = {}
        self.pending: List[Tuple[str, UserOperation]] = []
        self.receipts: Dict[str, OperationReceipt] = {}
        self.transactions: Dict[str, int] = {}
        self.rejected: Dict[str, str] = {}

    # Account bookkeeping

    def _counterfactual_address(self, owner: str, salt: int) -> str:
        digest = keccak(
            encode(
                ["address", "address", "uint256"],
                [self.factory_address, to_checksum_address(owner), salt],
            )
        )
        return to_checksum_address(digest[12:])

    def _account(self, address: str) -> Optional[SimulatedAccount]:
        return self.accounts.get(to_checksum_address(address))

    def fund(self, address: str, amount: int) -> None:
        """Credit ``amount`` wei to ``address``."""
        account = self._account(address)
        if account is not None:
            account.balance += amount
        else:
            address = to_checksum_address(address)
            self.balances[address] = self.balances.get(address, 0) + amount

    async def get_balance(self, address: str) -> int:
        account = self._account(address)
        if account is not None:
            return account.balance
        return self.balances.get(to_checksum_address(address), 0)

    def _mine(self) -> int:
        self.block_number += 1
        return self.block_number

    def _transaction_hash(self, seed: bytes) -> str:
        return "0x" + keccak(seed + self.block_number.to_bytes(32, "big")).hex()

    def deploy_account(self, owner: str, salt: int = 0) -> str:
        """Deploy an account directly, as the factory would."""
        address = self._counterfactual_address(owner, salt)
        if address not in self.accounts:
            self.accounts[address] = SimulatedAccount(
                address=address,
                owner=to_checksum_address(owner),
                salt=salt,
                deployed=True,
                balance=self.balances.pop(address, 0),
            )
            self._mine()
        return address

    def emit_event(self, address: str, kind: EventKind, args: Tuple[Any, ...]) -> LedgerEvent:
        """Mine a block carrying one raw event (reorg and replay scenarios)."""
        account = self._account(address)
        if account is None:
            raise LedgerError(f"Unknown account {address}")
        block = self._mine()
        event = LedgerEvent(
            kind=kind,
            args=tuple(args),
            transaction_hash=self._transaction_hash(repr(args).encode()),
            block_number=block,
        )
        account.events.append(event)
        return event

    # LedgerClient

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def is_deployed(self, address: str) -> bool:
        account = self._account(address)
        return account is not None and account.deployed

    async def get_nonce(self, address: str) -> int:
        account = self._account(address)
        return account.nonce if account is not None else 0

    async def get_account_address(self, owner: str, index: int) -> str:
        return self._counterfactual_address(owner, index)

    async def query_events(
        self, account: str, kind: EventKind, from_block: int, to_block: int
    ) -> List[LedgerEvent]:
        state = self._account(account)
        if state is None:
            return []
        return [
            event
            for event in state.events
            if event.kind is kind and from_block <= event.block_number <= to_block
        ]

    async def estimate_gas(self, sender: str, to: str, call_data: bytes) -> int:
        zero_bytes = call_data.count(0)
        return BASE_GAS + 4 * zero_bytes + 16 * (len(call_data) - zero_bytes)

    async def submit_operation(self, operation: UserOperation) -> str:
        operation_hash = "0x" + get_user_operation_hash(
            operation, self.entry_point, self.chain_id
        ).hex()

        if self.auto_mine:
            self._execute(operation_hash, operation)
        else:
            self.pending.append((operation_hash, operation))
        return operation_hash

    def mine(self) -> List[str]:
        """Execute queued operations; returns the hashes that were included."""
        included = []
        pending, self.pending = self.pending, []
        for operation_hash, operation in pending:
            try:
                self._execute(operation_hash, operation)
            except OperationRejectedError as e:
                self.rejected[operation_hash] = e.message
                logger.info(f"Dropped operation {operation_hash}: {e.message}")
                continue
            included.append(operation_hash)
        return included

    async def get_operation_receipt(self, operation_hash: str) -> Optional[OperationReceipt]:
        return self.receipts.get(operation_hash)

    async def send_discard(
        self, account: str, entries: Sequence[DiscardEntry], signer: Any
    ) -> str:
        state = self._account(account)
        if state is None or not state.deployed:
            raise OperationRejectedError(f"Account {account} is not deployed")
        if to_checksum_address(signer.address) != state.owner:
            raise OperationRejectedError("Only the owner can discard commitment hashes")

        tree = CommitmentTree(state.tree.leaves)
        for entry in entries:
            proof = MerkleProof(
                leaf=entry.commitment_hash,
                siblings=tuple(entry.tree_siblings),
                path_indices=tuple(entry.tree_path_indices),
                root=tree.get_root(),
            )
            if not proof.verify():
                raise OperationRejectedError(
                    f"Invalid inclusion proof for commitment {entry.commitment_hash}"
                )
            try:
                tree.discard(entry.commitment_hash)
            except NotFoundError as e:
                raise OperationRejectedError(e.message, cause=e) from e

        block = self._mine()
        tx_hash = self._transaction_hash(
            b"".join(entry.commitment_hash.to_bytes(32, "big") for entry in entries)
        )
        state.tree = tree
        for entry in entries:
            state.events.append(
                LedgerEvent(
                    kind=EventKind.DISCARD,
                    args=(entry.commitment_hash,),
                    transaction_hash=tx_hash,
                    block_number=block,
                )
            )
        self.transactions[tx_hash] = block
        logger.info(f"Discarded {len(entries)} commitment(s) in block {block}")
        return tx_hash

    async def wait_for_transaction(self, transaction_hash: str) -> None:
        if transaction_hash not in self.transactions:
            raise LedgerError(f"Unknown transaction {transaction_hash}")

    # Contract semantics

    def _deploy(self, operation: UserOperation) -> SimulatedAccount:
        try:
            factory, owner, salt = decode_init_code(operation.init_code)
        except ValueError as e:
            raise OperationRejectedError(f"Malformed init code: {e}", cause=e) from e
        if factory != self.factory_address:
            raise OperationRejectedError(f"Unknown factory {factory}")

        address = self._counterfactual_address(owner, salt)
        if address != to_checksum_address(operation.sender):
            raise OperationRejectedError("Init code does not create the sender")

        account = SimulatedAccount(
            address=address,
            owner=owner,
            salt=salt,
            balance=self.balances.get(address, 0),
        )
        account.deployed = True
        logger.info(f"Deployed account {address} for owner {owner}")
        return account

    def _execute(self, operation_hash: str, operation: UserOperation) -> None:
        sender = to_checksum_address(operation.sender)
        account = self.accounts.get(sender)
        created = None
        if account is None or not account.deployed:
            if not operation.init_code:
                raise OperationRejectedError(f"Account {sender} is not deployed")
            created = self._deploy(operation)
            account = created
        elif operation.init_code:
            raise OperationRejectedError(f"Account {sender} is already deployed")

        if operation.nonce != account.nonce:
            raise OperationRejectedError(
                f"Invalid nonce {operation.nonce}, expected {account.nonce}"
            )

        try:
            (
                old_nullifier_hash,
                new_commitment_hash,
                value,
                encrypted_allowance,
                target,
                data,
            ) = decode_execute(operation.call_data)
        except ValueError as e:
            raise OperationRejectedError(f"Malformed call data: {e}", cause=e) from e

        if old_nullifier_hash in account.nullifiers:
            raise OperationRejectedError("Nullifier hash already used")

        if len(operation.signature) == ECDSA_SIGNATURE_LENGTH:
            self._check_owner_signature(operation, account)
        else:
            try:
                decoded = decode_proof_signature(operation.signature, PUBLIC_SIGNAL_COUNT)
            except DecodingError as e:
                raise OperationRejectedError(
                    f"Malformed proof signature: {e}", cause=e
                ) from e
            if not self.proof_checker(operation, decoded, account):
                raise OperationRejectedError("Proof rejected")

        if value > account.balance:
            raise OperationRejectedError(
                f"Account balance {account.balance} cannot cover {value}"
            )

        # All checks passed; apply state changes.
        if created is not None:
            self.accounts[sender] = created
            self.balances.pop(sender, None)

        account.tree.insert(new_commitment_hash)
        account.nullifiers[old_nullifier_hash] = bytes(encrypted_allowance)
        account.balance -= value
        target = to_checksum_address(target)
        if target != account.address and value:
            self.fund(target, value)
        account.calls.append((target, value, bytes(data)))
        account.nonce += 1

        block = self._mine()
        tx_hash = self._transaction_hash(bytes.fromhex(operation_hash[2:]))
        account.events.append(
            LedgerEvent(
                kind=EventKind.EXECUTION,
                args=(old_nullifier_hash, new_commitment_hash, bytes(encrypted_allowance)),
                transaction_hash=tx_hash,
                block_number=block,
            )
        )
        self.transactions[tx_hash] = block
        self.receipts[operation_hash] = OperationReceipt(
            operation_hash=operation_hash,
            transaction_hash=tx_hash,
            success=True,
            metadata={"block_number": block, "sender": sender},
        )
        logger.info(f"Executed operation {operation_hash} in block {block}")

    def _check_owner_signature(self, operation: UserOperation, account: SimulatedAccount) -> None:
        operation_hash = get_user_operation_hash(operation, self.entry_point, self.chain_id)
        try:
            signer = Account.recover_message(
                encode_defunct(primitive=operation_hash), signature=operation.signature
            )
        except Exception as e:
            raise OperationRejectedError(f"Unreadable signature: {e}", cause=e) from e
        if to_checksum_address(signer) != account.owner:
            raise OperationRejectedError("Signature is not from the account owner")

    def get_encrypted_allowance(self, address: str, nullifier_hash: int) -> bytes:
        """Contract-side view of a nullifier slot."""
        account = self._account(address)
        if account is None:
            return ZERO_ALLOWANCE
        return account.nullifiers.get(nullifier_hash, ZERO_ALLOWANCE)


def check_public_signals(
    operation: UserOperation, decoded: Tuple[Any, ...], account: SimulatedAccount
) -> bool:
    """
    Check what the on-chain verifier binds besides the pairing equation:
    the revealed nullifier hash, the pre-insertion root and the new
    commitment must match the call data and the account's tree.
    """
    signals = decoded[3]
    old_nullifier_hash, new_commitment_hash = decode_execute(operation.call_data)[:2]

    if signals[0] != old_nullifier_hash or signals[2] != new_commitment_hash:
        return False
    if signals[1] != account.tree.get_root():
        return False

    preview = CommitmentTree(account.tree.leaves)
    preview.insert(new_commitment_hash)
    return signals[3] == preview.get_root()
