"""
Account state shared by administrator and user clients.

``AccountState`` owns the event log replica of one account and everything
derived from it: chain walking, the commitment tree, and construction and
submission of user operations.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..config import AccountConfig, LedgerConfig
from ..crypto.hashing import PoseidonHasher
from ..crypto.merkle import CommitmentTree
from ..errors import ConfigurationError
from ..ledger.abi import encode_execute, get_init_code
from ..ledger.base import LedgerClient, OperationReceipt
from ..wallet.key_derivation import ExtendedKey, derive_nullifier
from .events import EventLogCache
from .inputs import ProofInputBuilder, get_logged_allowance
from .operation import (
    DEFAULT_PRE_VERIFICATION_GAS,
    OperationOverrides,
    UserOperation,
    get_user_operation_hash,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountInfo:
    """One entry of an owner's account listing."""

    index: int
    address: str
    deployed: bool
    balance: int


async def get_accounts(
    ledger: LedgerClient, owner: str, page: int, limit: int
) -> List[AccountInfo]:
    """Counterfactual accounts ``page * limit`` .. ``page * limit + limit - 1`` of ``owner``."""

    async def lookup(index: int) -> AccountInfo:
        address = await ledger.get_account_address(owner, index)
        return AccountInfo(
            index=index,
            address=address,
            deployed=await ledger.is_deployed(address),
            balance=await ledger.get_balance(address),
        )

    return list(
        await asyncio.gather(*(lookup(page * limit + k) for k in range(limit)))
    )


class AccountState:
    """Event log, chain walker and operation factory for one account."""

    def __init__(
        self,
        ledger: LedgerClient,
        address: str,
        config: Optional[AccountConfig] = None,
        ledger_config: Optional[LedgerConfig] = None,
    ):
        self.ledger = ledger
        self.address = address
        self.config = config or AccountConfig(account_address=address)
        self.ledger_config = ledger_config or LedgerConfig()
        self.events = EventLogCache(ledger, address)
        self.inputs = ProofInputBuilder(self.events)
        self._index_hints: Dict[Tuple[bytes, bytes], int] = {}

    @classmethod
    async def open(
        cls,
        ledger: LedgerClient,
        config: AccountConfig,
        ledger_config: Optional[LedgerConfig] = None,
    ) -> "AccountState":
        """Resolve the account address (from config or the factory) and wrap it."""
        address = config.account_address
        if address is None:
            if config.owner_address is None:
                raise ConfigurationError(
                    "Either account_address or owner_address is required",
                    config_key="account_address",
                )
            address = await ledger.get_account_address(config.owner_address, config.account_index)
            logger.info(f"Resolved account #{config.account_index} to {address}")
        return cls(ledger, address, config=config, ledger_config=ledger_config)

    @property
    def account_index(self) -> int:
        return self.config.account_index

    async def is_phantom(self) -> bool:
        """True until the account contract is deployed."""
        return not await self.ledger.is_deployed(self.address)

    async def refresh(self):
        return await self.events.refresh()

    async def get_commitment_hashes(self) -> List[int]:
        return await self.events.get_commitment_hashes()

    async def get_encrypted_allowance(self, nullifier_hash: int) -> bytes:
        return await self.events.get_encrypted_allowance(nullifier_hash)

    async def get_decrypted_allowance(self, nullifier_hash: int, key: bytes, nonce: bytes) -> int:
        return await get_logged_allowance(self.events, nullifier_hash, key, nonce)

    async def build_tree(self) -> CommitmentTree:
        return await self.inputs.build_tree()

    async def get_last_index(self, root: ExtendedKey) -> int:
        """First chain step below ``root`` whose nullifier hash is not logged."""
        await self.events.refresh()

        hint_key = (root.key, root.chain_code)
        step = self._index_hints.get(hint_key, 0)
        while True:
            nullifier_hash = PoseidonHasher.nullifier_hash(derive_nullifier(root, step))
            if self.events.get_log_by_nullifier(nullifier_hash) is None:
                break
            step += 1

        self._index_hints[hint_key] = step
        return step

    def get_init_code(self) -> bytes:
        """Factory call deploying this account on its first operation."""
        if not self.config.factory_address:
            raise ConfigurationError("No factory to get init code", config_key="factory_address")
        if not self.config.owner_address:
            raise ConfigurationError("No owner to get init code", config_key="owner_address")
        return get_init_code(
            self.config.factory_address, self.config.owner_address, self.config.account_index
        )

    async def get_nonce(self) -> int:
        if await self.is_phantom():
            return 0
        return await self.ledger.get_nonce(self.address)

    async def create_unsigned_operation(
        self,
        old_nullifier_hash: int,
        new_commitment_hash: int,
        value: int,
        encrypted_allowance: bytes,
        target: str,
        data: bytes,
        overrides: Optional[OperationOverrides] = None,
    ) -> UserOperation:
        """
        Build the ``execute`` operation; the signature is left empty.

        Gas, fees and nonce come from ``overrides`` where given. Fee policy is
        left to the caller: fees default to zero.
        """
        overrides = overrides or OperationOverrides()
        call_data = encode_execute(
            old_nullifier_hash, new_commitment_hash, value, encrypted_allowance, target, data
        )

        entry_point = self.config.entry_point_address
        if overrides.gas_limit is not None:
            call_gas_limit = overrides.gas_limit
        else:
            call_gas_limit = await self.ledger.estimate_gas(entry_point, self.address, call_data)

        init_code = b""
        if await self.is_phantom():
            init_code = self.get_init_code()
            if overrides.gas_limit is None:
                call_gas_limit += await self.ledger.estimate_gas(
                    entry_point, self.config.factory_address, init_code[20:]
                )

        nonce = overrides.nonce if overrides.nonce is not None else await self.get_nonce()

        return UserOperation(
            sender=self.address,
            nonce=nonce,
            init_code=init_code,
            call_data=call_data,
            call_gas_limit=call_gas_limit,
            verification_gas_limit=(
                overrides.verification_gas_limit
                if overrides.verification_gas_limit is not None
                else self.config.verification_gas_limit
            ),
            pre_verification_gas=(
                overrides.pre_verification_gas
                if overrides.pre_verification_gas is not None
                else DEFAULT_PRE_VERIFICATION_GAS
            ),
            max_fee_per_gas=overrides.max_fee_per_gas or 0,
            max_priority_fee_per_gas=overrides.max_priority_fee_per_gas or 0,
            paymaster_and_data=overrides.paymaster_and_data or b"",
        )

    async def get_operation_hash(self, operation: UserOperation) -> bytes:
        chain_id = await self.ledger.get_chain_id()
        return get_user_operation_hash(operation, self.config.entry_point_address, chain_id)

    async def wait_for_operation_receipt(
        self,
        operation_hash: str,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Optional[OperationReceipt]:
        """Poll for a receipt; ``None`` if none appears within ``timeout`` seconds."""
        timeout = self.ledger_config.receipt_timeout if timeout is None else timeout
        interval = self.ledger_config.receipt_poll_interval if interval is None else interval

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = await self.ledger.get_operation_receipt(operation_hash)
            if receipt is not None:
                return receipt
            if loop.time() + interval > deadline:
                logger.warning(f"No receipt for operation {operation_hash} after {timeout}s")
                return None
            await asyncio.sleep(interval)

    async def send_operation(
        self, operation: UserOperation, timeout: Optional[float] = None
    ) -> Optional[OperationReceipt]:
        """Submit ``operation`` and wait for its receipt."""
        operation_hash = await self.ledger.submit_operation(operation)
        logger.info(f"Sent operation {operation_hash} from {self.address}")
        return await self.wait_for_operation_receipt(operation_hash, timeout=timeout)
