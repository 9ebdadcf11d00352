"""
Unit tests for account state, chain walking and operation construction.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from zkteam.config import AccountConfig, LedgerConfig
from zkteam.core.account import AccountState, get_accounts
from zkteam.core.operation import OperationOverrides, get_user_operation_hash
from zkteam.crypto.hashing import PoseidonHasher
from zkteam.errors import ConfigurationError
from zkteam.ledger.abi import decode_execute, decode_init_code
from zkteam.ledger.base import EventKind
from zkteam.ledger.memory import InMemoryLedger
from zkteam.wallet.key_derivation import ExtendedKey, derive_nullifier

OWNER_KEY = "0x" + "4c" * 32
TARGET = "0x" + "12" * 20


@pytest.fixture
def owner():
    return Account.from_key(OWNER_KEY)


async def open_account(ledger, owner, **ledger_config):
    config = AccountConfig(owner_address=owner.address, factory_address=ledger.factory_address)
    return await AccountState.open(ledger, config, LedgerConfig(**ledger_config))


async def unsigned(state, **kwargs):
    return await state.create_unsigned_operation(
        old_nullifier_hash=11,
        new_commitment_hash=22,
        value=0,
        encrypted_allowance=b"\x01" * 32,
        target=TARGET,
        data=b"",
        **kwargs,
    )


async def signed(state, owner, **kwargs):
    operation = await unsigned(state, **kwargs)
    digest = await state.get_operation_hash(operation)
    signature = owner.sign_message(encode_defunct(primitive=digest)).signature
    return operation.with_signature(bytes(signature))


class TestOpen:
    """Test resolving accounts."""

    @pytest.mark.asyncio
    async def test_resolves_from_factory(self, ledger, owner):
        """Test the address comes from the factory when not configured."""
        state = await open_account(ledger, owner)
        assert state.address == await ledger.get_account_address(owner.address, 0)
        assert await state.is_phantom()

    @pytest.mark.asyncio
    async def test_explicit_address(self, ledger):
        """Test a configured address is used as is."""
        state = await AccountState.open(ledger, AccountConfig(account_address=TARGET))
        assert state.address == TARGET

    @pytest.mark.asyncio
    async def test_requires_address_or_owner(self, ledger):
        """Test opening needs something to resolve."""
        with pytest.raises(ConfigurationError):
            await AccountState.open(ledger, AccountConfig())

    @pytest.mark.asyncio
    async def test_get_accounts(self, ledger, owner):
        """Test account listings page through salts."""
        ledger.deploy_account(owner.address, salt=1)
        ledger.fund(ledger._counterfactual_address(owner.address, 2), 250)
        accounts = await get_accounts(ledger, owner.address, page=0, limit=3)

        assert [info.index for info in accounts] == [0, 1, 2]
        assert [info.deployed for info in accounts] == [False, True, False]
        assert [info.balance for info in accounts] == [0, 0, 250]
        second_page = await get_accounts(ledger, owner.address, page=1, limit=3)
        assert [info.index for info in second_page] == [3, 4, 5]


class TestChainWalking:
    """Test last index discovery."""

    @pytest.mark.asyncio
    async def test_phantom_account(self, ledger, owner):
        """Test a phantom account has no used steps."""
        state = await open_account(ledger, owner)
        assert await state.get_last_index(ExtendedKey.from_seed(b"\x01" * 32)) == 0

    @pytest.mark.asyncio
    async def test_walks_logged_nullifiers(self, ledger, owner):
        """Test the index is the first step whose nullifier hash is unlogged."""
        root = ExtendedKey.from_seed(b"\x01" * 32)
        address = ledger.deploy_account(owner.address)
        state = await open_account(ledger, owner)

        for step in range(2):
            nullifier_hash = PoseidonHasher.nullifier_hash(derive_nullifier(root, step))
            ledger.emit_event(address, EventKind.EXECUTION, (nullifier_hash, 100 + step, b"\x00" * 32))
        assert await state.get_last_index(root) == 2

        nullifier_hash = PoseidonHasher.nullifier_hash(derive_nullifier(root, 2))
        ledger.emit_event(address, EventKind.EXECUTION, (nullifier_hash, 102, b"\x00" * 32))
        assert await state.get_last_index(root) == 3

    @pytest.mark.asyncio
    async def test_chains_are_independent(self, ledger, owner):
        """Test another root's steps do not count."""
        root = ExtendedKey.from_seed(b"\x01" * 32)
        other = ExtendedKey.from_seed(b"\x02" * 32)
        address = ledger.deploy_account(owner.address)
        state = await open_account(ledger, owner)

        nullifier_hash = PoseidonHasher.nullifier_hash(derive_nullifier(root, 0))
        ledger.emit_event(address, EventKind.EXECUTION, (nullifier_hash, 100, b"\x00" * 32))

        assert await state.get_last_index(root) == 1
        assert await state.get_last_index(other) == 0


class TestOperations:
    """Test operation construction."""

    @pytest.mark.asyncio
    async def test_phantom_operation_carries_init_code(self, ledger, owner):
        """Test the first operation deploys through the factory."""
        state = await open_account(ledger, owner)
        operation = await unsigned(state)

        assert operation.sender == state.address
        assert operation.nonce == 0
        assert decode_init_code(operation.init_code) == (ledger.factory_address, owner.address, 0)
        assert decode_execute(operation.call_data)[:3] == (11, 22, 0)
        assert operation.call_gas_limit > 0
        assert operation.max_fee_per_gas == 0
        assert operation.signature == b""

    @pytest.mark.asyncio
    async def test_deployed_operation(self, ledger, owner):
        """Test deployed accounts use the ledger nonce and no init code."""
        state = await open_account(ledger, owner)
        await ledger.submit_operation(await signed(state, owner))

        operation = await unsigned(state)
        assert operation.init_code == b""
        assert operation.nonce == 1

    @pytest.mark.asyncio
    async def test_overrides(self, ledger, owner):
        """Test overrides replace estimates."""
        state = await open_account(ledger, owner)
        operation = await unsigned(
            state,
            overrides=OperationOverrides(
                gas_limit=123,
                verification_gas_limit=456,
                pre_verification_gas=789,
                max_fee_per_gas=10,
                max_priority_fee_per_gas=2,
                nonce=7,
            ),
        )
        assert operation.call_gas_limit == 123
        assert operation.verification_gas_limit == 456
        assert operation.pre_verification_gas == 789
        assert (operation.max_fee_per_gas, operation.max_priority_fee_per_gas) == (10, 2)
        assert operation.nonce == 7

    @pytest.mark.asyncio
    async def test_phantom_without_factory(self, ledger, owner):
        """Test a phantom account needs a factory to deploy."""
        address = await ledger.get_account_address(owner.address, 0)
        state = AccountState(ledger, address, AccountConfig(account_address=address))
        with pytest.raises(ConfigurationError, match="factory"):
            await unsigned(state)

    @pytest.mark.asyncio
    async def test_operation_hash(self, ledger, owner):
        """Test the hash binds the entry point and chain id."""
        state = await open_account(ledger, owner)
        operation = await unsigned(state)
        expected = get_user_operation_hash(operation, state.config.entry_point_address, ledger.chain_id)
        assert await state.get_operation_hash(operation) == expected


class TestReceipts:
    """Test receipt polling."""

    @pytest.mark.asyncio
    async def test_send_operation(self, ledger, owner):
        """Test a mined operation yields a successful receipt."""
        state = await open_account(ledger, owner, receipt_poll_interval=0.01, receipt_timeout=0.5)
        receipt = await state.send_operation(await signed(state, owner))
        assert receipt is not None and receipt.success
        assert not await state.is_phantom()

    @pytest.mark.asyncio
    async def test_timeout_then_mined(self, owner):
        """Test polling gives up with None and succeeds once mined."""
        ledger = InMemoryLedger(auto_mine=False)
        state = await open_account(ledger, owner, receipt_poll_interval=0.01, receipt_timeout=0.05)
        operation_hash = await ledger.submit_operation(await signed(state, owner))

        assert await state.wait_for_operation_receipt(operation_hash) is None

        ledger.mine()
        receipt = await state.wait_for_operation_receipt(operation_hash)
        assert receipt.operation_hash == operation_hash
