"""
Unit tests for the in-memory ledger.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from zkteam.core.operation import UserOperation, get_user_operation_hash
from zkteam.crypto.merkle import CommitmentTree
from zkteam.errors import LedgerError, OperationRejectedError
from zkteam.ledger.abi import encode_execute, encode_proof_signature, get_init_code
from zkteam.ledger.base import DiscardEntry, EventKind
from zkteam.ledger.memory import InMemoryLedger

OWNER_KEY = "0x" + "4c" * 32
STRANGER_KEY = "0x" + "5d" * 32
TARGET = "0x" + "12" * 20


def signed_operation(ledger, owner, nullifier_hash, commitment_hash, value=0, nonce=0, deploy=False, key=OWNER_KEY):
    sender = ledger._counterfactual_address(owner.address, 0)
    operation = UserOperation(
        sender=sender,
        nonce=nonce,
        init_code=get_init_code(ledger.factory_address, owner.address, 0) if deploy else b"",
        call_data=encode_execute(nullifier_hash, commitment_hash, value, b"\x01" * 32, TARGET, b""),
        call_gas_limit=100_000,
    )
    digest = get_user_operation_hash(operation, ledger.entry_point, ledger.chain_id)
    signature = Account.from_key(key).sign_message(encode_defunct(primitive=digest)).signature
    return operation.with_signature(bytes(signature))


@pytest.fixture
def owner():
    return Account.from_key(OWNER_KEY)


class TestAccounts:
    """Test account deployment and funding."""

    @pytest.mark.asyncio
    async def test_counterfactual_address_is_stable(self, ledger, owner):
        """Test the factory address does not depend on deployment."""
        before = await ledger.get_account_address(owner.address, 0)
        assert not await ledger.is_deployed(before)
        assert ledger.deploy_account(owner.address) == before
        assert await ledger.is_deployed(before)

    @pytest.mark.asyncio
    async def test_salts_give_distinct_accounts(self, ledger, owner):
        """Test each account index maps to its own address."""
        first = await ledger.get_account_address(owner.address, 0)
        second = await ledger.get_account_address(owner.address, 1)
        assert first != second

    @pytest.mark.asyncio
    async def test_funds_follow_deployment(self, ledger, owner):
        """Test balances credited before deployment are kept."""
        address = ledger._counterfactual_address(owner.address, 0)
        ledger.fund(address, 100)
        ledger.deploy_account(owner.address)
        assert await ledger.get_balance(address) == 100

    @pytest.mark.asyncio
    async def test_emit_event(self, ledger, owner):
        """Test raw events are mined and queryable."""
        address = ledger.deploy_account(owner.address)
        event = ledger.emit_event(address, EventKind.EXECUTION, (1, 2, b"\x00" * 32))
        events = await ledger.query_events(address, EventKind.EXECUTION, 0, event.block_number)
        assert events == [event]
        assert await ledger.query_events(address, EventKind.DISCARD, 0, event.block_number) == []

    def test_emit_event_unknown_account(self, ledger):
        """Test events need a deployed account."""
        with pytest.raises(LedgerError):
            ledger.emit_event(TARGET, EventKind.DISCARD, (1,))


class TestOwnerOperations:
    """Test owner-signed operations."""

    @pytest.mark.asyncio
    async def test_first_operation_deploys(self, ledger, owner):
        """Test init code deploys the account and the call executes."""
        operation = signed_operation(ledger, owner, 11, 22, deploy=True)
        operation_hash = await ledger.submit_operation(operation)

        receipt = await ledger.get_operation_receipt(operation_hash)
        assert receipt is not None and receipt.success
        assert await ledger.is_deployed(operation.sender)
        assert await ledger.get_nonce(operation.sender) == 1
        assert ledger.get_encrypted_allowance(operation.sender, 11) == b"\x01" * 32

        events = await ledger.query_events(operation.sender, EventKind.EXECUTION, 0, ledger.block_number)
        assert [event.args[:2] for event in events] == [(11, 22)]

    @pytest.mark.asyncio
    async def test_undeployed_without_init_code(self, ledger, owner):
        """Test a phantom account cannot execute without init code."""
        with pytest.raises(OperationRejectedError, match="not deployed"):
            await ledger.submit_operation(signed_operation(ledger, owner, 11, 22))

    @pytest.mark.asyncio
    async def test_wrong_signer(self, ledger, owner):
        """Test only the owner may sign plain operations."""
        operation = signed_operation(ledger, owner, 11, 22, deploy=True, key=STRANGER_KEY)
        with pytest.raises(OperationRejectedError, match="owner"):
            await ledger.submit_operation(operation)
        assert not await ledger.is_deployed(operation.sender)

    @pytest.mark.asyncio
    async def test_nullifier_single_use(self, ledger, owner):
        """Test a nullifier hash cannot be consumed twice."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        with pytest.raises(OperationRejectedError, match="Nullifier hash already used"):
            await ledger.submit_operation(signed_operation(ledger, owner, 11, 33, nonce=1))

    @pytest.mark.asyncio
    async def test_nonce_checked(self, ledger, owner):
        """Test operations must carry the account nonce."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        with pytest.raises(OperationRejectedError, match="nonce"):
            await ledger.submit_operation(signed_operation(ledger, owner, 12, 33, nonce=5))

    @pytest.mark.asyncio
    async def test_value_transfer(self, ledger, owner):
        """Test value moves from the account to the target."""
        ledger.fund(ledger._counterfactual_address(owner.address, 0), 1000)
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, value=400, deploy=True))
        assert await ledger.get_balance(TARGET) == 400

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, ledger, owner):
        """Test the account cannot send more than it holds."""
        with pytest.raises(OperationRejectedError, match="balance"):
            await ledger.submit_operation(
                signed_operation(ledger, owner, 11, 22, value=1, deploy=True)
            )

    @pytest.mark.asyncio
    async def test_deferred_mining(self, owner):
        """Test operations wait for mine() when auto mining is off."""
        ledger = InMemoryLedger(auto_mine=False)
        operation_hash = await ledger.submit_operation(
            signed_operation(ledger, owner, 11, 22, deploy=True)
        )
        assert await ledger.get_operation_receipt(operation_hash) is None

        assert ledger.mine() == [operation_hash]
        assert await ledger.get_operation_receipt(operation_hash) is not None

    @pytest.mark.asyncio
    async def test_mine_drops_rejected(self, owner):
        """Test rejected queued operations are recorded, not raised."""
        ledger = InMemoryLedger(auto_mine=False)
        operation_hash = await ledger.submit_operation(signed_operation(ledger, owner, 11, 22))
        assert ledger.mine() == []
        assert "not deployed" in ledger.rejected[operation_hash]


class TestProvedOperations:
    """Test proof-carrying operations."""

    @pytest.mark.asyncio
    async def test_public_signals_checked(self, ledger, owner):
        """Test signals must bind the call data and the account's roots."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        sender = ledger._counterfactual_address(owner.address, 0)

        tree = CommitmentTree([22])
        old_root = tree.get_root()
        tree.insert(44)
        new_root = tree.get_root()

        def proved(signals):
            return UserOperation(
                sender=sender,
                nonce=1,
                init_code=b"",
                call_data=encode_execute(33, 44, 0, b"\x02" * 32, TARGET, b""),
                call_gas_limit=100_000,
                signature=encode_proof_signature([0, 0], [[0, 0], [0, 0]], [0, 0], signals),
            )

        with pytest.raises(OperationRejectedError, match="Proof rejected"):
            await ledger.submit_operation(proved([33, 999, 44, new_root, 0, 0]))

        operation_hash = await ledger.submit_operation(proved([33, old_root, 44, new_root, 0, 0]))
        assert (await ledger.get_operation_receipt(operation_hash)).success

    @pytest.mark.asyncio
    async def test_custom_proof_checker(self, owner):
        """Test a pluggable checker decides proof validity."""
        ledger = InMemoryLedger(proof_checker=lambda operation, decoded, account: False)
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        operation = UserOperation(
            sender=ledger._counterfactual_address(owner.address, 0),
            nonce=1,
            init_code=b"",
            call_data=encode_execute(33, 44, 0, b"\x02" * 32, TARGET, b""),
            call_gas_limit=100_000,
            signature=encode_proof_signature([0, 0], [[0, 0], [0, 0]], [0, 0], [0] * 6),
        )
        with pytest.raises(OperationRejectedError, match="Proof rejected"):
            await ledger.submit_operation(operation)

    @pytest.mark.asyncio
    async def test_malformed_signature(self, ledger, owner):
        """Test signatures that are neither ECDSA nor a proof are rejected."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        operation = UserOperation(
            sender=ledger._counterfactual_address(owner.address, 0),
            nonce=1,
            init_code=b"",
            call_data=encode_execute(33, 44, 0, b"\x02" * 32, TARGET, b""),
            call_gas_limit=100_000,
            signature=b"\x00" * 10,
        )
        with pytest.raises(OperationRejectedError, match="Malformed proof signature"):
            await ledger.submit_operation(operation)


class TestDiscard:
    """Test commitment discards."""

    @pytest.mark.asyncio
    async def test_discard(self, ledger, owner):
        """Test a valid proof zeroes the leaf and emits a discard event."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        sender = ledger._counterfactual_address(owner.address, 0)
        proof = CommitmentTree([22]).get_proof(22)

        tx_hash = await ledger.send_discard(
            sender, [DiscardEntry(22, proof.siblings, proof.path_indices)], owner
        )
        await ledger.wait_for_transaction(tx_hash)

        events = await ledger.query_events(sender, EventKind.DISCARD, 0, ledger.block_number)
        assert [event.args for event in events] == [(22,)]
        assert ledger.accounts[sender].tree.leaves == [0]

    @pytest.mark.asyncio
    async def test_discard_requires_owner(self, ledger, owner):
        """Test strangers cannot discard."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        sender = ledger._counterfactual_address(owner.address, 0)
        proof = CommitmentTree([22]).get_proof(22)
        with pytest.raises(OperationRejectedError, match="owner"):
            await ledger.send_discard(
                sender,
                [DiscardEntry(22, proof.siblings, proof.path_indices)],
                Account.from_key(STRANGER_KEY),
            )

    @pytest.mark.asyncio
    async def test_discard_invalid_proof(self, ledger, owner):
        """Test a proof against the wrong tree is rejected atomically."""
        await ledger.submit_operation(signed_operation(ledger, owner, 11, 22, deploy=True))
        sender = ledger._counterfactual_address(owner.address, 0)
        stale = CommitmentTree([22, 23]).get_proof(22)
        with pytest.raises(OperationRejectedError, match="inclusion proof"):
            await ledger.send_discard(
                sender, [DiscardEntry(22, stale.siblings, stale.path_indices)], owner
            )
        assert ledger.accounts[sender].tree.leaves == [22]

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, ledger):
        """Test waiting on an unknown transaction fails."""
        with pytest.raises(LedgerError, match="Unknown transaction"):
            await ledger.wait_for_transaction("0x" + "00" * 32)
