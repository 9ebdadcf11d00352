"""
Shared fixtures: an in-memory ledger, deterministic keys, and a prover that
evaluates the spend circuit's relations directly instead of proving them.
"""

from typing import Any, Dict, List, Sequence, Tuple

import pytest
import pytest_asyncio
from eth_account import Account

from zkteam.config import AccountConfig, LedgerConfig
from zkteam.core.account import AccountState
from zkteam.core.clients import AdminCapability, UserCapability, ZkTeamAdmin, ZkTeamUser
from zkteam.core.prover import Prover, ProverArtifacts, ProverArtifactSource
from zkteam.crypto.hashing import PoseidonHasher
from zkteam.crypto.merkle import MerkleProof
from zkteam.errors import ProverError
from zkteam.ledger.memory import InMemoryLedger
from zkteam.wallet.key_derivation import ExtendedKey

ETHER = 10**18
ADMIN_PRIVATE_KEY = "0x" + "4c" * 32
ADMIN_SEED = bytes(range(32))


class CircuitSimulator(Prover):
    """Checks the spend relations in Python and emits matching public signals."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.calls: List[Dict[str, Any]] = []

    async def full_prove(
        self, witnesses: Dict[str, Any], artifacts: ProverArtifacts
    ) -> Tuple[Dict[str, Any], List[int]]:
        self.calls.append(witnesses)
        if witnesses["value"] + witnesses["newAllowance"] != witnesses["oldAllowance"]:
            raise ProverError("Allowance constraint not satisfied")

        old_commitment = PoseidonHasher.commitment_hash(
            witnesses["oldNullifier"], witnesses["oldSecret"], witnesses["oldAllowance"]
        )
        new_commitment = PoseidonHasher.commitment_hash(
            witnesses["newNullifier"], witnesses["newSecret"], witnesses["newAllowance"]
        )
        old_root = MerkleProof(
            leaf=old_commitment,
            siblings=tuple(witnesses["oldTreeSiblings"]),
            path_indices=tuple(witnesses["oldTreePathIndices"]),
            root=0,
        ).compute_root()
        new_root = MerkleProof(
            leaf=new_commitment,
            siblings=tuple(witnesses["newTreeSiblings"]),
            path_indices=tuple(witnesses["newTreePathIndices"]),
            root=0,
        ).compute_root()

        public_signals = [
            PoseidonHasher.nullifier_hash(witnesses["oldNullifier"]),
            old_root,
            new_commitment,
            new_root,
            witnesses["value"],
            witnesses["callDataHash"],
        ]
        proof = {
            "pi_a": ["1", "2", "1"],
            "pi_b": [["3", "4"], ["5", "6"], ["1", "0"]],
            "pi_c": ["7", "8", "1"],
            "protocol": "groth16",
            "curve": "bn128",
        }
        return proof, public_signals

    async def verify(
        self, verification_key: Dict[str, Any], public_signals: Sequence[int], proof: Dict[str, Any]
    ) -> bool:
        return self.accept


class StaticArtifactSource(ProverArtifactSource):
    async def get_artifacts(self) -> ProverArtifacts:
        return ProverArtifacts(
            wasm_path="zkteam.wasm", zkey_path="zkteam.zkey", verification_key={"protocol": "groth16"}
        )


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def admin_signer():
    return Account.from_key(ADMIN_PRIVATE_KEY)


@pytest.fixture
def admin_root():
    return ExtendedKey.from_seed(ADMIN_SEED)


@pytest.fixture
def prover():
    return CircuitSimulator()


@pytest.fixture
def artifact_source():
    return StaticArtifactSource()


@pytest.fixture
def fast_ledger_config():
    return LedgerConfig(receipt_poll_interval=0.01, receipt_timeout=0.5)


@pytest_asyncio.fixture
async def admin(ledger, admin_signer, admin_root, fast_ledger_config):
    config = AccountConfig(
        owner_address=admin_signer.address,
        factory_address=ledger.factory_address,
        entry_point_address=ledger.entry_point,
    )
    account = await AccountState.open(ledger, config, fast_ledger_config)
    ledger.fund(account.address, ETHER)
    return ZkTeamAdmin(account, AdminCapability(signer=admin_signer, root_key=admin_root))


@pytest.fixture
def make_user(ledger, admin, prover, artifact_source, fast_ledger_config):
    """Build a user client from the key the administrator hands out."""

    def factory(user_index: int) -> ZkTeamUser:
        config = AccountConfig(
            account_address=admin.account.address,
            entry_point_address=ledger.entry_point,
        )
        account = AccountState(ledger, admin.account.address, config, fast_ledger_config)
        key = ExtendedKey.from_hex(admin.get_user_key(user_index))
        return ZkTeamUser(account, UserCapability(user_key=key), prover, artifact_source)

    return factory


@pytest.fixture
def process():
    """Submit an operation and require a receipt."""

    async def submit(account: AccountState, operation) -> Any:
        receipt = await account.send_operation(operation)
        assert receipt is not None and receipt.success
        return receipt

    return submit
