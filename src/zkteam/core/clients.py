"""
Administrator and user clients.

Both wrap the same ``AccountState``; what each can do is decided by the
capability it is constructed with. An administrator holds the owner signer
and the root key of every user chain; a user holds one chain's root key
and can only prove spends from it.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Sequence

from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address

from ..crypto.hashing import PoseidonHasher
from ..errors import AllowanceNotSetError, CapabilityError
from ..wallet.key_derivation import ExtendedKey, derive_user_key, generate_triplet
from .account import AccountState
from .anomaly import AnomalyDetector
from .inputs import ProofInputs, SignatureInputs
from .operation import OperationOverrides, UserOperation
from .prover import Prover, ProverArtifactSource, finalize_proved_operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminCapability:
    """Owner signer plus the administrator's root key."""

    signer: Any
    root_key: ExtendedKey


@dataclass(frozen=True)
class UserCapability:
    """Root key of one user chain."""

    user_key: ExtendedKey


class ZkTeamAdmin:
    """Grants allowances and audits the account's event log."""

    def __init__(
        self,
        account: AccountState,
        capability: AdminCapability,
        batch_size: Optional[int] = None,
    ):
        if not isinstance(capability, AdminCapability):
            raise CapabilityError("ZkTeamAdmin requires an AdminCapability")

        owner = to_checksum_address(capability.signer.address)
        if account.config.owner_address is None:
            account.config = replace(account.config, owner_address=owner)
        elif to_checksum_address(account.config.owner_address) != owner:
            raise CapabilityError(
                f"Signer {owner} is not the owner of account {account.address}"
            )

        self.account = account
        self.capability = capability
        self.detector = AnomalyDetector(
            account, capability.root_key, signer=capability.signer, batch_size=batch_size
        )

    def _user_root(self, user_index: int) -> ExtendedKey:
        return derive_user_key(self.capability.root_key, self.account.account_index, user_index)

    def get_user_key(self, user_index: int) -> str:
        """Serialized root key to hand to user ``user_index``."""
        return self._user_root(user_index).to_hex()

    async def get_allowance(self, user_index: int) -> Optional[int]:
        """Current allowance of ``user_index``, ``None`` if never granted."""
        user_root = self._user_root(user_index)
        index = await self.account.get_last_index(user_root)
        if index == 0:
            return None
        triplet = generate_triplet(user_root, index - 1)
        return await self.account.get_decrypted_allowance(
            PoseidonHasher.nullifier_hash(triplet.nullifier), triplet.key, triplet.nonce
        )

    async def get_allowances(self, page: int, limit: int) -> List[Optional[int]]:
        """Allowances of users ``page * limit`` .. ``page * limit + limit - 1``."""
        return list(
            await asyncio.gather(
                *(self.get_allowance(page * limit + k) for k in range(limit))
            )
        )

    async def generate_inputs(self, user_index: int, allowance: int) -> SignatureInputs:
        user_root = self._user_root(user_index)
        if await self.account.is_phantom():
            index = 0
        else:
            index = await self.account.get_last_index(user_root)

        current = generate_triplet(user_root, index)
        new = generate_triplet(user_root, index + 1)
        return await self.account.inputs.generate_signature_inputs(
            old_nullifier=current.nullifier,
            new_allowance=allowance,
            new_nullifier=new.nullifier,
            new_secret=new.secret,
            new_key=current.key,
            new_nonce=current.nonce,
        )

    async def sign_operation(self, operation: UserOperation) -> UserOperation:
        """Attach the owner's personal-sign signature over the operation hash."""
        operation_hash = await self.account.get_operation_hash(operation)
        signed = self.capability.signer.sign_message(encode_defunct(primitive=operation_hash))
        return operation.with_signature(bytes(signed.signature))

    async def set_allowance(
        self,
        user_index: int,
        allowance: int,
        overrides: Optional[OperationOverrides] = None,
    ) -> UserOperation:
        """Signed operation replacing ``user_index``'s allowance with ``allowance``."""
        inputs = await self.generate_inputs(user_index, allowance)
        operation = await self.account.create_unsigned_operation(
            old_nullifier_hash=inputs.old_nullifier_hash,
            new_commitment_hash=inputs.new_commitment_hash,
            value=0,
            encrypted_allowance=inputs.encrypted_allowance,
            target=self.account.address,
            data=b"",
            overrides=overrides,
        )
        logger.info(f"Prepared allowance update for user #{user_index}")
        return await self.sign_operation(operation)

    async def check_integrity(self, user_index_limit: int) -> List[int]:
        return await self.detector.check_integrity(user_index_limit)

    async def discard_commitment_hashes(self, commitment_hashes: Sequence[int]) -> List[str]:
        return await self.detector.discard_commitment_hashes(commitment_hashes)


class ZkTeamUser:
    """Spends from one user chain with zero-knowledge proofs."""

    def __init__(
        self,
        account: AccountState,
        capability: UserCapability,
        prover: Prover,
        artifact_source: ProverArtifactSource,
    ):
        if not isinstance(capability, UserCapability):
            raise CapabilityError("ZkTeamUser requires a UserCapability")

        self.account = account
        self.capability = capability
        self.prover = prover
        self.artifact_source = artifact_source

    @property
    def key(self) -> ExtendedKey:
        return self.capability.user_key

    async def get_last_index(self) -> int:
        return await self.account.get_last_index(self.key)

    async def get_allowance(self) -> Optional[int]:
        """Remaining allowance, ``None`` if never granted."""
        index = await self.get_last_index()
        if index == 0:
            return None
        triplet = generate_triplet(self.key, index - 1)
        return await self.account.get_decrypted_allowance(
            PoseidonHasher.nullifier_hash(triplet.nullifier), triplet.key, triplet.nonce
        )

    async def generate_inputs(self, value: int) -> ProofInputs:
        index = await self.get_last_index()
        if index == 0:
            raise AllowanceNotSetError()

        old = generate_triplet(self.key, index - 1)
        current = generate_triplet(self.key, index)
        new = generate_triplet(self.key, index + 1)
        return await self.account.inputs.generate_proof_inputs(
            value=value,
            old_nullifier_hash=PoseidonHasher.nullifier_hash(old.nullifier),
            old_nullifier=current.nullifier,
            old_secret=current.secret,
            old_key=old.key,
            old_nonce=old.nonce,
            new_nullifier=new.nullifier,
            new_secret=new.secret,
            new_key=current.key,
            new_nonce=current.nonce,
        )

    async def create_proved_operation(
        self,
        inputs: ProofInputs,
        target: str,
        data: bytes = b"",
        overrides: Optional[OperationOverrides] = None,
    ) -> UserOperation:
        """Operation executing ``(target, inputs.value, data)``, proved from ``inputs``."""
        operation = await self.account.create_unsigned_operation(
            old_nullifier_hash=inputs.old_nullifier_hash,
            new_commitment_hash=inputs.new_commitment_hash,
            value=inputs.value,
            encrypted_allowance=inputs.encrypted_allowance,
            target=target,
            data=data,
            overrides=overrides,
        )
        return await finalize_proved_operation(
            operation, inputs, self.prover, self.artifact_source
        )

    async def send_transaction(
        self,
        target: str,
        value: int,
        data: bytes = b"",
        overrides: Optional[OperationOverrides] = None,
    ) -> UserOperation:
        """Proved operation spending ``value`` on a call to ``target``."""
        inputs = await self.generate_inputs(value)
        return await self.create_proved_operation(inputs, target, data, overrides)
