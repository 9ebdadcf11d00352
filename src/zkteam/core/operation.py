"""
User operation envelope.

The core fills an ERC-4337 style operation record and hashes it the way the
entry point does; how the record reaches a bundler is the ledger client's
concern.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

DEFAULT_VERIFICATION_GAS_LIMIT = 1_000_000
DEFAULT_PRE_VERIFICATION_GAS = 100_000


@dataclass
class OperationOverrides:
    """Caller-supplied values that replace estimates; ``None`` means estimate."""

    gas_limit: Optional[int] = None
    verification_gas_limit: Optional[int] = None
    pre_verification_gas: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: Optional[int] = None
    paymaster_and_data: Optional[bytes] = None


@dataclass
class UserOperation:
    """Operation record submitted through the entry point."""

    sender: str
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int = DEFAULT_VERIFICATION_GAS_LIMIT
    pre_verification_gas: int = DEFAULT_PRE_VERIFICATION_GAS
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: bytes = b""
    signature: bytes = b""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_signature(self, signature: bytes) -> "UserOperation":
        return replace(self, signature=signature)

    def to_rpc(self) -> Dict[str, str]:
        """JSON-RPC form expected by ``eth_sendUserOperation``."""
        return {
            "sender": to_checksum_address(self.sender),
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }


def get_user_operation_hash(
    operation: UserOperation, entry_point: str, chain_id: int
) -> bytes:
    """Entry-point hash of ``operation`` (signature excluded)."""
    packed = encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "bytes32",
        ],
        [
            to_checksum_address(operation.sender),
            operation.nonce,
            keccak(operation.init_code),
            keccak(operation.call_data),
            operation.call_gas_limit,
            operation.verification_gas_limit,
            operation.pre_verification_gas,
            operation.max_fee_per_gas,
            operation.max_priority_fee_per_gas,
            keccak(operation.paymaster_and_data),
        ],
    )
    return keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [keccak(packed), to_checksum_address(entry_point), chain_id],
        )
    )
