"""
ABI encoding for the account, factory and entry point contracts.

Only the functions and events the client uses are described here. The
JSON fragments feed ``web3`` contract objects; the ``encode_*`` helpers
build raw call data with ``eth_abi`` so the in-memory ledger and the web3
client agree byte for byte.
"""

from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from ..crypto.merkle import TREE_DEPTH

EXECUTE_SIGNATURE = "execute(uint256,uint256,uint256,bytes,address,bytes)"
CREATE_ACCOUNT_SIGNATURE = "createAccount(address,uint256)"
DISCARD_TUPLE = f"(uint256,uint256[{TREE_DEPTH}],uint8[{TREE_DEPTH}])"
DISCARD_SIGNATURE = f"discardCommitmentHashes({DISCARD_TUPLE}[])"

EXECUTE_SELECTOR = function_signature_to_4byte_selector(EXECUTE_SIGNATURE)
CREATE_ACCOUNT_SELECTOR = function_signature_to_4byte_selector(CREATE_ACCOUNT_SIGNATURE)
DISCARD_SELECTOR = function_signature_to_4byte_selector(DISCARD_SIGNATURE)

EXECUTE_TYPES = ["uint256", "uint256", "uint256", "bytes", "address", "bytes"]

PROOF_A_TYPE = "uint256[2]"
PROOF_B_TYPE = "uint256[2][2]"
PROOF_C_TYPE = "uint256[2]"

ADDRESS_LENGTH = 20


def _uint(name: str) -> Dict[str, Any]:
    return {"name": name, "type": "uint256", "internalType": "uint256"}


ACCOUNT_ABI: List[Dict[str, Any]] = [
    {
        "anonymous": False,
        "name": "ZkTeamExecution",
        "type": "event",
        "inputs": [
            {"indexed": False, **_uint("nullifierHash")},
            {"indexed": False, **_uint("commitmentHash")},
            {
                "indexed": False,
                "name": "encryptedAllowance",
                "type": "bytes",
                "internalType": "bytes",
            },
        ],
    },
    {
        "anonymous": False,
        "name": "ZkTeamDiscard",
        "type": "event",
        "inputs": [{"indexed": False, **_uint("commitmentHash")}],
    },
    {
        "name": "execute",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            _uint("oldNullifierHash"),
            _uint("newCommitmentHash"),
            _uint("value"),
            {"name": "encryptedAllowance", "type": "bytes", "internalType": "bytes"},
            {"name": "target", "type": "address", "internalType": "address"},
            {"name": "data", "type": "bytes", "internalType": "bytes"},
        ],
        "outputs": [],
    },
    {
        "name": "discardCommitmentHashes",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "commitmentHashList",
                "type": "tuple[]",
                "internalType": "struct ZkTeamAccount.CommitmentHashInfo[]",
                "components": [
                    _uint("commitmentHash"),
                    {
                        "name": "treeSiblings",
                        "type": f"uint256[{TREE_DEPTH}]",
                        "internalType": f"uint256[{TREE_DEPTH}]",
                    },
                    {
                        "name": "treePathIndices",
                        "type": f"uint8[{TREE_DEPTH}]",
                        "internalType": f"uint8[{TREE_DEPTH}]",
                    },
                ],
            }
        ],
        "outputs": [],
    },
    {
        "name": "getNonce",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [_uint("")],
    },
]

FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "name": "createAccount",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "owner", "type": "address", "internalType": "address"},
            _uint("salt"),
        ],
        "outputs": [{"name": "ret", "type": "address", "internalType": "contract ZkTeamAccount"}],
    },
    {
        "name": "getAddress",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address", "internalType": "address"},
            _uint("salt"),
        ],
        "outputs": [{"name": "", "type": "address", "internalType": "address"}],
    },
]


def encode_execute(
    old_nullifier_hash: int,
    new_commitment_hash: int,
    value: int,
    encrypted_allowance: bytes,
    target: str,
    data: bytes,
) -> bytes:
    """Call data for ``execute`` on the account contract."""
    return EXECUTE_SELECTOR + encode(
        EXECUTE_TYPES,
        [
            old_nullifier_hash,
            new_commitment_hash,
            value,
            bytes(encrypted_allowance),
            to_checksum_address(target),
            bytes(data),
        ],
    )


def decode_execute(call_data: bytes) -> Tuple[int, int, int, bytes, str, bytes]:
    """Inverse of ``encode_execute``."""
    if call_data[:4] != EXECUTE_SELECTOR:
        raise ValueError("Call data is not an execute call")
    nullifier_hash, commitment_hash, value, encrypted_allowance, target, data = decode(
        EXECUTE_TYPES, call_data[4:]
    )
    return (
        nullifier_hash,
        commitment_hash,
        value,
        encrypted_allowance,
        to_checksum_address(target),
        data,
    )


def encode_create_account(owner: str, salt: int) -> bytes:
    return CREATE_ACCOUNT_SELECTOR + encode(
        ["address", "uint256"], [to_checksum_address(owner), salt]
    )


def get_init_code(factory_address: str, owner: str, salt: int) -> bytes:
    """Factory address followed by the ``createAccount`` call."""
    factory = bytes.fromhex(to_checksum_address(factory_address)[2:])
    return factory + encode_create_account(owner, salt)


def decode_init_code(init_code: bytes) -> Tuple[str, str, int]:
    """Split init code into (factory, owner, salt)."""
    factory, call = init_code[:ADDRESS_LENGTH], init_code[ADDRESS_LENGTH:]
    if call[:4] != CREATE_ACCOUNT_SELECTOR:
        raise ValueError("Init code does not call createAccount")
    owner, salt = decode(["address", "uint256"], call[4:])
    return to_checksum_address(factory), to_checksum_address(owner), salt


def encode_discard(entries: Sequence[Tuple[int, Sequence[int], Sequence[int]]]) -> bytes:
    """Call data for ``discardCommitmentHashes``."""
    return DISCARD_SELECTOR + encode(
        [f"{DISCARD_TUPLE}[]"],
        [[(h, list(siblings), list(indices)) for h, siblings, indices in entries]],
    )


def encode_proof_signature(
    a: Sequence[int],
    b: Sequence[Sequence[int]],
    c: Sequence[int],
    public_signals: Sequence[int],
) -> bytes:
    """Groth16 proof and public signals as the account's signature field."""
    return encode(
        [PROOF_A_TYPE, PROOF_B_TYPE, PROOF_C_TYPE, f"uint256[{len(public_signals)}]"],
        [list(a), [list(row) for row in b], list(c), list(public_signals)],
    )


def decode_proof_signature(signature: bytes, signal_count: int) -> Tuple[Any, Any, Any, Any]:
    return tuple(
        decode(
            [PROOF_A_TYPE, PROOF_B_TYPE, PROOF_C_TYPE, f"uint256[{signal_count}]"],
            signature,
        )
    )
