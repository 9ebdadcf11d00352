"""External ledger boundary: the interface, ABI helpers and implementations."""

from .base import DiscardEntry, EventKind, LedgerClient, LedgerEvent, OperationReceipt
from .abi import encode_discard, encode_execute, get_init_code
from .memory import InMemoryLedger
from .web3_client import Web3LedgerClient

__all__ = [
    "DiscardEntry",
    "EventKind",
    "LedgerClient",
    "LedgerEvent",
    "OperationReceipt",
    "encode_discard",
    "encode_execute",
    "get_init_code",
    "InMemoryLedger",
    "Web3LedgerClient",
]
