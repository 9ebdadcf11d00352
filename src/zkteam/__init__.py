"""
zkteam - confidential spending allowances for smart-contract accounts.

An administrator grants each user an encrypted allowance; users spend it
with zero-knowledge proofs; the administrator audits the account's event
log and discards tampered records.
"""

__version__ = "0.1.0"

from .core import (
    AccountState,
    AdminCapability,
    AnomalyDetector,
    UserCapability,
    ZkTeamAdmin,
    ZkTeamUser,
    get_accounts,
)
from .config import AccountConfig, LedgerConfig, ProverConfig, ZkTeamConfig
from .errors import ZkTeamError
from .ledger import InMemoryLedger, LedgerClient, Web3LedgerClient
from .wallet import ExtendedKey

__all__ = [
    "AccountState",
    "AdminCapability",
    "AnomalyDetector",
    "UserCapability",
    "ZkTeamAdmin",
    "ZkTeamUser",
    "get_accounts",
    "AccountConfig",
    "LedgerConfig",
    "ProverConfig",
    "ZkTeamConfig",
    "ZkTeamError",
    "InMemoryLedger",
    "LedgerClient",
    "Web3LedgerClient",
    "ExtendedKey",
]
