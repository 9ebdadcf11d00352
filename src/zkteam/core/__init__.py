"""Allowance protocol core: event log, chain walking, inputs, proving and auditing."""

from .operation import OperationOverrides, UserOperation, get_user_operation_hash
from .events import EventLogCache, LogEntry
from .inputs import ProofInputBuilder, ProofInputs, SignatureInputs
from .prover import (
    LocalArtifactSource,
    Prover,
    ProverArtifacts,
    ProverArtifactSource,
    RemoteArtifactSource,
    SnarkjsProver,
    create_artifact_source,
    create_prover,
    finalize_proved_operation,
)
from .account import AccountInfo, AccountState, get_accounts
from .anomaly import DISCARD_BATCH_SIZE, AnomalyDetector
from .clients import AdminCapability, UserCapability, ZkTeamAdmin, ZkTeamUser

__all__ = [
    "OperationOverrides",
    "UserOperation",
    "get_user_operation_hash",
    "EventLogCache",
    "LogEntry",
    "ProofInputBuilder",
    "ProofInputs",
    "SignatureInputs",
    "LocalArtifactSource",
    "Prover",
    "ProverArtifacts",
    "ProverArtifactSource",
    "RemoteArtifactSource",
    "SnarkjsProver",
    "create_artifact_source",
    "create_prover",
    "finalize_proved_operation",
    "AccountInfo",
    "AccountState",
    "get_accounts",
    "DISCARD_BATCH_SIZE",
    "AnomalyDetector",
    "AdminCapability",
    "UserCapability",
    "ZkTeamAdmin",
    "ZkTeamUser",
]
