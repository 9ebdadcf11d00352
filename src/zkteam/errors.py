"""Exception hierarchy for zkteam.

Every failure raised by the allowance protocol derives from ``ZkTeamError``
so callers can tell caller mistakes (validation), tampering (authentication),
prover defects (proof) and transient ledger trouble (ledger) apart.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    VALIDATION = "validation"
    CRYPTOGRAPHIC = "cryptographic"
    PROOF = "proof"
    MERKLE = "merkle"
    LEDGER = "ledger"
    CAPABILITY = "capability"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class ZkTeamError(Exception):
    """Base exception for all zkteam errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        parts = [self.message]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ValidationError(ZkTeamError):
    """Caller supplied a value the protocol cannot accept."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "VALIDATION")
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)
        self.field = field
        self.value = value
        self.expected = expected

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "value": str(self.value) if self.value is not None else None,
                "expected": str(self.expected) if self.expected is not None else None,
            }
        )
        return data


class OutOfRangeError(ValidationError):
    """Allowance does not fit in the encrypted envelope."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "OUT_OF_RANGE")
        super().__init__(message, **kwargs)


class InsufficientAllowanceError(ValidationError):
    """Spend value exceeds the decrypted allowance."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "INSUFFICIENT_ALLOWANCE")
        super().__init__(message, **kwargs)


class AllowanceNotSetError(ValidationError):
    """No allowance was ever granted on this chain."""

    def __init__(self, message: str = "Allowance not set", **kwargs):
        kwargs.setdefault("error_code", "ALLOWANCE_NOT_SET")
        super().__init__(message, **kwargs)


class ZeroAllowanceError(ValidationError):
    """Nothing is committed under the requested nullifier hash."""

    def __init__(self, message: str = "Encrypted allowance is set to 0", **kwargs):
        kwargs.setdefault("error_code", "ZERO_ALLOWANCE")
        super().__init__(message, **kwargs)


class CryptographicError(ZkTeamError):
    """Cryptographic error."""

    def __init__(self, message: str, algorithm: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, category=ErrorCategory.CRYPTOGRAPHIC, **kwargs)
        self.algorithm = algorithm

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["algorithm"] = self.algorithm
        return data


class AuthenticationError(CryptographicError):
    """Ciphertext does not authenticate under the supplied key and nonce."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "AUTHENTICATION_FAILURE")
        kwargs.setdefault("algorithm", "xchacha20poly1305")
        super().__init__(message, **kwargs)


class KeyDerivationError(CryptographicError):
    """Extended key or derivation path is malformed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "KEY_DERIVATION")
        kwargs.setdefault("algorithm", "bip32")
        super().__init__(message, **kwargs)


class ProofError(ZkTeamError):
    """Zero-knowledge proof error."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, category=ErrorCategory.PROOF, **kwargs)


class InvalidProofError(ProofError):
    """A freshly generated proof failed verification."""

    def __init__(self, message: str = "Invalid proof", **kwargs):
        kwargs.setdefault("error_code", "INVALID_PROOF")
        super().__init__(message, **kwargs)


class ProverError(ProofError):
    """The external prover could not be run."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "PROVER_FAILURE")
        super().__init__(message, **kwargs)


class NotFoundError(ZkTeamError):
    """Commitment hash is absent from the current tree."""

    def __init__(self, message: str, commitment_hash: Optional[int] = None, **kwargs):
        kwargs.setdefault("error_code", "NOT_FOUND")
        super().__init__(message, category=ErrorCategory.MERKLE, **kwargs)
        self.commitment_hash = commitment_hash


class TreeFullError(ZkTeamError):
    """Merkle tree has no room for another leaf."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "TREE_FULL")
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, category=ErrorCategory.MERKLE, **kwargs)


class LedgerError(ZkTeamError):
    """The external ledger failed to answer; retry is the caller's choice."""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "LEDGER")
        kwargs.setdefault("retryable", True)
        super().__init__(message, category=ErrorCategory.LEDGER, **kwargs)
        self.endpoint = endpoint

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["endpoint"] = self.endpoint
        return data


class LedgerConsistencyError(LedgerError):
    """Fetched events contradict the cached log."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "LEDGER_CONSISTENCY")
        kwargs.setdefault("retryable", False)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class OperationRejectedError(LedgerError):
    """The account contract refused an operation."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "OPERATION_REJECTED")
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class CapabilityError(ZkTeamError):
    """Operation requires a capability this instance does not hold."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "CAPABILITY")
        super().__init__(message, category=ErrorCategory.CAPABILITY, **kwargs)


class ConfigurationError(ZkTeamError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "CONFIGURATION")
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.config_key = config_key
