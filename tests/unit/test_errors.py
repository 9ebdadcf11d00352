"""
Unit tests for the error hierarchy.
"""

from zkteam.errors import (
    AllowanceNotSetError,
    AuthenticationError,
    ErrorCategory,
    ErrorSeverity,
    InsufficientAllowanceError,
    InvalidProofError,
    LedgerConsistencyError,
    LedgerError,
    OperationRejectedError,
    ValidationError,
    ZeroAllowanceError,
    ZkTeamError,
)


class TestZkTeamError:
    """Test the base error."""

    def test_defaults(self):
        """Test default fields."""
        error = ZkTeamError("something failed")
        assert error.message == "something failed"
        assert error.severity == ErrorSeverity.MEDIUM
        assert error.category == ErrorCategory.SYSTEM
        assert not error.retryable
        assert error.metadata == {}

    def test_str(self):
        """Test the string form lists code and retryability."""
        error = ZkTeamError("down", error_code="X", retryable=True)
        assert str(error) == "down | Code: X | Retryable: Yes"

    def test_to_dict(self):
        """Test serialization."""
        cause = ValueError("inner")
        data = ZkTeamError("outer", cause=cause, metadata={"k": 1}).to_dict()
        assert data["type"] == "ZkTeamError"
        assert data["cause"] == "inner"
        assert data["metadata"] == {"k": 1}


class TestProtocolErrors:
    """Test protocol-specific errors."""

    def test_validation_family(self):
        """Test allowance errors are validation errors."""
        for error in (
            InsufficientAllowanceError("Insufficient allowance"),
            AllowanceNotSetError(),
            ZeroAllowanceError(),
        ):
            assert isinstance(error, ValidationError)
            assert error.category == ErrorCategory.VALIDATION

    def test_default_messages(self):
        """Test default messages."""
        assert AllowanceNotSetError().message == "Allowance not set"
        assert ZeroAllowanceError().message == "Encrypted allowance is set to 0"
        assert InvalidProofError().message == "Invalid proof"

    def test_validation_fields(self):
        """Test field details appear in the dictionary."""
        data = InsufficientAllowanceError("Insufficient allowance", field="value", value=5, expected="<= 3").to_dict()
        assert data["error_code"] == "INSUFFICIENT_ALLOWANCE"
        assert (data["field"], data["value"], data["expected"]) == ("value", "5", "<= 3")

    def test_authentication_error(self):
        """Test authentication failures name their algorithm."""
        error = AuthenticationError("bad tag")
        assert error.severity == ErrorSeverity.HIGH
        assert error.to_dict()["algorithm"] == "xchacha20poly1305"

    def test_ledger_retryability(self):
        """Test transport failures are retryable and rejections are not."""
        assert LedgerError("timeout").retryable
        assert not OperationRejectedError("reverted").retryable
        assert not LedgerConsistencyError("gap").retryable
        assert isinstance(OperationRejectedError("reverted"), LedgerError)

    def test_ledger_endpoint(self):
        """Test the endpoint is serialized."""
        assert LedgerError("down", endpoint="http://node").to_dict()["endpoint"] == "http://node"
