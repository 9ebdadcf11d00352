"""
Configuration for zkteam clients.

Every section is a dataclass with ``validate``, ``to_dict`` and
``from_dict``; ``ZkTeamConfig.from_env`` reads ``ZKTEAM_*`` variables.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError
from .logging import LogConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "ZKTEAM_"

DEFAULT_ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"


def _is_address(value: Optional[str]) -> bool:
    if not value or not value.startswith("0x") or len(value) != 42:
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


@dataclass
class AccountConfig:
    """Which account the client talks to."""

    account_address: Optional[str] = None
    owner_address: Optional[str] = None
    account_index: int = 0
    factory_address: Optional[str] = None
    entry_point_address: str = DEFAULT_ENTRY_POINT
    verification_gas_limit: int = 1_000_000

    def validate(self) -> None:
        if self.account_index < 0:
            raise ConfigurationError(
                "account_index must be non-negative", config_key="account_index"
            )
        if self.verification_gas_limit <= 0:
            raise ConfigurationError(
                "verification_gas_limit must be positive",
                config_key="verification_gas_limit",
            )
        for key in ("account_address", "owner_address", "factory_address"):
            value = getattr(self, key)
            if value is not None and not _is_address(value):
                raise ConfigurationError(f"{key} is not an address: {value!r}", config_key=key)
        if not _is_address(self.entry_point_address):
            raise ConfigurationError(
                "entry_point_address is not an address",
                config_key="entry_point_address",
            )


@dataclass
class LedgerConfig:
    """Endpoints and polling behaviour of the external ledger."""

    rpc_url: str = "http://localhost:8545"
    bundler_url: Optional[str] = None
    timeout: float = 30.0
    receipt_poll_interval: float = 1.0
    receipt_timeout: float = 60.0
    discard_batch_size: int = 5

    def validate(self) -> None:
        if not self.rpc_url:
            raise ConfigurationError("rpc_url is required", config_key="rpc_url")
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive", config_key="timeout")
        if self.receipt_poll_interval <= 0:
            raise ConfigurationError(
                "receipt_poll_interval must be positive",
                config_key="receipt_poll_interval",
            )
        if self.receipt_timeout < self.receipt_poll_interval:
            raise ConfigurationError(
                "receipt_timeout must be at least receipt_poll_interval",
                config_key="receipt_timeout",
            )
        if self.discard_batch_size <= 0:
            raise ConfigurationError(
                "discard_batch_size must be positive", config_key="discard_batch_size"
            )


@dataclass
class ProverConfig:
    """Where proving artifacts come from and how the prover is run."""

    artifacts_dir: Optional[str] = None
    artifacts_url: Optional[str] = None
    cache_dir: str = os.path.join(os.path.expanduser("~"), ".cache", "zkteam")
    snarkjs_command: str = "snarkjs"
    # Proving runs unbounded unless a timeout is set.
    timeout: Optional[float] = None
    download_timeout: float = 300.0

    def validate(self) -> None:
        if self.artifacts_dir and self.artifacts_url:
            raise ConfigurationError(
                "Set either artifacts_dir or artifacts_url, not both",
                config_key="artifacts_dir",
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be positive", config_key="timeout")
        if self.download_timeout <= 0:
            raise ConfigurationError(
                "download_timeout must be positive", config_key="download_timeout"
            )
        if not self.snarkjs_command:
            raise ConfigurationError(
                "snarkjs_command is required", config_key="snarkjs_command"
            )


@dataclass
class ZkTeamConfig:
    """Top-level configuration."""

    account: AccountConfig = field(default_factory=AccountConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    logging: LogConfig = field(default_factory=LogConfig)

    def validate(self) -> None:
        self.account.validate()
        self.ledger.validate()
        self.prover.validate()
        self.logging.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": asdict(self.account),
            "ledger": asdict(self.ledger),
            "prover": asdict(self.prover),
            "logging": self.logging.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ZkTeamConfig":
        config = cls(
            account=AccountConfig(**data.get("account", {})),
            ledger=LedgerConfig(**data.get("ledger", {})),
            prover=ProverConfig(**data.get("prover", {})),
            logging=LogConfig.from_dict(data.get("logging", {})),
        )
        config.validate()
        return config

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ZkTeamConfig":
        """
        Build a configuration from ``ZKTEAM_<SECTION>_<FIELD>`` variables.

        ``ZKTEAM_LEDGER_RPC_URL`` sets ``ledger.rpc_url``; unset variables keep
        their defaults.
        """
        environ = os.environ if environ is None else environ
        sections = {
            "account": AccountConfig,
            "ledger": LedgerConfig,
            "prover": ProverConfig,
        }

        data: Dict[str, Dict[str, Any]] = {}
        for section, section_cls in sections.items():
            values = {}
            for f in fields(section_cls):
                name = f"{ENV_PREFIX}{section.upper()}_{f.name.upper()}"
                if name not in environ:
                    continue
                raw = environ[name]
                try:
                    values[f.name] = _coerce(raw, f.default, f.type)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value for {name}: {raw!r}", config_key=name, cause=e
                    ) from e
            data[section] = values

        level = environ.get(f"{ENV_PREFIX}LOG_LEVEL")
        log_format = environ.get(f"{ENV_PREFIX}LOG_FORMAT")
        log_data: Dict[str, Any] = {}
        if level:
            log_data["level"] = level.lower()
        if log_format:
            log_data["format_type"] = log_format.lower()
        data["logging"] = log_data

        try:
            return cls.from_dict(data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid logging configuration: {e}", cause=e) from e


def _coerce(raw: str, default: Any, field_type: Any = None) -> Any:
    if field_type == Optional[float]:
        return float(raw)
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
