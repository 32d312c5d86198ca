"""
PrivyBallot TOML Configuration Loader

Loads all sections of privyballot.toml with environment variable overrides.

Environment variable mapping:
    [ledger] rpc_url                   → PRIVYBALLOT_RPC_URL
    [ledger] chain_id                  → PRIVYBALLOT_CHAIN_ID
    [ledger] contract_address          → PRIVYBALLOT_CONTRACT_ADDRESS
    [gate] max_requests_per_minute     → PRIVYBALLOT_MAX_REQUESTS_PER_MINUTE
    [overlay] path                     → PRIVYBALLOT_OVERLAY_PATH
    [logging] level                    → PRIVYBALLOT_LOG_LEVEL

Pinning API credentials MUST come from env vars, never TOML:
    PRIVYBALLOT_PINATA_API_KEY, PRIVYBALLOT_PINATA_SECRET_KEY
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    CONTENT_FETCH_TIMEOUT,
    DEFAULT_CHAIN_ID,
    DEFAULT_GATEWAYS,
    DEFAULT_RPC_URL,
    ERROR_BACKOFF_SECONDS,
    LEDGER_CALL_TIMEOUT,
    MAX_CONSECUTIVE_ERRORS,
    MAX_REQUESTS_PER_MINUTE,
    MIN_REQUEST_INTERVAL,
    PINATA_API_URL,
    RECEIPT_POLL_INTERVAL,
    RECEIPT_TIMEOUT,
    REVEAL_MAX_ATTEMPTS,
    REVEAL_POLL_INTERVAL,
    SYNC_MAX_CONCURRENCY,
    VALID_ACCOUNT_PATTERN,
    WRITE_WAIT_LIMIT,
)
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "privyballot.toml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
CONTENT_BACKENDS = ("memory", "pinata")

# ---------------------------------------------------------------------------
# Section dataclasses, one per [section] of privyballot.toml
# ---------------------------------------------------------------------------


@dataclass
class LedgerConfig:
    """[ledger] section."""
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = DEFAULT_CHAIN_ID
    contract_address: str = ""
    call_timeout: float = LEDGER_CALL_TIMEOUT
    receipt_timeout: float = RECEIPT_TIMEOUT
    receipt_poll_interval: float = RECEIPT_POLL_INTERVAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerConfig":
        return cls(
            rpc_url=data.get("rpc_url", DEFAULT_RPC_URL),
            chain_id=data.get("chain_id", DEFAULT_CHAIN_ID),
            contract_address=data.get("contract_address", ""),
            call_timeout=data.get("call_timeout", LEDGER_CALL_TIMEOUT),
            receipt_timeout=data.get("receipt_timeout", RECEIPT_TIMEOUT),
            receipt_poll_interval=data.get("receipt_poll_interval", RECEIPT_POLL_INTERVAL),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("PRIVYBALLOT_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("PRIVYBALLOT_CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("PRIVYBALLOT_CONTRACT_ADDRESS"):
            self.contract_address = v


@dataclass
class GateConfig:
    """[gate] section."""
    max_requests_per_minute: int = MAX_REQUESTS_PER_MINUTE
    min_interval: float = MIN_REQUEST_INTERVAL
    max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS
    error_backoff: float = ERROR_BACKOFF_SECONDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GateConfig":
        return cls(
            max_requests_per_minute=data.get("max_requests_per_minute", MAX_REQUESTS_PER_MINUTE),
            min_interval=data.get("min_interval", MIN_REQUEST_INTERVAL),
            max_consecutive_errors=data.get("max_consecutive_errors", MAX_CONSECUTIVE_ERRORS),
            error_backoff=data.get("error_backoff", ERROR_BACKOFF_SECONDS),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("PRIVYBALLOT_MAX_REQUESTS_PER_MINUTE"):
            self.max_requests_per_minute = int(v)


@dataclass
class ContentStoreConfig:
    """[content_store] section."""
    backend: str = "memory"
    api_url: str = PINATA_API_URL
    gateways: List[str] = field(default_factory=lambda: list(DEFAULT_GATEWAYS))
    timeout: float = CONTENT_FETCH_TIMEOUT
    # Env only
    api_key: str = field(default="", repr=False)
    secret_key: str = field(default="", repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentStoreConfig":
        return cls(
            backend=data.get("backend", "memory"),
            api_url=data.get("api_url", PINATA_API_URL),
            gateways=data.get("gateways", list(DEFAULT_GATEWAYS)),
            timeout=data.get("timeout", CONTENT_FETCH_TIMEOUT),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("PRIVYBALLOT_PINATA_API_KEY"):
            self.api_key = v
        if v := os.environ.get("PRIVYBALLOT_PINATA_SECRET_KEY"):
            self.secret_key = v

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key)


@dataclass
class OverlayConfig:
    """[overlay] section."""
    path: str = "data/overlay.db"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverlayConfig":
        return cls(path=data.get("path", "data/overlay.db"))

    def apply_env(self) -> None:
        if v := os.environ.get("PRIVYBALLOT_OVERLAY_PATH"):
            self.path = v


@dataclass
class SyncConfig:
    """[sync] section."""
    max_concurrency: int = SYNC_MAX_CONCURRENCY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        return cls(max_concurrency=data.get("max_concurrency", SYNC_MAX_CONCURRENCY))


@dataclass
class RevealConfig:
    """[reveal] section."""
    max_attempts: int = REVEAL_MAX_ATTEMPTS
    interval: float = REVEAL_POLL_INTERVAL
    write_wait_limit: float = WRITE_WAIT_LIMIT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevealConfig":
        return cls(
            max_attempts=data.get("max_attempts", REVEAL_MAX_ATTEMPTS),
            interval=data.get("interval", REVEAL_POLL_INTERVAL),
            write_wait_limit=data.get("write_wait_limit", WRITE_WAIT_LIMIT),
        )


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(level=str(data.get("level", "INFO")).upper())

    def apply_env(self) -> None:
        if v := os.environ.get("PRIVYBALLOT_LOG_LEVEL"):
            self.level = v.upper()


# -----------------------------------------------------------------------
# Top-level client config
# -----------------------------------------------------------------------

@dataclass
class ClientConfig:
    """
    Unified client configuration.

    Loads every section of privyballot.toml and applies environment variable
    overrides. This is the single source of truth for a BallotSession.
    """
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    content_store: ContentStoreConfig = field(default_factory=ContentStoreConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    reveal: RevealConfig = field(default_factory=RevealConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create ClientConfig from a parsed TOML dict."""
        return cls(
            ledger=LedgerConfig.from_dict(data.get("ledger", {})),
            gate=GateConfig.from_dict(data.get("gate", {})),
            content_store=ContentStoreConfig.from_dict(data.get("content_store", {})),
            overlay=OverlayConfig.from_dict(data.get("overlay", {})),
            sync=SyncConfig.from_dict(data.get("sync", {})),
            reveal=RevealConfig.from_dict(data.get("reveal", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "ClientConfig":
        """
        Load configuration from a TOML file.

        A missing file is not an error: defaults are used and environment
        overrides still apply.

        Args:
            config_path: Path to privyballot.toml

        Returns:
            ClientConfig instance
        """
        path = Path(config_path)
        if not path.exists():
            logger.debug("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomli.load(f)

        logger.debug("Loaded configuration from %s", path)
        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.ledger.apply_env()
        self.gate.apply_env()
        self.content_store.apply_env()
        self.overlay.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all valid

        Raises:
            ValueError: on invalid config
        """
        if self.ledger.chain_id < 1:
            raise ValueError("chain_id must be >= 1")
        if not self.ledger.rpc_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid rpc_url: {self.ledger.rpc_url}")
        if self.ledger.contract_address and not VALID_ACCOUNT_PATTERN.match(self.ledger.contract_address):
            raise ValueError(f"Invalid contract_address: {self.ledger.contract_address}")
        if self.ledger.call_timeout <= 0 or self.ledger.receipt_timeout <= 0:
            raise ValueError("Ledger timeouts must be > 0")
        if self.gate.max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be >= 1")
        if self.gate.min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        if self.gate.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be >= 1")
        if self.gate.error_backoff < 0:
            raise ValueError("error_backoff must be >= 0")
        if self.content_store.backend not in CONTENT_BACKENDS:
            raise ValueError(f"Invalid content_store backend: {self.content_store.backend}")
        if self.content_store.timeout <= 0:
            raise ValueError("content_store timeout must be > 0")
        if self.sync.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.reveal.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.reveal.interval < 0:
            raise ValueError("reveal interval must be >= 0")
        if self.logging.level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.logging.level}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, secrets omitted)."""
        return {
            "ledger": {
                "rpc_url": self.ledger.rpc_url,
                "chain_id": self.ledger.chain_id,
                "contract_address": self.ledger.contract_address,
                "call_timeout": self.ledger.call_timeout,
            },
            "gate": {
                "max_requests_per_minute": self.gate.max_requests_per_minute,
                "min_interval": self.gate.min_interval,
                "max_consecutive_errors": self.gate.max_consecutive_errors,
                "error_backoff": self.gate.error_backoff,
            },
            "content_store": {
                "backend": self.content_store.backend,
                "gateways": list(self.content_store.gateways),
                "timeout": self.content_store.timeout,
                "credentials": self.content_store.has_credentials,
            },
            "overlay": {
                "path": self.overlay.path,
            },
            "sync": {
                "max_concurrency": self.sync.max_concurrency,
            },
            "reveal": {
                "max_attempts": self.reveal.max_attempts,
                "interval": self.reveal.interval,
                "write_wait_limit": self.reveal.write_wait_limit,
            },
            "logging": {
                "level": self.logging.level,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> ClientConfig:
    """
    Load client configuration.

    Resolution order:
        1. Explicit *path* argument
        2. PRIVYBALLOT_CONFIG env var
        3. ./privyballot.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("PRIVYBALLOT_CONFIG", DEFAULT_CONFIG_FILE)

    return ClientConfig.from_file(path)
