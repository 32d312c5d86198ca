"""
PrivyBallot Client Configuration

Loads every section of privyballot.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    ClientConfig,
    LedgerConfig,
    GateConfig,
    ContentStoreConfig,
    OverlayConfig,
    SyncConfig,
    RevealConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "ClientConfig",
    "LedgerConfig",
    "GateConfig",
    "ContentStoreConfig",
    "OverlayConfig",
    "SyncConfig",
    "RevealConfig",
    "LoggingConfig",
    "load_config",
]
