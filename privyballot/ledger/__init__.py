"""
Ledger boundary: the ballot contract as seen by the client.
"""

from .base import BallotLedger
from .memory import DEV_CONTRACT_ADDRESS, InMemoryLedger
from .rpc import JsonRpcLedgerClient

__all__ = [
    "BallotLedger",
    "DEV_CONTRACT_ADDRESS",
    "InMemoryLedger",
    "JsonRpcLedgerClient",
]
