"""
Content Store Boundary

Proposal metadata lives off-chain in a content-addressed store. Callers
treat every failure of `get` as "metadata unavailable": implementations
return None instead of raising.
"""

import asyncio
import base64
import hashlib
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

import base58

from ..logger import get_logger
from ..models import ProposalMetadata

logger = get_logger(__name__)

# multihash prefix: sha2-256, 32-byte digest
_SHA256_MULTIHASH = b"\x12\x20"
# CIDv1 prefix: version 1, raw codec
_CIDV1_RAW = b"\x01\x55"


def canonical_json(metadata: ProposalMetadata) -> bytes:
    return json.dumps(metadata.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")


def compute_cid(payload: bytes, version: int = 0) -> str:
    """
    Content identifier of `payload`.

    Version 0 is the 46-char base58btc `Qm...` form; version 1 the 59-char
    base32 `b...` form, which no longer fits an on-chain field.
    """
    multihash = _SHA256_MULTIHASH + hashlib.sha256(payload).digest()
    if version == 0:
        return base58.b58encode(multihash).decode("ascii")
    if version == 1:
        encoded = base64.b32encode(_CIDV1_RAW + multihash).decode("ascii").lower().rstrip("=")
        return "b" + encoded
    raise ValueError(f"Unsupported CID version: {version}")


class ContentStore(ABC):
    """Off-chain metadata store."""

    @abstractmethod
    async def put(self, metadata: ProposalMetadata) -> str:
        """Store metadata and return its content address."""

    @abstractmethod
    async def get(self, address: str) -> Optional[ProposalMetadata]:
        """Metadata for `address`, or None when missing or unreachable."""

    @abstractmethod
    async def delete(self, address: str) -> bool:
        """Remove (unpin) `address`. Returns True if something was removed."""

    async def close(self) -> None:
        pass


class InMemoryContentStore(ContentStore):
    """
    Process-local store producing real content identifiers. Used for
    development, tests, and as the fallback of the gateway store.
    """

    def __init__(self, cid_version: int = 0):
        self.cid_version = cid_version
        self._documents: Dict[str, ProposalMetadata] = {}
        self.available = True
        self.get_calls = 0

    async def put(self, metadata: ProposalMetadata) -> str:
        address = compute_cid(canonical_json(metadata), self.cid_version)
        self._documents[address] = metadata
        logger.debug(f"Stored metadata '{metadata.title}' as {address}")
        return address

    def put_at(self, address: str, metadata: ProposalMetadata) -> str:
        """Store metadata under an address chosen by the caller."""
        self._documents[address] = metadata
        return address

    async def get(self, address: str) -> Optional[ProposalMetadata]:
        await asyncio.sleep(0)
        self.get_calls += 1
        if not self.available:
            return None
        return self._documents.get(address)

    async def delete(self, address: str) -> bool:
        return self._documents.pop(address, None) is not None

    def __contains__(self, address: str) -> bool:
        return address in self._documents

    def __len__(self) -> int:
        return len(self._documents)
