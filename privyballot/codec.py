"""
Identifier Codec

Stores a content address in the ledger's fixed 32-byte field.

* Addresses whose UTF-8 bytes fit are right-padded with zero bytes and read
  back by stripping the padding.
* Longer addresses (CIDv1 is 59+ chars) are replaced by their keccak-256
  digest; the digest → address pair goes to the overlay store before the
  field is handed out, so only a client holding the mapping can read it back.

Fields written by the legacy encoder, which sliced a CID to 32 characters,
decode to `Unresolved(LEGACY_TRUNCATED)` instead of a broken address.
"""

from typing import Union

from eth_utils import keccak

from .constants import (
    CIDV0_LENGTH,
    CIDV0_PATTERN,
    CIDV1_BASE32_MIN_LENGTH,
    CIDV1_BASE32_PATTERN,
    MIN_CONTENT_ADDRESS_LENGTH,
    ONCHAIN_FIELD_WIDTH,
)
from .exceptions import InvalidContentAddressError
from .logger import get_logger
from .models import Unresolved, UnresolvedReason
from .overlay import LocalOverlayStore

logger = get_logger(__name__)

_EMPTY_FIELD = b"\x00" * ONCHAIN_FIELD_WIDTH


def field_to_hex(field: bytes) -> str:
    return "0x" + field.hex()


def looks_truncated(value: str) -> bool:
    """
    True when `value` is shaped like a CID but shorter than any valid CID of
    its family.
    """
    if CIDV0_PATTERN.match(value):
        return len(value) < CIDV0_LENGTH
    if CIDV1_BASE32_PATTERN.match(value):
        return len(value) < CIDV1_BASE32_MIN_LENGTH
    return False


def decode_direct(field: bytes) -> Union[str, Unresolved]:
    """Zero-strip decode, without consulting any mapping."""
    stripped = field.rstrip(b"\x00")
    if not stripped:
        return Unresolved(field_to_hex(field), UnresolvedReason.EMPTY)

    try:
        value = stripped.decode("utf-8")
    except UnicodeDecodeError:
        return Unresolved(field_to_hex(field), UnresolvedReason.UNMAPPED_DIGEST)

    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        return Unresolved(field_to_hex(field), UnresolvedReason.UNMAPPED_DIGEST)

    # Only a field with no padding left can be the output of a 32-char slice
    if len(stripped) == ONCHAIN_FIELD_WIDTH and looks_truncated(value):
        return Unresolved(field_to_hex(field), UnresolvedReason.LEGACY_TRUNCATED)

    return value


def _coerce_field(field: Union[bytes, str]) -> bytes:
    if isinstance(field, str):
        field = bytes.fromhex(field.removeprefix("0x"))
    if len(field) != ONCHAIN_FIELD_WIDTH:
        raise ValueError(f"On-chain field must be {ONCHAIN_FIELD_WIDTH} bytes, got {len(field)}")
    return bytes(field)


class IdentifierCodec:
    """
    Converts content addresses to and from on-chain fields, backed by the
    overlay store's identifier mappings.
    """

    def __init__(self, overlay: LocalOverlayStore):
        self.overlay = overlay

    async def encode(self, address: str) -> bytes:
        if not isinstance(address, str) or len(address) < MIN_CONTENT_ADDRESS_LENGTH:
            raise InvalidContentAddressError(
                f"Content address must be at least {MIN_CONTENT_ADDRESS_LENGTH} characters: {address!r}"
            )
        if "\x00" in address:
            raise InvalidContentAddressError("Content address must not contain NUL characters")

        raw = address.encode("utf-8")
        if len(raw) <= ONCHAIN_FIELD_WIDTH:
            padded = raw.ljust(ONCHAIN_FIELD_WIDTH, b"\x00")
            if decode_direct(padded) == address:
                return padded
            logger.debug(f"Address {address} is not directly decodable, using digest")

        digest = keccak(text=address)
        await self.overlay.put_identifier_mapping(digest, address)
        logger.debug(f"Stored identifier mapping {field_to_hex(digest)} -> {address}")
        return digest

    async def decode(self, field: Union[bytes, str]) -> Union[str, Unresolved]:
        field = _coerce_field(field)
        if field == _EMPTY_FIELD:
            return Unresolved(field_to_hex(field), UnresolvedReason.EMPTY)

        mapped = await self.overlay.get_identifier_mapping(field)
        if mapped is not None:
            return mapped

        result = decode_direct(field)
        if isinstance(result, Unresolved):
            logger.debug(f"On-chain field {result.field_hex} unresolved: {result.reason.value}")
        return result
