"""
Vote Encryption Boundary

The ballot contract accepts an encrypted boolean (a 32-byte handle) and an
input proof. The encryption scheme itself is external; this module defines
the interface the coordinator calls and a mock used on local development
chains.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

from eth_utils import keccak

from .constants import VALID_ACCOUNT_PATTERN
from .exceptions import EncryptionError
from .models import VoteChoice

CIPHERTEXT_SIZE = 32
MOCK_PROOF_SIZE = 64

# Mock proofs carry the plaintext in their first two bytes
YES_MARKER = b"\xaa\xaa"
NO_MARKER = b"\xbb\xbb"


@dataclass(frozen=True)
class EncryptedVote:
    ciphertext: bytes
    proof: bytes

    def __post_init__(self):
        if len(self.ciphertext) != CIPHERTEXT_SIZE:
            raise EncryptionError(
                f"Ciphertext must be {CIPHERTEXT_SIZE} bytes, got {len(self.ciphertext)}"
            )


class VoteEncryptor(ABC):
    """Encrypts a yes/no choice for one contract and account."""

    @abstractmethod
    def encrypt(self, choice: VoteChoice, contract_address: str, account: str) -> EncryptedVote:
        pass


class MockVoteEncryptor(VoteEncryptor):
    """
    Development encryptor. The ciphertext is an opaque keccak handle; the
    proof starts with 0xaaaa for yes and 0xbbbb for no, which is what the
    development oracle reads back in `decrypt`.
    """

    def encrypt(self, choice: VoteChoice, contract_address: str, account: str) -> EncryptedVote:
        choice = VoteChoice.parse(choice)
        for label, value in (("contract", contract_address), ("account", account)):
            if not VALID_ACCOUNT_PATTERN.match(value or ""):
                raise EncryptionError(f"Invalid {label} address: {value!r}")

        marker = YES_MARKER if choice is VoteChoice.YES else NO_MARKER
        nonce = os.urandom(16)
        ciphertext = keccak(
            marker + bytes.fromhex(contract_address[2:]) + bytes.fromhex(account[2:]) + nonce
        )
        proof = marker + os.urandom(MOCK_PROOF_SIZE - len(marker))
        return EncryptedVote(ciphertext=ciphertext, proof=proof)

    @staticmethod
    def decrypt(ciphertext: bytes, proof: bytes) -> bool:
        if proof[:2] == YES_MARKER:
            return True
        if proof[:2] == NO_MARKER:
            return False
        raise EncryptionError("Proof carries no mock vote marker")
