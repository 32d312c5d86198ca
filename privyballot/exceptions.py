"""
PrivyBallot Exceptions

Custom exception classes for the PrivyBallot client.
"""

from enum import Enum
from typing import Optional


class PrivyBallotException(Exception):
    """Base exception for PrivyBallot."""
    pass


class ConfigurationError(PrivyBallotException):
    """Configuration error."""
    pass


class InvalidContentAddressError(PrivyBallotException):
    """Content address cannot be stored in an on-chain field."""
    pass


class LedgerError(PrivyBallotException):
    """Ledger communication or execution error."""
    pass


class LedgerUnavailableError(LedgerError):
    """Transport failure, wrong network or missing contract."""
    pass


class RejectionReason(str, Enum):
    """Known revert reasons of the ballot contract."""
    DURATION_ZERO = "duration=0"
    ALREADY_VOTED = "Already voted"
    VOTING_ENDED = "Voting ended"
    TOO_EARLY = "Too early"
    DECRYPTION_PENDING = "Decryption pending"
    ALREADY_REVEALED = "Already revealed"
    NO_PROPOSAL = "No proposal"
    UNKNOWN = "unknown"

    @classmethod
    def from_message(cls, message: str) -> "RejectionReason":
        """Map a revert message onto a known reason (substring match)."""
        lowered = (message or "").lower()
        for reason in cls:
            if reason is cls.UNKNOWN:
                continue
            if reason.value.lower() in lowered:
                return reason
        return cls.UNKNOWN


class LedgerRejection(LedgerError):
    """
    A write call was reverted by the ledger.

    Non-retryable. `message` carries the revert string verbatim so it can be
    shown to the user as is.
    """

    def __init__(self, message: str, reason: Optional[RejectionReason] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or RejectionReason.from_message(message)


class ContentStoreError(PrivyBallotException):
    """Content store upload or pinning failure."""
    pass


class EncryptionError(PrivyBallotException):
    """Vote encryption failed."""
    pass


class OverlayError(PrivyBallotException):
    """Local overlay store error."""
    pass


class DuplicateVoteError(OverlayError):
    """A vote is already recorded locally for this account and proposal."""

    def __init__(self, proposal_id: int, account: str, existing_choice: str):
        super().__init__(
            f"Account {account} already voted '{existing_choice}' on proposal #{proposal_id}"
        )
        self.proposal_id = proposal_id
        self.account = account
        self.existing_choice = existing_choice


class ThrottledError(PrivyBallotException):
    """A write could not pass the request gate within the wait limit."""

    def __init__(self, reason: str, retry_after: float):
        super().__init__(f"Request denied ({reason}), retry after {retry_after:.1f}s")
        self.reason = reason
        self.retry_after = retry_after
