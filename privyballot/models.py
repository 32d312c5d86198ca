"""
Ballot Data Model

Dataclasses and enums shared by the codec, the overlay store, the
synchronizer and the reveal coordinator. Ledger-authoritative fields live in
`ProposalStatus`; `ProposalView` is the merged, display-ready entity rebuilt
on every synchronization pass.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class VoteChoice(str, Enum):
    YES = "yes"
    NO = "no"

    @classmethod
    def parse(cls, value: Union[str, bool, "VoteChoice"]) -> "VoteChoice":
        if isinstance(value, VoteChoice):
            return value
        if isinstance(value, bool):
            return cls.YES if value else cls.NO
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid vote choice: {value!r} (expected 'yes' or 'no')")

    @property
    def as_bool(self) -> bool:
        return self is VoteChoice.YES


class ProposalPhase(str, Enum):
    """Observed reveal lifecycle; the ledger and the oracle own the transitions."""
    VOTING = "Voting"
    AWAITING_REVEAL = "AwaitingReveal"
    DECRYPTION_PENDING = "DecryptionPending"
    REVEALED = "Revealed"


class SyncMode(str, Enum):
    FULL = "full"
    LIGHTWEIGHT_STATUS_ONLY = "lightweight"


class SyncStatus(str, Enum):
    OK = "OK"
    THROTTLED = "THROTTLED"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    FAILED = "FAILED"


class UnresolvedReason(str, Enum):
    EMPTY = "EMPTY"                          # all-zero field
    LEGACY_TRUNCATED = "LEGACY_TRUNCATED"    # CID cut to the field width by the old encoder
    UNMAPPED_DIGEST = "UNMAPPED_DIGEST"      # digest with no local mapping


# ══════════════════════════════════════════════════════════════════════
#  IDENTIFIERS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Unresolved:
    """
    Decode outcome for an on-chain field whose content address cannot be
    recovered. Not an error: the proposal is shown without metadata.
    """
    field_hex: str
    reason: UnresolvedReason

    def __str__(self) -> str:
        return f"Unresolved({self.reason.value}, {self.field_hex})"


# ══════════════════════════════════════════════════════════════════════
#  METADATA
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProposalMetadata:
    """
    Off-chain proposal description, stored as JSON in the content store.

    Fields:
        title:        Short title
        description:  Detailed description
        options:      Ordered answer labels (at least two)
        creator:      Account that created the proposal
        created_at:   Creation timestamp (milliseconds, as the web client wrote it)
        tags:         Free-form labels
    """
    title: str
    description: str
    options: List[str] = field(default_factory=lambda: ["Yes", "No"])
    creator: str = ""
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if not self.title or not str(self.title).strip():
            raise ValueError("Proposal title cannot be empty")
        if len(self.options) < 2:
            raise ValueError("Proposal needs at least two options")
        object.__setattr__(self, "options", list(self.options))
        object.__setattr__(self, "tags", frozenset(self.tags or ()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "options": list(self.options),
            "creator": self.creator,
            "createdAt": self.created_at,
            "tags": sorted(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProposalMetadata":
        if not isinstance(data, dict):
            raise ValueError("Proposal metadata must be a JSON object")
        return cls(
            title=data["title"],
            description=data.get("description", ""),
            options=list(data.get("options") or ["Yes", "No"]),
            creator=data.get("creator", ""),
            created_at=int(data.get("createdAt", 0)),
            tags=frozenset(data.get("tags") or ()),
        )


# ══════════════════════════════════════════════════════════════════════
#  LEDGER STATE
# ══════════════════════════════════════════════════════════════════════

def observed_phase(
    revealed: bool,
    decryption_pending: bool,
    deadline: int,
    now: Optional[float] = None,
) -> ProposalPhase:
    # Both flags set is a transient window after fulfilment; revealed wins
    if revealed:
        return ProposalPhase.REVEALED
    if decryption_pending:
        return ProposalPhase.DECRYPTION_PENDING
    now = time.time() if now is None else now
    if now >= deadline:
        return ProposalPhase.AWAITING_REVEAL
    return ProposalPhase.VOTING


@dataclass(frozen=True)
class ProposalStatus:
    """Ledger-authoritative fields of one proposal (`getProposalPublic`)."""
    id: int
    on_chain_field: bytes
    creator: str
    deadline: int
    revealed: bool
    decryption_pending: bool
    yes_count: int
    no_count: int

    def phase(self, now: Optional[float] = None) -> ProposalPhase:
        return observed_phase(self.revealed, self.decryption_pending, self.deadline, now)

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.deadline


@dataclass(frozen=True)
class ProposalView:
    """
    Merged view of a proposal for one account.

    Ledger state is authoritative for everything but `metadata` (content
    store) and `has_voted` (ledger OR local overlay).
    """
    id: int
    on_chain_field: bytes
    content_address: Optional[str]
    metadata: Optional[ProposalMetadata]
    creator: str
    deadline: int
    revealed: bool
    decryption_pending: bool
    yes_count: int
    no_count: int
    has_voted: bool
    unresolved_reason: Optional[UnresolvedReason] = None

    @classmethod
    def merge(
        cls,
        status: ProposalStatus,
        content_address: Optional[str],
        metadata: Optional[ProposalMetadata],
        has_voted: bool,
        unresolved_reason: Optional[UnresolvedReason] = None,
    ) -> "ProposalView":
        return cls(
            id=status.id,
            on_chain_field=status.on_chain_field,
            content_address=content_address,
            metadata=metadata,
            creator=status.creator,
            deadline=status.deadline,
            revealed=status.revealed,
            decryption_pending=status.decryption_pending,
            yes_count=status.yes_count,
            no_count=status.no_count,
            has_voted=has_voted,
            unresolved_reason=unresolved_reason,
        )

    @property
    def title(self) -> str:
        if self.metadata is not None:
            return self.metadata.title
        return f"Proposal #{self.id}"

    def phase(self, now: Optional[float] = None) -> ProposalPhase:
        return observed_phase(self.revealed, self.decryption_pending, self.deadline, now)

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.deadline

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "onChainField": "0x" + self.on_chain_field.hex(),
            "contentAddress": self.content_address,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "creator": self.creator,
            "deadline": self.deadline,
            "revealed": self.revealed,
            "decryptionPending": self.decryption_pending,
            "yesCount": self.yes_count,
            "noCount": self.no_count,
            "hasVoted": self.has_voted,
            "unresolvedReason": self.unresolved_reason.value if self.unresolved_reason else None,
        }


# ══════════════════════════════════════════════════════════════════════
#  LOCAL OVERLAY RECORDS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VoteRecord:
    proposal_id: int
    account: str
    choice: VoteChoice
    submitted_at: float
    confirmed: bool = False


@dataclass(frozen=True)
class DeletionMark:
    proposal_id: int
    account: str


# ══════════════════════════════════════════════════════════════════════
#  OPERATION RESULTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TxHandle:
    """Confirmed ledger write. `proposal_id` is set for create-proposal."""
    tx_hash: str
    proposal_id: Optional[int] = None
    already_applied: bool = False


@dataclass(frozen=True)
class RevealResult:
    proposal_id: int
    yes_count: int
    no_count: int
    attempts: int = 0


@dataclass(frozen=True)
class RevealTimedOut:
    """Polling budget exhausted; the reveal may still be processing."""
    proposal_id: int
    attempts: int
    decryption_pending: bool


@dataclass
class SyncReport:
    """
    Outcome of one synchronization pass. `proposals` is empty for every
    status other than OK; `retry_after` is set when the gate denied the pass.
    """
    proposals: List[ProposalView] = field(default_factory=list)
    status: SyncStatus = SyncStatus.OK
    reason: Optional[str] = None
    retry_after: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.OK

    @classmethod
    def throttled(cls, reason: str, retry_after: float) -> "SyncReport":
        return cls(status=SyncStatus.THROTTLED, reason=reason, retry_after=retry_after)

    @classmethod
    def unavailable(cls, reason: str) -> "SyncReport":
        return cls(status=SyncStatus.NETWORK_UNAVAILABLE, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "SyncReport":
        return cls(status=SyncStatus.FAILED, reason=reason)
