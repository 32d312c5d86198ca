"""
In-Memory Development Ledger

Mirrors the ballot contract's rules and revert strings without a node, for
local development and tests. The decryption oracle is simulated through
`fulfill_reveal`, which tallies the mock ballots; with `auto_fulfill` the
reveal is fulfilled as soon as it is requested.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, List, Set, Tuple

from eth_utils import keccak

from ..constants import DEFAULT_CHAIN_ID, ONCHAIN_FIELD_WIDTH, VALID_ACCOUNT_PATTERN
from ..encryption import MockVoteEncryptor
from ..exceptions import LedgerRejection, LedgerUnavailableError, RejectionReason
from ..logger import get_logger
from ..models import ProposalStatus, TxHandle
from .base import BallotLedger

logger = get_logger(__name__)

# First contract deployed by the default account of a fresh Hardhat node
DEV_CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


@dataclass
class _StoredProposal:
    on_chain_field: bytes
    creator: str
    deadline: int
    revealed: bool = False
    decryption_pending: bool = False
    yes_count: int = 0
    no_count: int = 0
    voters: Set[str] = field(default_factory=set)
    ballots: List[Tuple[bytes, bytes]] = field(default_factory=list)


class InMemoryLedger(BallotLedger):
    """
    Ballot contract semantics in process memory.

    `available = False` makes every call raise LedgerUnavailableError, which
    is how tests simulate a dead endpoint. `read_calls` counts read methods.
    """

    def __init__(
        self,
        contract_address: str = DEV_CONTRACT_ADDRESS,
        chain_id: int = DEFAULT_CHAIN_ID,
        clock: Callable[[], float] = time.time,
        auto_fulfill: bool = False,
        decrypt: Callable[[bytes, bytes], bool] = MockVoteEncryptor.decrypt,
        deployed: bool = True,
    ):
        self.contract_address = contract_address.lower()
        self._chain_id = chain_id
        self._clock = clock
        self.auto_fulfill = auto_fulfill
        self._decrypt = decrypt
        self.deployed = deployed
        self.available = True
        self.read_calls = 0
        self._proposals: List[_StoredProposal] = []
        self._tx_counter = 0

    # ── Internals ─────────────────────────────────────────────────────

    async def _enter(self, read: bool = False):
        await asyncio.sleep(0)
        if not self.available:
            raise LedgerUnavailableError("In-memory ledger is offline")
        if read:
            self.read_calls += 1

    def _now(self) -> int:
        return int(self._clock())

    def _next_tx_hash(self) -> str:
        self._tx_counter += 1
        return "0x" + keccak(self._tx_counter.to_bytes(32, "big")).hex()

    def _proposal(self, proposal_id: int) -> _StoredProposal:
        if proposal_id < 0 or proposal_id >= len(self._proposals):
            raise LedgerRejection(RejectionReason.NO_PROPOSAL.value, RejectionReason.NO_PROPOSAL)
        return self._proposals[proposal_id]

    @staticmethod
    def _require(condition: bool, reason: RejectionReason):
        if not condition:
            raise LedgerRejection(reason.value, reason)

    @staticmethod
    def _sender(account: str) -> str:
        if not VALID_ACCOUNT_PATTERN.match(account or ""):
            raise ValueError(f"Invalid sender account: {account!r}")
        return account.lower()

    # ── Reads ─────────────────────────────────────────────────────────

    async def chain_id(self) -> int:
        await self._enter(read=True)
        return self._chain_id

    async def contract_exists(self) -> bool:
        await self._enter(read=True)
        return self.deployed

    async def proposal_count(self) -> int:
        await self._enter(read=True)
        return len(self._proposals)

    async def get_proposal(self, proposal_id: int) -> ProposalStatus:
        await self._enter(read=True)
        stored = self._proposal(proposal_id)
        return ProposalStatus(
            id=proposal_id,
            on_chain_field=stored.on_chain_field,
            creator=stored.creator,
            deadline=stored.deadline,
            revealed=stored.revealed,
            decryption_pending=stored.decryption_pending,
            yes_count=stored.yes_count,
            no_count=stored.no_count,
        )

    async def has_voted(self, proposal_id: int, account: str) -> bool:
        await self._enter(read=True)
        return account.lower() in self._proposal(proposal_id).voters

    # ── Writes ────────────────────────────────────────────────────────

    async def create_proposal(self, on_chain_field: bytes, duration_seconds: int, account: str) -> TxHandle:
        await self._enter()
        sender = self._sender(account)
        if len(on_chain_field) != ONCHAIN_FIELD_WIDTH:
            raise ValueError("on_chain_field must be 32 bytes")
        self._require(duration_seconds > 0, RejectionReason.DURATION_ZERO)

        proposal_id = len(self._proposals)
        self._proposals.append(_StoredProposal(
            on_chain_field=bytes(on_chain_field),
            creator=sender,
            deadline=self._now() + int(duration_seconds),
        ))
        logger.debug(f"Proposal #{proposal_id} created by {sender}")
        return TxHandle(tx_hash=self._next_tx_hash(), proposal_id=proposal_id)

    async def vote(self, proposal_id: int, ciphertext: bytes, proof: bytes, account: str) -> TxHandle:
        await self._enter()
        sender = self._sender(account)
        stored = self._proposal(proposal_id)
        self._require(self._now() < stored.deadline, RejectionReason.VOTING_ENDED)
        self._require(sender not in stored.voters, RejectionReason.ALREADY_VOTED)

        stored.voters.add(sender)
        stored.ballots.append((bytes(ciphertext), bytes(proof)))
        return TxHandle(tx_hash=self._next_tx_hash())

    async def request_reveal(self, proposal_id: int, account: str) -> TxHandle:
        await self._enter()
        self._sender(account)
        stored = self._proposal(proposal_id)
        self._require(self._now() >= stored.deadline, RejectionReason.TOO_EARLY)
        self._require(not stored.revealed, RejectionReason.ALREADY_REVEALED)
        self._require(not stored.decryption_pending, RejectionReason.DECRYPTION_PENDING)

        stored.decryption_pending = True
        logger.debug(f"Reveal requested for proposal #{proposal_id}")
        if self.auto_fulfill:
            self.fulfill_reveal(proposal_id)
        return TxHandle(tx_hash=self._next_tx_hash())

    # ── Oracle hook ───────────────────────────────────────────────────

    def fulfill_reveal(self, proposal_id: int, keep_pending: bool = False) -> Tuple[int, int]:
        """
        Decrypt and publish the tally of a pending reveal, the way the
        decryption oracle's callback does. `keep_pending` leaves the pending
        flag set to reproduce the window where both flags read true.
        """
        stored = self._proposal(proposal_id)
        if not stored.decryption_pending:
            raise LedgerRejection("No pending reveal", RejectionReason.UNKNOWN)

        yes = sum(1 for ciphertext, proof in stored.ballots if self._decrypt(ciphertext, proof))
        stored.yes_count = yes
        stored.no_count = len(stored.ballots) - yes
        stored.revealed = True
        stored.decryption_pending = keep_pending
        logger.info(f"Proposal #{proposal_id} revealed: {stored.yes_count} yes / {stored.no_count} no")
        return stored.yes_count, stored.no_count

    def set_raw_field(self, proposal_id: int, on_chain_field: bytes) -> None:
        """Overwrite a stored field, e.g. with one produced by the legacy encoder."""
        self._proposal(proposal_id).on_chain_field = bytes(on_chain_field)

