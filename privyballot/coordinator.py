"""
Reveal Coordinator

Write and poll path of the client: create proposals, cast encrypted votes,
request reveals and wait for the decryption oracle to publish the tally.

Observed lifecycle of a proposal (owned by the ledger and the oracle):

    Voting ──deadline──▶ AwaitingReveal ──requestReveal──▶ DecryptionPending
                                                              │ oracle
                                                              ▼
                                                           Revealed

Writes go through the request gate and wait a bounded time for a slot.
Ledger rejections propagate verbatim as LedgerRejection, except that a
concurrent reveal request ("Decryption pending" / "Already revealed") counts
as success and the caller proceeds straight to polling.
"""

import asyncio
import dataclasses
import time
from typing import Awaitable, Callable, Dict, Optional, TypeVar, Union

from .codec import IdentifierCodec
from .constants import REVEAL_MAX_ATTEMPTS, REVEAL_POLL_INTERVAL, WRITE_WAIT_LIMIT
from .content.store import ContentStore
from .encryption import EncryptedVote, VoteEncryptor
from .exceptions import (
    DuplicateVoteError,
    EncryptionError,
    LedgerError,
    LedgerRejection,
    LedgerUnavailableError,
    RejectionReason,
    ThrottledError,
)
from .gate import RequestGate, RequestKind
from .ledger.base import BallotLedger
from .logger import get_logger
from .models import ProposalMetadata, RevealResult, RevealTimedOut, TxHandle, VoteChoice
from .overlay import LocalOverlayStore
from .synchronizer import ProposalSynchronizer

logger = get_logger(__name__)

T = TypeVar("T")

# Rejections of requestReveal that mean another caller got there first
_REVEAL_ALREADY_REQUESTED = (RejectionReason.DECRYPTION_PENDING, RejectionReason.ALREADY_REVEALED)


class RevealCoordinator:

    def __init__(
        self,
        ledger: BallotLedger,
        content_store: ContentStore,
        codec: IdentifierCodec,
        overlay: LocalOverlayStore,
        gate: RequestGate,
        synchronizer: ProposalSynchronizer,
        encryptor: VoteEncryptor,
        max_attempts: int = REVEAL_MAX_ATTEMPTS,
        interval: float = REVEAL_POLL_INTERVAL,
        write_wait_limit: float = WRITE_WAIT_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.content_store = content_store
        self.codec = codec
        self.overlay = overlay
        self.gate = gate
        self.synchronizer = synchronizer
        self.encryptor = encryptor
        self.max_attempts = max_attempts
        self.interval = interval
        self.write_wait_limit = write_wait_limit
        self._sleep = sleep
        self._clock = clock
        self._revealed: Dict[int, RevealResult] = {}

    # ── Gate handling ─────────────────────────────────────────────────

    async def _acquire_write(self, operation: str) -> None:
        waited = 0.0
        while True:
            decision = self.gate.try_acquire(RequestKind.NORMAL)
            if decision.allowed:
                return
            if waited + decision.retry_after > self.write_wait_limit:
                logger.warning(f"{operation} denied by request gate: {decision.reason.value}")
                raise ThrottledError(decision.reason.value, decision.retry_after)
            pause = max(decision.retry_after, 0.01)
            logger.debug(f"{operation} waiting {pause:.2f}s for the request gate ({decision.reason.value})")
            await self._sleep(pause)
            waited += pause

    async def _write(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one ledger write through the gate and record its outcome."""
        await self._acquire_write(operation)
        try:
            result = await call()
        except LedgerUnavailableError:
            self.gate.record_failure()
            raise
        except LedgerError:
            # The ledger answered, so the endpoint is healthy
            self.gate.record_success()
            raise
        self.gate.record_success()
        return result

    # ── Writes ────────────────────────────────────────────────────────

    async def create_proposal(
        self, metadata: ProposalMetadata, duration_seconds: int, account: str
    ) -> TxHandle:
        """
        Upload metadata, store its content address on the ledger and return
        the handle carrying the new proposal id. Any identifier mapping is
        persisted before the ledger write.
        """
        if duration_seconds < 0:
            raise ValueError("duration_seconds must not be negative")
        if not metadata.creator:
            metadata = dataclasses.replace(metadata, creator=account)

        address = await self.content_store.put(metadata)
        field = await self.codec.encode(address)
        handle = await self._write(
            "createProposal",
            lambda: self.ledger.create_proposal(field, duration_seconds, account),
        )
        self.synchronizer.remember_metadata(address, metadata)
        logger.info(f"Proposal #{handle.proposal_id} created by {account} ({address})")
        return handle

    async def vote(self, proposal_id: int, choice: Union[VoteChoice, str, bool], account: str) -> TxHandle:
        """
        Encrypt and submit a vote, then record it in the overlay. Any vote
        already recorded locally for this account is rejected before anything
        is encrypted or sent.
        """
        choice = VoteChoice.parse(choice)
        existing = await self.overlay.get_vote(proposal_id, account)
        if existing is not None:
            raise DuplicateVoteError(proposal_id, account, existing.choice.value)

        encrypted = self._encrypt(choice, account)
        handle = await self._write(
            "vote",
            lambda: self.ledger.vote(proposal_id, encrypted.ciphertext, encrypted.proof, account),
        )
        await self.overlay.record_vote(proposal_id, account, choice, submitted_at=self._clock())
        logger.info(f"Vote on proposal #{proposal_id} submitted by {account}")
        return handle

    def _encrypt(self, choice: VoteChoice, account: str) -> EncryptedVote:
        try:
            return self.encryptor.encrypt(choice, self.ledger.contract_address, account)
        except EncryptionError:
            raise
        except Exception as e:
            raise EncryptionError(f"Vote encryption failed: {e}") from e

    async def request_reveal(self, proposal_id: int, account: str) -> TxHandle:
        """
        Ask the ledger to decrypt the tally. A reveal already requested or
        fulfilled by someone else yields a handle with `already_applied`.
        """
        try:
            handle = await self._write(
                "requestReveal",
                lambda: self.ledger.request_reveal(proposal_id, account),
            )
        except LedgerRejection as rejection:
            if rejection.reason in _REVEAL_ALREADY_REQUESTED:
                logger.info(f"Reveal of proposal #{proposal_id} already requested ({rejection.message})")
                return TxHandle(tx_hash="", already_applied=True)
            raise
        logger.info(f"Reveal requested for proposal #{proposal_id}")
        return handle

    async def delete_proposal(
        self, proposal_id: int, account: str, content_address: Optional[str] = None
    ) -> bool:
        """
        Hide a proposal from `account`'s view. Ledger state is untouched.

        Pass `content_address` only for the account's own proposals: the
        metadata is then unpinned best-effort. Returns True if it was unpinned.
        """
        await self.overlay.mark_deleted(proposal_id, account)
        logger.info(f"Proposal #{proposal_id} hidden for {account}")
        if not content_address:
            return False
        try:
            return await self.content_store.delete(content_address)
        except Exception as e:
            logger.warning(f"Unpinning metadata of proposal #{proposal_id} failed: {e}")
            return False

    # ── Polling ───────────────────────────────────────────────────────

    async def poll_until_revealed(
        self,
        proposal_id: int,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Union[RevealResult, RevealTimedOut]:
        """
        Poll the proposal until its tally is public or the attempt budget is
        spent. Read-only, so the caller may abandon it at any point (task
        cancellation or `cancel`).
        """
        cached = self._revealed.get(proposal_id)
        if cached is not None:
            return cached

        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        interval = self.interval if interval is None else interval
        last_pending = False
        attempts = 0

        while attempts < max_attempts:
            if cancel is not None and cancel.is_set():
                logger.debug(f"Polling of proposal #{proposal_id} cancelled")
                break
            attempts += 1
            status = await self.synchronizer.check_status(proposal_id)
            if status is not None:
                last_pending = status.decryption_pending
                if status.revealed:
                    result = RevealResult(proposal_id, status.yes_count, status.no_count, attempts)
                    self._revealed[proposal_id] = result
                    logger.info(
                        f"Proposal #{proposal_id} revealed after {attempts} attempts: "
                        f"{result.yes_count} yes / {result.no_count} no"
                    )
                    return result
            if attempts < max_attempts:
                await self._pause(interval, cancel)

        logger.info(f"Proposal #{proposal_id} not revealed after {attempts} attempts, still processing")
        return RevealTimedOut(proposal_id, attempts, last_pending)

    async def _pause(self, interval: float, cancel: Optional[asyncio.Event]) -> None:
        if cancel is None:
            await self._sleep(interval)
            return
        try:
            await asyncio.wait_for(cancel.wait(), interval)
        except asyncio.TimeoutError:
            pass
