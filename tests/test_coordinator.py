"""
Reveal Coordinator Test Suite

Coverage:
  - create / vote / request-reveal writes and their ledger rejections
  - bounded waiting for the request gate on writes
  - reveal polling: success, timeout, cached result, cancellation
  - local-only proposal deletion
"""

import asyncio

import pytest

from conftest import ALICE, BOB, make_metadata, make_session

from privyballot.encryption import VoteEncryptor
from privyballot.exceptions import (
    DuplicateVoteError,
    EncryptionError,
    LedgerRejection,
    LedgerUnavailableError,
    RejectionReason,
    ThrottledError,
)
from privyballot.models import RevealResult, RevealTimedOut, VoteChoice
from privyballot.overlay import LocalOverlayStore


class BrokenEncryptor(VoteEncryptor):

    def encrypt(self, choice, contract_address, account):
        raise RuntimeError("relayer offline")


# ══════════════════════════════════════════════════════════════════════
#  CREATE
# ══════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestCreateProposal:

    async def test_create_returns_id(self, session, ledger, content_store):
        handle = await session.coordinator.create_proposal(make_metadata(), 300, ALICE)

        assert handle.proposal_id == 0
        assert handle.tx_hash.startswith("0x")
        assert await ledger.proposal_count() == 1
        assert len(content_store) == 1

    async def test_created_metadata_served_from_cache(self, session, content_store, clock):
        await session.coordinator.create_proposal(make_metadata(title="Cached"), 300, ALICE)
        clock.advance(3)

        report = await session.sync(ALICE)

        assert report.proposals[0].title == "Cached"
        assert content_store.get_calls == 0

    async def test_creator_defaults_to_account(self, session, content_store, clock):
        await session.coordinator.create_proposal(make_metadata(creator=""), 300, BOB)
        clock.advance(3)

        report = await session.sync(BOB)

        assert report.proposals[0].metadata.creator == BOB
        assert report.proposals[0].creator == BOB

    async def test_ids_are_sequential(self, session):
        first = await session.coordinator.create_proposal(make_metadata(title="A"), 300, ALICE)
        second = await session.coordinator.create_proposal(make_metadata(title="B"), 300, ALICE)
        assert (first.proposal_id, second.proposal_id) == (0, 1)

    async def test_negative_duration(self, session, ledger):
        with pytest.raises(ValueError):
            await session.coordinator.create_proposal(make_metadata(), -1, ALICE)
        assert await ledger.proposal_count() == 0

    async def test_zero_duration_rejected_by_ledger(self, session):
        with pytest.raises(LedgerRejection) as exc_info:
            await session.coordinator.create_proposal(make_metadata(), 0, ALICE)
        assert exc_info.value.message == "duration=0"
        assert exc_info.value.reason is RejectionReason.DURATION_ZERO
        # a rejection is not a transport failure
        assert session.gate.snapshot()["consecutiveErrorCount"] == 0


# ══════════════════════════════════════════════════════════════════════
#  VOTE
# ══════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestVote:

    async def _proposal(self, session, duration=300):
        handle = await session.coordinator.create_proposal(make_metadata(), duration, ALICE)
        return handle.proposal_id

    async def test_vote_recorded_locally_and_on_ledger(self, session, ledger):
        proposal_id = await self._proposal(session)

        await session.coordinator.vote(proposal_id, "yes", BOB)

        assert await ledger.has_voted(proposal_id, BOB)
        record = await session.overlay.get_vote(proposal_id, BOB)
        assert record.choice is VoteChoice.YES

    async def test_repeat_vote_rejected_locally(self, session, ledger, clock, monkeypatch):
        proposal_id = await self._proposal(session)
        await session.coordinator.vote(proposal_id, "yes", BOB)

        calls = []
        original = ledger.vote

        async def counting_vote(*args, **kwargs):
            calls.append(args)
            return await original(*args, **kwargs)

        monkeypatch.setattr(ledger, "vote", counting_vote)
        clock.advance(2.0)

        with pytest.raises(DuplicateVoteError) as exc_info:
            await session.coordinator.vote(proposal_id, "yes", BOB)
        assert exc_info.value.existing_choice == "yes"
        assert calls == []

    async def test_second_vote_from_fresh_overlay_rejected_by_ledger(self, session, clock, ledger, content_store):
        proposal_id = await self._proposal(session)
        await session.coordinator.vote(proposal_id, "yes", BOB)

        other_overlay = await LocalOverlayStore.create(":memory:")
        try:
            other = make_session(clock, ledger, content_store, other_overlay)
            with pytest.raises(LedgerRejection) as exc_info:
                await other.coordinator.vote(proposal_id, "yes", BOB)
            assert exc_info.value.reason is RejectionReason.ALREADY_VOTED
            assert await other_overlay.get_vote(proposal_id, BOB) is None
        finally:
            await other_overlay.close()

    async def test_conflicting_local_vote_blocks_write(self, session, ledger):
        proposal_id = await self._proposal(session)
        await session.overlay.record_vote(proposal_id, BOB, "no")

        with pytest.raises(DuplicateVoteError):
            await session.coordinator.vote(proposal_id, "yes", BOB)
        assert not await ledger.has_voted(proposal_id, BOB)

    async def test_vote_after_deadline(self, session, clock):
        proposal_id = await self._proposal(session, duration=60)
        clock.advance(60)

        with pytest.raises(LedgerRejection) as exc_info:
            await session.coordinator.vote(proposal_id, "no", BOB)
        assert exc_info.value.message == "Voting ended"
        assert await session.overlay.get_vote(proposal_id, BOB) is None

    async def test_encryption_failure(self, session, ledger):
        proposal_id = await self._proposal(session)
        session.coordinator.encryptor = BrokenEncryptor()

        with pytest.raises(EncryptionError):
            await session.coordinator.vote(proposal_id, "yes", BOB)
        assert not await ledger.has_voted(proposal_id, BOB)

    async def test_invalid_choice(self, session):
        proposal_id = await self._proposal(session)
        with pytest.raises(ValueError):
            await session.coordinator.vote(proposal_id, "maybe", BOB)


# ══════════════════════════════════════════════════════════════════════
#  GATE ON WRITES
# ══════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestWriteGate:

    async def test_write_waits_for_cooldown(self, session, clock):
        await session.coordinator.create_proposal(make_metadata(title="A"), 300, ALICE)
        await session.coordinator.create_proposal(make_metadata(title="B"), 300, ALICE)
        assert clock.sleeps == [pytest.approx(2.0)]

    async def test_write_gives_up_past_wait_limit(self, session, ledger):
        session.coordinator.write_wait_limit = 1.0
        await session.coordinator.create_proposal(make_metadata(title="A"), 300, ALICE)

        with pytest.raises(ThrottledError) as exc_info:
            await session.coordinator.create_proposal(make_metadata(title="B"), 300, ALICE)
        assert exc_info.value.reason == "COOLDOWN"
        assert await ledger.proposal_count() == 1

    async def test_unavailable_ledger_counts_as_failure(self, session, ledger):
        ledger.available = False
        with pytest.raises(LedgerUnavailableError):
            await session.coordinator.create_proposal(make_metadata(), 300, ALICE)
        assert session.gate.snapshot()["consecutiveErrorCount"] == 1


# ══════════════════════════════════════════════════════════════════════
#  REVEAL
# ══════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestReveal:

    async def _closed_proposal(self, session, clock, voters=()):
        handle = await session.coordinator.create_proposal(make_metadata(), 60, ALICE)
        for account, choice in voters:
            await session.coordinator.vote(handle.proposal_id, choice, account)
        clock.advance(60)
        return handle.proposal_id

    async def test_too_early(self, session):
        handle = await session.coordinator.create_proposal(make_metadata(), 300, ALICE)
        with pytest.raises(LedgerRejection) as exc_info:
            await session.coordinator.request_reveal(handle.proposal_id, ALICE)
        assert exc_info.value.reason is RejectionReason.TOO_EARLY

    async def test_concurrent_request_is_success(self, session, clock):
        proposal_id = await self._closed_proposal(session, clock)

        first = await session.coordinator.request_reveal(proposal_id, ALICE)
        second = await session.coordinator.request_reveal(proposal_id, BOB)

        assert first.already_applied is False
        assert second.already_applied is True

    async def test_request_after_reveal_is_success(self, session, ledger, clock):
        proposal_id = await self._closed_proposal(session, clock)
        await session.coordinator.request_reveal(proposal_id, ALICE)
        ledger.fulfill_reveal(proposal_id)

        handle = await session.coordinator.request_reveal(proposal_id, BOB)
        assert handle.already_applied is True

    async def test_poll_until_revealed(self, session, ledger, clock):
        ledger.auto_fulfill = True
        proposal_id = await self._closed_proposal(
            session, clock, voters=[(ALICE, "yes"), (BOB, "no"), ("0x" + "c3" * 20, "yes")]
        )
        await session.coordinator.request_reveal(proposal_id, ALICE)

        result = await session.coordinator.poll_until_revealed(proposal_id)

        assert isinstance(result, RevealResult)
        assert (result.yes_count, result.no_count) == (2, 1)
        # the first probe falls inside the cooldown of the reveal request
        assert result.attempts == 2

    async def test_poll_times_out_while_pending(self, session, clock):
        proposal_id = await self._closed_proposal(session, clock)
        await session.coordinator.request_reveal(proposal_id, ALICE)

        outcome = await session.coordinator.poll_until_revealed(proposal_id, max_attempts=3)

        assert isinstance(outcome, RevealTimedOut)
        assert outcome.attempts == 3
        assert outcome.decryption_pending is True

    async def test_both_flags_set_counts_as_revealed(self, session, ledger, clock):
        proposal_id = await self._closed_proposal(session, clock, voters=[(BOB, "no")])
        await session.coordinator.request_reveal(proposal_id, ALICE)
        ledger.fulfill_reveal(proposal_id, keep_pending=True)

        result = await session.coordinator.poll_until_revealed(proposal_id)

        assert isinstance(result, RevealResult)
        assert (result.yes_count, result.no_count) == (0, 1)

    async def test_revealed_result_cached(self, session, ledger, clock):
        ledger.auto_fulfill = True
        proposal_id = await self._closed_proposal(session, clock)
        await session.coordinator.request_reveal(proposal_id, ALICE)
        first = await session.coordinator.poll_until_revealed(proposal_id)
        reads = ledger.read_calls

        second = await session.coordinator.poll_until_revealed(proposal_id)

        assert second is first
        assert ledger.read_calls == reads

    async def test_cancel_before_start(self, session, clock):
        proposal_id = await self._closed_proposal(session, clock)
        cancel = asyncio.Event()
        cancel.set()

        outcome = await session.coordinator.poll_until_revealed(proposal_id, cancel=cancel)

        assert isinstance(outcome, RevealTimedOut)
        assert outcome.attempts == 0

    async def test_cancel_while_waiting(self, session, ledger, clock):
        proposal_id = await self._closed_proposal(session, clock)
        await session.coordinator.request_reveal(proposal_id, ALICE)
        cancel = asyncio.Event()

        task = asyncio.create_task(
            session.coordinator.poll_until_revealed(proposal_id, interval=5.0, cancel=cancel)
        )
        await asyncio.sleep(0.05)
        cancel.set()
        outcome = await asyncio.wait_for(task, 1.0)

        assert isinstance(outcome, RevealTimedOut)
        assert outcome.attempts == 1


# ══════════════════════════════════════════════════════════════════════
#  DELETE
# ══════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestDelete:

    async def test_delete_is_local_only(self, session, ledger, clock):
        await session.coordinator.create_proposal(make_metadata(), 300, ALICE)

        unpinned = await session.coordinator.delete_proposal(0, BOB)
        clock.advance(3)
        bob_view = await session.sync(BOB)
        clock.advance(3)
        alice_view = await session.sync(ALICE)

        assert unpinned is False
        assert bob_view.proposals == []
        assert len(alice_view.proposals) == 1
        assert await ledger.proposal_count() == 1

    async def test_creator_delete_unpins(self, session, content_store):
        await session.coordinator.create_proposal(make_metadata(), 300, ALICE)
        (address,) = list(content_store._documents)

        unpinned = await session.coordinator.delete_proposal(0, ALICE, content_address=address)

        assert unpinned is True
        assert address not in content_store
        assert await session.overlay.is_deleted(0, ALICE)
