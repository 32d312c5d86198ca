"""
Local Overlay Store Test Suite

Coverage:
  - vote records: idempotent re-apply, conflicting choice, confirmation
  - deletion marks per account
  - identifier mappings
  - account reset and persistence across reopen
"""

import pytest

from conftest import ALICE, BOB

from privyballot.exceptions import DuplicateVoteError, OverlayError
from privyballot.models import VoteChoice
from privyballot.overlay import LocalOverlayStore


@pytest.mark.asyncio
class TestVotes:

    async def test_record_and_get(self, overlay):
        record = await overlay.record_vote(0, ALICE, "yes", submitted_at=10.0)
        assert record.choice is VoteChoice.YES
        assert record.confirmed is False

        stored = await overlay.get_vote(0, ALICE)
        assert stored == record

    async def test_missing_vote(self, overlay):
        assert await overlay.get_vote(3, ALICE) is None

    async def test_same_choice_is_noop(self, overlay):
        first = await overlay.record_vote(0, ALICE, VoteChoice.NO, submitted_at=10.0)
        again = await overlay.record_vote(0, ALICE, False, submitted_at=99.0)
        assert again == first
        assert len(await overlay.get_votes(ALICE)) == 1

    async def test_conflicting_choice_rejected(self, overlay):
        await overlay.record_vote(0, ALICE, "yes")
        with pytest.raises(DuplicateVoteError) as exc_info:
            await overlay.record_vote(0, ALICE, "no")
        assert exc_info.value.existing_choice == "yes"
        assert (await overlay.get_vote(0, ALICE)).choice is VoteChoice.YES

    async def test_reapply_can_confirm(self, overlay):
        await overlay.record_vote(0, ALICE, "yes")
        record = await overlay.record_vote(0, ALICE, "yes", confirmed=True)
        assert record.confirmed is True
        assert (await overlay.get_vote(0, ALICE)).confirmed is True

    async def test_confirm_vote(self, overlay):
        await overlay.record_vote(1, ALICE, "no")
        assert await overlay.confirm_vote(1, ALICE) is True
        assert await overlay.confirm_vote(1, ALICE) is False
        assert await overlay.confirm_vote(2, ALICE) is False

    async def test_accounts_are_case_insensitive(self, overlay):
        await overlay.record_vote(0, ALICE.upper().replace("0X", "0x"), "yes")
        assert await overlay.get_vote(0, ALICE) is not None

    async def test_votes_are_per_account(self, overlay):
        await overlay.record_vote(0, ALICE, "yes")
        await overlay.record_vote(0, BOB, "no")
        assert (await overlay.get_vote(0, ALICE)).choice is VoteChoice.YES
        assert (await overlay.get_vote(0, BOB)).choice is VoteChoice.NO

    async def test_get_votes(self, overlay):
        await overlay.record_vote(2, ALICE, "yes")
        await overlay.record_vote(0, ALICE, "no")
        votes = await overlay.get_votes(ALICE)
        assert list(votes) == [0, 2]

    async def test_empty_account_rejected(self, overlay):
        with pytest.raises(OverlayError):
            await overlay.record_vote(0, "", "yes")

    async def test_invalid_choice_rejected(self, overlay):
        with pytest.raises(ValueError):
            await overlay.record_vote(0, ALICE, "maybe")


@pytest.mark.asyncio
class TestDeletions:

    async def test_mark_is_idempotent(self, overlay):
        await overlay.mark_deleted(4, ALICE)
        await overlay.mark_deleted(4, ALICE)
        assert await overlay.is_deleted(4, ALICE)
        assert await overlay.get_deleted(ALICE) == [4]

    async def test_marks_are_per_account(self, overlay):
        await overlay.mark_deleted(4, ALICE)
        assert not await overlay.is_deleted(4, BOB)


@pytest.mark.asyncio
class TestIdentifierMappings:

    async def test_put_and_get(self, overlay):
        field = b"\x11" * 32
        await overlay.put_identifier_mapping(field, "bafy-long-address")
        assert await overlay.get_identifier_mapping(field) == "bafy-long-address"
        assert await overlay.get_identifier_mapping("0x" + field.hex()) == "bafy-long-address"

    async def test_remove(self, overlay):
        field = b"\x22" * 32
        await overlay.put_identifier_mapping(field, "addr")
        assert await overlay.remove_identifier_mapping(field) is True
        assert await overlay.get_identifier_mapping(field) is None

    async def test_clear(self, overlay):
        await overlay.put_identifier_mapping(b"\x01" * 32, "a1")
        await overlay.put_identifier_mapping(b"\x02" * 32, "a2")
        assert await overlay.clear_identifier_mappings() == 2
        assert await overlay.get_identifier_mapping(b"\x01" * 32) is None


@pytest.mark.asyncio
class TestMaintenance:

    async def test_reset_account(self, overlay):
        await overlay.record_vote(0, ALICE, "yes")
        await overlay.record_vote(1, ALICE, "no")
        await overlay.mark_deleted(2, ALICE)
        await overlay.record_vote(0, BOB, "yes")
        await overlay.put_identifier_mapping(b"\x03" * 32, "kept")

        removed = await overlay.reset_account(ALICE)

        assert removed == {"votes": 2, "deletions": 1}
        assert await overlay.get_votes(ALICE) == {}
        assert await overlay.get_deleted(ALICE) == []
        assert await overlay.get_vote(0, BOB) is not None
        assert await overlay.get_identifier_mapping(b"\x03" * 32) == "kept"

    async def test_state_survives_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "overlay.db")
        store = await LocalOverlayStore.create(path)
        await store.record_vote(0, ALICE, "yes", submitted_at=5.0)
        await store.mark_deleted(1, ALICE)
        await store.close()

        reopened = await LocalOverlayStore.create(path)
        try:
            assert (await reopened.get_vote(0, ALICE)).submitted_at == 5.0
            assert await reopened.is_deleted(1, ALICE)
        finally:
            await reopened.close()

    async def test_closed_store_raises(self):
        store = await LocalOverlayStore.create(":memory:")
        await store.close()
        with pytest.raises(OverlayError):
            await store.get_vote(0, ALICE)
