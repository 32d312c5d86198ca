"""
Shared fixtures for the PrivyBallot test suite.

Every time-dependent component (request gate, development ledger, reveal
coordinator) is driven by one FakeClock, so cooldowns, deadlines and
polling intervals advance only when a test says so.
"""

import asyncio
import os
import sys

import pytest
import pytest_asyncio

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from privyballot.config import ClientConfig
from privyballot.content.store import InMemoryContentStore
from privyballot.ledger.memory import DEV_CONTRACT_ADDRESS, InMemoryLedger
from privyballot.models import ProposalMetadata
from privyballot.overlay import LocalOverlayStore
from privyballot.session import BallotSession


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock; `sleep` advances it instead of waiting."""

    def __init__(self, start: float = START_TIME):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_metadata(title="Fund the meetup", creator=ALICE, **kwargs) -> ProposalMetadata:
    kwargs.setdefault("description", "Spend 500 on the venue")
    kwargs.setdefault("created_at", 1_700_000_000_000)
    return ProposalMetadata(title=title, creator=creator, **kwargs)


def make_config() -> ClientConfig:
    config = ClientConfig()
    config.ledger.contract_address = DEV_CONTRACT_ADDRESS
    return config


def make_session(clock, ledger, content_store, overlay) -> BallotSession:
    return BallotSession(
        make_config(),
        ledger,
        content_store,
        overlay,
        clock=clock,
        wall_clock=clock,
        sleep=clock.sleep,
    )


# ══════════════════════════════════════════════════════════════════════
#  FIXTURES
# ══════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest_asyncio.fixture
async def overlay():
    store = await LocalOverlayStore.create(":memory:")
    yield store
    await store.close()


@pytest.fixture
def session(clock, ledger, content_store, overlay):
    return make_session(clock, ledger, content_store, overlay)
