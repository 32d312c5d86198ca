"""
Ballot Session

Explicit per-session context object. Owns the request gate, overlay store,
codec, synchronizer, coordinator and the external collaborators, and hands
the same instances to every component. Nothing here is module-global.

    >>> async with await BallotSession.open(load_config()) as session:
    ...     report = await session.sync(account)
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from .codec import IdentifierCodec
from .config import ClientConfig
from .content.gateway import build_content_store
from .content.store import ContentStore
from .coordinator import RevealCoordinator
from .encryption import MockVoteEncryptor, VoteEncryptor
from .exceptions import ConfigurationError
from .gate import RequestGate
from .ledger.base import BallotLedger
from .ledger.rpc import JsonRpcLedgerClient
from .logger import get_logger
from .models import SyncMode, SyncReport
from .overlay import LocalOverlayStore
from .synchronizer import ProposalSynchronizer

logger = get_logger(__name__)


class BallotSession:

    def __init__(
        self,
        config: ClientConfig,
        ledger: BallotLedger,
        content_store: ContentStore,
        overlay: LocalOverlayStore,
        encryptor: Optional[VoteEncryptor] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.ledger = ledger
        self.content_store = content_store
        self.overlay = overlay
        self.encryptor = encryptor or MockVoteEncryptor()
        self.gate = RequestGate.from_config(config.gate, clock=clock)
        self.codec = IdentifierCodec(overlay)
        self.synchronizer = ProposalSynchronizer(
            ledger=ledger,
            content_store=content_store,
            codec=self.codec,
            overlay=overlay,
            gate=self.gate,
            expected_chain_id=config.ledger.chain_id,
            max_concurrency=config.sync.max_concurrency,
            fetch_timeout=config.content_store.timeout,
        )
        self.coordinator = RevealCoordinator(
            ledger=ledger,
            content_store=content_store,
            codec=self.codec,
            overlay=overlay,
            gate=self.gate,
            synchronizer=self.synchronizer,
            encryptor=self.encryptor,
            max_attempts=config.reveal.max_attempts,
            interval=config.reveal.interval,
            write_wait_limit=config.reveal.write_wait_limit,
            sleep=sleep,
            clock=wall_clock,
        )

    @classmethod
    async def open(
        cls,
        config: ClientConfig,
        ledger: Optional[BallotLedger] = None,
        content_store: Optional[ContentStore] = None,
        encryptor: Optional[VoteEncryptor] = None,
        **kwargs,
    ) -> "BallotSession":
        """
        Validate `config`, open the overlay store and build the default
        collaborators (JSON-RPC ledger, configured content store) unless
        they are supplied.
        """
        try:
            config.validate()
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if ledger is None:
            if not config.ledger.contract_address:
                raise ConfigurationError(
                    "ledger.contract_address is not set (PRIVYBALLOT_CONTRACT_ADDRESS)"
                )
            ledger = JsonRpcLedgerClient.from_config(config.ledger)
        if content_store is None:
            content_store = build_content_store(config.content_store)

        overlay = await LocalOverlayStore.create(config.overlay.path)
        logger.debug(f"Session opened against {config.ledger.rpc_url} (chain {config.ledger.chain_id})")
        return cls(config, ledger, content_store, overlay, encryptor=encryptor, **kwargs)

    async def close(self) -> None:
        await self.overlay.close()
        await self.ledger.close()
        await self.content_store.close()

    async def __aenter__(self) -> "BallotSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ── Shortcuts ─────────────────────────────────────────────────────

    async def sync(self, account: Optional[str] = None, mode: SyncMode = SyncMode.FULL) -> SyncReport:
        return await self.synchronizer.sync(account, mode)

    async def reset_account(self, account: str) -> dict:
        """Destructive: forget every local vote and deletion mark of `account`."""
        return await self.overlay.reset_account(account)
