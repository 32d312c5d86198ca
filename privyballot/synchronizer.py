"""
Proposal Synchronizer

Builds the per-account list of proposals from three sources:

    ledger         id, creator, deadline, reveal flags, tallies (authoritative)
    content store  metadata, fetched only for resolvable identifiers
    local overlay  votes this client submitted, proposals hidden by the account

A pass either returns the complete, consistent list or an empty one with a
status explaining why. Partial lists are never returned.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .codec import IdentifierCodec
from .constants import CONTENT_FETCH_TIMEOUT, SYNC_MAX_CONCURRENCY
from .content.store import ContentStore
from .exceptions import LedgerError
from .gate import RequestGate, RequestKind
from .ledger.base import BallotLedger
from .logger import get_logger
from .models import (
    ProposalMetadata,
    ProposalStatus,
    ProposalView,
    SyncMode,
    SyncReport,
    Unresolved,
)
from .overlay import LocalOverlayStore

logger = get_logger(__name__)


class ProposalSynchronizer:
    """
    Read path of the client. Performs no ledger or content-store writes; the
    only state it touches is the gate bookkeeping, the metadata cache and the
    `confirmed` flag of local vote records.
    """

    def __init__(
        self,
        ledger: BallotLedger,
        content_store: ContentStore,
        codec: IdentifierCodec,
        overlay: LocalOverlayStore,
        gate: RequestGate,
        expected_chain_id: int,
        max_concurrency: int = SYNC_MAX_CONCURRENCY,
        fetch_timeout: float = CONTENT_FETCH_TIMEOUT,
    ):
        self.ledger = ledger
        self.content_store = content_store
        self.codec = codec
        self.overlay = overlay
        self.gate = gate
        self.expected_chain_id = expected_chain_id
        self.max_concurrency = max_concurrency
        self.fetch_timeout = fetch_timeout
        # Metadata is immutable once pinned, so entries never go stale
        self._metadata_cache: Dict[str, ProposalMetadata] = {}

    # ── Public API ────────────────────────────────────────────────────

    async def sync(self, account: Optional[str] = None, mode: SyncMode = SyncMode.FULL) -> SyncReport:
        """
        Run one synchronization pass for `account` (None: anonymous viewer,
        no overlay merge).

        Never raises for transport or ledger trouble: a denied gate, wrong
        network, missing contract or failed read all come back as an empty
        report with the matching status.
        """
        kind = RequestKind.POLL_PROBE if mode is SyncMode.LIGHTWEIGHT_STATUS_ONLY else RequestKind.NORMAL
        decision = self.gate.try_acquire(kind)
        if not decision.allowed:
            return SyncReport.throttled(decision.reason.value, decision.retry_after)

        try:
            problem = await self._verify_target()
            if problem is not None:
                self.gate.record_failure()
                logger.warning(f"Sync skipped: {problem}")
                return SyncReport.unavailable(problem)

            count = await self.ledger.proposal_count()
            fetched = await self._fetch_statuses(count, account)
            views = await self._build_views(fetched, account, mode)
        except LedgerError as e:
            self.gate.record_failure()
            logger.warning(f"Sync failed, ledger unavailable: {e}")
            return SyncReport.unavailable(str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.gate.record_failure()
            logger.error(f"Sync failed: {e}", exc_info=True)
            return SyncReport.failed(str(e))

        self.gate.record_success()
        views.sort(key=lambda v: v.id, reverse=True)
        logger.debug(f"Synchronized {len(views)} of {count} proposals ({mode.value})")
        return SyncReport(proposals=views)

    async def check_status(self, proposal_id: int) -> Optional[ProposalStatus]:
        """
        Single-proposal status read for reveal polling, through a POLL_PROBE
        acquisition. None when the gate denied the probe or the read failed.
        """
        decision = self.gate.try_acquire(RequestKind.POLL_PROBE)
        if not decision.allowed:
            return None
        try:
            status = await self.ledger.get_proposal(proposal_id)
        except LedgerError as e:
            self.gate.record_failure()
            logger.debug(f"Status probe for proposal #{proposal_id} failed: {e}")
            return None
        self.gate.record_success()
        return status

    def remember_metadata(self, address: str, metadata: ProposalMetadata) -> None:
        """Seed the cache with metadata this client just uploaded."""
        self._metadata_cache[address] = metadata

    # ── Steps ─────────────────────────────────────────────────────────

    async def _verify_target(self) -> Optional[str]:
        chain_id = await self.ledger.chain_id()
        if chain_id != self.expected_chain_id:
            return f"connected to chain {chain_id}, expected {self.expected_chain_id}"
        if not await self.ledger.contract_exists():
            return f"no contract deployed at {self.ledger.contract_address}"
        return None

    async def _fetch_statuses(
        self, count: int, account: Optional[str]
    ) -> List[Tuple[ProposalStatus, bool]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch(proposal_id: int) -> Tuple[ProposalStatus, bool]:
            async with semaphore:
                status = await self.ledger.get_proposal(proposal_id)
                voted = await self.ledger.has_voted(proposal_id, account) if account else False
                return status, voted

        return list(await asyncio.gather(*(fetch(i) for i in range(count))))

    async def _build_views(
        self,
        fetched: List[Tuple[ProposalStatus, bool]],
        account: Optional[str],
        mode: SyncMode,
    ) -> List[ProposalView]:
        visible: List[Tuple[ProposalStatus, bool]] = []
        for status, ledger_voted in fetched:
            if account:
                if await self.overlay.is_deleted(status.id, account):
                    continue
                local_vote = await self.overlay.get_vote(status.id, account)
                if local_vote is not None and ledger_voted and not local_vote.confirmed:
                    await self.overlay.confirm_vote(status.id, account)
                    logger.debug(f"Vote on proposal #{status.id} confirmed by the ledger")
                ledger_voted = ledger_voted or local_vote is not None
            visible.append((status, ledger_voted))

        decoded: Dict[int, Union[str, Unresolved]] = {}
        for status, _ in visible:
            decoded[status.id] = await self.codec.decode(status.on_chain_field)

        addresses = {value for value in decoded.values() if isinstance(value, str)}
        if mode is SyncMode.FULL:
            await self._fetch_metadata(addresses)

        views = []
        for status, has_voted in visible:
            value = decoded[status.id]
            if isinstance(value, Unresolved):
                views.append(ProposalView.merge(status, None, None, has_voted, value.reason))
            else:
                views.append(ProposalView.merge(status, value, self._metadata_cache.get(value), has_voted))
        return views

    async def _fetch_metadata(self, addresses: Iterable[str]) -> None:
        missing = [a for a in addresses if a not in self._metadata_cache]
        if not missing:
            return
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch(address: str) -> Tuple[str, Optional[ProposalMetadata]]:
            async with semaphore:
                try:
                    return address, await asyncio.wait_for(self.content_store.get(address), self.fetch_timeout)
                except asyncio.TimeoutError:
                    logger.info(f"Metadata fetch for {address} timed out")
                except Exception as e:
                    logger.info(f"Metadata fetch for {address} failed: {e}")
                return address, None

        for address, metadata in await asyncio.gather(*(fetch(a) for a in missing)):
            if metadata is not None:
                self._metadata_cache[address] = metadata
