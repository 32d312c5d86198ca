"""
Ledger Boundary

Abstract interface of the ballot contract as seen by the client. Reads
return ledger-authoritative state; writes return only once the ledger has
confirmed them.

Implementations raise:
    LedgerUnavailableError  transport or node failure
    LedgerRejection         the contract reverted the write (reason verbatim)
"""

from abc import ABC, abstractmethod

from ..models import ProposalStatus, TxHandle


class BallotLedger(ABC):
    """Abstract ballot contract client."""

    contract_address: str = ""

    # ── Reads ─────────────────────────────────────────────────────────

    @abstractmethod
    async def chain_id(self) -> int:
        """Chain id of the connected network."""

    @abstractmethod
    async def contract_exists(self) -> bool:
        """True if code is deployed at `contract_address`."""

    @abstractmethod
    async def proposal_count(self) -> int:
        """`nextProposalId()`: ids in [0, count) exist."""

    @abstractmethod
    async def get_proposal(self, proposal_id: int) -> ProposalStatus:
        """`getProposalPublic(id)`."""

    @abstractmethod
    async def has_voted(self, proposal_id: int, account: str) -> bool:
        """`hasVoted(id, account)`."""

    # ── Writes ────────────────────────────────────────────────────────

    @abstractmethod
    async def create_proposal(self, on_chain_field: bytes, duration_seconds: int, account: str) -> TxHandle:
        """`createProposal(field, duration)`; the handle carries the new id."""

    @abstractmethod
    async def vote(self, proposal_id: int, ciphertext: bytes, proof: bytes, account: str) -> TxHandle:
        """`vote(id, encChoice, inputProof)`."""

    @abstractmethod
    async def request_reveal(self, proposal_id: int, account: str) -> TxHandle:
        """`requestReveal(id)`."""

    async def close(self) -> None:
        pass
