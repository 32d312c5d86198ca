"""
Local Overlay Store

Durable, per-account speculative state layered over the ledger: votes this
client submitted, proposals hidden from an account's view, and the
digest → content address mappings written by the identifier codec.

SQLite through aiosqlite; every write commits before returning.
"""
import os
import time
from typing import Dict, List, Optional, Union

import aiosqlite

from .exceptions import DuplicateVoteError, OverlayError
from .logger import get_logger
from .models import VoteChoice, VoteRecord

logger = get_logger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS votes (
    account TEXT NOT NULL,
    proposal_id INTEGER NOT NULL,
    choice TEXT NOT NULL,
    submitted_at REAL NOT NULL,
    confirmed BOOLEAN NOT NULL DEFAULT 0,
    PRIMARY KEY (account, proposal_id)
);

CREATE TABLE IF NOT EXISTS deletions (
    account TEXT NOT NULL,
    proposal_id INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (account, proposal_id)
);

CREATE TABLE IF NOT EXISTS identifier_mappings (
    field_hex TEXT PRIMARY KEY,
    content_address TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def _account_key(account: str) -> str:
    if not account:
        raise OverlayError("Account identifier is required")
    return account.strip().lower()


def _field_key(field: Union[bytes, str]) -> str:
    if isinstance(field, bytes):
        return field.hex()
    return field.lower().removeprefix("0x")


class LocalOverlayStore:
    """SQLite-backed overlay, keyed by lower-cased account identifier."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    @staticmethod
    async def create(db_path: str) -> "LocalOverlayStore":
        """Open (or create) the overlay database and ensure the schema."""
        self = LocalOverlayStore(db_path)

        if db_path != ":memory:":
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        self.connection.row_factory = aiosqlite.Row

        if db_path != ":memory:":
            await self.connection.execute("PRAGMA journal_mode=WAL")
            await self.connection.execute("PRAGMA synchronous=NORMAL")

        await self.connection.executescript(_SCHEMA)
        await self.connection.commit()

        logger.debug(f"Overlay store opened: {db_path}")
        return self

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None

    def _conn(self) -> aiosqlite.Connection:
        if self.connection is None:
            raise OverlayError("Overlay store is closed")
        return self.connection

    # Votes

    async def record_vote(
        self,
        proposal_id: int,
        account: str,
        choice: Union[VoteChoice, str, bool],
        submitted_at: Optional[float] = None,
        confirmed: bool = False,
    ) -> VoteRecord:
        """
        Store the optimistic vote record. Re-applying the same choice is a
        no-op (it can only upgrade `confirmed`); a different choice raises
        DuplicateVoteError.
        """
        account = _account_key(account)
        choice = VoteChoice.parse(choice)

        existing = await self.get_vote(proposal_id, account)
        if existing is not None:
            if existing.choice is not choice:
                raise DuplicateVoteError(proposal_id, account, existing.choice.value)
            if confirmed and not existing.confirmed:
                await self.confirm_vote(proposal_id, account)
                return VoteRecord(proposal_id, account, choice, existing.submitted_at, True)
            return existing

        submitted_at = time.time() if submitted_at is None else submitted_at
        conn = self._conn()
        await conn.execute(
            "INSERT INTO votes (account, proposal_id, choice, submitted_at, confirmed) VALUES (?, ?, ?, ?, ?)",
            (account, proposal_id, choice.value, submitted_at, int(confirmed)),
        )
        await conn.commit()
        logger.debug(f"Recorded {choice.value} vote of {account} on proposal #{proposal_id}")
        return VoteRecord(proposal_id, account, choice, submitted_at, confirmed)

    async def confirm_vote(self, proposal_id: int, account: str) -> bool:
        """Flip `confirmed` once the ledger reports hasVoted. Returns True if a row changed."""
        conn = self._conn()
        cursor = await conn.execute(
            "UPDATE votes SET confirmed = 1 WHERE account = ? AND proposal_id = ? AND confirmed = 0",
            (_account_key(account), proposal_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_vote(self, proposal_id: int, account: str) -> Optional[VoteRecord]:
        cursor = await self._conn().execute(
            "SELECT * FROM votes WHERE account = ? AND proposal_id = ?",
            (_account_key(account), proposal_id),
        )
        row = await cursor.fetchone()
        return self._vote_from_row(row) if row else None

    async def get_votes(self, account: str) -> Dict[int, VoteRecord]:
        cursor = await self._conn().execute(
            "SELECT * FROM votes WHERE account = ? ORDER BY proposal_id",
            (_account_key(account),),
        )
        rows = await cursor.fetchall()
        return {row["proposal_id"]: self._vote_from_row(row) for row in rows}

    @staticmethod
    def _vote_from_row(row) -> VoteRecord:
        return VoteRecord(
            proposal_id=row["proposal_id"],
            account=row["account"],
            choice=VoteChoice(row["choice"]),
            submitted_at=row["submitted_at"],
            confirmed=bool(row["confirmed"]),
        )

    # Deletion marks

    async def mark_deleted(self, proposal_id: int, account: str):
        conn = self._conn()
        await conn.execute(
            "INSERT OR IGNORE INTO deletions (account, proposal_id) VALUES (?, ?)",
            (_account_key(account), proposal_id),
        )
        await conn.commit()

    async def is_deleted(self, proposal_id: int, account: str) -> bool:
        cursor = await self._conn().execute(
            "SELECT 1 FROM deletions WHERE account = ? AND proposal_id = ?",
            (_account_key(account), proposal_id),
        )
        return await cursor.fetchone() is not None

    async def get_deleted(self, account: str) -> List[int]:
        cursor = await self._conn().execute(
            "SELECT proposal_id FROM deletions WHERE account = ? ORDER BY proposal_id",
            (_account_key(account),),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # Identifier mappings

    async def put_identifier_mapping(self, field: Union[bytes, str], content_address: str):
        conn = self._conn()
        await conn.execute(
            "INSERT OR REPLACE INTO identifier_mappings (field_hex, content_address) VALUES (?, ?)",
            (_field_key(field), content_address),
        )
        await conn.commit()

    async def get_identifier_mapping(self, field: Union[bytes, str]) -> Optional[str]:
        cursor = await self._conn().execute(
            "SELECT content_address FROM identifier_mappings WHERE field_hex = ?",
            (_field_key(field),),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def remove_identifier_mapping(self, field: Union[bytes, str]) -> bool:
        conn = self._conn()
        cursor = await conn.execute(
            "DELETE FROM identifier_mappings WHERE field_hex = ?", (_field_key(field),)
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def clear_identifier_mappings(self) -> int:
        conn = self._conn()
        cursor = await conn.execute("DELETE FROM identifier_mappings")
        await conn.commit()
        return cursor.rowcount

    # Maintenance

    async def reset_account(self, account: str) -> Dict[str, int]:
        """
        Drop every vote record and deletion mark of one account. Identifier
        mappings are shared and survive the reset.
        """
        account = _account_key(account)
        conn = self._conn()
        votes = await conn.execute("DELETE FROM votes WHERE account = ?", (account,))
        deletions = await conn.execute("DELETE FROM deletions WHERE account = ?", (account,))
        await conn.commit()
        removed = {"votes": votes.rowcount, "deletions": deletions.rowcount}
        logger.warning(f"Local state reset for {account}: {removed['votes']} votes, {removed['deletions']} deletions")
        return removed
