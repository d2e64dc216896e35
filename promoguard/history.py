from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List

from .config import BanPeriodPolicy
from .utils.db import Database

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModerationRecord:
    invite_code: str
    owner_guild_id: int
    posting_guild_id: int | None
    channel_id: int
    message_id: int
    author_id: int
    timestamp: int
    soft_deleted: bool = False

    @property
    def jump_url(self) -> str:
        guild = self.posting_guild_id if self.posting_guild_id is not None else "@me"
        return f"https://discord.com/channels/{guild}/{self.channel_id}/{self.message_id}"


class KeyKind(enum.Enum):
    CODE = "code"
    GUILD = "guild"


@dataclass(frozen=True)
class HistoryKey:
    kind: KeyKind
    value: str

    @classmethod
    def code(cls, invite_code: str) -> "HistoryKey":
        return cls(KeyKind.CODE, invite_code)

    @classmethod
    def guild(cls, owner_guild_id: int) -> "HistoryKey":
        return cls(KeyKind.GUILD, str(owner_guild_id))


@dataclass(frozen=True)
class DeleteResult:
    removed: int = 0
    soft_deleted: int = 0
    purged: int = 0


_COLUMNS = """
    invite_code,
    owner_guild_id,
    posting_guild_id,
    channel_id,
    message_id,
    author_id,
    timestamp,
    soft_deleted
"""

_WINDOW = """
    AND (
        (author_id = ? AND ? < timestamp)
        OR (author_id != ? AND ? < timestamp)
    )
"""

# One fixed query per key kind; the compared column is never formatted in.
_VALIDATE_QUERIES = {
    KeyKind.CODE: "SELECT" + _COLUMNS + """
        FROM ad_history
        WHERE message_id != ?
            AND channel_id = ?
            AND invite_code = ?
    """ + _WINDOW + "ORDER BY timestamp DESC",
    KeyKind.GUILD: "SELECT" + _COLUMNS + """
        FROM ad_history
        WHERE message_id != ?
            AND channel_id = ?
            AND owner_guild_id = ?
    """ + _WINDOW + "ORDER BY timestamp DESC",
}

_INSERT = """
    INSERT INTO ad_history (""" + _COLUMNS + """)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (message_id, invite_code) DO UPDATE SET
        owner_guild_id = excluded.owner_guild_id,
        posting_guild_id = excluded.posting_guild_id,
        channel_id = excluded.channel_id,
        author_id = excluded.author_id,
        timestamp = excluded.timestamp,
        soft_deleted = excluded.soft_deleted
"""


def _row_to_record(row) -> ModerationRecord | None:
    try:
        return ModerationRecord(
            invite_code=row[0],
            owner_guild_id=int(row[1]),
            posting_guild_id=int(row[2]) if row[2] is not None else None,
            channel_id=int(row[3]),
            message_id=int(row[4]),
            author_id=int(row[5]),
            timestamp=int(row[6]),
            soft_deleted=bool(row[7]),
        )
    except (TypeError, ValueError):
        log.warning("Skipping malformed history row: %r", row)
        return None


def _rows_to_records(rows: Iterable) -> List[ModerationRecord]:
    return [r for r in map(_row_to_record, rows) if r is not None]


class HistoryStore:
    """Time-windowed record of which invites and servers were advertised.

    ``clock`` returns unix seconds and exists so tests can move time.
    """

    def __init__(self, db: Database, policy: BanPeriodPolicy, clock: Callable[[], float] = time.time):
        self.db = db
        self.policy = policy
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    async def insert(self, record: ModerationRecord) -> None:
        await self.db.exec(
            _INSERT,
            record.invite_code,
            str(record.owner_guild_id),
            str(record.posting_guild_id) if record.posting_guild_id is not None else None,
            str(record.channel_id),
            str(record.message_id),
            str(record.author_id),
            int(record.timestamp),
            int(record.soft_deleted),
        )

    async def delete(self, message_id: int) -> DeleteResult:
        """Forget a message that is gone.

        Rows still inside the self-repost grace window are erased so the
        author may post again at once. Older rows are only flagged
        ``soft_deleted`` and keep counting for the ban windows.
        """
        now = self.now()
        grace_since = self.policy.grace_since(now)
        async with self.db.transaction() as conn:
            cur = await conn.execute(
                "DELETE FROM ad_history WHERE message_id = ? AND ? < timestamp",
                (str(message_id), grace_since),
            )
            removed = cur.rowcount
            cur = await conn.execute(
                "UPDATE ad_history SET soft_deleted = 1 "
                "WHERE message_id = ? AND timestamp <= ? AND soft_deleted = 0",
                (str(message_id), grace_since),
            )
            soft_deleted = cur.rowcount
            cur = await conn.execute(
                "DELETE FROM ad_history WHERE timestamp <= ?",
                (self.policy.retention_since(now),),
            )
            purged = cur.rowcount
        if removed or soft_deleted:
            log.debug(
                "History for message %s: %d removed, %d soft-deleted", message_id, removed, soft_deleted
            )
        return DeleteResult(removed=removed, soft_deleted=soft_deleted, purged=purged)

    async def purge_expired(self) -> int:
        return await self.db.exec(
            "DELETE FROM ad_history WHERE timestamp <= ?",
            self.policy.retention_since(self.now()),
        )

    async def validate(
        self,
        exclude_message_id: int,
        channel_id: int,
        author_id: int,
        key: HistoryKey,
    ) -> List[ModerationRecord]:
        """Records in ``channel_id`` matching ``key`` that are still inside their ban window."""
        now = self.now()
        rows = await self.db.fetchall(
            _VALIDATE_QUERIES[key.kind],
            str(exclude_message_id),
            str(channel_id),
            key.value,
            str(author_id),
            self.policy.self_since(now),
            str(author_id),
            self.policy.others_since(now),
        )
        return _rows_to_records(rows)

    async def records_by_author(
        self,
        guild_id: int | None,
        author_id: int,
        include_deleted: bool = False,
    ) -> List[ModerationRecord]:
        rows = await self.db.fetchall(
            "SELECT" + _COLUMNS + """
            FROM ad_history
            WHERE posting_guild_id IS ?
                AND author_id = ?
                AND (? OR soft_deleted = 0)
            ORDER BY timestamp DESC
            """,
            str(guild_id) if guild_id is not None else None,
            str(author_id),
            int(include_deleted),
        )
        return _rows_to_records(rows)
