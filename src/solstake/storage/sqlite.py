"""SQLite implementation of the OperationStore protocol."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from solstake.models.records import ActivityRecord, OperationRecord

SCHEMA = """
-- Stake attempts
CREATE TABLE IF NOT EXISTS operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    mint TEXT NOT NULL,
    amount TEXT NOT NULL,  -- u64 values exceed SQLite INTEGER; stored as decimal text
    start_total TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    signature TEXT,
    observed_total TEXT,
    event_total TEXT,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_operations_status ON operations(status);
CREATE INDEX IF NOT EXISTS idx_operations_pair ON operations(owner, mint);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    operation_id INTEGER,
    signature TEXT,
    amount TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""

# Statuses a stake attempt moves through
STATUS_PENDING = "pending"
STATUS_SUBMITTED = "submitted"
STATUS_RECONCILED = "reconciled"
STATUS_AMBIGUOUS = "ambiguous"
STATUS_REJECTED = "rejected"
STATUS_STALE = "stale"
STATUS_MISMATCH = "mismatch"
STATUS_FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _u64(value: int | None) -> str | None:
    return None if value is None else str(value)


def _int(value: str | None) -> int | None:
    return None if value is None else int(value)


class SQLiteOperationStore:
    """SQLite-backed journal of stake attempts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Operations ─────────────────────────────────────────

    async def begin_operation(
        self, owner: str, mint: str, amount: int, start_total: int
    ) -> int:
        now = _now()
        cur = await self.db.execute(
            "INSERT INTO operations (owner, mint, amount, start_total, status, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (owner, mint, _u64(amount), _u64(start_total), STATUS_PENDING, now, now),
        )
        await self.db.commit()
        return cur.lastrowid

    async def mark_submitted(self, operation_id: int, signature: str) -> None:
        await self.db.execute(
            "UPDATE operations SET status=?, signature=?, updated_at=? WHERE id=?",
            (STATUS_SUBMITTED, signature, _now(), operation_id),
        )
        await self.db.commit()

    async def mark_status(
        self,
        operation_id: int,
        status: str,
        error: str | None = None,
        observed_total: int | None = None,
        event_total: int | None = None,
    ) -> None:
        await self.db.execute(
            "UPDATE operations SET status=?, error=?,"
            " observed_total=COALESCE(?, observed_total),"
            " event_total=COALESCE(?, event_total),"
            " updated_at=? WHERE id=?",
            (status, error, _u64(observed_total), _u64(event_total), _now(), operation_id),
        )
        await self.db.commit()

    async def get_operation(self, operation_id: int) -> OperationRecord | None:
        async with self.db.execute(
            "SELECT * FROM operations WHERE id=?", (operation_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_operation(row) if row else None

    async def get_operations(
        self, status: str | None = None, limit: int = 50
    ) -> list[OperationRecord]:
        if status:
            sql = "SELECT * FROM operations WHERE status=? ORDER BY id DESC LIMIT ?"
            params: tuple = (status, limit)
        else:
            sql = "SELECT * FROM operations ORDER BY id DESC LIMIT ?"
            params = (limit,)
        async with self.db.execute(sql, params) as cur:
            return [_row_to_operation(row) async for row in cur]

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        operation_id: int | None = None,
        signature: str | None = None,
        amount: int | None = None,
    ) -> None:
        await self.db.execute(
            "INSERT INTO activity_log (event_type, operation_id, signature, amount, message, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (event_type, operation_id, signature, _u64(amount), message, _now()),
        )
        await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    operation_id=row["operation_id"],
                    signature=row["signature"],
                    amount=_int(row["amount"]),
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


def _row_to_operation(row: aiosqlite.Row) -> OperationRecord:
    return OperationRecord(
        id=row["id"],
        owner=row["owner"],
        mint=row["mint"],
        amount=int(row["amount"]),
        start_total=int(row["start_total"]),
        status=row["status"],
        signature=row["signature"],
        observed_total=_int(row["observed_total"]),
        event_total=_int(row["event_total"]),
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
