"""OperationStore protocol - journal of stake attempts for later re-query."""

from __future__ import annotations

from typing import Protocol

from solstake.models.records import ActivityRecord, OperationRecord


class OperationStore(Protocol):
    """Persists stake attempts so ambiguous outcomes can be re-checked."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    # ── Operations ─────────────────────────────────────────

    async def begin_operation(
        self, owner: str, mint: str, amount: int, start_total: int
    ) -> int:
        ...

    async def mark_submitted(self, operation_id: int, signature: str) -> None:
        ...

    async def mark_status(
        self,
        operation_id: int,
        status: str,
        error: str | None = None,
        observed_total: int | None = None,
        event_total: int | None = None,
    ) -> None:
        ...

    async def get_operation(self, operation_id: int) -> OperationRecord | None:
        ...

    async def get_operations(
        self, status: str | None = None, limit: int = 50
    ) -> list[OperationRecord]:
        ...

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        operation_id: int | None = None,
        signature: str | None = None,
        amount: int | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...
