"""Operation results and journal record types."""

from __future__ import annotations

from dataclasses import dataclass, field

from solders.pubkey import Pubkey
from solders.signature import Signature

from solstake.models.accounts import StakeRecord
from solstake.models.events import StakeEvent


@dataclass(frozen=True)
class SignatureStatus:
    """Status of a submitted transaction as reported by the node."""

    slot: int
    confirmation_status: str | None  # processed / confirmed / finalized
    err: object = None
    confirmations: int | None = None


@dataclass(frozen=True)
class TransactionLogs:
    """Log messages of a landed transaction."""

    signature: Signature
    slot: int
    logs: list[str]
    err: object = None


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of getSignaturesForAddress (newest first on the wire)."""

    signature: Signature
    slot: int
    err: object = None


@dataclass
class StakeOutcome:
    """Result of one stake-and-verify cycle."""

    signature: Signature
    amount: int
    start_total: int
    record: StakeRecord
    event: StakeEvent | None = None
    created_accounts: list[Pubkey] = field(default_factory=list)

    @property
    def expected_total(self) -> int:
        return self.start_total + self.amount


@dataclass
class OperationRecord:
    """A stake attempt as persisted in the journal."""

    id: int
    owner: str
    mint: str
    amount: int
    start_total: int
    status: str = "pending"
    signature: str | None = None
    observed_total: int | None = None
    event_total: int | None = None
    error: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def expected_total(self) -> int:
        return self.start_total + self.amount


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    operation_id: int | None
    signature: str | None
    amount: int | None
    message: str
    created_at: str
