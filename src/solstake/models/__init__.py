"""Data models for the solstake client."""

from solstake.models.accounts import (
    AccountHandle,
    AccountInfo,
    StakeAccounts,
    StakeRecord,
    TokenAccount,
)
from solstake.models.config import ClientConfig, Commitment
from solstake.models.events import StakeEvent
from solstake.models.records import (
    ActivityRecord,
    OperationRecord,
    SignatureInfo,
    SignatureStatus,
    StakeOutcome,
    TransactionLogs,
)

__all__ = [
    "AccountHandle", "AccountInfo", "StakeAccounts", "StakeRecord", "TokenAccount",
    "ClientConfig", "Commitment",
    "StakeEvent",
    "ActivityRecord", "OperationRecord", "SignatureInfo", "SignatureStatus",
    "StakeOutcome", "TransactionLogs",
]
