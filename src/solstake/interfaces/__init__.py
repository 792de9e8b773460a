"""Protocol interfaces for all solstake components."""

from solstake.interfaces.rpc import LedgerRpc
from solstake.interfaces.listener import EventHandler, EventListener, SubscriptionHandle
from solstake.interfaces.submitter import TransactionSubmitter
from solstake.interfaces.store import OperationStore

__all__ = [
    "LedgerRpc",
    "EventHandler", "EventListener", "SubscriptionHandle",
    "TransactionSubmitter",
    "OperationStore",
]
