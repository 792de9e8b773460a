"""Solana integration components."""

from solstake.solana.listener import ProgramEventListener
from solstake.solana.reconciler import EventInbox, StakeStateReconciler
from solstake.solana.resolver import AssociatedAccountResolver
from solstake.solana.rpc import HttpLedgerRpc
from solstake.solana.submitter import SolanaTransactionSubmitter

__all__ = [
    "ProgramEventListener",
    "EventInbox", "StakeStateReconciler",
    "AssociatedAccountResolver",
    "HttpLedgerRpc",
    "SolanaTransactionSubmitter",
]
