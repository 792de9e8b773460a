"""LedgerRpc protocol - the capability every component talks to the chain through."""

from __future__ import annotations

from typing import Any, Protocol

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from solstake.models.accounts import AccountInfo
from solstake.models.records import SignatureInfo, SignatureStatus, TransactionLogs


class LedgerRpc(Protocol):
    """Fetch, submit, confirm and history calls against a Solana node."""

    async def get_account(self, address: Pubkey) -> AccountInfo | None:
        """Fetch an account. None if it does not exist."""
        ...

    async def get_latest_blockhash(self) -> Hash:
        ...

    async def send_transaction(self, raw: bytes) -> Signature:
        """Submit a signed, serialized transaction."""
        ...

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        """None while the node has not seen the transaction."""
        ...

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        until: Signature | None = None,
        before: Signature | None = None,
        limit: int = 100,
    ) -> list[SignatureInfo]:
        """Signatures touching ``address``, newest first."""
        ...

    async def get_transaction_logs(self, signature: Signature) -> TransactionLogs | None:
        ...

    async def get_program_accounts(
        self, program_id: Pubkey, filters: list[dict[str, Any]] | None = None
    ) -> list[AccountInfo]:
        ...

    async def close(self) -> None:
        ...
