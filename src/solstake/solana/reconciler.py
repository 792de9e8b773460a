"""State reconciler - authoritative stake record reads checked against expectations."""

from __future__ import annotations

import asyncio
import logging

import base58
from solders.pubkey import Pubkey

from solstake.errors import RecordMismatch, RpcError, RpcTransportError, StateStale
from solstake.interfaces.rpc import LedgerRpc
from solstake.models.accounts import StakeRecord
from solstake.models.events import StakeEvent
from solstake.solana.layouts import (
    STAKER_ACCOUNT_SIZE,
    STAKER_DISCRIMINATOR,
    decode_stake_record,
)
from solstake.solana.pda import stake_record_address

log = logging.getLogger(__name__)


class EventInbox:
    """Latest StakeEvent per (staker, mint), fed by the listener.

    Keeps the event with the highest ``new_total`` per pair, so duplicate or
    reordered deliveries never lower what has been observed.
    """

    def __init__(self) -> None:
        self._latest: dict[tuple[Pubkey, Pubkey], StakeEvent] = {}
        self._by_signature: dict[str, list[StakeEvent]] = {}
        self._changed = asyncio.Condition()
        self.received = 0

    async def put(self, event: StakeEvent) -> None:
        """Listener handler: record an event and wake waiters."""
        async with self._changed:
            self.received += 1
            current = self._latest.get(event.key)
            if current is None or event.new_total >= current.new_total:
                self._latest[event.key] = event
            if event.signature is not None:
                seen = self._by_signature.setdefault(str(event.signature), [])
                if event not in seen:
                    seen.append(event)
            self._changed.notify_all()

    def latest(self, owner: Pubkey, mint: Pubkey) -> StakeEvent | None:
        return self._latest.get((owner, mint))

    def for_signature(self, signature: object, owner: Pubkey, mint: Pubkey) -> StakeEvent | None:
        """The event emitted by a specific transaction for (owner, mint)."""
        for event in self._by_signature.get(str(signature), []):
            if event.key == (owner, mint):
                return event
        return None

    async def wait_for(
        self,
        owner: Pubkey,
        mint: Pubkey,
        minimum_total: int = 0,
        timeout: float = 3.0,
        signature: object = None,
    ) -> StakeEvent | None:
        """Wait until an event for (owner, mint) with ``new_total >= minimum_total``
        arrives (from ``signature`` when given). None on timeout."""

        def _match() -> StakeEvent | None:
            if signature is not None:
                return self.for_signature(signature, owner, mint)
            event = self.latest(owner, mint)
            if event is not None and event.new_total >= minimum_total:
                return event
            return None

        async with self._changed:
            try:
                await asyncio.wait_for(self._changed.wait_for(_match), timeout)
            except asyncio.TimeoutError:
                return None
            return _match()


class StakeStateReconciler:
    """Fetches stake records by their derived address and checks them.

    Owner/mint mismatch is fatal (RecordMismatch). A total below the expected
    minimum is StateStale and re-fetched with exponential backoff until
    ``max_attempts`` is used up.
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        program_id: Pubkey,
        max_attempts: int = 5,
        backoff: float = 0.5,
    ) -> None:
        self._rpc = rpc
        self._program_id = program_id
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff

    def record_address(self, owner: Pubkey, mint: Pubkey) -> Pubkey:
        address, _ = stake_record_address(owner, mint, self._program_id)
        return address

    async def fetch_record(self, owner: Pubkey, mint: Pubkey) -> StakeRecord | None:
        """Fetch the stake record for (owner, mint). None if not created yet."""
        address = self.record_address(owner, mint)
        info = await self._rpc.get_account(address)
        if info is None:
            return None
        if info.owner != self._program_id:
            raise RecordMismatch("program", self._program_id, info.owner)
        try:
            return decode_stake_record(address, info.data)
        except ValueError as exc:
            raise RecordMismatch("layout", "Staker account", str(exc)) from exc

    async def current_total(self, owner: Pubkey, mint: Pubkey) -> int:
        record = await self.fetch_record(owner, mint)
        return record.total if record else 0

    def check(
        self,
        record: StakeRecord | None,
        expected_owner: Pubkey,
        expected_mint: Pubkey,
        minimum_expected_total: int,
        attempts: int = 1,
    ) -> StakeRecord:
        """Validate one fetched snapshot. Raises RecordMismatch or StateStale."""
        if record is None:
            raise StateStale(minimum_expected_total, None, attempts)
        if record.owner != expected_owner:
            raise RecordMismatch("owner", expected_owner, record.owner)
        if record.mint != expected_mint:
            raise RecordMismatch("mint", expected_mint, record.mint)
        if record.total < minimum_expected_total:
            raise StateStale(minimum_expected_total, record.total, attempts)
        return record

    async def reconcile(
        self,
        expected_owner: Pubkey,
        expected_mint: Pubkey,
        minimum_expected_total: int,
        event: StakeEvent | None = None,
    ) -> StakeRecord:
        """Fetch and validate the record, retrying while it lags.

        An observed event for the same pair raises the lower bound to its
        ``new_total``; the fetch still happens since an event alone is not
        proof of durable commitment.
        """
        minimum = minimum_expected_total
        if event is not None and event.key == (expected_owner, expected_mint):
            minimum = max(minimum, event.new_total)

        attempt = 0
        while True:
            attempt += 1
            try:
                record = await self.fetch_record(expected_owner, expected_mint)
            except (RpcError, RpcTransportError) as exc:
                log.warning(
                    "Stake record fetch failed (attempt %d/%d): %s",
                    attempt, self._max_attempts, exc,
                )
                stale = StateStale(minimum, None, attempt)
            else:
                try:
                    checked = self.check(
                        record, expected_owner, expected_mint, minimum, attempt,
                    )
                except StateStale as exc:
                    stale = exc
                    log.warning(
                        "Stake record stale (attempt %d/%d): total=%s expected>=%d",
                        attempt, self._max_attempts,
                        record.total if record else "absent", minimum,
                    )
                else:
                    log.info(
                        "Reconciled stake record %s: total=%d (expected>=%d)",
                        str(checked.address)[:12], checked.total, minimum,
                    )
                    return checked

            if attempt >= self._max_attempts:
                log.error("Stake record still stale after %d attempts", attempt)
                raise stale
            await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))

    async def list_records(self) -> list[StakeRecord]:
        """Every Staker account owned by the program."""
        filters = [
            {"dataSize": STAKER_ACCOUNT_SIZE},
            {"memcmp": {"offset": 0, "bytes": base58.b58encode(STAKER_DISCRIMINATOR).decode("ascii")}},
        ]
        accounts = await self._rpc.get_program_accounts(self._program_id, filters)
        records = []
        for info in accounts:
            try:
                records.append(decode_stake_record(info.address, info.data))
            except ValueError as exc:
                log.warning("Skipping undecodable account %s: %s", str(info.address)[:12], exc)
        return records
