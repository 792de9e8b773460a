"""Program event listener - polls transaction logs for Anchor events."""

from __future__ import annotations

import asyncio
import base64
import binascii
import dataclasses
import inspect
import itertools
import logging
from typing import Callable, Iterator

from solders.pubkey import Pubkey
from solders.signature import Signature

from solstake.errors import RpcError, RpcTransportError
from solstake.interfaces.listener import EventHandler
from solstake.interfaces.rpc import LedgerRpc
from solstake.models.events import StakeEvent
from solstake.models.records import SignatureInfo, TransactionLogs
from solstake.solana.layouts import STAKE_EVENT, decode_stake_event

log = logging.getLogger(__name__)

_PROGRAM_DATA = "Program data: "

# event name -> payload decoder (None when the discriminator does not match)
_DECODERS: dict[str, Callable[[bytes], StakeEvent | None]] = {
    STAKE_EVENT: decode_stake_event,
}


def _normalize_event_name(name: str) -> str:
    """Accept the camelCase spelling TypeScript clients use ("stakeEvent")."""
    return name[:1].upper() + name[1:]


def iter_program_data(logs: list[str], program_id: Pubkey) -> Iterator[bytes]:
    """Yield ``Program data:`` payloads emitted while ``program_id`` is the
    innermost executing program.

    Tracks the invoke stack so data logged by a CPI callee is not attributed
    to the caller.
    """
    target = str(program_id)
    stack: list[str] = []
    for line in logs:
        if line.startswith(_PROGRAM_DATA):
            if stack and stack[-1] == target:
                try:
                    yield base64.b64decode(line[len(_PROGRAM_DATA):], validate=True)
                except (binascii.Error, ValueError):
                    log.debug("Skipping undecodable program data line")
            continue
        parts = line.split(" ")
        if len(parts) >= 3 and parts[0] == "Program":
            if parts[2] == "invoke":
                stack.append(parts[1])
            elif parts[2] == "success" or parts[2].startswith("failed"):
                if stack and stack[-1] == parts[1]:
                    stack.pop()


def parse_events(
    tx_logs: TransactionLogs, program_id: Pubkey, event_name: str = STAKE_EVENT
) -> list[StakeEvent]:
    """Decode every ``event_name`` event in a transaction's logs."""
    decoder = _DECODERS[_normalize_event_name(event_name)]
    events = []
    for payload in iter_program_data(tx_logs.logs, program_id):
        try:
            event = decoder(payload)
        except Exception as exc:  # malformed payload from the wire
            log.warning("Failed to decode event in %s: %s", str(tx_logs.signature)[:16], exc)
            continue
        if event is not None:
            events.append(
                dataclasses.replace(event, slot=tx_logs.slot, signature=tx_logs.signature)
            )
    return events


class Subscription:
    """Handle returned by ProgramEventListener.subscribe()."""

    def __init__(self, sub_id: int, event_name: str, handler: EventHandler) -> None:
        self.id = sub_id
        self.event_name = event_name
        self.handler = handler
        self.cursor: Signature | None = None
        self.delivered = 0
        self._active = True
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._active

    def __repr__(self) -> str:
        state = "active" if self._active else "closed"
        return f"<Subscription #{self.id} {self.event_name} {state}>"


class ProgramEventListener:
    """Delivers decoded program events to handlers.

    Each subscription runs its own polling task over
    getSignaturesForAddress(program) + getTransaction logs. The cursor starts
    at the newest program signature at subscribe time, so only transactions
    after the subscription are delivered. Handlers run in arrival order on
    the listener task, never on the caller's submit/confirm path; a failing
    handler is logged and the subscription keeps going.
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        program_id: Pubkey,
        poll_interval: float = 1.0,
        page_limit: int = 100,
    ) -> None:
        self._rpc = rpc
        self._program_id = program_id
        self._poll_interval = poll_interval
        self._page_limit = page_limit
        self._ids = itertools.count(1)
        self._subscriptions: dict[int, Subscription] = {}

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    async def subscribe(self, event_name: str, handler: EventHandler) -> Subscription:
        """Start delivering ``event_name`` events to ``handler``."""
        name = _normalize_event_name(event_name)
        if name not in _DECODERS:
            raise ValueError(f"unknown event {event_name!r}; known: {sorted(_DECODERS)}")

        sub = Subscription(next(self._ids), name, handler)
        sub.cursor = await self._latest_signature()
        sub._task = asyncio.create_task(self._run(sub), name=f"solstake-listener-{sub.id}")
        self._subscriptions[sub.id] = sub
        log.info(
            "Subscribed #%d to %s on %s (cursor: %s)",
            sub.id, name, str(self._program_id)[:12],
            str(sub.cursor)[:16] if sub.cursor else "none",
        )
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Stop delivery. Safe to call more than once."""
        if not sub.active:
            return
        sub._active = False
        self._subscriptions.pop(sub.id, None)
        task = sub._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        log.info("Unsubscribed #%d (%d events delivered)", sub.id, sub.delivered)

    async def close(self) -> None:
        for sub in list(self._subscriptions.values()):
            await self.unsubscribe(sub)

    # ── Polling ────────────────────────────────────────────

    async def _latest_signature(self) -> Signature | None:
        newest = await self._rpc.get_signatures_for_address(self._program_id, limit=1)
        return newest[0].signature if newest else None

    async def _run(self, sub: Subscription) -> None:
        while sub.active:
            try:
                await self.poll(sub)
            except asyncio.CancelledError:
                raise
            except (RpcError, RpcTransportError) as exc:
                log.warning("Event poll #%d failed: %s", sub.id, exc)
            except Exception as exc:
                log.error("Event poll #%d error: %s", sub.id, exc, exc_info=True)
            await asyncio.sleep(self._poll_interval)

    async def _new_signatures(self, cursor: Signature | None) -> list[SignatureInfo]:
        """All signatures newer than ``cursor``, oldest first."""
        collected: list[SignatureInfo] = []
        before: Signature | None = None
        while True:
            page = await self._rpc.get_signatures_for_address(
                self._program_id, until=cursor, before=before, limit=self._page_limit,
            )
            collected.extend(page)
            if len(page) < self._page_limit:
                break
            before = page[-1].signature
        collected.reverse()
        return collected

    async def poll(self, sub: Subscription) -> int:
        """Run one poll for ``sub``; returns the number of events delivered."""
        delivered = 0
        for info in await self._new_signatures(sub.cursor):
            if not sub.active:
                break
            if info.err is None:
                tx_logs = await self._rpc.get_transaction_logs(info.signature)
                if tx_logs is None:
                    # Not yet visible at our commitment; retry next poll.
                    log.debug("Logs for %s not available yet", str(info.signature)[:16])
                    break
                for event in parse_events(tx_logs, self._program_id, sub.event_name):
                    if not sub.active:
                        break
                    await self._dispatch(sub, event)
                    delivered += 1
            sub.cursor = info.signature
        if delivered:
            log.debug("Poll #%d delivered %d events (cursor: %s)",
                      sub.id, delivered, str(sub.cursor)[:16])
        return delivered

    async def _dispatch(self, sub: Subscription, event: StakeEvent) -> None:
        sub.delivered += 1
        try:
            result = sub.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log.error(
                "Handler for subscription #%d raised on %s: %s",
                sub.id, str(event.signature)[:16], exc, exc_info=True,
            )
