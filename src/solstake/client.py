"""Stake client - wires derivation, resolution, submission, events and reconciliation."""

from __future__ import annotations

import logging

from solders.keypair import Keypair
from solders.signature import Signature

from solstake.errors import (
    ConfirmationTimeout,
    ProgramRejected,
    RecordMismatch,
    StateStale,
    SubmissionFailed,
)
from solstake.interfaces.listener import EventListener
from solstake.interfaces.rpc import LedgerRpc
from solstake.interfaces.store import OperationStore
from solstake.models.accounts import StakeAccounts, StakeRecord
from solstake.models.config import ClientConfig
from solstake.models.records import OperationRecord, StakeOutcome
from solstake.solana.layouts import STAKE_EVENT, U64_MAX
from solstake.solana.listener import ProgramEventListener
from solstake.solana.pda import stake_record_address, to_pubkey, vault_authority_address
from solstake.solana.reconciler import EventInbox, StakeStateReconciler
from solstake.solana.resolver import AssociatedAccountResolver
from solstake.solana.rpc import HttpLedgerRpc
from solstake.solana.submitter import SolanaTransactionSubmitter, build_stake_instruction
from solstake.storage.sqlite import (
    STATUS_AMBIGUOUS,
    STATUS_FAILED,
    STATUS_MISMATCH,
    STATUS_RECONCILED,
    STATUS_REJECTED,
    STATUS_STALE,
)

log = logging.getLogger(__name__)


def _sig(signature: object) -> str | None:
    return str(signature) if signature is not None else None


class StakeClient:
    """Runs stake-and-verify cycles for one wallet and one mint.

    Derivation and resolution failures abort before anything is submitted.
    Submission and reconciliation failures carry the signature and the
    expected vs observed values so the ledger can be inspected by hand.
    Concurrent stakes for the same (owner, mint) must be serialized by the
    caller; nothing here locks across operations.
    """

    def __init__(
        self,
        cfg: ClientConfig,
        keypair: Keypair,
        rpc: LedgerRpc | None = None,
        store: OperationStore | None = None,
    ) -> None:
        self._cfg = cfg
        self._keypair = keypair
        self.user = keypair.pubkey()
        self.program_id = to_pubkey(cfg.program_id)
        self.mint = to_pubkey(cfg.token_mint)

        self.rpc: LedgerRpc = rpc or HttpLedgerRpc(
            cfg.rpc_url, cfg.commitment, timeout=cfg.rpc_timeout,
        )
        self.store = store
        self.submitter = SolanaTransactionSubmitter(
            self.rpc,
            self.program_id,
            commitment=cfg.commitment,
            confirm_timeout=cfg.confirm_timeout,
            poll_interval=cfg.confirm_poll_interval,
        )
        self.resolver = AssociatedAccountResolver(
            self.rpc,
            payer=self.user,
            retries=cfg.rpc_retries,
            backoff=cfg.retry_backoff,
            batch_creation=cfg.batch_account_creation,
            submitter=self.submitter,
            payer_keypair=keypair,
        )
        self.listener: EventListener = ProgramEventListener(
            self.rpc, self.program_id, poll_interval=cfg.event_poll_interval,
        )
        self.reconciler = StakeStateReconciler(
            self.rpc,
            self.program_id,
            max_attempts=cfg.reconcile_attempts,
            backoff=cfg.retry_backoff,
        )
        self.inbox = EventInbox()

    async def close(self) -> None:
        await self.listener.close()
        await self.rpc.close()

    # ── Resolution ─────────────────────────────────────────

    async def resolve_accounts(self) -> StakeAccounts:
        """Derive both PDAs and resolve both token accounts."""
        vault_authority, vault_bump = vault_authority_address(self.mint, self.program_id)
        stake_record, record_bump = stake_record_address(self.user, self.mint, self.program_id)
        log.debug(
            "Derived vault authority %s (bump %d), stake record %s (bump %d)",
            vault_authority, vault_bump, stake_record, record_bump,
        )

        user_ata = await self.resolver.resolve_or_create(self.mint, self.user, False)
        vault_ata = await self.resolver.resolve_or_create(self.mint, vault_authority, True)

        pre = [h.create_instruction for h in (user_ata, vault_ata) if h.create_instruction]
        return StakeAccounts(
            user=self.user,
            mint=self.mint,
            vault_authority=vault_authority,
            user_ata=user_ata,
            vault_ata=vault_ata,
            stake_record=stake_record,
            vault_authority_bump=vault_bump,
            stake_record_bump=record_bump,
            pre_instructions=pre,
        )

    # ── Stake ──────────────────────────────────────────────

    async def stake(self, amount: int) -> StakeOutcome:
        """Submit one stake of ``amount`` base units and verify it on-chain."""
        if not 0 < amount <= U64_MAX:
            raise ValueError(f"stake amount must be in 1..{U64_MAX}, got {amount}")

        accounts = await self.resolve_accounts()
        start_total = await self.reconciler.current_total(self.user, self.mint)
        expected = start_total + amount

        log.info(
            "Staking %d on mint %s (user=%s, start total=%d)",
            amount, str(self.mint)[:12], str(self.user)[:12], start_total,
        )

        # the subscription cursor must predate the submission
        sub = await self.listener.subscribe(STAKE_EVENT, self.inbox.put)
        try:
            op_id = await self._begin(amount, start_total)
            instructions = [
                *accounts.pre_instructions,
                build_stake_instruction(self.program_id, accounts, amount),
            ]
            try:
                signature = await self.submitter.submit(instructions, [self._keypair])
            except ConfirmationTimeout as exc:
                await self._finish(
                    op_id, STATUS_AMBIGUOUS, error=str(exc), signature=_sig(exc.signature),
                )
                raise
            except ProgramRejected as exc:
                await self._finish(
                    op_id, STATUS_REJECTED, error=str(exc), signature=_sig(exc.signature),
                )
                raise
            except SubmissionFailed as exc:
                await self._finish(op_id, STATUS_FAILED, error=str(exc))
                raise
            await self._submitted(op_id, str(signature))

            event = self.inbox.for_signature(signature, self.user, self.mint)
            record = await self._reconcile(op_id, signature, expected, event)

            if event is None:
                event = await self.inbox.wait_for(
                    self.user, self.mint,
                    timeout=self._cfg.event_wait,
                    signature=signature,
                )
                if event is not None and event.new_total > record.total:
                    # event overtook our read; it is a lower bound for the record
                    record = await self._reconcile(op_id, signature, event.new_total, event)

            self._check_event(event, record, amount)
            await self._finish(
                op_id,
                STATUS_RECONCILED,
                observed_total=record.total,
                event_total=event.new_total if event else None,
            )
        finally:
            await self.listener.unsubscribe(sub)

        if event is None:
            log.warning(
                "No StakeEvent observed within %.1fs for %s; record verified by fetch",
                self._cfg.event_wait, str(signature)[:16],
            )

        return StakeOutcome(
            signature=signature,
            amount=amount,
            start_total=start_total,
            record=record,
            event=event,
            created_accounts=[
                h.address for h in (accounts.user_ata, accounts.vault_ata) if not h.existed
            ],
        )

    async def _reconcile(
        self, op_id: int | None, signature: Signature, minimum: int, event,
    ) -> StakeRecord:
        """Reconcile against ``minimum``; errors carry the confirmed signature."""
        try:
            return await self.reconciler.reconcile(self.user, self.mint, minimum, event)
        except StateStale as exc:
            stale = StateStale(exc.expected_minimum, exc.observed, exc.attempts, signature=signature)
            await self._finish(op_id, STATUS_STALE, error=str(stale), observed_total=exc.observed)
            raise stale from exc
        except RecordMismatch as exc:
            mismatch = RecordMismatch(exc.field, exc.expected, exc.observed, signature=signature)
            await self._finish(op_id, STATUS_MISMATCH, error=str(mismatch))
            raise mismatch from exc

    def _check_event(self, event, record: StakeRecord, amount: int) -> None:
        if event is None:
            return
        if event.amount != amount:
            log.warning("StakeEvent amount %d differs from submitted %d", event.amount, amount)
        if event.new_total != record.total:
            # record.total > new_total: a later stake on the same pair landed in between
            log.warning(
                "StakeEvent new_total %d differs from fetched total %d",
                event.new_total, record.total,
            )

    # ── Listing & recheck ──────────────────────────────────

    async def list_stakes(self) -> list[StakeRecord]:
        return await self.reconciler.list_records()

    async def recheck(self, op: OperationRecord) -> str:
        """Re-query the chain for an ambiguous operation; returns its new status.

        Never resubmits. Landed and not-landed are both terminal outcomes;
        an operation only leaves ``ambiguous`` once the chain says which.
        """
        status = STATUS_AMBIGUOUS
        if op.signature:
            landed = await self.rpc.get_signature_status(Signature.from_string(op.signature))
            if landed is not None and landed.err is not None:
                status = STATUS_REJECTED
            elif landed is not None and self._cfg.commitment.satisfied_by(landed.confirmation_status):
                status = STATUS_RECONCILED

        record = await self.reconciler.fetch_record(to_pubkey(op.owner), to_pubkey(op.mint))
        observed = record.total if record else None
        if status == STATUS_AMBIGUOUS and observed is not None and observed >= op.expected_total:
            status = STATUS_RECONCILED

        if self.store is not None and status != op.status:
            await self.store.mark_status(op.id, status, observed_total=observed)
            await self.store.log_activity(
                "recheck", f"Operation {op.id}: {op.status} -> {status}",
                operation_id=op.id, signature=op.signature,
            )
        log.info("Recheck op %d: %s (observed total=%s)", op.id, status, observed)
        return status

    # ── Journal helpers ────────────────────────────────────

    async def _begin(self, amount: int, start_total: int) -> int | None:
        if self.store is None:
            return None
        op_id = await self.store.begin_operation(
            str(self.user), str(self.mint), amount, start_total,
        )
        await self.store.log_activity(
            "stake_started", f"Stake {amount} (start total {start_total})",
            operation_id=op_id, amount=amount,
        )
        return op_id

    async def _submitted(self, op_id: int | None, signature: str) -> None:
        if self.store is None or op_id is None:
            return
        await self.store.mark_submitted(op_id, signature)
        await self.store.log_activity(
            "stake_confirmed", f"Confirmed {signature[:16]}", operation_id=op_id, signature=signature,
        )

    async def _finish(
        self,
        op_id: int | None,
        status: str,
        error: str | None = None,
        signature: str | None = None,
        observed_total: int | None = None,
        event_total: int | None = None,
    ) -> None:
        if self.store is None or op_id is None:
            return
        if signature is not None:
            await self.store.mark_submitted(op_id, signature)
        await self.store.mark_status(
            op_id, status, error=error, observed_total=observed_total, event_total=event_total,
        )
        await self.store.log_activity(
            f"stake_{status}", error or f"Stake {status}", operation_id=op_id, signature=signature,
        )


async def run_stake(
    cfg: ClientConfig,
    keypair: Keypair,
    amount: int,
    store: OperationStore | None = None,
) -> StakeOutcome:
    """Entry point for one stake-and-verify cycle."""
    client = StakeClient(cfg, keypair, store=store)
    try:
        return await client.stake(amount)
    finally:
        await client.close()


__all__ = ["StakeClient", "run_stake"]
