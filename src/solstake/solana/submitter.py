"""Transaction submitter - builds do_stake, signs, sends and confirms."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from solstake.errors import (
    ConfirmationTimeout,
    ProgramRejected,
    RpcError,
    RpcTransportError,
    StakeClientError,
    SubmissionFailed,
)
from solstake.interfaces.rpc import LedgerRpc
from solstake.models.accounts import StakeAccounts
from solstake.models.config import Commitment
from solstake.solana.layouts import encode_stake_args
from solstake.solana.pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

log = logging.getLogger(__name__)

# Stake program #[error_code] enum (Anchor offsets custom errors by 6000)
STAKE_PROGRAM_ERRORS = {
    6000: "OwnerMismatch",
    6001: "MintMismatch",
    6002: "MathOverflow",
}

# Anchor framework errors the stake accounts can trip
ANCHOR_ERRORS = {
    2006: "ConstraintSeeds",
    2014: "ConstraintTokenMint",
    2015: "ConstraintTokenOwner",
    3007: "AccountOwnedByWrongProgram",
    3012: "AccountNotInitialized",
}

TOKEN_PROGRAM_ERRORS = {
    1: "InsufficientFunds",
    3: "MintMismatch",
    4: "OwnerMismatch",
}

_PREFLIGHT_FAILURE = -32002


def build_stake_instruction(
    program_id: Pubkey, accounts: StakeAccounts, amount: int
) -> Instruction:
    """do_stake with every account role passed explicitly, in program order."""
    metas = [
        AccountMeta(accounts.user, is_signer=True, is_writable=True),
        AccountMeta(accounts.mint, is_signer=False, is_writable=False),
        AccountMeta(accounts.vault_authority, is_signer=False, is_writable=False),
        AccountMeta(accounts.user_ata.address, is_signer=False, is_writable=True),
        AccountMeta(accounts.vault_ata.address, is_signer=False, is_writable=True),
        AccountMeta(accounts.stake_record, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, encode_stake_args(amount), metas)


def _instruction_error(err: Any) -> tuple[int, Any] | None:
    """Pull (instruction index, inner error) out of a TransactionError value."""
    if isinstance(err, dict) and "InstructionError" in err:
        index, inner = err["InstructionError"]
        return int(index), inner
    return None


class SolanaTransactionSubmitter:
    """Signs, sends and confirms transactions at the configured commitment.

    Outcomes are surfaced distinctly:
      - SubmissionFailed: the node refused the transaction; nothing landed
      - ProgramRejected: a program in the transaction returned an error
      - ConfirmationTimeout: no verdict in time; the caller must re-query
        state instead of resubmitting
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        program_id: Pubkey,
        commitment: Commitment = Commitment.CONFIRMED,
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._rpc = rpc
        self._program_id = program_id
        self._commitment = commitment
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval

    async def submit(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair]
    ) -> Signature:
        """Build, sign, send and await confirmation. Returns the signature."""
        if not signers:
            raise ValueError("at least one signer (the fee payer) is required")
        instructions = list(instructions)
        payer = signers[0].pubkey()

        try:
            blockhash = await self._rpc.get_latest_blockhash()
        except (RpcError, RpcTransportError) as exc:
            raise SubmissionFailed(f"could not fetch blockhash: {exc}") from exc

        message = Message.new_with_blockhash(instructions, payer, blockhash)
        tx = Transaction(list(signers), message, blockhash)
        signature = tx.signatures[0]

        log.info(
            "Submitting transaction %s (%d instructions)",
            str(signature)[:16], len(instructions),
        )
        try:
            await self._rpc.send_transaction(bytes(tx))
        except RpcError as exc:
            self._raise_preflight(exc, signature, instructions)
        except RpcTransportError as exc:
            # The node may still have received it; only confirmation can tell.
            log.warning(
                "Send of %s hit a transport error, polling for it anyway: %s",
                str(signature)[:16], exc,
            )

        await self.confirm(signature, instructions)
        return signature

    async def confirm(
        self, signature: Signature, instructions: Sequence[Instruction] = ()
    ) -> None:
        """Poll until ``signature`` reaches the commitment or the timeout hits."""
        deadline = time.monotonic() + self._confirm_timeout
        while True:
            try:
                status = await self._rpc.get_signature_status(signature)
            except (RpcError, RpcTransportError) as exc:
                log.warning("Status poll for %s failed: %s", str(signature)[:16], exc)
                status = None

            if status is not None:
                if status.err is not None:
                    await self._raise_landed_error(signature, status.err, instructions)
                if self._commitment.satisfied_by(status.confirmation_status):
                    log.info(
                        "Transaction %s %s at slot %d",
                        str(signature)[:16], status.confirmation_status, status.slot,
                    )
                    return

            if time.monotonic() >= deadline:
                log.error(
                    "Transaction %s not %s within %.1fs",
                    str(signature)[:16], self._commitment.value, self._confirm_timeout,
                )
                raise ConfirmationTimeout(
                    signature, self._commitment.value, self._confirm_timeout,
                )
            await asyncio.sleep(self._poll_interval)

    # ── Error classification ───────────────────────────────

    def _name_for(self, program_id: Pubkey | None, code: int) -> str | None:
        if program_id == self._program_id:
            return STAKE_PROGRAM_ERRORS.get(code) or ANCHOR_ERRORS.get(code)
        if program_id == TOKEN_PROGRAM_ID:
            return TOKEN_PROGRAM_ERRORS.get(code)
        return None

    def _rejection(
        self,
        err: Any,
        signature: Signature,
        instructions: Sequence[Instruction],
        logs: list[str] | None,
    ) -> ProgramRejected | None:
        parsed = _instruction_error(err)
        if parsed is None:
            return None
        index, inner = parsed
        program_id = instructions[index].program_id if 0 <= index < len(instructions) else None
        if isinstance(inner, dict) and "Custom" in inner:
            code = int(inner["Custom"])
            return ProgramRejected(
                code, self._name_for(program_id, code), signature, logs, raw=err,
            )
        return ProgramRejected(None, str(inner), signature, logs, raw=err)

    def _raise_preflight(
        self, exc: RpcError, signature: Signature, instructions: Sequence[Instruction]
    ) -> None:
        data = exc.data if isinstance(exc.data, dict) else {}
        if exc.code == _PREFLIGHT_FAILURE and data.get("err") is not None:
            rejected = self._rejection(data["err"], signature, instructions, data.get("logs"))
            if rejected is not None:
                log.error("Preflight rejected %s: %s", str(signature)[:16], rejected)
                raise rejected from exc
        log.error("sendTransaction refused %s: %s", str(signature)[:16], exc)
        raise SubmissionFailed(str(exc)) from exc

    async def _raise_landed_error(
        self, signature: Signature, err: Any, instructions: Sequence[Instruction]
    ) -> None:
        logs: list[str] | None = None
        try:
            landed = await self._rpc.get_transaction_logs(signature)
            logs = landed.logs if landed else None
        except StakeClientError as exc:
            log.debug("Could not fetch logs for failed %s: %s", str(signature)[:16], exc)

        rejected = self._rejection(err, signature, instructions, logs)
        if rejected is None:
            rejected = ProgramRejected(None, str(err), signature, logs, raw=err)
        log.error("Transaction %s failed on-chain: %s", str(signature)[:16], rejected)
        raise rejected
