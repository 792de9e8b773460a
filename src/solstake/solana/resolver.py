"""Associated token account resolver - find the account, or plan its creation."""

from __future__ import annotations

import asyncio
import logging

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from solstake.errors import AccountResolutionFailed, InvalidAddress, RpcTransportError
from solstake.interfaces.rpc import LedgerRpc
from solstake.interfaces.submitter import TransactionSubmitter
from solstake.models.accounts import AccountHandle, AccountInfo
from solstake.solana.layouts import decode_token_account
from solstake.solana.pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    associated_token_address,
)

log = logging.getLogger(__name__)

# Associated token program instruction tags
_ATA_CREATE_IDEMPOTENT = 1


def create_idempotent_instruction(
    payer: Pubkey,
    ata: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    """CreateIdempotent: succeeds when the account already exists."""
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([_ATA_CREATE_IDEMPOTENT]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(token_program, is_signer=False, is_writable=False),
        ],
    )


class AssociatedAccountResolver:
    """Resolves the associated token account for (mint, owner).

    The existence check and the creation are not atomic. Creation therefore
    always uses CreateIdempotent, which treats "already exists" as success,
    so a concurrent resolver run cannot make us fail.

    With ``batch_creation`` (the default) the creation instruction is left on
    the returned handle for the caller to put in the stake transaction. With
    batching off, and a submitter and payer keypair supplied, it is submitted
    right away.
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        payer: Pubkey,
        retries: int = 3,
        backoff: float = 0.5,
        batch_creation: bool = True,
        submitter: TransactionSubmitter | None = None,
        payer_keypair: Keypair | None = None,
        token_program: Pubkey = TOKEN_PROGRAM_ID,
    ) -> None:
        self._rpc = rpc
        self._payer = payer
        self._retries = max(1, retries)
        self._backoff = backoff
        # set only when creation is submitted immediately instead of batched
        self._creator: tuple[TransactionSubmitter, Keypair] | None = None
        if not batch_creation:
            if submitter is None or payer_keypair is None:
                raise ValueError("immediate account creation needs a submitter and payer keypair")
            self._creator = (submitter, payer_keypair)
        self._token_program = token_program

    async def resolve_or_create(
        self,
        mint: Pubkey,
        owner: Pubkey,
        allow_off_curve_owner: bool = False,
    ) -> AccountHandle:
        """Return the handle for the (mint, owner) associated token account."""
        if not allow_off_curve_owner and not owner.is_on_curve():
            raise InvalidAddress(
                f"owner {owner} is off-curve; pass allow_off_curve_owner for program-derived owners"
            )

        address = associated_token_address(owner, mint, self._token_program)
        info = await self._fetch_with_retry(address)

        if info is not None:
            token_account = self._validate_existing(info, mint, owner)
            log.debug("Token account %s exists (owner=%s)", str(address)[:12], str(owner)[:12])
            return AccountHandle(
                address=address,
                mint=mint,
                owner=owner,
                existed=True,
                token_account=token_account,
            )

        ix = create_idempotent_instruction(
            self._payer, address, owner, mint, self._token_program,
        )
        if self._creator is None:
            log.info(
                "Token account %s missing; creation batched into stake transaction",
                str(address)[:12],
            )
            return AccountHandle(
                address=address, mint=mint, owner=owner, existed=False, create_instruction=ix,
            )

        submitter, payer_keypair = self._creator
        log.info("Token account %s missing; creating now", str(address)[:12])
        signature = await submitter.submit([ix], [payer_keypair])
        log.info("Created token account %s (tx=%s)", str(address)[:12], str(signature)[:16])
        return AccountHandle(address=address, mint=mint, owner=owner, existed=False)

    async def _fetch_with_retry(self, address: Pubkey) -> AccountInfo | None:
        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                return await self._rpc.get_account(address)
            except RpcTransportError as exc:
                last_exc = exc
                if attempt < self._retries:
                    delay = self._backoff * (2 ** (attempt - 1))
                    log.warning(
                        "Account fetch for %s failed (attempt %d/%d): %s",
                        str(address)[:12], attempt, self._retries, exc,
                    )
                    await asyncio.sleep(delay)
        raise AccountResolutionFailed(address, self._retries, last_exc)

    def _validate_existing(self, info: AccountInfo, mint: Pubkey, owner: Pubkey):
        if info.owner != self._token_program:
            raise InvalidAddress(
                f"account {info.address} is owned by {info.owner}, not the token program"
            )
        try:
            token_account = decode_token_account(info.address, info.data)
        except ValueError as exc:
            raise InvalidAddress(f"account {info.address} is not a token account: {exc}") from exc
        if token_account.mint != mint:
            raise InvalidAddress(
                f"token account {info.address} holds mint {token_account.mint}, expected {mint}"
            )
        if token_account.owner != owner:
            raise InvalidAddress(
                f"token account {info.address} is owned by {token_account.owner}, expected {owner}"
            )
        return token_account
