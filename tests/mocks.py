"""In-memory ledger implementing the LedgerRpc protocol."""

from __future__ import annotations

import asyncio

import base58
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from solstake.errors import RpcError, RpcTransportError
from solstake.models.accounts import AccountInfo
from solstake.models.records import SignatureInfo, SignatureStatus, TransactionLogs
from solstake.solana.layouts import (
    DISCRIMINATOR_LEN,
    STAKE_IX_DISCRIMINATOR,
    StakeArgsLayout,
    U64_MAX,
    decode_stake_record,
    decode_token_account,
    encode_stake_event,
    encode_stake_record,
    encode_token_account,
)
from solstake.solana.pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    associated_token_address,
    stake_record_address,
    vault_authority_address,
)

RENT_EXEMPT_LAMPORTS = 2_039_280


class _InstructionFailed(Exception):
    def __init__(self, code: int | str, logs: list[str]) -> None:
        super().__init__(code)
        self.code = code
        self.logs = logs


class FakeLedger:
    """Executes the token, associated-token and stake programs in memory.

    Knobs for failure injection:
      - ``preflight``: program errors come back from sendTransaction as a
        -32002 RpcError instead of landing with an error status
      - ``drop_confirmations``: status is never reported; with
        ``land_on_timeout`` the transaction still executes
      - ``stale_reads``: after each landed transaction, that many reads of an
        account it changed return the pre-transaction state
      - ``account_fetch_failures``: get_account raises RpcTransportError
        that many times
      - ``duplicate_events`` / ``suppress_logs``: event delivery faults
    """

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id
        self.accounts: dict[Pubkey, AccountInfo] = {}
        self.statuses: dict[Signature, SignatureStatus] = {}
        self.logs: dict[Signature, TransactionLogs] = {}
        self.history: list[SignatureInfo] = []  # newest first
        self.slot = 1000
        self.sent: list[Transaction] = []
        self.calls: list[str] = []

        self.preflight = True
        self.drop_confirmations = False
        self.land_on_timeout = True
        self.confirmation_status = "confirmed"
        self.stale_reads = 0
        self.account_fetch_failures = 0
        self.send_transport_error = False
        self.send_error: RpcError | None = None
        self.duplicate_events = False
        self.suppress_logs = False
        self.closed = False

        self._previous: dict[Pubkey, AccountInfo | None] = {}
        self._stale_remaining = 0

    # ── Test helpers ───────────────────────────────────────

    def fund(self, owner: Pubkey, mint: Pubkey, amount: int) -> Pubkey:
        """Create (or top up) the associated token account for (owner, mint)."""
        address = associated_token_address(owner, mint)
        current = self.token_balance(owner, mint) or 0
        self._put_token_account(address, mint, owner, current + amount)
        return address

    def token_balance(self, owner: Pubkey, mint: Pubkey) -> int | None:
        info = self.accounts.get(associated_token_address(owner, mint))
        if info is None:
            return None
        return decode_token_account(info.address, info.data).amount

    def put_stake_record(self, owner: Pubkey, mint: Pubkey, total: int) -> Pubkey:
        address, _ = stake_record_address(owner, mint, self.program_id)
        self.accounts[address] = AccountInfo(
            address=address,
            owner=self.program_id,
            lamports=RENT_EXEMPT_LAMPORTS,
            data=encode_stake_record(owner, mint, total),
        )
        return address

    def put_account(self, info: AccountInfo) -> None:
        self.accounts[info.address] = info

    def record_transaction(self, tx_logs: TransactionLogs, err: object = None) -> None:
        """Make a program transaction visible to history and log queries."""
        self.history.insert(0, SignatureInfo(tx_logs.signature, tx_logs.slot, err))
        self.logs[tx_logs.signature] = tx_logs

    def serve_stale(self, address: Pubkey, previous: AccountInfo | None, reads: int) -> None:
        """Return ``previous`` for the next ``reads`` fetches of ``address``."""
        self._previous = {address: previous}
        self._stale_remaining = reads

    def stake_total(self, owner: Pubkey, mint: Pubkey) -> int | None:
        address, _ = stake_record_address(owner, mint, self.program_id)
        info = self.accounts.get(address)
        return decode_stake_record(address, info.data).total if info else None

    def _put_token_account(self, address: Pubkey, mint: Pubkey, owner: Pubkey, amount: int) -> None:
        self.accounts[address] = AccountInfo(
            address=address,
            owner=TOKEN_PROGRAM_ID,
            lamports=RENT_EXEMPT_LAMPORTS,
            data=encode_token_account(mint, owner, amount),
        )

    # ── LedgerRpc: accounts ────────────────────────────────

    async def get_account(self, address: Pubkey) -> AccountInfo | None:
        self.calls.append("get_account")
        if self.account_fetch_failures > 0:
            self.account_fetch_failures -= 1
            raise RpcTransportError("getAccountInfo: connection reset")
        if self._stale_remaining > 0 and address in self._previous:
            self._stale_remaining -= 1
            return self._previous[address]
        return self.accounts.get(address)

    async def get_program_accounts(self, program_id: Pubkey, filters=None) -> list[AccountInfo]:
        self.calls.append("get_program_accounts")
        matched = []
        for info in self.accounts.values():
            if info.owner != program_id:
                continue
            if all(_matches(info.data, f) for f in filters or []):
                matched.append(info)
        return matched

    # ── LedgerRpc: transactions ────────────────────────────

    async def get_latest_blockhash(self) -> Hash:
        self.calls.append("get_latest_blockhash")
        return Hash.new_unique()

    async def send_transaction(self, raw: bytes) -> Signature:
        self.calls.append("send_transaction")
        if self.send_error is not None:
            raise self.send_error
        tx = Transaction.from_bytes(raw)
        self.sent.append(tx)
        signature = tx.signatures[0]

        staged = dict(self.accounts)
        logs: list[str] = []
        err = None
        for index, ix in enumerate(tx.message.instructions):
            keys = tx.message.account_keys
            program = keys[ix.program_id_index]
            accounts = [keys[i] for i in bytes(ix.accounts)]
            try:
                logs.extend(self._execute(staged, program, accounts, bytes(ix.data)))
            except _InstructionFailed as exc:
                logs.extend(exc.logs)
                inner = {"Custom": exc.code} if isinstance(exc.code, int) else exc.code
                err = {"InstructionError": [index, inner]}
                break

        if err is not None and self.preflight:
            raise RpcError(
                "sendTransaction",
                -32002,
                "Transaction simulation failed: Error processing Instruction",
                {"err": err, "logs": logs, "accounts": None, "unitsConsumed": 0},
            )

        self.slot += 1
        landed = err is None and (not self.drop_confirmations or self.land_on_timeout)
        if landed:
            self._previous = {a: self.accounts.get(a) for a in staged if staged[a] != self.accounts.get(a)}
            self._stale_remaining = self.stale_reads
            self.accounts = staged

        if err is not None or landed:
            if self.program_id in tx.message.account_keys:
                self.history.insert(0, SignatureInfo(signature, self.slot, err))
            self.logs[signature] = TransactionLogs(signature, self.slot, logs, err)
            if not self.drop_confirmations:
                self.statuses[signature] = SignatureStatus(
                    slot=self.slot, confirmation_status=self.confirmation_status, err=err,
                )

        if self.send_transport_error:
            raise RpcTransportError("sendTransaction: read timeout")
        return signature

    async def get_signature_status(self, signature: Signature) -> SignatureStatus | None:
        self.calls.append("get_signature_status")
        return self.statuses.get(signature)

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        until: Signature | None = None,
        before: Signature | None = None,
        limit: int = 100,
    ) -> list[SignatureInfo]:
        self.calls.append("get_signatures_for_address")
        entries = self.history if address == self.program_id else []
        if before is not None:
            idx = next((i for i, e in enumerate(entries) if e.signature == before), None)
            entries = entries[idx + 1:] if idx is not None else []
        page = []
        for entry in entries:
            if until is not None and entry.signature == until:
                break
            page.append(entry)
        return page[:limit]

    async def get_transaction_logs(self, signature: Signature) -> TransactionLogs | None:
        self.calls.append("get_transaction_logs")
        if self.suppress_logs:
            return None
        return self.logs.get(signature)

    async def close(self) -> None:
        self.closed = True

    # ── Program execution ──────────────────────────────────

    def _execute(
        self, staged: dict[Pubkey, AccountInfo], program: Pubkey, accounts: list[Pubkey], data: bytes
    ) -> list[str]:
        if program == ASSOCIATED_TOKEN_PROGRAM_ID:
            return self._create_ata(staged, accounts, data)
        if program == self.program_id:
            return self._do_stake(staged, accounts, data)
        raise _InstructionFailed("IncorrectProgramId", [f"Program {program} invoke [1]"])

    def _create_ata(self, staged, accounts, data) -> list[str]:
        logs = [f"Program {ASSOCIATED_TOKEN_PROGRAM_ID} invoke [1]", "Program log: CreateIdempotent"]
        _payer, ata, owner, mint = accounts[:4]
        if data != bytes([1]) and ata in staged:
            raise _InstructionFailed(0, logs + [f"Program {ASSOCIATED_TOKEN_PROGRAM_ID} failed"])
        if ata not in staged:
            if associated_token_address(owner, mint) != ata:
                raise _InstructionFailed("InvalidSeeds", logs)
            staged[ata] = AccountInfo(
                address=ata,
                owner=TOKEN_PROGRAM_ID,
                lamports=RENT_EXEMPT_LAMPORTS,
                data=encode_token_account(mint, owner, 0),
            )
        logs.append(f"Program {ASSOCIATED_TOKEN_PROGRAM_ID} success")
        return logs

    def _do_stake(self, staged, accounts, data) -> list[str]:
        pid = self.program_id
        logs = [f"Program {pid} invoke [1]", "Program log: Instruction: DoStake"]

        def fail(code: int) -> _InstructionFailed:
            return _InstructionFailed(code, logs + [f"Program {pid} failed: custom program error: {code:#x}"])

        if data[:DISCRIMINATOR_LEN] != STAKE_IX_DISCRIMINATOR:
            raise fail(101)  # InstructionFallbackNotFound
        amount = StakeArgsLayout.parse(data[DISCRIMINATOR_LEN:]).amount
        user, mint, vault_authority, user_ata, vault_ata, staker = accounts[:6]

        if vault_authority_address(mint, pid)[0] != vault_authority:
            raise fail(2006)
        if stake_record_address(user, mint, pid)[0] != staker:
            raise fail(2006)
        for ata, owner in ((user_ata, user), (vault_ata, vault_authority)):
            info = staged.get(ata)
            if info is None:
                raise fail(3012)
            token = decode_token_account(ata, info.data)
            if token.mint != mint:
                raise fail(2014)
            if token.owner != owner:
                raise fail(2015)

        record = staged.get(staker)
        if record is None:
            total = 0
        else:
            decoded = decode_stake_record(staker, record.data)
            if decoded.owner != user:
                raise fail(6000)
            if decoded.mint != mint:
                raise fail(6001)
            total = decoded.total

        source = decode_token_account(user_ata, staged[user_ata].data)
        dest = decode_token_account(vault_ata, staged[vault_ata].data)
        logs += [f"Program {TOKEN_PROGRAM_ID} invoke [2]", "Program log: Instruction: Transfer"]
        if source.amount < amount:
            logs.append(f"Program {TOKEN_PROGRAM_ID} failed: custom program error: 0x1")
            raise _InstructionFailed(1, logs)
        logs.append(f"Program {TOKEN_PROGRAM_ID} success")

        new_total = total + amount
        if new_total > U64_MAX:
            raise fail(6002)

        self._put_staged_token(staged, user_ata, mint, user, source.amount - amount)
        self._put_staged_token(staged, vault_ata, mint, vault_authority, dest.amount + amount)
        staged[staker] = AccountInfo(
            address=staker,
            owner=pid,
            lamports=RENT_EXEMPT_LAMPORTS,
            data=encode_stake_record(user, mint, new_total),
        )

        event = f"Program data: {encode_stake_event(user, mint, amount, new_total)}"
        logs.append(event)
        if self.duplicate_events:
            logs.append(event)
        logs.append(f"Program {pid} success")
        return logs

    @staticmethod
    def _put_staged_token(staged, address, mint, owner, amount) -> None:
        staged[address] = AccountInfo(
            address=address,
            owner=TOKEN_PROGRAM_ID,
            lamports=RENT_EXEMPT_LAMPORTS,
            data=encode_token_account(mint, owner, amount),
        )


def _matches(data: bytes, flt: dict) -> bool:
    if "dataSize" in flt:
        return len(data) == flt["dataSize"]
    if "memcmp" in flt:
        offset = flt["memcmp"]["offset"]
        expected = base58.b58decode(flt["memcmp"]["bytes"])
        return data[offset:offset + len(expected)] == expected
    return True


class RecordingHandler:
    """Event handler that records what it receives."""

    def __init__(self, fail: bool = False) -> None:
        self.events = []
        self.fail = fail

    def __call__(self, event) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("handler blew up")


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
