"""On-chain account models."""

from __future__ import annotations

from dataclasses import dataclass, field

from solders.instruction import Instruction
from solders.pubkey import Pubkey


@dataclass(frozen=True)
class AccountInfo:
    """Raw account as returned by the RPC node."""

    address: Pubkey
    owner: Pubkey  # owning program
    lamports: int
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class StakeRecord:
    """The program's Staker account, keyed by (owner, mint)."""

    address: Pubkey
    owner: Pubkey
    mint: Pubkey
    total: int


@dataclass(frozen=True)
class TokenAccount:
    """Decoded SPL token account (the fields we care about)."""

    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    amount: int


@dataclass
class AccountHandle:
    """Resolved associated token account for (mint, owner).

    ``create_instruction`` is set when the account did not exist and creation
    was deferred to the stake transaction.
    """

    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    existed: bool
    create_instruction: Instruction | None = None
    token_account: TokenAccount | None = None

    @property
    def needs_creation(self) -> bool:
        return self.create_instruction is not None


@dataclass
class StakeAccounts:
    """Every account role of the do_stake instruction, fully resolved."""

    user: Pubkey
    mint: Pubkey
    vault_authority: Pubkey
    user_ata: AccountHandle
    vault_ata: AccountHandle
    stake_record: Pubkey
    vault_authority_bump: int = 0
    stake_record_bump: int = 0
    pre_instructions: list[Instruction] = field(default_factory=list)
