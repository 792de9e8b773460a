"""Program-derived address derivation.

Addresses produced here must be bit-exact with what the on-chain program
derives for itself; a seed ordering or encoding slip yields a different
address and the network raises no error about it.
"""

from __future__ import annotations

from typing import Sequence

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from solstake.errors import DerivationExhausted, InvalidAddress

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

__all__ = [
    "SYSTEM_PROGRAM_ID", "TOKEN_PROGRAM_ID", "ASSOCIATED_TOKEN_PROGRAM_ID",
    "SEED_VAULT", "SEED_STAKER",
    "derive", "create_address", "to_pubkey",
    "vault_authority_address", "stake_record_address", "associated_token_address",
]

MAX_SEEDS = 16  # including the bump
MAX_SEED_LEN = 32

# Seeds used by the stake program
SEED_VAULT = b"vault"
SEED_STAKER = b"staker"


def to_pubkey(value: Pubkey | str | bytes) -> Pubkey:
    """Coerce base58 text or 32 raw bytes to a Pubkey. Raises InvalidAddress."""
    if isinstance(value, Pubkey):
        return value
    try:
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 32:
                raise ValueError(f"expected 32 bytes, got {len(value)}")
            return Pubkey(bytes(value))
        return Pubkey.from_string(value.strip())
    except (ValueError, TypeError, AttributeError) as exc:
        raise InvalidAddress(f"malformed address {value!r}: {exc}") from exc


def _check_seeds(seeds: Sequence[bytes]) -> list[bytes]:
    checked = [bytes(s) for s in seeds]
    if len(checked) > MAX_SEEDS - 1:
        raise InvalidAddress(
            f"too many seeds: {len(checked)} (max {MAX_SEEDS - 1} plus bump)"
        )
    for i, seed in enumerate(checked):
        if len(seed) > MAX_SEED_LEN:
            raise InvalidAddress(
                f"seed {i} is {len(seed)} bytes (max {MAX_SEED_LEN})"
            )
    return checked


def create_address(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey | None:
    """Program address for ``seeds`` (bump already appended) under ``program_id``.

    Returns None when the result lies on the ed25519 curve and is therefore
    not a valid program address.
    """
    try:
        return Pubkey.create_program_address(list(seeds), program_id)
    except ValueError:
        return None


def derive(seeds: Sequence[bytes], program_id: Pubkey) -> tuple[Pubkey, int]:
    """Find the program address and bump for ``seeds``.

    Bumps are tried from 255 down to 0; the first off-curve candidate wins.
    Pure and deterministic.
    """
    checked = _check_seeds(seeds)
    for bump in range(255, -1, -1):
        address = create_address([*checked, bytes([bump])], program_id)
        if address is not None:
            return address, bump
    raise DerivationExhausted(checked, program_id)


# ── Stake program addresses ────────────────────────────


def vault_authority_address(mint: Pubkey, program_id: Pubkey) -> tuple[Pubkey, int]:
    """PDA that owns the vault token account: ["vault", mint]."""
    return derive([SEED_VAULT, bytes(mint)], program_id)


def stake_record_address(
    owner: Pubkey, mint: Pubkey, program_id: Pubkey
) -> tuple[Pubkey, int]:
    """Staker record PDA: ["staker", owner, mint]."""
    return derive([SEED_STAKER, bytes(owner), bytes(mint)], program_id)


def associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Associated token account for (owner, mint): [owner, token_program, mint]."""
    address, _ = derive(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address
