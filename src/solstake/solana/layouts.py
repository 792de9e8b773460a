"""Borsh layouts and Anchor discriminators for the stake program."""

from __future__ import annotations

import base64
import hashlib

from borsh_construct import CStruct, U8, U64
from solders.pubkey import Pubkey

from solstake.models.accounts import StakeRecord, TokenAccount
from solstake.models.events import StakeEvent

U64_MAX = 2**64 - 1

STAKE_INSTRUCTION = "do_stake"
STAKER_ACCOUNT = "Staker"
STAKE_EVENT = "StakeEvent"

StakeArgsLayout = CStruct("amount" / U64)

StakerLayout = CStruct(
    "owner" / U8[32],
    "mint" / U8[32],
    "total" / U64,
)

StakeEventLayout = CStruct(
    "staker" / U8[32],
    "mint" / U8[32],
    "amount" / U64,
    "new_total" / U64,
)

# First 72 bytes of an SPL token account; the rest is ignored.
TokenAccountLayout = CStruct(
    "mint" / U8[32],
    "owner" / U8[32],
    "amount" / U64,
)

DISCRIMINATOR_LEN = 8
STAKER_ACCOUNT_SIZE = DISCRIMINATOR_LEN + 32 + 32 + 8  # discriminator + owner + mint + total
TOKEN_ACCOUNT_SIZE = 165
TOKEN_ACCOUNT_HEAD_SIZE = 32 + 32 + 8


def sighash(namespace: str, name: str) -> bytes:
    """Anchor discriminator: first 8 bytes of sha256("<namespace>:<name>")."""
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


def instruction_discriminator(name: str) -> bytes:
    return sighash("global", name)


def account_discriminator(name: str) -> bytes:
    return sighash("account", name)


def event_discriminator(name: str) -> bytes:
    return sighash("event", name)


STAKE_IX_DISCRIMINATOR = instruction_discriminator(STAKE_INSTRUCTION)
STAKER_DISCRIMINATOR = account_discriminator(STAKER_ACCOUNT)
STAKE_EVENT_DISCRIMINATOR = event_discriminator(STAKE_EVENT)


def encode_stake_args(amount: int) -> bytes:
    if not 0 < amount <= U64_MAX:
        raise ValueError(f"stake amount must be in 1..{U64_MAX}, got {amount}")
    return STAKE_IX_DISCRIMINATOR + StakeArgsLayout.build({"amount": amount})


def decode_stake_record(address: Pubkey, data: bytes) -> StakeRecord:
    """Decode a Staker account. Raises ValueError on a foreign account."""
    if len(data) < STAKER_ACCOUNT_SIZE:
        raise ValueError(
            f"staker account data too short ({len(data)} bytes, need {STAKER_ACCOUNT_SIZE})"
        )
    if data[:DISCRIMINATOR_LEN] != STAKER_DISCRIMINATOR:
        raise ValueError("account discriminator is not Staker")
    raw = StakerLayout.parse(data[DISCRIMINATOR_LEN:])
    return StakeRecord(
        address=address,
        owner=Pubkey(bytes(raw.owner)),
        mint=Pubkey(bytes(raw.mint)),
        total=raw.total,
    )


def encode_stake_record(owner: Pubkey, mint: Pubkey, total: int) -> bytes:
    return STAKER_DISCRIMINATOR + StakerLayout.build(
        {"owner": list(bytes(owner)), "mint": list(bytes(mint)), "total": total}
    )


def decode_stake_event(payload: bytes) -> StakeEvent | None:
    """Decode the body of a ``Program data:`` log line.

    Returns None when the discriminator is not StakeEvent.
    """
    if payload[:DISCRIMINATOR_LEN] != STAKE_EVENT_DISCRIMINATOR:
        return None
    raw = StakeEventLayout.parse(payload[DISCRIMINATOR_LEN:])
    return StakeEvent(
        staker=Pubkey(bytes(raw.staker)),
        mint=Pubkey(bytes(raw.mint)),
        amount=raw.amount,
        new_total=raw.new_total,
    )


def encode_stake_event(staker: Pubkey, mint: Pubkey, amount: int, new_total: int) -> str:
    """Base64 payload as it appears after ``Program data: ``."""
    body = StakeEventLayout.build(
        {
            "staker": list(bytes(staker)),
            "mint": list(bytes(mint)),
            "amount": amount,
            "new_total": new_total,
        }
    )
    return base64.b64encode(STAKE_EVENT_DISCRIMINATOR + body).decode("ascii")


def decode_token_account(address: Pubkey, data: bytes) -> TokenAccount:
    if len(data) < TOKEN_ACCOUNT_HEAD_SIZE:
        raise ValueError(f"token account data too short ({len(data)} bytes)")
    raw = TokenAccountLayout.parse(data)
    return TokenAccount(
        address=address,
        mint=Pubkey(bytes(raw.mint)),
        owner=Pubkey(bytes(raw.owner)),
        amount=raw.amount,
    )


def encode_token_account(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    head = TokenAccountLayout.build(
        {"mint": list(bytes(mint)), "owner": list(bytes(owner)), "amount": amount}
    )
    return head + bytes(TOKEN_ACCOUNT_SIZE - len(head))
