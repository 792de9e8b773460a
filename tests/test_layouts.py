"""Borsh layouts and Anchor discriminators."""

from __future__ import annotations

import base64
import hashlib

import pytest

from solstake.solana.layouts import (
    STAKE_EVENT_DISCRIMINATOR,
    STAKE_IX_DISCRIMINATOR,
    STAKER_ACCOUNT_SIZE,
    STAKER_DISCRIMINATOR,
    TOKEN_ACCOUNT_SIZE,
    U64_MAX,
    decode_stake_event,
    decode_stake_record,
    decode_token_account,
    encode_stake_args,
    encode_stake_event,
    encode_stake_record,
    encode_token_account,
)

from tests.factories import make_pubkey


def test_discriminators_follow_anchor_sighash():
    assert STAKE_IX_DISCRIMINATOR == hashlib.sha256(b"global:do_stake").digest()[:8]
    assert STAKER_DISCRIMINATOR == hashlib.sha256(b"account:Staker").digest()[:8]
    assert STAKE_EVENT_DISCRIMINATOR == hashlib.sha256(b"event:StakeEvent").digest()[:8]


def test_stake_args_are_discriminator_plus_le_u64():
    data = encode_stake_args(1_230_000)
    assert data[:8] == STAKE_IX_DISCRIMINATOR
    assert data[8:] == (1_230_000).to_bytes(8, "little")


@pytest.mark.parametrize("amount", [0, -1, U64_MAX + 1])
def test_stake_args_reject_out_of_range(amount):
    with pytest.raises(ValueError):
        encode_stake_args(amount)


def test_stake_record_layout():
    owner, mint = make_pubkey(), make_pubkey()
    data = encode_stake_record(owner, mint, 1200)
    assert len(data) == STAKER_ACCOUNT_SIZE == 80
    assert data[8:40] == bytes(owner)
    assert data[40:72] == bytes(mint)

    address = make_pubkey()
    record = decode_stake_record(address, data)
    assert (record.address, record.owner, record.mint, record.total) == (address, owner, mint, 1200)


def test_stake_record_rejects_foreign_account():
    data = bytes(8) + bytes(72)
    with pytest.raises(ValueError, match="discriminator"):
        decode_stake_record(make_pubkey(), data)
    with pytest.raises(ValueError, match="too short"):
        decode_stake_record(make_pubkey(), STAKER_DISCRIMINATOR + bytes(10))


def test_stake_event_payload():
    staker, mint = make_pubkey(), make_pubkey()
    payload = base64.b64decode(encode_stake_event(staker, mint, 700, 1200))
    event = decode_stake_event(payload)
    assert event.staker == staker
    assert event.mint == mint
    assert (event.amount, event.new_total) == (700, 1200)
    assert event.slot is None and event.signature is None


def test_stake_event_ignores_other_discriminators():
    assert decode_stake_event(bytes(8) + bytes(80)) is None


def test_token_account_layout():
    owner, mint = make_pubkey(), make_pubkey()
    data = encode_token_account(mint, owner, 55)
    assert len(data) == TOKEN_ACCOUNT_SIZE
    account = decode_token_account(make_pubkey(), data)
    assert (account.mint, account.owner, account.amount) == (mint, owner, 55)
