"""Shared fixtures for solstake tests."""

from __future__ import annotations

import pytest
from pytest_metadata.plugin import metadata_key
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from solstake.client import StakeClient
from solstake.models.config import DEFAULT_PROGRAM_ID, ClientConfig
from solstake.solana.listener import ProgramEventListener
from solstake.solana.reconciler import EventInbox, StakeStateReconciler
from solstake.solana.resolver import AssociatedAccountResolver
from solstake.solana.submitter import SolanaTransactionSubmitter
from solstake.storage.sqlite import SQLiteOperationStore

from tests.mocks import FakeLedger

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)
TEST_MINT = Pubkey.from_string("4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU")


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add program info to the report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Ledger"] = "in-memory FakeLedger"
    meta["Stake Program"] = str(PROGRAM_ID)
    meta["Token Mint"] = str(TEST_MINT)


def make_test_config(**overrides) -> ClientConfig:
    """Build a ClientConfig with intervals short enough for tests."""
    defaults = dict(
        network="localnet",
        rpc_url="http://127.0.0.1:8899",
        program_id=str(PROGRAM_ID),
        token_mint=str(TEST_MINT),
        wallet_path="/nonexistent/id.json",
        confirm_timeout=0.5,
        confirm_poll_interval=0.01,
        event_wait=1.0,
        event_poll_interval=0.01,
        rpc_retries=3,
        retry_backoff=0.01,
        reconcile_attempts=5,
        db_path=":memory:",
    )
    defaults.update(overrides)
    return ClientConfig(**defaults)


@pytest.fixture
def test_config():
    """Default ClientConfig for tests."""
    return make_test_config()


@pytest.fixture
def user():
    return Keypair()


@pytest.fixture
def mint():
    return TEST_MINT


@pytest.fixture
def ledger():
    return FakeLedger(PROGRAM_ID)


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteOperationStore."""
    s = SQLiteOperationStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def submitter(ledger):
    return SolanaTransactionSubmitter(
        ledger, PROGRAM_ID, confirm_timeout=0.5, poll_interval=0.01,
    )


@pytest.fixture
def resolver(ledger, user):
    return AssociatedAccountResolver(ledger, payer=user.pubkey(), retries=3, backoff=0.01)


@pytest.fixture
async def listener(ledger):
    lst = ProgramEventListener(ledger, PROGRAM_ID, poll_interval=0.01)
    yield lst
    await lst.close()


@pytest.fixture
def reconciler(ledger):
    return StakeStateReconciler(ledger, PROGRAM_ID, max_attempts=5, backoff=0.01)


@pytest.fixture
def inbox():
    return EventInbox()


@pytest.fixture
async def client(test_config, user, ledger, store):
    """StakeClient wired to the fake ledger with a journal attached."""
    c = StakeClient(test_config, user, rpc=ledger, store=store)
    yield c
    await c.close()
