"""Configuration models for the staking client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_PROGRAM_ID = "F1JH85HfWhojoEyTPq5jJHqjoEt1hPaSR9QthvCvLs9r"


class Commitment(str, Enum):
    """Durability level requested for reads and confirmations."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def satisfied_by(self, status: str | None) -> bool:
        """True if a reported confirmationStatus meets this commitment."""
        if status is None:
            return False
        try:
            return Commitment(status).rank >= self.rank
        except ValueError:
            return False


_COMMITMENT_RANK = {
    Commitment.PROCESSED: 0,
    Commitment.CONFIRMED: 1,
    Commitment.FINALIZED: 2,
}


@dataclass
class ClientConfig:
    """Complete client configuration."""

    # Solana
    network: str = "devnet"
    rpc_url: str = "https://api.devnet.solana.com"
    program_id: str = DEFAULT_PROGRAM_ID
    token_mint: str = ""  # the token being staked
    wallet_path: str = "~/.config/solana/id.json"
    commitment: Commitment = Commitment.CONFIRMED

    # Client behaviour
    confirm_timeout: float = 60.0  # seconds
    confirm_poll_interval: float = 0.5
    event_wait: float = 3.0  # seconds to wait for StakeEvent after reconcile
    event_poll_interval: float = 1.0
    rpc_timeout: float = 30.0
    rpc_retries: int = 3
    retry_backoff: float = 0.5  # seconds, doubled per attempt
    reconcile_attempts: int = 5
    batch_account_creation: bool = True
    log_level: str = "info"

    # Storage
    db_path: str = "~/.solstake/journal.db"
