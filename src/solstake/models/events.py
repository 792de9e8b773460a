"""Program event models decoded from transaction logs."""

from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey
from solders.signature import Signature


@dataclass(frozen=True)
class StakeEvent:
    """Emitted once per successful do_stake instruction (StakeEvent).

    Delivery is at-least-once and unordered relative to account reads.
    """

    staker: Pubkey
    mint: Pubkey
    amount: int  # base units staked by this call
    new_total: int  # stake record total after this call
    slot: int | None = None
    signature: Signature | None = None

    @property
    def key(self) -> tuple[Pubkey, Pubkey]:
        return (self.staker, self.mint)
