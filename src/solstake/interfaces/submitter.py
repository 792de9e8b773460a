"""TransactionSubmitter protocol - signs, sends and confirms transactions."""

from __future__ import annotations

from typing import Protocol, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.signature import Signature


class TransactionSubmitter(Protocol):
    """Submits instructions and waits for the configured commitment."""

    async def submit(
        self, instructions: Sequence[Instruction], signers: Sequence[Keypair]
    ) -> Signature:
        """Build, sign, send and confirm. Raises on timeout or rejection."""
        ...
