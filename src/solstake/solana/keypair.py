"""Wallet key material loading (Solana CLI JSON byte-array format)."""

from __future__ import annotations

import json
from pathlib import Path

from solders.keypair import Keypair


def load_keypair(path: str | Path) -> Keypair:
    """Load a keypair from a ``solana-keygen`` JSON file (64 ints)."""
    p = Path(path).expanduser()
    with open(p) as f:
        raw = json.load(f)
    if not isinstance(raw, list) or len(raw) != 64:
        raise ValueError(f"{p} is not a 64-byte keypair array")
    return Keypair.from_bytes(bytes(raw))
