"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from solstake.models.config import ClientConfig, Commitment
from solstake.solana.rpc import NETWORK_RPC_URLS


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "SOLSTAKE_",
) -> ClientConfig:
    """Load client configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (SOLSTAKE_TOKEN_MINT, ANCHOR_WALLET, etc.)
        2. TOML config file
        3. Defaults from ClientConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = ClientConfig()

    # ── Solana section ─────────────────────────────────────
    solana = raw.get("solana", {})
    if v := solana.get("network"):
        cfg.network = str(v)
        cfg.rpc_url = NETWORK_RPC_URLS.get(cfg.network, cfg.rpc_url)
    if v := solana.get("rpc_url"):
        cfg.rpc_url = str(v)
    if v := solana.get("program_id"):
        cfg.program_id = str(v)
    if v := solana.get("token_mint"):
        cfg.token_mint = str(v)
    if v := solana.get("wallet_path"):
        cfg.wallet_path = str(v)
    if v := solana.get("commitment"):
        cfg.commitment = Commitment(v)

    # ── Client section ─────────────────────────────────────
    client = raw.get("client", {})
    if v := client.get("confirm_timeout"):
        cfg.confirm_timeout = float(v)
    if v := client.get("confirm_poll_interval"):
        cfg.confirm_poll_interval = float(v)
    if v := client.get("event_wait"):
        cfg.event_wait = float(v)
    if v := client.get("event_poll_interval"):
        cfg.event_poll_interval = float(v)
    if v := client.get("rpc_timeout"):
        cfg.rpc_timeout = float(v)
    if v := client.get("rpc_retries"):
        cfg.rpc_retries = int(v)
    if v := client.get("retry_backoff"):
        cfg.retry_backoff = float(v)
    if v := client.get("reconcile_attempts"):
        cfg.reconcile_attempts = int(v)
    if "batch_account_creation" in client:
        cfg.batch_account_creation = bool(client["batch_account_creation"])
    if v := client.get("log_level"):
        cfg.log_level = str(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    # Anchor's own variable names are honoured as fallbacks.
    if net := os.environ.get(f"{env_prefix}NETWORK"):
        cfg.network = net
        cfg.rpc_url = NETWORK_RPC_URLS.get(net, cfg.rpc_url)
    if rpc := os.environ.get(f"{env_prefix}RPC_URL") or os.environ.get("ANCHOR_PROVIDER_URL"):
        cfg.rpc_url = rpc
    if mint := os.environ.get(f"{env_prefix}TOKEN_MINT") or os.environ.get("TOKEN_MINT"):
        cfg.token_mint = mint
    if wallet := os.environ.get(f"{env_prefix}WALLET") or os.environ.get("ANCHOR_WALLET"):
        cfg.wallet_path = wallet
    if pid := os.environ.get(f"{env_prefix}PROGRAM_ID"):
        cfg.program_id = pid
    if commitment := os.environ.get(f"{env_prefix}COMMITMENT"):
        cfg.commitment = Commitment(commitment)
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level

    # Expand ~ in paths
    cfg.wallet_path = str(Path(cfg.wallet_path).expanduser())
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
