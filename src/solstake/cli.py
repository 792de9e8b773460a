"""CLI entry point for the solstake client."""

from __future__ import annotations

import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation

import click

from solstake.client import StakeClient
from solstake.config import load_config
from solstake.errors import StakeClientError
from solstake.models.config import ClientConfig
from solstake.solana.keypair import load_keypair
from solstake.solana.layouts import U64_MAX
from solstake.solana.pda import to_pubkey
from solstake.solana.reconciler import StakeStateReconciler
from solstake.solana.rpc import HttpLedgerRpc
from solstake.storage.sqlite import STATUS_AMBIGUOUS, SQLiteOperationStore


def to_base_units(amount: str, decimals: int) -> int:
    """Scale a token quantity to base units: ("1.23", 6) -> 1230000."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {amount!r}", param_hint="AMOUNT")
    if not value.is_finite():
        raise click.BadParameter(f"not a finite number: {amount!r}", param_hint="AMOUNT")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise click.BadParameter(
            f"{amount} has more than {decimals} decimal places", param_hint="AMOUNT",
        )
    return int(scaled)


def _log_level(cfg: ClientConfig, verbose: bool) -> int:
    """-v wins; otherwise the configured log_level, falling back to INFO."""
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(cfg.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _require_mint(cfg: ClientConfig) -> None:
    """Exit with error if no token mint is configured."""
    if not cfg.token_mint:
        click.echo("Error: No token mint configured.", err=True)
        click.echo("Set SOLSTAKE_TOKEN_MINT (or TOKEN_MINT) or token_mint in config.", err=True)
        sys.exit(1)


def _load_wallet(cfg: ClientConfig):
    try:
        return load_keypair(cfg.wallet_path)
    except (OSError, ValueError) as exc:
        click.echo(f"Error: Could not load wallet {cfg.wallet_path}: {exc}", err=True)
        click.echo("Set SOLSTAKE_WALLET (or ANCHOR_WALLET) or wallet_path in config.", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """solstake - Stake tokens into the stake program and verify the result."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=_log_level(load_config(config_path), verbose),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show client configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"Network:     {cfg.network}")
    click.echo(f"RPC URL:     {cfg.rpc_url}")
    click.echo(f"Commitment:  {cfg.commitment.value}")
    click.echo(f"Program:     {cfg.program_id}")
    click.echo(f"Token mint:  {cfg.token_mint or '(not set)'}")
    click.echo(f"Wallet:      {cfg.wallet_path}")
    click.echo(f"DB path:     {cfg.db_path}")
    click.echo(f"Batch ATAs:  {cfg.batch_account_creation}")


@cli.command("list")
@click.pass_context
def list_stakes(ctx: click.Context) -> None:
    """List every stake record held by the program."""
    cfg = load_config(ctx.obj["config_path"])

    async def _list():
        rpc = HttpLedgerRpc(cfg.rpc_url, cfg.commitment, timeout=cfg.rpc_timeout)
        try:
            reconciler = StakeStateReconciler(rpc, to_pubkey(cfg.program_id))
            records = await reconciler.list_records()
        finally:
            await rpc.close()

        if not records:
            click.echo("No stake records.")
            return
        for r in records:
            click.echo(f"{r.owner} {r.total}")

    try:
        asyncio.run(_list())
    except StakeClientError as exc:
        click.echo(f"List failed: {exc}", err=True)
        sys.exit(1)


# ── Staking ────────────────────────────────────────────


@cli.command()
@click.argument("amount")
@click.option("--ui", is_flag=True, help="AMOUNT is a token quantity, scaled by --decimals")
@click.option("--decimals", type=int, default=6, show_default=True, help="Mint decimals for --ui")
@click.option("--no-journal", is_flag=True, help="Do not record the attempt in the local journal")
@click.pass_context
def stake(ctx: click.Context, amount: str, ui: bool, decimals: int, no_journal: bool) -> None:
    """Stake AMOUNT (base units unless --ui) and verify the stake record."""
    cfg = load_config(ctx.obj["config_path"])
    _require_mint(cfg)

    if ui:
        base_units = to_base_units(amount, decimals)
    else:
        try:
            base_units = int(amount)
        except ValueError:
            raise click.BadParameter(f"not an integer: {amount!r} (use --ui for decimals)",
                                     param_hint="AMOUNT")
    if not 0 < base_units <= U64_MAX:
        raise click.BadParameter(f"must be between 1 and {U64_MAX} base units", param_hint="AMOUNT")

    keypair = _load_wallet(cfg)

    async def _stake():
        store = None
        if not no_journal:
            store = SQLiteOperationStore(cfg.db_path)
            await store.initialize()
        client = StakeClient(cfg, keypair, store=store)
        try:
            click.echo(f"Network:     {cfg.network} ({cfg.rpc_url})")
            click.echo(f"User:        {client.user}")
            click.echo(f"Mint:        {client.mint}")
            click.echo(f"Amount:      {base_units}")

            outcome = await client.stake(base_units)

            click.echo(f"Signature:   {outcome.signature}")
            for address in outcome.created_accounts:
                click.echo(f"Created ATA: {address}")
            if outcome.event is not None:
                ev = outcome.event
                click.echo(
                    f"Event:       staker={ev.staker} mint={ev.mint} "
                    f"amount={ev.amount} new_total={ev.new_total}"
                )
            else:
                click.echo(f"Event:       no event observed within {cfg.event_wait:g}s")
            record = outcome.record
            click.echo(f"Stake record {record.address}")
            click.echo(f"  Owner:     {record.owner}")
            click.echo(f"  Mint:      {record.mint}")
            click.echo(f"  Total:     {record.total} (was {outcome.start_total})")
        finally:
            await client.close()
            if store is not None:
                await store.close()

    try:
        asyncio.run(_stake())
    except StakeClientError as exc:
        click.echo(f"\nStake failed: {exc}", err=True)
        sys.exit(1)


# ── Journal ────────────────────────────────────────────


@cli.command()
@click.option("--status", "filter_status", default=None,
              help="Filter by status (pending, submitted, reconciled, ambiguous, rejected, stale, mismatch, failed)")
@click.option("-n", "--limit", type=int, default=20, help="Number of recent operations to show")
@click.pass_context
def history(ctx: click.Context, filter_status: str | None, limit: int) -> None:
    """Show journaled stake attempts."""
    cfg = load_config(ctx.obj["config_path"])

    async def _history():
        store = SQLiteOperationStore(cfg.db_path)
        await store.initialize()
        try:
            ops = await store.get_operations(filter_status, limit)
            if not ops:
                click.echo("No operations recorded.")
                return

            for op in ops:
                sig = f"{op.signature[:16]}..." if op.signature else "-"
                observed = op.observed_total if op.observed_total is not None else "-"
                click.echo(
                    f"  #{op.id} [{op.status:10s}] amount={op.amount} "
                    f"expected={op.expected_total} observed={observed} tx={sig} at={op.created_at}"
                )
                if op.error:
                    click.echo(f"      error: {op.error}")
        finally:
            await store.close()

    asyncio.run(_history())


@cli.command()
@click.pass_context
def recheck(ctx: click.Context) -> None:
    """Re-query the chain for operations whose outcome was ambiguous."""
    cfg = load_config(ctx.obj["config_path"])
    _require_mint(cfg)
    keypair = _load_wallet(cfg)

    async def _recheck():
        store = SQLiteOperationStore(cfg.db_path)
        await store.initialize()
        client = StakeClient(cfg, keypair, store=store)
        try:
            ops = await store.get_operations(STATUS_AMBIGUOUS, limit=1000)
            if not ops:
                click.echo("No ambiguous operations.")
                return
            for op in ops:
                new_status = await client.recheck(op)
                click.echo(f"  #{op.id} {op.status} -> {new_status}")
        finally:
            await client.close()
            await store.close()

    try:
        asyncio.run(_recheck())
    except StakeClientError as exc:
        click.echo(f"Recheck failed: {exc}", err=True)
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
