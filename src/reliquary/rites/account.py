"""
Account commands - wallet setup, account info, transfers and status.

``init`` is the single entry point for identity initialisation: it creates
the ECDSA wallet in ~/.reliquary/.env unless one already exists.
"""

from __future__ import annotations

from typing import Optional

import click

from ..errors import ReliquaryError
from ..sigil.eth import generate_eoa, load_authority, save_private_key
from . import session


@click.group()
def account() -> None:
    """Wallet, account info and transfers."""


@account.command()
@click.option("--force", is_flag=True, help="Replace an existing wallet")
def init(force: bool) -> None:
    """Create a new wallet."""
    click.echo("=== Reliquary Init ===")
    click.echo("")

    try:
        existing = load_authority()
    except ValueError:
        existing = None

    if existing is not None and not force:
        click.echo(f"Wallet already exists: {existing.address}")
        click.echo("Use --force to replace it.")
        return

    private_key, address = generate_eoa()
    path = save_private_key(private_key)
    click.secho("Wallet created.", fg="green")
    click.echo(f"  Address: {address}")
    click.echo(f"  Saved:   {path}")


@account.command()
@click.argument("address", required=False)
@click.pass_context
def info(ctx: click.Context, address: Optional[str]) -> None:
    """Show sequence and balance of an account (default: own wallet)."""
    client = session.client_from_context(ctx)
    try:
        acct = client.account_info(address)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.echo(f"  Address:    {acct.address}")
    if acct.public_key:
        click.echo(f"  Public key: {acct.public_key}")
    click.echo(f"  Sequence:   {acct.sequence}")
    click.echo(f"  Balance:    {acct.balance} wei")


@account.command()
@click.argument("to")
@click.argument("amount", type=int)
@click.pass_context
def transfer(ctx: click.Context, to: str, amount: int) -> None:
    """Send AMOUNT wei to TO."""
    client = session.client_from_context(ctx)
    try:
        result = client.transfer(to, amount)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Transferred {amount} wei to {to}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@account.command()
@click.argument("tx_hash")
@click.pass_context
def status(ctx: click.Context, tx_hash: str) -> None:
    """Look up a transaction by hash (use after a timed-out wait)."""
    client = session.client_from_context(ctx)
    try:
        result = client.provider.transaction_status(tx_hash)
    except ReliquaryError as exc:
        session.fail(exc)
    finally:
        client.close()

    click.echo(f"  Tx:       {result.tx_hash}")
    click.echo(f"  Status:   {result.status.value}")
    if result.block_number is not None:
        click.echo(f"  Block:    {result.block_number}")
        click.echo(f"  Gas used: {result.gas_used}")
