"""
Credit commands - balance, purchases, approvals and sponsorship.
"""

from __future__ import annotations

import sys
from typing import Optional

import click

from ..errors import ReliquaryError
from ..tithe.ledger import Approval, ApproveOptions
from . import session


def _describe(approval: Approval) -> str:
    limit = "unlimited" if approval.limit is None else f"{approval.used}/{approval.limit}"
    expiry = "never" if approval.expiry is None else f"block {approval.expiry}"
    return f"{approval.counterparty}  limit={limit}  expires={expiry}"


@click.group()
def credit() -> None:
    """Credit balance and approvals."""


@credit.command()
@click.argument("address", required=False)
@click.option("--height", default="latest", help="Block height to read at")
@click.pass_context
def balance(ctx: click.Context, address: Optional[str], height: str) -> None:
    """Show the credit record of an account (default: own wallet)."""
    client = session.client_from_context(ctx)
    try:
        record = client.credit.balance(address, int(height) if height.isdigit() else height)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.echo(f"  Owner:     {record.owner}")
    click.echo(f"  Free:      {record.free}")
    click.echo(f"  Committed: {record.committed}")
    if record.sponsor:
        click.echo(f"  Sponsor:   {record.sponsor}")
    if record.approvals_from:
        click.echo("  Delegates allowed to spend this account's credit:")
        for approval in record.approvals_from.values():
            click.echo(f"    {_describe(approval)}")
    if record.approvals_to:
        click.echo("  Payers this account may spend from:")
        for approval in record.approvals_to.values():
            click.echo(f"    {_describe(approval)}")


@credit.command()
@click.argument("amount", type=int)
@click.option("--to", "recipient", default=None, help="Recipient (default: own wallet)")
@click.pass_context
def buy(ctx: click.Context, amount: int, recipient: Optional[str]) -> None:
    """Buy credit with AMOUNT wei."""
    click.echo("=== Reliquary Credit Buy ===")
    client = session.client_from_context(ctx)
    try:
        result = client.credit.buy(amount, recipient=recipient)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Bought credit for {amount} wei", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@credit.command()
@click.argument("delegate")
@click.option("--limit", type=int, default=None, help="Credit cap (omit for unlimited)")
@click.option("--gas-fee-limit", type=int, default=None, help="Gas fee cap (omit for unlimited)")
@click.option("--ttl", type=int, default=None, help="Lifetime in blocks (omit for no expiry)")
@click.pass_context
def approve(
    ctx: click.Context,
    delegate: str,
    limit: Optional[int],
    gas_fee_limit: Optional[int],
    ttl: Optional[int],
) -> None:
    """Allow DELEGATE to spend own credit."""
    click.echo("=== Reliquary Credit Approve ===")
    client = session.client_from_context(ctx)
    try:
        result = client.credit.approve(
            delegate, ApproveOptions(limit=limit, gas_fee_limit=gas_fee_limit, ttl=ttl)
        )
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Approved {delegate}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@credit.command()
@click.argument("delegate")
@click.pass_context
def revoke(ctx: click.Context, delegate: str) -> None:
    """Revoke DELEGATE's approval (no-op if none exists)."""
    click.echo("=== Reliquary Credit Revoke ===")
    client = session.client_from_context(ctx)
    try:
        result = client.credit.revoke(delegate)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Revoked {delegate}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@credit.command()
@click.argument("sponsor", required=False)
@click.option("--clear", is_flag=True, help="Remove the current sponsor")
@click.pass_context
def sponsor(ctx: click.Context, sponsor: Optional[str], clear: bool) -> None:
    """Set (or --clear) the account that pays for own usage."""
    if bool(sponsor) == clear:
        click.secho("ERROR: pass either SPONSOR or --clear", fg="red")
        sys.exit(1)

    client = session.client_from_context(ctx)
    try:
        result = client.credit.clear_sponsor() if clear else client.credit.set_sponsor(sponsor)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho("Sponsor cleared" if clear else f"Sponsor set to {sponsor}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@credit.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show network-wide credit statistics."""
    client = session.client_from_context(ctx)
    try:
        summary = client.credit.stats()
    except ReliquaryError as exc:
        session.fail(exc)
    finally:
        client.close()

    for name, value in summary.to_dict().items():
        click.echo(f"  {name}: {value}")
