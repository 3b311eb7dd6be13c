"""
Reliquary CLI

Command-line interface for the Reliquary object-storage client.

Identity = ECDSA/secp256k1 wallet stored in ~/.reliquary/.env.  Every
mutating command signs a transaction with it; object content is streamed
to the object API and committed on chain by hash.

Commands:
  account   - Wallet setup, account info, transfers, transaction status
  bucket    - Create buckets, add / get / query / delete objects
  credit    - Balance, buy, approve, revoke, sponsor
  whoami    - Show current wallet address
  info      - Show configuration and wallet status
"""

from __future__ import annotations

import sys
from typing import Optional

import click

from .config import DEFAULT_NETWORK, ConfigError, NetworkConfig
from .sigil.eth import load_authority


# ============ Constants ============

VERSION = "0.3.0"


# ============ Banner ============


def _print_banner(compact: bool = False) -> None:
    """Print the Reliquary CLI banner.

    Args:
        compact: If True, print a single-line banner (for subcommands).
    """
    if compact:
        click.echo(
            click.style("  ◆ ", fg="cyan")
            + click.style("R E L I Q U A R Y", fg="bright_white", bold=True)
            + click.style(f"  v{VERSION}", dim=True)
        )
        click.echo()
        return

    border = click.style("  ◆ ═══════════════════════════════════════ ◆", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()
    click.echo(
        click.style("        R E L I Q U A R Y", fg="bright_white", bold=True)
        + click.style(f"      v{VERSION}", dim=True)
    )
    click.secho("        ─── On-chain Object Storage ───", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="reliquary")
@click.option(
    "--network",
    envvar="RELIQUARY_NETWORK",
    default=None,
    help=f"Network preset or name (default: {DEFAULT_NETWORK})",
)
@click.pass_context
def cli(ctx: click.Context, network: Optional[str]) -> None:
    """Reliquary — On-chain Object Storage."""
    ctx.ensure_object(dict)
    ctx.obj["network"] = network
    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Top-level Commands ============

from .rites.account import account
from .rites.bucket import bucket
from .rites.credit import credit

cli.add_command(account)
cli.add_command(bucket)
cli.add_command(credit)


# ============ Identity ============


@cli.command()
def whoami() -> None:
    """Show current wallet identity."""
    try:
        authority = load_authority()
        click.echo(f"Address: {authority.address}")
    except (ValueError, FileNotFoundError):
        click.echo("No wallet found.")
        click.echo("Run 'reliquary account init' to create one.")
        sys.exit(1)


# ============ Info ============


@cli.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Show configuration and wallet status."""
    _print_banner()

    # ── Wallet ──
    click.secho("  Wallet ─────────────────────────────────", fg="cyan")
    click.echo()

    try:
        authority = load_authority()
        click.echo(
            click.style("  Address:     ", dim=True)
            + click.style(authority.address, fg="bright_white")
        )
    except (ValueError, FileNotFoundError):
        click.echo(
            click.style("  Address:     ", dim=True)
            + click.style("not initialized", fg="yellow")
            + click.style("  (run: reliquary account init)", dim=True)
        )

    click.echo()

    # ── Network ──
    click.secho("  Network ────────────────────────────────", fg="cyan")
    click.echo()

    try:
        config = NetworkConfig.from_env((ctx.obj or {}).get("network"))
    except ConfigError as exc:
        click.echo(
            click.style("  Config:      ", dim=True)
            + click.style(f"invalid ({exc})", fg="yellow")
        )
    else:
        rows = [
            ("Network:     ", config.name),
            ("RPC:         ", config.rpc_url),
            ("Objects:     ", config.objects_url),
            ("Chain ID:    ", str(config.chain_id)),
            ("Buckets:     ", config.bucket_manager),
            ("Credit:      ", config.credit_manager),
        ]
        for label, value in rows:
            click.echo(click.style(f"  {label}", dim=True) + click.style(value, fg="bright_white"))

    click.echo()

    # ── Commands ──
    click.secho("  Commands ───────────────────────────────", fg="cyan")
    click.echo()

    commands = [
        ("account", "Wallet, account info and transfers"),
        ("bucket ", "Buckets and objects"),
        ("credit ", "Credit balance and approvals"),
        ("whoami ", "Show current wallet address"),
    ]
    for cmd, desc in commands:
        click.echo(
            click.style("  ", dim=True)
            + click.style(cmd, fg="bright_white", bold=True)
            + click.style("  ◇  ", fg="cyan")
            + click.style(desc, dim=True)
        )

    click.echo()


# ============ Entry Points ============


def main() -> None:
    """Reliquary CLI entry point."""
    # Ensure UTF-8 output on Windows (for Unicode box-drawing / symbols)
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass  # Fallback: old Python or non-tty
    cli()


if __name__ == "__main__":
    main()
