"""
Shared plumbing for CLI commands: client construction and error exits.
"""

from __future__ import annotations

import sys
from typing import NoReturn, Optional

import click

from ..client import Client
from ..config import NetworkConfig
from ..errors import ReliquaryError
from ..sigil.eth import load_authority


def open_client(network: Optional[str] = None) -> Client:
    """Build a client for ``network`` signing with the configured wallet."""
    config = NetworkConfig.from_env(network)
    return Client(config, load_authority())


def client_from_context(ctx: click.Context) -> Client:
    network = (ctx.obj or {}).get("network")
    try:
        return open_client(network)
    except (ValueError, FileNotFoundError) as exc:
        fail(exc)


def fail(exc: BaseException) -> NoReturn:
    """Print an error and exit with the error's exit code."""
    click.secho(f"ERROR: {exc}", fg="red")
    tx_hash = getattr(exc, "tx_hash", None)
    if tx_hash:
        click.echo(f"  Tx: {tx_hash}")
    sys.exit(exc.exit_code if isinstance(exc, ReliquaryError) else 1)
