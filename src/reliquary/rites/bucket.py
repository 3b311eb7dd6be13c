"""
Bucket commands - create buckets and manage their objects.

Object content is streamed from / to files (or stdout); only the content
hash and size go on chain.
"""

from __future__ import annotations

import json
from typing import Optional

import click

from ..errors import ReliquaryError
from ..retry import Backoff
from ..utils import parse_metadata_pairs
from ..vault.bucket import AddOptions, GetOptions, QueryOptions
from . import session


def _height(value: str):
    return int(value) if value.isdigit() else value


@click.group()
def bucket() -> None:
    """Buckets and objects."""


@bucket.command()
@click.option("--owner", default=None, help="Bucket owner (default: own wallet)")
@click.option("--meta", "-m", multiple=True, help="Metadata key=value (repeatable)")
@click.pass_context
def create(ctx: click.Context, owner: Optional[str], meta: tuple[str, ...]) -> None:
    """Create a new bucket."""
    click.echo("=== Reliquary Bucket Create ===")
    client = session.client_from_context(ctx)
    try:
        created, result = client.buckets.create(owner=owner, metadata=parse_metadata_pairs(list(meta)))
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Bucket created: {created.address}", fg="green")
    click.echo(f"  Owner: {created.owner}")
    click.echo(f"  Tx:    {result.tx_hash}")


@bucket.command("list")
@click.option("--owner", default=None, help="Bucket owner (default: own wallet)")
@click.pass_context
def list_buckets(ctx: click.Context, owner: Optional[str]) -> None:
    """List buckets owned by an account."""
    client = session.client_from_context(ctx)
    try:
        buckets = client.buckets.list(owner=owner)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    if not buckets:
        click.echo("No buckets.")
        return
    for b in buckets:
        meta = ", ".join(f"{k}={v}" for k, v in sorted(b.metadata.items()))
        click.echo(f"  {b.address}" + (f"  [{meta}]" if meta else ""))


@bucket.command()
@click.argument("address")
@click.argument("key")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--overwrite", is_flag=True, help="Replace an existing object")
@click.option("--meta", "-m", multiple=True, help="Metadata key=value (repeatable)")
@click.option("--ttl", type=int, default=0, help="Retention in blocks (0 = network default)")
@click.option("--sponsor", default=None, help="Account whose credit pays for the object")
@click.pass_context
def add(
    ctx: click.Context,
    address: str,
    key: str,
    path: str,
    overwrite: bool,
    meta: tuple[str, ...],
    ttl: int,
    sponsor: Optional[str],
) -> None:
    """Upload PATH as KEY into bucket ADDRESS."""
    click.echo("=== Reliquary Bucket Add ===")
    client = session.client_from_context(ctx)
    try:
        options = AddOptions(
            overwrite=overwrite,
            metadata=parse_metadata_pairs(list(meta)),
            ttl=ttl,
            sponsor=sponsor,
        )
        result = client.buckets.add(address, key, path, options)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Added {key}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")


@bucket.command()
@click.argument("address")
@click.argument("key")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Output file (default: stdout)")
@click.option("--range", "byte_range", default=None, help="Inclusive byte range start-end")
@click.option("--height", default="latest", help="Block height to read at")
@click.option("--wait", is_flag=True, help="Poll until the object is resolved")
@click.pass_context
def get(
    ctx: click.Context,
    address: str,
    key: str,
    output: Optional[str],
    byte_range: Optional[str],
    height: str,
    wait: bool,
) -> None:
    """Download object KEY from bucket ADDRESS."""
    client = session.client_from_context(ctx)
    try:
        if wait:
            client.buckets.wait_until_available(address, key, Backoff(timeout=120.0))
        options = GetOptions(range=byte_range, height=_height(height))
        destination = output or click.get_binary_stream("stdout")
        written = client.buckets.get(address, key, destination, options)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    if output:
        click.echo(f"Wrote {written} bytes to {output}", err=True)


@bucket.command()
@click.argument("address")
@click.option("--prefix", default="", help="Key prefix")
@click.option("--delimiter", default="/", help="Grouping delimiter ('' disables)")
@click.option("--limit", type=int, default=0, help="Page size (0 = no limit)")
@click.option("--cursor", default="", help="Resume from a previous next cursor")
@click.option("--json", "as_json", is_flag=True, help="Print the raw page as JSON")
@click.pass_context
def query(
    ctx: click.Context,
    address: str,
    prefix: str,
    delimiter: str,
    limit: int,
    cursor: str,
    as_json: bool,
) -> None:
    """List objects in bucket ADDRESS."""
    client = session.client_from_context(ctx)
    try:
        page = client.buckets.query(
            address, QueryOptions(prefix=prefix, delimiter=delimiter, cursor=cursor, limit=limit)
        )
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    if as_json:
        click.echo(json.dumps(page.to_dict(), indent=2))
        return

    for p in page.common_prefixes:
        click.echo(f"  {p}")
    for obj in page.objects:
        click.echo(f"  {obj.key}  {obj.size} bytes  {obj.blob_hash}")
    if not page.objects and not page.common_prefixes:
        click.echo("No objects.")
    if page.next_cursor:
        click.echo(f"Next cursor: {page.next_cursor}")


@bucket.command()
@click.argument("address")
@click.argument("key")
@click.pass_context
def delete(ctx: click.Context, address: str, key: str) -> None:
    """Delete object KEY from bucket ADDRESS."""
    client = session.client_from_context(ctx)
    try:
        result = client.buckets.delete(address, key)
    except (ReliquaryError, ValueError) as exc:
        session.fail(exc)
    finally:
        client.close()

    click.secho(f"Deleted {key}", fg="green")
    click.echo(f"  Tx: {result.tx_hash}")
