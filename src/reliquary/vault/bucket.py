"""
Bucket Machine - content-addressed object store scoped to an on-chain address.

Two-tier consistency: a mutation is committed on chain first, the content is
materialized off chain afterwards.  Reads distinguish "absent" (KeyNotFound)
from "committed but not yet resolved" (NotYetAvailable).

Existence pre-checks for ``add`` (without overwrite) and ``delete`` are
plain reads followed by a transaction; a concurrent writer can slip in
between.  The contract re-checks, so the race surfaces as a revert.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Iterator, Optional, Union

from ..codex.models import GasParams, TransactionResult, TxKind
from ..conduit.abi import BUCKET_MANAGER_ABI, decode_event, encode_call
from ..conduit.rpc import Height
from ..conduit.tx import TransactionPipeline
from ..errors import KeyExistsError, KeyNotFoundError, NotYetAvailableError, ReliquaryError
from ..retry import Backoff, retry_call
from ..utils import (
    ZERO_ADDRESS,
    bytes_to_hex,
    format_metadata,
    hex_to_bytes,
    parse_range,
    to_checksum_address,
)
from .store import Destination, ObjectStore, Source

if TYPE_CHECKING:
    from ..tithe.ledger import CreditLedger

logger = logging.getLogger(__name__)

Key = Union[str, bytes]


class ObjectStatus(IntEnum):
    ABSENT = 0
    PENDING = 1
    RESOLVED = 2


@dataclass(frozen=True)
class Bucket:
    address: str
    owner: str
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"address": self.address, "owner": self.owner, "metadata": dict(self.metadata)}


@dataclass(frozen=True)
class ObjectState:
    """On-chain record of an object."""
    key: str
    blob_hash: str
    size: int
    expiry: int
    metadata: dict[str, str]
    status: ObjectStatus = ObjectStatus.RESOLVED

    @property
    def resolved(self) -> bool:
        return self.status is ObjectStatus.RESOLVED

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "hash": self.blob_hash,
            "size": self.size,
            "expiry": self.expiry,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class AddOptions:
    """
    Options for adding an object.

    Attributes:
        overwrite: Replace an existing object. Without it an existing key
            fails with KeyExistsError and nothing is uploaded or submitted.
        metadata: Flat string mapping stored with the object
        ttl: Retention in blocks (0 means the network default)
        sponsor: Account whose credit pays for the object (None means the signer)
        gas: Gas parameters (defaults to auto-estimate)
    """
    overwrite: bool = False
    metadata: dict[str, str] = field(default_factory=dict)
    ttl: int = 0
    sponsor: Optional[str] = None
    gas: GasParams = field(default_factory=GasParams)


@dataclass(frozen=True)
class GetOptions:
    """
    Attributes:
        range: Inclusive, 0-indexed byte range "start-end" or "start-"
        height: Block height for the on-chain lookup ("latest" or a number)
    """
    range: Optional[str] = None
    height: Height = "latest"


@dataclass(frozen=True)
class QueryOptions:
    """
    Attributes:
        prefix: Only keys starting with this prefix
        delimiter: Group keys past the prefix up to this delimiter ("" disables)
        cursor: Resume from this key (the previous page's next_cursor)
        limit: Page size (0 means no limit)
        height: Block height for the lookup
    """
    prefix: str = ""
    delimiter: str = "/"
    cursor: str = ""
    limit: int = 0
    height: Height = "latest"


@dataclass(frozen=True)
class QueryResult:
    objects: list[ObjectState]
    common_prefixes: list[str]
    next_cursor: Optional[str]

    def to_dict(self) -> dict:
        return {
            "objects": [o.to_dict() for o in self.objects],
            "common_prefixes": list(self.common_prefixes),
            "next_cursor": self.next_cursor,
        }


def _normalize_key(key: Key) -> str:
    if isinstance(key, bytes):
        try:
            key = key.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("Object keys must be valid UTF-8") from exc
    if not key:
        raise ValueError("Object key must not be empty")
    return key


def _bucket_address(bucket: Union[Bucket, str]) -> str:
    return to_checksum_address(bucket.address if isinstance(bucket, Bucket) else bucket)


def _metadata_dict(pairs) -> dict[str, str]:
    return {str(k): str(v) for k, v in pairs}


class BucketMachine:
    """
    Bucket operations routed through the transaction pipeline.

    Args:
        pipeline: Transaction pipeline of the signing account
        store: Object API client
        manager_address: Bucket manager contract address
        ledger: Credit ledger used to pre-check sponsor allowances
    """

    def __init__(
        self,
        pipeline: TransactionPipeline,
        store: ObjectStore,
        manager_address: str,
        ledger: Optional["CreditLedger"] = None,
    ) -> None:
        self.pipeline = pipeline
        self.provider = pipeline.provider
        self.store = store
        self.manager = to_checksum_address(manager_address)
        self.ledger = ledger

    def _read(self, function_name: str, args: list, height: Height = "latest"):
        return self.provider.read_contract(self.manager, BUCKET_MANAGER_ABI, function_name, args, height=height)

    def _send(self, kind: TxKind, function_name: str, args: list, gas: Optional[GasParams]) -> TransactionResult:
        data = encode_call(BUCKET_MANAGER_ABI, function_name, args)
        intent = self.pipeline.intent(kind, self.manager, data, gas=gas)
        return self.pipeline.send(intent)

    # ============ Buckets ============

    def create(
        self,
        owner: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        gas: Optional[GasParams] = None,
    ) -> tuple[Bucket, TransactionResult]:
        """
        Create a bucket owned by ``owner`` (default: the signer).

        Returns:
            Tuple of (Bucket, TransactionResult)
        """
        owner = to_checksum_address(owner or self.pipeline.address)
        pairs = format_metadata(metadata)
        result = self._send(TxKind.CREATE_BUCKET, "createBucket", [owner, pairs], gas)

        events = decode_event(BUCKET_MANAGER_ABI, "BucketCreated", result.logs, address=self.manager)
        if not events:
            raise ReliquaryError("Bucket creation committed without a BucketCreated event", tx_hash=result.tx_hash)
        bucket = Bucket(address=events[0]["bucket"], owner=owner, metadata=dict(pairs))
        logger.info("Created bucket %s for %s", bucket.address, owner)
        return bucket, result

    def list(self, owner: Optional[str] = None, height: Height = "latest") -> list[Bucket]:
        """List buckets owned by ``owner`` (default: the signer)."""
        owner = to_checksum_address(owner or self.pipeline.address)
        rows = self._read("listBuckets", [owner], height) or []
        return [
            Bucket(address=to_checksum_address(addr), owner=owner, metadata=_metadata_dict(meta))
            for addr, meta in rows
        ]

    # ============ Objects ============

    def head(self, bucket: Union[Bucket, str], key: Key, height: Height = "latest") -> Optional[ObjectState]:
        """Read an object's on-chain record. None if the key is absent."""
        key = _normalize_key(key)
        row = self._read("getObject", [_bucket_address(bucket), key], height)
        if row is None:
            return None
        blob_hash, size, expiry, metadata, status = row
        status = ObjectStatus(status)
        if status is ObjectStatus.ABSENT:
            return None
        return ObjectState(
            key=key,
            blob_hash=bytes_to_hex(blob_hash),
            size=size,
            expiry=expiry,
            metadata=_metadata_dict(metadata),
            status=status,
        )

    def add(
        self,
        bucket: Union[Bucket, str],
        key: Key,
        source: Source,
        options: Optional[AddOptions] = None,
    ) -> TransactionResult:
        """
        Upload content and commit it under ``key``.

        Raises:
            KeyExistsError: Key exists and overwrite was not requested
            ApprovalLimitExceededError: Sponsor approval has no allowance left
            InsufficientCreditError: Payer cannot cover the object
        """
        options = options or AddOptions()
        key = _normalize_key(key)
        address = _bucket_address(bucket)

        if not options.overwrite and self.head(address, key) is not None:
            raise KeyExistsError(f"Key {key!r} already exists in {address}; pass overwrite to replace it")

        sponsor = to_checksum_address(options.sponsor) if options.sponsor else ZERO_ADDRESS
        if options.sponsor and self.ledger is not None and sponsor.lower() != self.pipeline.address.lower():
            self.ledger.check_allowance(sponsor, self.pipeline.address)

        upload = self.store.upload(source)
        params = (
            hex_to_bytes(upload.source).rjust(32, b"\x00")[:32],
            key,
            hex_to_bytes(upload.blob_hash),
            upload.size,
            options.ttl,
            format_metadata(options.metadata),
            options.overwrite,
            sponsor,
        )
        result = self._send(TxKind.ADD_OBJECT, "addObject", [address, params], options.gas)
        logger.info("Added %s (%d bytes) to %s", key, upload.size, address)
        return result

    def get(
        self,
        bucket: Union[Bucket, str],
        key: Key,
        destination: Destination,
        options: Optional[GetOptions] = None,
    ) -> int:
        """
        Download an object (or a byte range of it) into ``destination``.

        Returns:
            Number of bytes written

        Raises:
            KeyNotFoundError: No object under ``key``
            NotYetAvailableError: Committed but not resolved yet; retry later
        """
        options = options or GetOptions()
        key = _normalize_key(key)
        address = _bucket_address(bucket)

        state = self.head(address, key, options.height)
        if state is None:
            raise KeyNotFoundError(f"Key {key!r} not found in {address}")
        if not state.resolved:
            raise NotYetAvailableError(f"Object {key!r} in {address} is not resolved yet")

        byte_range = None
        if options.range:
            start, end = parse_range(options.range)
            if start >= state.size:
                raise ValueError(f"Range start {start} is beyond object size {state.size}")
            if end is not None and end >= state.size:
                end = state.size - 1
            byte_range = (start, end)

        return self.store.download(address, key, destination, byte_range=byte_range, height=options.height)

    def get_bytes(self, bucket: Union[Bucket, str], key: Key, options: Optional[GetOptions] = None) -> bytes:
        buffer = io.BytesIO()
        self.get(bucket, key, buffer, options)
        return buffer.getvalue()

    def wait_until_available(
        self,
        bucket: Union[Bucket, str],
        key: Key,
        backoff: Optional[Backoff] = None,
    ) -> ObjectState:
        """
        Poll until an object is resolved.

        Raises:
            KeyNotFoundError: The key is absent (not retried)
            NotYetAvailableError: Still unresolved when the policy runs out
        """
        def probe() -> ObjectState:
            state = self.head(bucket, key)
            if state is None:
                raise KeyNotFoundError(f"Key {key!r} not found")
            if not state.resolved:
                raise NotYetAvailableError(f"Object {key!r} is not resolved yet")
            return state

        return retry_call(
            probe,
            retry_on=(NotYetAvailableError,),
            backoff=backoff or Backoff(),
            sleep=self.provider._sleep,
            describe=f"resolution of {key!r}",
        )

    def query(self, bucket: Union[Bucket, str], options: Optional[QueryOptions] = None) -> QueryResult:
        """
        List objects under a prefix, one page at a time.

        Order is ascending by key, stable for an unchanged bucket.
        """
        options = options or QueryOptions()
        if options.limit < 0:
            raise ValueError("limit must be non-negative")
        row = self._read(
            "queryObjects",
            [_bucket_address(bucket), options.prefix, options.delimiter, options.cursor, options.limit],
            options.height,
        )
        if row is None:
            return QueryResult(objects=[], common_prefixes=[], next_cursor=None)
        objects_raw, prefixes, next_key = row
        objects = [
            ObjectState(
                key=obj_key,
                blob_hash=bytes_to_hex(blob_hash),
                size=size,
                expiry=expiry,
                metadata=_metadata_dict(metadata),
            )
            for obj_key, blob_hash, size, expiry, metadata in objects_raw
        ]
        return QueryResult(objects=objects, common_prefixes=list(prefixes), next_cursor=next_key or None)

    def iter_objects(self, bucket: Union[Bucket, str], options: Optional[QueryOptions] = None) -> Iterator[ObjectState]:
        """Iterate every object matching the query, following cursors."""
        options = options or QueryOptions()
        cursor = options.cursor
        while True:
            page = self.query(
                bucket,
                QueryOptions(
                    prefix=options.prefix,
                    delimiter=options.delimiter,
                    cursor=cursor,
                    limit=options.limit,
                    height=options.height,
                ),
            )
            yield from page.objects
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    def delete(self, bucket: Union[Bucket, str], key: Key, gas: Optional[GasParams] = None) -> TransactionResult:
        """
        Delete an object.

        Raises:
            KeyNotFoundError: No object under ``key`` at pre-check time
        """
        key = _normalize_key(key)
        address = _bucket_address(bucket)
        if self.head(address, key) is None:
            raise KeyNotFoundError(f"Key {key!r} not found in {address}")
        result = self._send(TxKind.DELETE_OBJECT, "deleteObject", [address, key], gas)
        logger.info("Deleted %s from %s", key, address)
        return result
