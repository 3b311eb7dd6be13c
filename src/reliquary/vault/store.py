"""
Object API client - streamed upload and download of object content.

Content never passes through the transaction layer: the bytes go to the
object API, and only the resulting content hash and size are committed on
chain.  Transfers are scoped acquisitions: sources and destinations are
opened, streamed in bounded chunks and always closed.
"""

from __future__ import annotations

import hashlib
import io
import logging
import urllib.parse
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

import httpx

from ..errors import NotYetAvailableError, ObjectStoreError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

Source = Union[str, Path, bytes, bytearray, BinaryIO]
Destination = Union[str, Path, BinaryIO]


@dataclass(frozen=True)
class UploadReceipt:
    """Result of a content upload.

    Attributes:
        blob_hash: 0x-prefixed SHA-256 of the content
        size: Number of bytes uploaded
        source: 0x-prefixed 32-byte id of the node holding the content
    """
    blob_hash: str
    size: int
    source: str


@contextmanager
def open_source(source: Source) -> Iterator[BinaryIO]:
    """Open an upload source for reading; closes what it opened."""
    if isinstance(source, (bytes, bytearray)):
        with io.BytesIO(bytes(source)) as handle:
            yield handle
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise FileNotFoundError(f"Source file not found: {path}")
        with path.open("rb") as handle:
            yield handle
    elif hasattr(source, "read"):
        # Caller-owned stream: read it but leave closing to the caller
        yield source
    else:
        raise TypeError(f"Unsupported source type: {type(source).__name__}")


@contextmanager
def open_destination(destination: Destination) -> Iterator[BinaryIO]:
    """Open a download destination for writing; closes what it opened.

    A file path is written through a temporary file and moved into place
    only when the transfer completes.
    """
    if isinstance(destination, (str, Path)):
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".part")
        try:
            with tmp.open("wb") as handle:
                yield handle
            tmp.replace(path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
    elif hasattr(destination, "write"):
        yield destination
    else:
        raise TypeError(f"Unsupported destination type: {type(destination).__name__}")


class _HashingReader:
    """Iterates a binary stream in chunks while hashing and counting bytes."""

    def __init__(self, handle: BinaryIO, chunk_size: int = CHUNK_SIZE) -> None:
        self._handle = handle
        self._chunk_size = chunk_size
        self._hash = hashlib.sha256()
        self.size = 0

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self._handle.read(self._chunk_size)
            if not chunk:
                break
            self._hash.update(chunk)
            self.size += len(chunk)
            yield chunk

    @property
    def hexdigest(self) -> str:
        return "0x" + self._hash.hexdigest()


def _slice_chunks(chunks: Iterator[bytes], start: int, end: Optional[int]) -> Iterator[bytes]:
    """Yield the inclusive ``start``-``end`` byte range of a chunk stream."""
    offset = 0
    for chunk in chunks:
        lo = max(start - offset, 0)
        hi = len(chunk) if end is None else min(end + 1 - offset, len(chunk))
        offset += len(chunk)
        if hi > lo:
            yield chunk[lo:hi]
        if end is not None and offset > end:
            break


class ObjectStore:
    """
    HTTP client for the object API.

    Args:
        objects_url: Base URL of the object API
        timeout: HTTP timeout in seconds
        transport: Optional httpx transport (used to inject test backends)
        chunk_size: Streaming chunk size in bytes
    """

    def __init__(
        self,
        objects_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.objects_url = objects_url.rstrip("/")
        self.chunk_size = chunk_size
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def upload(self, source: Source) -> UploadReceipt:
        """
        Stream content to the object API.

        The content is hashed while it streams; the hash reported by the
        server must match.

        Raises:
            ObjectStoreError: If the upload fails or the hashes disagree
        """
        with open_source(source) as handle:
            reader = _HashingReader(handle, self.chunk_size)
            try:
                resp = self._client.post(
                    f"{self.objects_url}/v1/objects",
                    content=iter(reader),
                    headers={"Content-Type": "application/octet-stream"},
                )
            except httpx.HTTPError as exc:
                raise ObjectStoreError(f"Upload failed: {exc}") from exc

        if resp.status_code not in (200, 201):
            raise ObjectStoreError(
                f"Upload failed: {resp.status_code} - {resp.text}", status_code=resp.status_code
            )

        body = resp.json()
        remote_hash = str(body.get("hash", "")).lower()
        if remote_hash != reader.hexdigest:
            raise ObjectStoreError(
                f"Content hash mismatch: local {reader.hexdigest}, remote {remote_hash}"
            )
        size = int(body.get("size", reader.size))
        if size != reader.size:
            raise ObjectStoreError(f"Size mismatch: local {reader.size}, remote {size}")

        logger.debug("Uploaded %d bytes as %s", size, remote_hash)
        return UploadReceipt(blob_hash=remote_hash, size=size, source=str(body.get("source", "0x" + "00" * 32)))

    @contextmanager
    def stream(
        self,
        bucket: str,
        key: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
        height: Union[int, str] = "latest",
    ) -> Iterator[httpx.Response]:
        """
        Open a streaming download of an object.

        Raises:
            NotYetAvailableError: If the content is not materialized yet (404)
            ValueError: If the range cannot be satisfied (416)
            ObjectStoreError: For other failures
        """
        url = f"{self.objects_url}/v1/objects/{bucket}/{urllib.parse.quote(key, safe='/')}"
        headers = {}
        if byte_range is not None:
            start, end = byte_range
            headers["Range"] = f"bytes={start}-{'' if end is None else end}"

        try:
            with self._client.stream("GET", url, params={"height": str(height)}, headers=headers) as resp:
                if resp.status_code == 404:
                    raise NotYetAvailableError(f"Object {key!r} in {bucket} is not available yet")
                if resp.status_code == 416:
                    raise ValueError(f"Range not satisfiable for {key!r}: {headers.get('Range')}")
                if resp.status_code not in (200, 206):
                    resp.read()
                    raise ObjectStoreError(
                        f"Download failed: {resp.status_code} - {resp.text}", status_code=resp.status_code
                    )
                yield resp
        except httpx.HTTPError as exc:
            raise ObjectStoreError(f"Download failed: {exc}") from exc

    def download(
        self,
        bucket: str,
        key: str,
        destination: Destination,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
        height: Union[int, str] = "latest",
    ) -> int:
        """Stream an object into ``destination``. Returns bytes written.

        A server may ignore ``Range`` and answer 200 with the full body; the
        requested range is then cut out locally.
        """
        written = 0
        with self.stream(bucket, key, byte_range=byte_range, height=height) as resp:
            chunks = resp.iter_bytes(self.chunk_size)
            if byte_range is not None and resp.status_code == 200:
                logger.debug("Range ignored for %r, slicing the full body", key)
                chunks = _slice_chunks(chunks, *byte_range)
            with open_destination(destination) as handle:
                for chunk in chunks:
                    handle.write(chunk)
                    written += len(chunk)
        return written
