"""Tests for the bucket machine and the object store client."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Iterator

import httpx
import pytest

from reliquary.errors import KeyExistsError, KeyNotFoundError, NotYetAvailableError, ObjectStoreError
from reliquary.retry import Backoff
from reliquary.utils import sha256_hex
from reliquary.vault.bucket import AddOptions, Bucket, GetOptions, ObjectStatus, QueryOptions
from reliquary.vault.store import ObjectStore

CONTENT = b"The quick brown fox jumps over the lazy dog"


@pytest.fixture()
def bucket(alice) -> Bucket:
    alice.credit.buy(1_000_000)
    created, _ = alice.buckets.create(metadata={"purpose": "tests"})
    return created


class TestCreate:
    """Tests for bucket creation and listing."""

    def test_create_returns_address(self, alice, bucket: Bucket) -> None:
        assert bucket.address.startswith("0x") and len(bucket.address) == 42
        assert bucket.owner == alice.address
        assert bucket.metadata == {"purpose": "tests"}

    def test_list(self, alice, bucket: Bucket) -> None:
        second, _ = alice.buckets.create()
        listed = alice.buckets.list()
        assert [b.address for b in listed] == [bucket.address, second.address]
        assert listed[0].metadata == {"purpose": "tests"}

    def test_list_other_owner_is_empty(self, alice, bob, bucket: Bucket) -> None:
        assert alice.buckets.list(owner=bob.address) == []


class TestAddGet:
    """Round trips through add and get."""

    def test_round_trip(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "foo/bar", CONTENT)
        assert alice.buckets.get_bytes(bucket, "foo/bar") == CONTENT

    def test_range(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "foo/bar", CONTENT)
        assert alice.buckets.get_bytes(bucket, "foo/bar", GetOptions(range="0-3")) == CONTENT[:4]

    def test_open_range(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "foo/bar", CONTENT)
        assert alice.buckets.get_bytes(bucket, "foo/bar", GetOptions(range="40-")) == CONTENT[40:]

    def test_range_end_clamped_to_size(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", b"abc")
        assert alice.buckets.get_bytes(bucket, "k", GetOptions(range="1-100")) == b"bc"

    def test_range_when_server_ignores_it(self, alice, bucket: Bucket, chain) -> None:
        alice.buckets.add(bucket, "foo/bar", CONTENT)
        chain.ignore_range = True
        assert alice.buckets.get_bytes(bucket, "foo/bar", GetOptions(range="0-3")) == CONTENT[:4]
        assert alice.buckets.get_bytes(bucket, "foo/bar", GetOptions(range="40-")) == CONTENT[40:]

    def test_range_past_end_rejected(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", b"abc")
        with pytest.raises(ValueError):
            alice.buckets.get_bytes(bucket, "k", GetOptions(range="5-6"))

    def test_malformed_range_rejected(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", b"abc")
        with pytest.raises(ValueError):
            alice.buckets.get_bytes(bucket, "k", GetOptions(range="3-1"))

    def test_file_source_and_destination(self, alice, bucket: Bucket, tmp_path: Path) -> None:
        src = tmp_path / "in.bin"
        src.write_bytes(CONTENT * 1000)
        alice.buckets.add(bucket, "big", src)

        dest = tmp_path / "out" / "big.bin"
        written = alice.buckets.get(bucket, "big", dest)
        assert written == len(CONTENT) * 1000
        assert dest.read_bytes() == CONTENT * 1000
        assert not dest.with_suffix(".bin.part").exists()

    def test_stream_source_left_open(self, alice, bucket: Bucket) -> None:
        stream = io.BytesIO(CONTENT)
        alice.buckets.add(bucket, "s", stream)
        assert not stream.closed
        assert alice.buckets.get_bytes(bucket, "s") == CONTENT

    def test_missing_source_file(self, alice, bucket: Bucket, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            alice.buckets.add(bucket, "k", tmp_path / "nope.bin")

    def test_head_reports_hash_and_metadata(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", CONTENT, AddOptions(metadata={"type": "text"}))
        state = alice.buckets.head(bucket, "k")
        assert state is not None
        assert state.blob_hash == "0x" + sha256_hex(CONTENT)
        assert state.size == len(CONTENT)
        assert state.metadata == {"type": "text"}
        assert state.status is ObjectStatus.RESOLVED

    def test_bytes_key(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, b"raw/key", CONTENT)
        assert alice.buckets.get_bytes(bucket, "raw/key") == CONTENT

    def test_empty_key_rejected(self, alice, bucket: Bucket) -> None:
        with pytest.raises(ValueError):
            alice.buckets.add(bucket, "", CONTENT)

    def test_get_absent_key(self, alice, bucket: Bucket) -> None:
        with pytest.raises(KeyNotFoundError):
            alice.buckets.get_bytes(bucket, "missing")

    def test_upload_hash_mismatch(self, alice, bucket: Bucket, chain) -> None:
        chain.corrupt_upload = True
        sent = chain.count("eth_sendRawTransaction")
        with pytest.raises(ObjectStoreError, match="hash mismatch"):
            alice.buckets.add(bucket, "k", CONTENT)
        assert chain.count("eth_sendRawTransaction") == sent


class TestOverwrite:
    """Existing keys are protected unless overwrite is requested."""

    def test_key_exists_leaves_content_unchanged(self, alice, bucket: Bucket, chain) -> None:
        alice.buckets.add(bucket, "k", b"original")
        sent = chain.count("eth_sendRawTransaction")

        with pytest.raises(KeyExistsError):
            alice.buckets.add(bucket, "k", b"replacement")

        assert chain.count("eth_sendRawTransaction") == sent
        assert "0x" + sha256_hex(b"replacement") not in chain.blobs
        assert alice.buckets.get_bytes(bucket, "k") == b"original"

    def test_overwrite_replaces(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", b"original")
        alice.buckets.add(bucket, "k", b"replacement", AddOptions(overwrite=True))
        assert alice.buckets.get_bytes(bucket, "k") == b"replacement"


class TestResolution:
    """Content becomes readable some time after the commit."""

    def test_poll_until_available(self, alice, bucket: Bucket, chain) -> None:
        chain.resolve_polls = 3
        alice.buckets.add(bucket, "foo/bar", CONTENT)

        with pytest.raises(NotYetAvailableError):
            alice.buckets.get_bytes(bucket, "foo/bar")

        state = alice.buckets.wait_until_available(
            bucket, "foo/bar", Backoff(initial=0.0, max_attempts=20, timeout=None)
        )
        assert state.resolved
        assert alice.buckets.get_bytes(bucket, "foo/bar") == CONTENT

    def test_polling_gives_up(self, alice, bucket: Bucket, chain) -> None:
        chain.resolve_polls = 100
        alice.buckets.add(bucket, "k", CONTENT)
        with pytest.raises(NotYetAvailableError):
            alice.buckets.wait_until_available(bucket, "k", Backoff(initial=0.0, max_attempts=3, timeout=None))

    def test_wait_on_absent_key_is_not_retried(self, alice, bucket: Bucket) -> None:
        with pytest.raises(KeyNotFoundError):
            alice.buckets.wait_until_available(bucket, "missing", Backoff(initial=0.0, max_attempts=3, timeout=None))

    def test_content_not_materialized(self, alice, bucket: Bucket, chain) -> None:
        alice.buckets.add(bucket, "k", CONTENT)
        chain.downloads_unavailable = 1
        with pytest.raises(NotYetAvailableError):
            alice.buckets.get_bytes(bucket, "k")
        assert alice.buckets.get_bytes(bucket, "k") == CONTENT


class TestQuery:
    """Listing order, grouping and pagination."""

    KEYS = ["d", "a/2", "c/x/y", "b", "a/1"]

    @pytest.fixture()
    def populated(self, alice, bucket: Bucket) -> Bucket:
        for key in self.KEYS:
            alice.buckets.add(bucket, key, key.encode())
        return bucket

    def test_delimiter_groups_prefixes(self, alice, populated: Bucket) -> None:
        page = alice.buckets.query(populated)
        assert [o.key for o in page.objects] == ["b", "d"]
        assert page.common_prefixes == ["a/", "c/"]
        assert page.next_cursor is None

    def test_prefix(self, alice, populated: Bucket) -> None:
        page = alice.buckets.query(populated, QueryOptions(prefix="a/"))
        assert [o.key for o in page.objects] == ["a/1", "a/2"]
        assert page.objects[0].size == 3

    def test_order_is_stable(self, alice, populated: Bucket) -> None:
        first = alice.buckets.query(populated, QueryOptions(delimiter=""))
        second = alice.buckets.query(populated, QueryOptions(delimiter=""))
        assert [o.key for o in first.objects] == [o.key for o in second.objects]
        assert [o.key for o in first.objects] == sorted(self.KEYS)

    def test_pagination(self, alice, populated: Bucket) -> None:
        page = alice.buckets.query(populated, QueryOptions(delimiter="", limit=2))
        assert [o.key for o in page.objects] == ["a/1", "a/2"]
        assert page.next_cursor == "b"

        page = alice.buckets.query(populated, QueryOptions(delimiter="", limit=2, cursor=page.next_cursor))
        assert [o.key for o in page.objects] == ["b", "c/x/y"]

    def test_iter_objects_follows_cursors(self, alice, populated: Bucket) -> None:
        keys = [o.key for o in alice.buckets.iter_objects(populated, QueryOptions(delimiter="", limit=2))]
        assert keys == sorted(self.KEYS)

    def test_negative_limit_rejected(self, alice, populated: Bucket) -> None:
        with pytest.raises(ValueError):
            alice.buckets.query(populated, QueryOptions(limit=-1))


class TestDelete:
    """Tests for delete."""

    def test_delete(self, alice, bucket: Bucket) -> None:
        alice.buckets.add(bucket, "k", CONTENT)
        assert alice.buckets.delete(bucket, "k").committed
        assert alice.buckets.head(bucket, "k") is None

    def test_delete_absent_submits_nothing(self, alice, bucket: Bucket, chain) -> None:
        sent = chain.count("eth_sendRawTransaction")
        with pytest.raises(KeyNotFoundError):
            alice.buckets.delete(bucket, "missing")
        assert chain.count("eth_sendRawTransaction") == sent


class TestObjectStore:
    """Tests for the object API client against a bare transport."""

    BODY = b"0123456789"

    @pytest.fixture()
    def store(self) -> Iterator[ObjectStore]:
        # Always answers with the full body, whatever Range was asked for
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=self.BODY))
        store = ObjectStore("http://localhost:8001", transport=transport, chunk_size=3)
        yield store
        store.close()

    @pytest.mark.parametrize(
        ("byte_range", "expected"),
        [((0, 3), b"0123"), ((4, 7), b"4567"), ((5, None), b"56789"), ((9, 20), b"9")],
    )
    def test_range_sliced_when_ignored(self, store: ObjectStore, byte_range, expected: bytes) -> None:
        out = io.BytesIO()
        written = store.download("0x" + "ab" * 20, "k", out, byte_range=byte_range)
        assert out.getvalue() == expected
        assert written == len(expected)

    def test_full_body_without_range(self, store: ObjectStore) -> None:
        out = io.BytesIO()
        store.download("0x" + "ab" * 20, "k", out)
        assert out.getvalue() == self.BODY
