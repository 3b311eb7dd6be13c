"""Tests for the transaction pipeline: ordering, failures and classification."""

from __future__ import annotations

import dataclasses
import threading
import time

import pytest

from reliquary.client import Client
from reliquary.codex.models import GasParams, TransactionIntent, TxKind, TxStatus
from reliquary.conduit.abi import BUCKET_MANAGER_ABI, encode_call
from reliquary.conduit.sequence import SequenceTracker
from reliquary.conduit.tx import TransactionPipeline
from reliquary.errors import (
    GasEstimationError,
    KeyNotFoundError,
    SequenceStaleError,
    SubmissionError,
    TransactionFailedError,
    TransactionTimeoutError,
)
from reliquary.sigil.eth import KeyAuthority

from fakechain import ALICE_KEY, BUCKET_MANAGER, FUNDING, GAS_PRICE, make_config

RECIPIENT = "0x" + "cd" * 20


class TestOrdering:
    """Sequence numbers are gapless and never shared."""

    def test_sequential_transactions_are_gapless(self, alice, chain) -> None:
        results = [alice.transfer(RECIPIENT, 1) for _ in range(5)]
        assert all(r.committed for r in results)
        assert chain.mined_nonces(alice.address) == [0, 1, 2, 3, 4]
        assert alice.tracker.current == 5
        assert chain.balances[RECIPIENT] == 5

    def test_concurrent_senders_share_one_tracker(self, alice, chain) -> None:
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                for _ in range(5):
                    alice.transfer(RECIPIENT, 1)
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert chain.mined_nonces(alice.address) == list(range(20))

    def test_stale_sequence_resets_tracker(self, alice, make_client, chain) -> None:
        alice.transfer(RECIPIENT, 1)

        # A second client with the same key moves the sequence behind our back
        twin = make_client(ALICE_KEY)
        twin.transfer(RECIPIENT, 1)

        with pytest.raises(SequenceStaleError):
            alice.transfer(RECIPIENT, 1)
        assert alice.tracker.current == 2

        assert alice.transfer(RECIPIENT, 1).committed
        assert chain.mined_nonces(alice.address) == [0, 1, 2]

    def test_stale_sequence_survives_failed_resync(self, alice, make_client, chain) -> None:
        alice.transfer(RECIPIENT, 1)
        make_client(ALICE_KEY).transfer(RECIPIENT, 1)

        # Explicit gas: the resync is the only read left to fail
        intent = alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=1, gas=GasParams(21_000, GAS_PRICE))
        chain.read_failures = 100
        with pytest.raises(SequenceStaleError):
            alice.pipeline.send(intent)
        assert not alice.tracker.synced

        chain.read_failures = 0
        assert alice.transfer(RECIPIENT, 1).committed
        assert chain.mined_nonces(alice.address) == [0, 1, 2]


class TestInFlight:
    """At most one unconfirmed transaction per account."""

    @pytest.fixture()
    def slow_alice(self, chain, settings):
        """Alice with receipts held back and a real (short) poll sleep."""
        chain.confirm_polls = 10**9
        authority = KeyAuthority.from_hex(ALICE_KEY)
        chain.fund(authority.address, FUNDING)
        client = Client(
            make_config(),
            authority,
            settings=dataclasses.replace(settings, await_timeout=10.0),
            transport=chain.transport(),
            sleep=lambda seconds: time.sleep(0.005),
        )
        yield client
        client.close()

    @staticmethod
    def _confirm_all(chain) -> None:
        with chain.lock:
            chain.confirm_polls = 0
            for tx in chain.txs.values():
                tx.polls_left = 0

    @staticmethod
    def _wait_for(predicate) -> None:
        deadline = time.monotonic() + 5.0
        while not predicate():
            assert time.monotonic() < deadline
            time.sleep(0.005)

    def test_second_sender_waits_for_confirmation(self, slow_alice, chain) -> None:
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                slow_alice.transfer(RECIPIENT, 1)
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        first = threading.Thread(target=worker)
        first.start()
        self._wait_for(lambda: chain.count("eth_sendRawTransaction") == 1)

        second = threading.Thread(target=worker)
        second.start()
        time.sleep(0.3)
        assert chain.count("eth_sendRawTransaction") == 1
        assert second.is_alive()

        self._confirm_all(chain)
        first.join(5.0)
        second.join(5.0)

        assert errors == []
        assert chain.count("eth_sendRawTransaction") == 2
        assert chain.mined_nonces(slow_alice.address) == [0, 1]
        assert slow_alice.tracker.outstanding is None

    def test_unwaited_transaction_is_reconciled_first(self, slow_alice, chain) -> None:
        intent = slow_alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=1)
        pending = slow_alice.pipeline.send(intent, wait=False)
        assert slow_alice.tracker.outstanding == pending.tx_hash

        with pytest.raises(TransactionTimeoutError) as excinfo:
            slow_alice.pipeline.send(intent, timeout=0.0)
        assert excinfo.value.tx_hash == pending.tx_hash
        assert chain.count("eth_sendRawTransaction") == 1

        self._confirm_all(chain)
        assert slow_alice.transfer(RECIPIENT, 1).committed
        assert chain.mined_nonces(slow_alice.address) == [0, 1]
        assert slow_alice.tracker.outstanding is None

    def test_timed_out_hash_stays_outstanding(self, slow_alice, chain) -> None:
        intent = slow_alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=1)
        with pytest.raises(TransactionTimeoutError) as excinfo:
            slow_alice.pipeline.send(intent, timeout=0.0)
        assert slow_alice.tracker.outstanding == excinfo.value.tx_hash

        self._confirm_all(chain)
        result = slow_alice.pipeline.reconcile()
        assert result is not None and result.tx_hash == excinfo.value.tx_hash
        assert result.committed
        assert slow_alice.pipeline.reconcile() is None


class TestFailures:
    """Write-path errors surface to the caller."""

    def test_estimation_failure_consumes_no_sequence(self, alice, chain) -> None:
        with pytest.raises(GasEstimationError):
            alice.transfer(RECIPIENT, FUNDING * 10)
        assert chain.nonce_of(alice.address) == 0

        alice.transfer(RECIPIENT, 1)
        assert chain.mined_nonces(alice.address) == [0]

    def test_submission_failure_is_not_retried(self, alice, chain) -> None:
        chain.submit_failure = "transport"
        with pytest.raises(SubmissionError):
            alice.transfer(RECIPIENT, 1)
        assert chain.count("eth_sendRawTransaction") == 1
        assert not alice.tracker.synced

        chain.submit_failure = None
        alice.transfer(RECIPIENT, 1)
        assert chain.mined_nonces(alice.address) == [0]

    def test_reverted_transaction_is_classified(self, alice, chain) -> None:
        bucket, _ = alice.buckets.create()
        data = encode_call(BUCKET_MANAGER_ABI, "deleteObject", [bucket.address, "missing"])
        # Explicit gas skips estimation, so the revert happens on chain
        intent = alice.pipeline.intent(
            TxKind.DELETE_OBJECT, BUCKET_MANAGER, data, gas=GasParams(200_000, GAS_PRICE)
        )

        with pytest.raises(KeyNotFoundError) as excinfo:
            alice.pipeline.send(intent)
        assert excinfo.value.tx_hash is not None
        assert chain.txs[excinfo.value.tx_hash].status == 0
        assert chain.nonce_of(alice.address) == 2
        # Replayed on the state before the failing block
        assert chain.call_tags[-1] == hex(chain.txs[excinfo.value.tx_hash].block - 1)

    def test_unknown_revert_is_transaction_failed(self, alice, chain) -> None:
        data = encode_call(BUCKET_MANAGER_ABI, "deleteObject", ["0x" + "12" * 20, "k"])
        intent = alice.pipeline.intent(
            TxKind.DELETE_OBJECT, BUCKET_MANAGER, data, gas=GasParams(200_000, GAS_PRICE)
        )
        with pytest.raises(TransactionFailedError) as excinfo:
            alice.pipeline.send(intent)
        assert excinfo.value.reason == "bucket not found"
        assert excinfo.value.result is not None
        assert excinfo.value.result.status is TxStatus.FAILED


class TestPipeline:
    """Tests for intent construction and send modes."""

    def test_send_without_wait(self, alice, chain) -> None:
        intent = alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=1)
        result = alice.pipeline.send(intent, wait=False)
        assert result.status is TxStatus.PENDING
        assert alice.provider.await_result(result.tx_hash).committed

    def test_intent_uses_chain_id_and_signer(self, alice) -> None:
        intent = alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT.upper().replace("0X", "0x"), value=3)
        assert intent.signer == alice.address
        assert intent.chain_id == alice.config.chain_id
        assert intent.to.lower() == RECIPIENT
        assert intent.sequence is None

    def test_negative_value_rejected(self, alice) -> None:
        with pytest.raises(ValueError):
            alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=-1)

    def test_tracker_must_match_signer(self, alice) -> None:
        with pytest.raises(ValueError):
            TransactionPipeline(alice.provider, alice.authority, SequenceTracker("0x" + "01" * 20))

    def test_unsigned_intent_cannot_build_tx(self, alice) -> None:
        intent: TransactionIntent = alice.pipeline.intent(TxKind.TRANSFER, RECIPIENT, value=1)
        with pytest.raises(ValueError):
            intent.to_tx_dict()
        with pytest.raises(ValueError):
            intent.with_sequence(0).to_tx_dict()
        tx = intent.with_sequence(0).with_gas(GasParams(21_000, GAS_PRICE)).to_tx_dict()
        assert tx["nonce"] == 0 and tx["chainId"] == alice.config.chain_id
