"""
JSON-RPC network provider.

Lightweight alternative to web3.py: uses httpx for HTTP + eth-abi for encoding.

Reads are idempotent and retried with bounded exponential backoff.
Submissions are NEVER retried: a resubmission could execute twice, so
every submit failure is surfaced to the caller.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Optional, Union

import httpx

from ..codex.models import GasParams, TransactionIntent, TransactionResult, TxHandle
from ..config import NetworkConfig, ProviderSettings
from ..errors import (
    GasEstimationError,
    RpcError,
    SequenceStaleError,
    SubmissionError,
    TransactionNotFoundError,
    TransactionTimeoutError,
    classify_revert,
)
from ..retry import Backoff, retry_call
from .abi import decode_result, decode_revert, encode_call

logger = logging.getLogger(__name__)

Height = Union[int, str, None]

# Substrings of node errors meaning the nonce was rejected
_NONCE_ERRORS = ("nonce too low", "nonce too high", "invalid nonce", "invalid sequence")


class _RetryableHTTPError(Exception):
    pass


def block_param(height: Height) -> str:
    """Translate a height into a JSON-RPC block parameter."""
    if height is None:
        return "latest"
    if isinstance(height, int):
        if height < 0:
            raise ValueError(f"Block height must be non-negative, got {height}")
        return hex(height)
    if height in ("latest", "pending", "earliest", "safe", "finalized"):
        return height
    raise ValueError(f"Invalid block height: {height!r}")


class NetworkProvider:
    """
    Sends read queries and signed transactions to the network endpoint.

    Args:
        config: Network configuration (RPC URL, chain id)
        settings: Timeouts, retry and polling tuning
        transport: Optional httpx transport (used to inject test backends)
        sleep: Sleep function used between retries and polls
    """

    def __init__(
        self,
        config: NetworkConfig,
        settings: Optional[ProviderSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Any = time.sleep,
    ) -> None:
        self.config = config
        self.settings = settings or ProviderSettings()
        self._client = httpx.Client(timeout=self.settings.timeout, transport=transport)
        self._ids = itertools.count(1)
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "NetworkProvider":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ============ Transport ============

    def _post(self, method: str, params: list) -> Any:
        """Single JSON-RPC round trip. Raises RpcError for error responses."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        logger.debug("RPC %s", method)
        response = self._client.post(self.config.rpc_url, json=payload)
        if response.status_code >= 500 or response.status_code == 429:
            raise _RetryableHTTPError(f"RPC HTTP {response.status_code} for {method}")
        response.raise_for_status()
        data = response.json()

        if "error" in data and data["error"] is not None:
            err = data["error"]
            raise RpcError(
                f"RPC error: {err.get('message', err)}",
                code=err.get("code"),
                data=err.get("data"),
            )

        return data.get("result")

    def query(self, method: str, params: list) -> Any:
        """
        Idempotent JSON-RPC read with bounded retry.

        Raises:
            RpcError: If the node returns an error or retries are exhausted
        """
        backoff = Backoff(
            initial=self.settings.backoff_factor,
            max_attempts=max(1, self.settings.retries),
            timeout=None,
        )
        try:
            return retry_call(
                lambda: self._post(method, params),
                retry_on=(httpx.TransportError, _RetryableHTTPError),
                backoff=backoff,
                sleep=self._sleep,
                describe=method,
            )
        except (httpx.TransportError, _RetryableHTTPError, httpx.HTTPStatusError) as exc:
            raise RpcError(f"{method} failed: {exc}") from exc

    # ============ Reads ============

    def chain_id(self) -> int:
        return int(self.query("eth_chainId", []), 16)

    def block_number(self) -> int:
        return int(self.query("eth_blockNumber", []), 16)

    def get_balance(self, address: str, height: Height = "latest") -> int:
        """Native token balance in wei."""
        return int(self.query("eth_getBalance", [address, block_param(height)]), 16)

    def get_nonce(self, address: str, tag: Height = "pending") -> int:
        """Transaction count for an address."""
        return int(self.query("eth_getTransactionCount", [address, block_param(tag)]), 16)

    def get_gas_price(self) -> int:
        return int(self.query("eth_gasPrice", []), 16)

    def call(self, to: str, data: bytes, height: Height = "latest", sender: Optional[str] = None) -> bytes:
        """
        Execute a read-only call (eth_call).

        Raises:
            ReliquaryError subclass: If the call reverts with a known reason
            RpcError: For other node errors
        """
        params: dict[str, Any] = {"to": to, "data": "0x" + data.hex()}
        if sender:
            params["from"] = sender
        try:
            result = self.query("eth_call", [params, block_param(height)])
        except RpcError as exc:
            reason = decode_revert(exc.data) or _revert_message(str(exc))
            if reason:
                raise classify_revert(reason, default=RpcError) from exc
            raise
        if not result or result == "0x":
            return b""
        return bytes.fromhex(result[2:])

    def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        args: Optional[list] = None,
        height: Height = "latest",
    ) -> Any:
        """
        Read from a contract view function.

        Returns:
            Decoded return value(s), None if the call returned no data
        """
        raw = self.call(address, encode_call(abi, function_name, args or []), height=height)
        if not raw:
            return None
        return decode_result(abi, function_name, raw)

    # ============ Gas ============

    def estimate_gas(self, intent: TransactionIntent) -> GasParams:
        """
        Resolve gas parameters for an intent.

        Explicit values on the intent are kept; missing ones are estimated
        (with a buffer) or read from the network.

        Raises:
            ReliquaryError subclass: If the estimate reverts with a known reason
            GasEstimationError: If estimation fails for any other reason
        """
        gas_limit = intent.gas.gas_limit
        gas_price = intent.gas.gas_price

        if gas_limit <= 0:
            try:
                estimate = int(self.query("eth_estimateGas", [intent.call_params()]), 16)
            except RpcError as exc:
                reason = decode_revert(exc.data) or _revert_message(str(exc))
                if reason:
                    raise classify_revert(reason, default=GasEstimationError) from exc
                raise GasEstimationError(f"Gas estimation failed: {exc}") from exc
            gas_limit = int(estimate * self.settings.gas_buffer) + 1
            logger.debug("Estimated gas for %s: %d (buffered %d)", intent.kind.value, estimate, gas_limit)

        if gas_price <= 0:
            try:
                gas_price = self.get_gas_price()
            except RpcError as exc:
                raise GasEstimationError(f"Gas price lookup failed: {exc}") from exc

        return GasParams(gas_limit=gas_limit, gas_price=gas_price)

    # ============ Writes ============

    def submit(self, raw_tx: bytes, intent: Optional[TransactionIntent] = None) -> TxHandle:
        """
        Send a signed raw transaction. Returns immediately with a Pending handle.

        Raises:
            SequenceStaleError: If the node rejects the nonce
            SubmissionError: On transport failure or any other rejection
        """
        try:
            tx_hash = self._post("eth_sendRawTransaction", ["0x" + bytes(raw_tx).hex()])
        except RpcError as exc:
            message = str(exc).lower()
            if any(needle in message for needle in _NONCE_ERRORS):
                raise SequenceStaleError(f"Sequence rejected: {exc}") from exc
            raise SubmissionError(f"Transaction rejected: {exc}") from exc
        except (httpx.HTTPError, _RetryableHTTPError) as exc:
            raise SubmissionError(f"Failed to send transaction: {exc}") from exc

        if not tx_hash:
            raise SubmissionError("Node returned no transaction hash")
        logger.info("Transaction sent: %s", tx_hash)
        return TxHandle(tx_hash=tx_hash, intent=intent)

    def get_receipt(self, tx_hash: str) -> Optional[dict]:
        return self.query("eth_getTransactionReceipt", [tx_hash])

    def transaction_status(self, tx_hash: str) -> TransactionResult:
        """
        Reconcile a transaction by hash.

        Returns:
            Committed/Failed result if mined, Pending if known but unmined

        Raises:
            TransactionNotFoundError: If the node does not know the hash
        """
        receipt = self.get_receipt(tx_hash)
        if receipt is not None:
            return TransactionResult.from_receipt(receipt)
        tx = self.query("eth_getTransactionByHash", [tx_hash])
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {tx_hash} is unknown", tx_hash=tx_hash)
        return TransactionResult.pending(tx_hash)

    def await_result(
        self,
        handle: Union[TxHandle, str],
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> TransactionResult:
        """
        Wait for a transaction to reach a terminal state.

        Interrupting the wait does not affect the submitted transaction.

        Raises:
            TransactionTimeoutError: If no receipt appears within ``timeout``.
                The transaction may still commit later.
        """
        tx_hash = handle.tx_hash if isinstance(handle, TxHandle) else handle
        timeout = self.settings.await_timeout if timeout is None else timeout
        poll_interval = self.settings.poll_interval if poll_interval is None else poll_interval

        start = time.monotonic()
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                result = TransactionResult.from_receipt(receipt)
                logger.info(
                    "Transaction %s %s (gas used %d)", tx_hash, result.status.value.lower(), result.gas_used
                )
                return result
            if time.monotonic() - start >= timeout:
                break
            self._sleep(poll_interval)

        raise TransactionTimeoutError(
            f"Transaction {tx_hash} not confirmed within {timeout}s; query its status before resubmitting",
            tx_hash=tx_hash,
        )

    def revert_reason(self, intent: TransactionIntent, height: Height = "latest") -> Optional[str]:
        """Replay an intent with eth_call and return its revert reason, if any."""
        params = intent.call_params()
        try:
            self._post("eth_call", [params, block_param(height)])
        except RpcError as exc:
            return decode_revert(exc.data) or _revert_message(str(exc))
        except (httpx.HTTPError, _RetryableHTTPError) as exc:
            logger.debug("Revert replay failed: %s", exc)
        return None


def _revert_message(message: str) -> Optional[str]:
    """Pull the reason out of an 'execution reverted: ...' message."""
    marker = "execution reverted"
    lowered = message.lower()
    if marker not in lowered:
        return None
    tail = message[lowered.index(marker) + len(marker):].lstrip(": ").strip()
    return tail or None
