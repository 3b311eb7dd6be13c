"""
Client - one signing account wired to a network.

Owns the provider, the account's sequence tracker and the transaction
pipeline shared by bucket and credit operations.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

from .codex.models import Account, GasParams, TransactionResult, TxKind
from .conduit.rpc import NetworkProvider
from .conduit.sequence import SequenceTracker
from .conduit.tx import TransactionPipeline
from .config import NetworkConfig, ProviderSettings
from .sigil.eth import KeyAuthority
from .tithe.ledger import CreditLedger
from .utils import same_address, to_checksum_address
from .vault.bucket import BucketMachine
from .vault.store import ObjectStore

logger = logging.getLogger(__name__)


class Client:
    """
    Args:
        config: Network configuration
        authority: Key authority of the signing account
        provider: Existing provider to reuse (one is created otherwise)
        store: Existing object store client to reuse
        settings: Provider tuning, used when the provider is created here
        transport: httpx transport for both RPC and object API (tests)
        sleep: Sleep function for retries and polling
    """

    def __init__(
        self,
        config: NetworkConfig,
        authority: KeyAuthority,
        provider: Optional[NetworkProvider] = None,
        store: Optional[ObjectStore] = None,
        settings: Optional[ProviderSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Any = None,
    ) -> None:
        self.config = config
        self.authority = authority
        if provider is None:
            provider = NetworkProvider(config, settings, transport=transport, sleep=sleep or time.sleep)
        self.provider = provider
        self.store = store or ObjectStore(config.objects_url, transport=transport)
        self.tracker = SequenceTracker(authority.address)
        self.pipeline = TransactionPipeline(self.provider, authority, self.tracker)
        self.credit = CreditLedger(self.pipeline, config.credit_manager)
        self.buckets = BucketMachine(self.pipeline, self.store, config.bucket_manager, ledger=self.credit)

    @property
    def address(self) -> str:
        return self.authority.address

    def close(self) -> None:
        self.provider.close()
        self.store.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def account_info(self, address: Optional[str] = None) -> Account:
        """
        Read an account's committed sequence and native balance.

        The public key is only known for the signing account.
        """
        address = to_checksum_address(address or self.address)
        return Account(
            address=address,
            public_key=self.authority.public_key if same_address(address, self.address) else None,
            sequence=self.provider.get_nonce(address, "latest"),
            balance=self.provider.get_balance(address),
        )

    def transfer(self, to: str, amount: int, gas: Optional[GasParams] = None) -> TransactionResult:
        """Send ``amount`` wei of the native token to ``to``."""
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")
        intent = self.pipeline.intent(TxKind.TRANSFER, to, value=amount, gas=gas)
        result = self.pipeline.send(intent)
        logger.info("Transferred %d wei from %s to %s", amount, self.address, intent.to)
        return result
