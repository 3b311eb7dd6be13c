__all__ = [
    # Client
    "Client",
    # Configuration
    "NetworkConfig",
    "ProviderSettings",
    "ConfigError",
    # Models
    "Account",
    "GasParams",
    "TransactionIntent",
    "TransactionResult",
    "TxHandle",
    "TxKind",
    "TxStatus",
    # Key authority
    "KeyAuthority",
    "parse_private_key",
    "verify_signature",
    "generate_eoa",
    "load_private_key",
    "save_private_key",
    # Transactions
    "NetworkProvider",
    "SequenceTracker",
    "TransactionPipeline",
    # Buckets and objects
    "AddOptions",
    "Bucket",
    "BucketMachine",
    "GetOptions",
    "ObjectState",
    "ObjectStatus",
    "ObjectStore",
    "QueryOptions",
    "QueryResult",
    # Credit
    "Approval",
    "ApproveOptions",
    "CreditBalance",
    "CreditLedger",
    "CreditStats",
    # Retry
    "Backoff",
    "retry_call",
    # Errors
    "ReliquaryError",
    "InvalidKeyError",
    "SequenceStaleError",
    "GasEstimationError",
    "SubmissionError",
    "TransactionFailedError",
    "TransactionTimeoutError",
    "TransactionNotFoundError",
    "RpcError",
    "ObjectStoreError",
    "KeyExistsError",
    "KeyNotFoundError",
    "NotYetAvailableError",
    "ApprovalLimitExceededError",
    "InsufficientCreditError",
]

from .client import Client
from .config import ConfigError, NetworkConfig, ProviderSettings
from .codex.models import Account, GasParams, TransactionIntent, TransactionResult, TxHandle, TxKind, TxStatus
from .conduit.rpc import NetworkProvider
from .conduit.sequence import SequenceTracker
from .conduit.tx import TransactionPipeline
from .errors import (
    ApprovalLimitExceededError,
    GasEstimationError,
    InsufficientCreditError,
    InvalidKeyError,
    KeyExistsError,
    KeyNotFoundError,
    NotYetAvailableError,
    ObjectStoreError,
    ReliquaryError,
    RpcError,
    SequenceStaleError,
    SubmissionError,
    TransactionFailedError,
    TransactionNotFoundError,
    TransactionTimeoutError,
)
from .retry import Backoff, retry_call
from .sigil.eth import KeyAuthority, generate_eoa, load_private_key, parse_private_key, save_private_key, verify_signature
from .tithe.ledger import Approval, ApproveOptions, CreditBalance, CreditLedger, CreditStats
from .vault.bucket import AddOptions, Bucket, BucketMachine, GetOptions, ObjectState, ObjectStatus, QueryOptions, QueryResult
from .vault.store import ObjectStore
