"""
Conduit - On-chain interaction layer for Reliquary.

Provides the JSON-RPC provider, ABI helpers, sequence tracking and the
transaction pipeline used by bucket and credit operations.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
