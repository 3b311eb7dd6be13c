"""
Rites - Command implementations for the Reliquary CLI.

Each module corresponds to a top-level CLI command group:
- account: Wallet setup, account info, transfers and transaction status
- bucket:  Buckets and objects
- credit:  Credit balance, purchases and approvals
"""
