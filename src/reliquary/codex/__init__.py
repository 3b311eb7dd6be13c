"""
Codex - Shared data types for transactions and accounts.
"""
