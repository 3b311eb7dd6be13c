"""
Tithe - Credit ledger: balances, purchases and delegated spending.
"""
