"""
Sigil - Key material and signing.
"""
