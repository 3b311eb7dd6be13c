"""
Vault - Buckets and object content.

The bucket machine commits object records on chain; the object store moves
the content itself.
"""
