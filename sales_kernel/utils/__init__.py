"""Utility functions for the sales kernel."""

from sales_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    hash_status_entry,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_status_entry",
]
