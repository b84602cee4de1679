"""
Deterministic hashing utilities.

All hashing in the sales kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used by the status
history chain.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Trailing zeros do not change the amount.
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, date, UUID, Enum)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_status_entry(
    sale_id: UUID,
    seq: int,
    track: str,
    from_status: str,
    to_status: str,
    user_id: UUID,
    notes: str | None,
    prev_hash: str | None,
) -> str:
    """
    Compute the chain hash of a status history entry.

    The hash covers every field an auditor relies on plus the previous
    entry's hash, so rewriting any entry breaks every later one.  The
    creation timestamp is left out because not every backend round-trips
    its timezone.
    """
    payload_hash = hash_payload(
        {
            "notes": notes,
            "user_id": user_id,
        }
    )
    components = [
        str(sale_id),
        str(seq),
        track,
        from_status,
        to_status,
        payload_hash,
        prev_hash or GENESIS,
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
