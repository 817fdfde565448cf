"""
Deterministic hashing utilities.

All hashing in the signflow kernel must be deterministic and reproducible.
This module provides the canonical hashing functions for the audit chain
and for configuration checksums.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return sorted(obj, key=str) if not isinstance(obj, tuple) else list(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Enum, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_jsonable(data: dict) -> dict:
    """Return ``data`` with every value reduced to plain JSON types."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_entry(
    document_id: str,
    seq: int,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for an audit log row.

    The hash includes the row's position in its document chain plus the
    previous row's hash, creating a tamper-evident chain.

    Args:
        document_id: Document whose chain the row belongs to.
        seq: Position in that chain (1-based).
        action: AuditAction value.
        payload_hash: Hash of the row's details payload.
        prev_hash: Hash of the previous row (None for the first row).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(document_id),
        str(seq),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
