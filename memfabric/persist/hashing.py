"""
Stable hashing utilities for record identity and integrity.

Provides deterministic hashing of dicts, lists, strings, and bytes.
Uses JSON canonicalization for dicts/lists and UTF-8 NFC normalization for strings.
"""

import hashlib
import json
import unicodedata
from typing import Any

DEFAULT_DOMAIN_TAG = "MEMFABRIC_INTEGRITY"


def _to_bytes(obj: Any) -> bytes:
    if isinstance(obj, (dict, list)):
        canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
        return canonical.encode("utf-8")
    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj).encode("utf-8")
    if isinstance(obj, bytes):
        return obj
    raise TypeError(f"Cannot hash type {type(obj)}: {obj}")


def stable_hash(obj: dict | list | str | bytes) -> str:
    """
    Compute stable hash of an object.
    
    - Dicts: sorted by keys, then JSON-serialized
    - Lists: JSON-serialized (order matters)
    - Strings: UTF-8 normalized
    - Bytes: used directly
    
    Returns:
        64-character hex string (blake2b)
    
    Examples:
        >>> stable_hash({"b": 2, "a": 1}) == stable_hash({"a": 1, "b": 2})
        True
    """
    return hashlib.blake2b(_to_bytes(obj), digest_size=32).hexdigest()


def compute_integrity_hash(
    content: str | bytes,
    namespace: str,
    domain_tag: str = DEFAULT_DOMAIN_TAG,
) -> str:
    """
    Integrity digest of a record: SHA-512 over content + namespace + domain tag.
    
    Pure function of its inputs; any change to the content changes the digest.
    
    Returns:
        128-character hex string
    """
    h = hashlib.sha512()
    h.update(_to_bytes(content))
    h.update(_to_bytes(namespace))
    h.update(_to_bytes(domain_tag))
    return h.hexdigest()


def generate_record_id(content: str | bytes, namespace: str, created_at: float) -> str:
    """
    Record id from content, namespace and creation time (milliseconds).
    
    Returns:
        "MEM_" followed by 16 upper-case hex characters
    """
    h = hashlib.sha256()
    h.update(_to_bytes(content))
    h.update(_to_bytes(namespace))
    h.update(str(int(created_at * 1000)).encode("ascii"))
    return "MEM_" + h.hexdigest()[:16].upper()
