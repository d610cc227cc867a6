"""Hashing utilities for PII protection in logs.

Phones and identifiers are never logged in clear text. A short, non-reversible
digest is enough to follow one customer across log lines.
"""

import hashlib


def hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]
