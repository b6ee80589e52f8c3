"""Content fingerprinting for change detection."""

import hashlib


def compute_checksum(data: bytes) -> str:
    """Calculate the SHA256 hex digest of downloaded bytes."""
    sha256_hash = hashlib.sha256()
    sha256_hash.update(data)
    return sha256_hash.hexdigest()
