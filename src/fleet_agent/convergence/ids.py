"""Identifier and checksum helpers for convergence runs."""

from __future__ import annotations

import hashlib
import uuid


def transaction_uuid() -> str:
    return str(uuid.uuid4())


def sha256_checksum(content: bytes) -> str:
    return "{sha256}" + hashlib.sha256(content).hexdigest()


def split_checksum(checksum: str) -> tuple[str, str]:
    """Split `{algo}hexdigest` into (algo, hexdigest)."""
    if not checksum.startswith("{") or "}" not in checksum:
        raise ValueError(f"Malformed checksum: {checksum}")
    algo, digest = checksum[1:].split("}", 1)
    return algo, digest


def checksum_for(content: bytes, algorithm: str) -> str:
    try:
        digest = hashlib.new(algorithm, content).hexdigest()
    except ValueError as exc:
        raise ValueError(f"Unsupported checksum type: {algorithm}") from exc
    return "{" + algorithm + "}" + digest
