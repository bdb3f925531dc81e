"""
Cryptographic Hashing Utilities — audit chain hashes and webhook MACs.
"""
import hashlib
import hmac
import json


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """Generate a chain hash: SHA-256(previous_hash + current_payload).
    Creates a tamper-evident linked chain for the audit trail.
    """
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()


def sign_payload(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 hex digest over the exact wire bytes."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    """Constant-time comparison; a missing signature never matches."""
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().lower().encode("utf-8"))
