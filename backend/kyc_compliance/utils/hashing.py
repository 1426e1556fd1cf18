"""
Cryptographic Hashing Utilities — SHA-256 fingerprints for audit rows and evidence.
"""
import hashlib
import json


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def hash_bytes(content: bytes) -> str:
    """SHA-256 of raw file content, used to name stored evidence."""
    return hashlib.sha256(content).hexdigest()
