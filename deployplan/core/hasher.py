"""Canonical hashing helpers for fingerprints, addresses and journal seals.

All fingerprints are SHA-256 over canonical JSON so that the same
declaration hashes identically across processes and machines.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import Any


def _encode_default(obj: Any) -> Any:
    """Encode the few non-JSON types that show up in constructor args."""
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not fingerprintable")


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: sorted keys, compact separators, ASCII."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=_encode_default,
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_digest(obj: Any) -> str:
    """Digest a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def code_fingerprint(code: str | bytes) -> str:
    """Fingerprint deployed logic (bytecode or a code identity string)."""
    data = code.encode("utf-8") if isinstance(code, str) else bytes(code)
    return f"sha256:{sha256_hex(data)}"


def args_fingerprint(
    contract: str, args: list[Any], sender: str, deterministic: bool
) -> str:
    """Fingerprint the initialization inputs of a deployment.

    The sender is part of the fingerprint because it changes the resulting
    address for both deterministic and nonce-based deployments.
    """
    payload = {
        "contract": contract,
        "args": args,
        "from": sender.lower(),
        "deterministic": deterministic,
    }
    return content_digest(payload)


def deterministic_address(
    deployer: str, code_fp: str, args_fp: str, salt: str = ""
) -> str:
    """Derive a CREATE2-style address from deployer, code and args.

    Identical inputs always yield the same 20-byte address.
    """
    payload = {
        "deployer": deployer.lower(),
        "code": code_fp,
        "args": args_fp,
        "salt": salt,
    }
    return "0x" + sha256_hex(canonical_json_bytes(payload))[-40:]


def nonce_address(sender: str, nonce: int) -> str:
    """Derive a CREATE-style address from sender and nonce."""
    payload = {"sender": sender.lower(), "nonce": nonce}
    return "0x" + sha256_hex(canonical_json_bytes(payload))[-40:]


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a journal entry, excluding the ``entry_hash`` field itself."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
