"""Canonical bytes and digest helpers for proofgate.

Every hash that crosses a trust boundary (public-inputs hashes, proof hashes,
attestation keys, audit chains) is computed over the bytes produced here so
that off-system tooling and the gate agree byte-for-byte.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Union


SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - datetime/date objects become ISO strings.
    - Floats are rejected to avoid non-JCS number edge cases.
    - bytes become lowercase hex.
    """
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in JCS canonicalization. Use strings or integers.")
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def jcs_canonicalize(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (RFC 8785 compatible for objects without floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_digest(obj: Any) -> str:
    """SHA-256 hex digest of the canonical bytes of ``obj``."""
    return sha256_bytes(jcs_canonicalize(obj))


def domain_digest(domain: str, payload: Any) -> str:
    """Domain-separated digest: H(JCS({"domain": domain, "payload": payload}))."""
    return canonical_digest({"domain": domain, "payload": payload})


def normalize_hex32(value: Union[str, bytes], field_name: str = "value") -> str:
    """Normalize a 32-byte value to 64 lowercase hex characters.

    Accepts raw bytes or a hex string with an optional ``0x`` prefix.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError(f"{field_name}: expected 32 bytes, got {len(value)}")
        return bytes(value).hex()
    if not isinstance(value, str):
        raise ValueError(f"{field_name}: expected hex string, got {type(value).__name__}")
    s = value.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    if not SHA256_RE.match(s):
        raise ValueError(f"{field_name}: must be 32 bytes of hex (64 characters)")
    return s
