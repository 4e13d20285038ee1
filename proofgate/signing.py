"""proofgate.signing

Ed25519 proofs over canonical JSON envelopes, used for signed attestations.

Profile:
- signer identity is a ``did:key`` (Ed25519 only); the verification method is
  ``did:key:z...#<kid>``
- the proof is a single compact object whose ``jws`` member holds the raw
  64-byte signature as unpadded base64url
- the signing input is the JCS bytes of the envelope with ``proof`` removed
"""

from __future__ import annotations

import base64
import hmac
import json
import os
import pathlib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from proofgate.canonical import jcs_canonicalize


PROOF_TYPE = "ProofgateEd25519Signature2026"
PROOF_PURPOSE = "assertionMethod"

_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(_B58_ALPHABET)}
_ED25519_PUB_MULTICODEC = bytes([0xED, 0x01])

_RFC3339_Z_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")
_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------


def b58encode(data: bytes) -> str:
    leading = len(data) - len(data.lstrip(b"\x00"))
    num = int.from_bytes(data, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(_B58_ALPHABET[rem])
    out.extend(_B58_ALPHABET[0:1] * leading)
    out.reverse()
    return out.decode("ascii")


def b58decode(text: str) -> bytes:
    raw = text.encode("ascii")
    num = 0
    for c in raw:
        if c not in _B58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _B58_INDEX[c]
    leading = len(raw) - len(raw.lstrip(_B58_ALPHABET[0:1]))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * leading + body


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    pad = "=" * ((4 - len(text) % 4) % 4)
    return base64.urlsafe_b64decode((text + pad).encode("ascii"))


def now_rfc3339() -> str:
    """Timestamp for ``proof.created``; honours SOURCE_DATE_EPOCH for reproducible output."""
    sde = os.environ.get("SOURCE_DATE_EPOCH", "").strip()
    if sde:
        try:
            dt = datetime.fromtimestamp(int(sde, 10), tz=timezone.utc)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
    else:
        dt = datetime.now(timezone.utc)
    return dt.replace(microsecond=0).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# did:key
# ---------------------------------------------------------------------------


def did_key_from_public_bytes(pub: bytes) -> str:
    if len(pub) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(pub)}")
    return "did:key:z" + b58encode(_ED25519_PUB_MULTICODEC + pub)


def public_key_from_did_key(did: str) -> Ed25519PublicKey:
    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... identifiers are supported")
    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(_ED25519_PUB_MULTICODEC):
        raise ValueError("did:key multicodec prefix is not Ed25519")
    raw = decoded[len(_ED25519_PUB_MULTICODEC):]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def base_did(verification_method: str) -> str:
    """did:key:z...#key-1 -> did:key:z..."""
    return str(verification_method or "").split("#", 1)[0]


# ---------------------------------------------------------------------------
# Proofs
# ---------------------------------------------------------------------------


def signing_input(envelope: Dict[str, Any]) -> bytes:
    return jcs_canonicalize({k: v for k, v in envelope.items() if k != "proof"})


@dataclass
class SignatureCheck:
    verification_method: str
    ok: bool
    error: str = ""

    @property
    def signer(self) -> str:
        return base_did(self.verification_method)


def _check_proof_shape(proof: Any) -> None:
    if not isinstance(proof, dict):
        raise ValueError("proof must be an object")
    t = proof.get("type")
    if not isinstance(t, str) or not hmac.compare_digest(t, PROOF_TYPE):
        raise ValueError(f"Unsupported proof.type: {t!r} (expected {PROOF_TYPE})")
    created = proof.get("created")
    if not isinstance(created, str) or not _RFC3339_Z_RE.match(created):
        raise ValueError("proof.created must be RFC3339 with seconds and Z")
    vm = proof.get("verificationMethod")
    if not isinstance(vm, str) or not vm.startswith("did:key:"):
        raise ValueError("proof.verificationMethod must be a did:key")
    if proof.get("proofPurpose") != PROOF_PURPOSE:
        raise ValueError(f"Unsupported proof.proofPurpose: {proof.get('proofPurpose')!r}")
    jws = proof.get("jws")
    if not isinstance(jws, str) or not _B64URL_RE.match(jws):
        raise ValueError("proof.jws must be unpadded base64url")


def sign_envelope(
    envelope: Dict[str, Any],
    private_key: Ed25519PrivateKey,
    verification_method: str,
    created: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a copy of ``envelope`` carrying an Ed25519 proof."""
    signature = private_key.sign(signing_input(envelope))
    proof = {
        "type": PROOF_TYPE,
        "created": created or now_rfc3339(),
        "verificationMethod": verification_method,
        "proofPurpose": PROOF_PURPOSE,
        "jws": b64url_encode(signature),
    }
    _check_proof_shape(proof)
    signed = {k: v for k, v in envelope.items() if k != "proof"}
    signed["proof"] = proof
    return signed


def verify_envelope(envelope: Dict[str, Any]) -> SignatureCheck:
    """Verify the single proof attached to ``envelope``."""
    proof = envelope.get("proof")
    vm = str(proof.get("verificationMethod") or "") if isinstance(proof, dict) else ""
    try:
        _check_proof_shape(proof)
        public_key = public_key_from_did_key(base_did(vm))
        signature = b64url_decode(proof["jws"])
        if len(signature) != 64:
            raise ValueError(f"Ed25519 signature must be 64 bytes, got {len(signature)}")
        public_key.verify(signature, signing_input(envelope))
    except InvalidSignature:
        return SignatureCheck(verification_method=vm, ok=False, error="signature does not verify")
    except ValueError as ex:
        return SignatureCheck(verification_method=vm, ok=False, error=str(ex))
    return SignatureCheck(verification_method=vm, ok=True)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def generate_ed25519_jwk(kid: str = "key-1") -> Dict[str, Any]:
    """Generate a private OKP JWK."""
    priv = Ed25519PrivateKey.generate()
    d = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    x = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(x), "d": b64url_encode(d), "kid": kid}


def public_jwk(jwk: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in jwk.items() if k != "d"}


def load_private_key_from_jwk(jwk: Dict[str, Any]) -> Tuple[Ed25519PrivateKey, str]:
    """Returns (private_key, verification_method)."""
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValueError("Only OKP/Ed25519 JWK is supported")
    if not jwk.get("d") or not jwk.get("x"):
        raise ValueError("JWK must include both 'd' and 'x'")
    priv = Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"]))
    pub = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    if pub != b64url_decode(jwk["x"]):
        raise ValueError("JWK 'x' does not match the private key")
    kid = str(jwk.get("kid") or "key-1")
    return priv, f"{did_key_from_public_bytes(pub)}#{kid}"


def load_signing_key(path: Union[str, pathlib.Path]) -> Tuple[Ed25519PrivateKey, str]:
    """Load a private JWK file written by ``proofgate keygen``."""
    obj = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("key file must be a JSON object")
    return load_private_key_from_jwk(obj)
