"""
proofgate Public Inputs

The public view of an access proof and the hashes computed over it.

All digests are domain separated: ``H(JCS({"domain": D, "payload": P}))``.
Holder-side tooling must produce byte-identical hashes, so the domains and
payload shapes below are a wire format and never change within a version.

    public_inputs_hash   proofgate.public_inputs.v1   all twelve fields
    commit_principal     proofgate.principal.v1       address string
    compute_pseudonym    proofgate.pseudonym.v1       requester, issuer, record
    record commitment    proofgate.record.v1          record content
    claim commitment     proofgate.claim.v1           claim content
    derive_nullifier     proofgate.nullifier.v1       seed, requester, record
    nullifier_hash       proofgate.nullifier_hash.v1  nullifier
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Union

from proofgate.canonical import domain_digest, normalize_hex32, sha256_bytes
from proofgate.errors import InvalidInput
from proofgate.events import AuditSubject
from proofgate.hardening import Validators, ensure_valid
from proofgate.schema import PUBLIC_INPUTS_SCHEMA, first_error_field

PUBLIC_INPUTS_DOMAIN = "proofgate.public_inputs.v1"
PRINCIPAL_DOMAIN = "proofgate.principal.v1"
PSEUDONYM_DOMAIN = "proofgate.pseudonym.v1"
RECORD_DOMAIN = "proofgate.record.v1"
CLAIM_DOMAIN = "proofgate.claim.v1"
NULLIFIER_DOMAIN = "proofgate.nullifier.v1"
NULLIFIER_HASH_DOMAIN = "proofgate.nullifier_hash.v1"

_HEX_FIELDS = (
    "record_commitment",
    "credential_root",
    "requester_commitment",
    "provider_commitment",
    "claim_commitment",
    "nullifier",
    "pseudonym",
)


@dataclass(frozen=True)
class PublicInputs:
    """
    Public inputs of an access proof.

    Hex fields are normalized to 64 lowercase characters on construction.
    Never published; events see only ``audit_subject()``.
    """
    record_id: int
    record_commitment: str
    credential_root: str
    issuer_id: str
    requester_commitment: str
    provider_commitment: str
    claim_commitment: str
    min_timestamp: int
    max_timestamp: int
    nullifier: str
    pseudonym: str
    vk_version: int

    def __post_init__(self):
        ensure_valid(Validators.validate_uint(self.record_id, "record_id"))
        ensure_valid(Validators.validate_uint(self.vk_version, "vk_version", min_value=1))
        ensure_valid(Validators.validate_uint(self.min_timestamp, "min_timestamp"))
        ensure_valid(Validators.validate_uint(self.max_timestamp, "max_timestamp"))
        object.__setattr__(
            self, "issuer_id", ensure_valid(Validators.validate_principal(self.issuer_id, "issuer_id"))
        )
        for name in _HEX_FIELDS:
            object.__setattr__(self, name, ensure_valid(Validators.validate_digest(getattr(self, name), name)))
        if self.min_timestamp > self.max_timestamp:
            raise InvalidInput("min_timestamp is after max_timestamp", field="max_timestamp")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PublicInputs":
        """Build from a JSON object, validating it against the public-inputs schema."""
        if not isinstance(data, Mapping):
            raise InvalidInput("public inputs must be an object")
        problem = first_error_field(dict(data), PUBLIC_INPUTS_SCHEMA)
        if problem is not None:
            field, message = problem
            raise InvalidInput(message, field=field or None)
        return cls(**{f.name: data[f.name] for f in fields(cls)})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def audit_subject(self) -> AuditSubject:
        return AuditSubject(
            record_id=self.record_id,
            pseudonym=self.pseudonym,
            nullifier_hash=nullifier_hash(self.nullifier),
        )


def _as_public_inputs(value: Union[PublicInputs, Mapping[str, Any]]) -> PublicInputs:
    if isinstance(value, PublicInputs):
        return value
    return PublicInputs.from_dict(value)


def public_inputs_hash(public_inputs: Union[PublicInputs, Mapping[str, Any]]) -> str:
    """Canonical hash over the full public-input tuple."""
    pi = _as_public_inputs(public_inputs)
    return domain_digest(PUBLIC_INPUTS_DOMAIN, pi.to_dict())


def compute_proof_hash(proof_bytes: bytes) -> str:
    """SHA-256 of the raw proof bytes."""
    proof_bytes = ensure_valid(Validators.validate_bytes(proof_bytes, "proof_bytes", min_length=1))
    return sha256_bytes(proof_bytes)


def commit_principal(address: str) -> str:
    address = ensure_valid(Validators.validate_principal(address, "address"))
    return domain_digest(PRINCIPAL_DOMAIN, address)


def compute_pseudonym(requester: str, issuer_id: str, record_id: int) -> str:
    """Per-(issuer, record) pseudonym; unlinkable across records without the requester."""
    ensure_valid(Validators.validate_uint(record_id, "record_id"))
    return domain_digest(
        PSEUDONYM_DOMAIN,
        {"requester": requester, "issuer_id": issuer_id, "record_id": record_id},
    )


def compute_record_commitment(record: Any) -> str:
    return domain_digest(RECORD_DOMAIN, record)


def compute_claim_commitment(claim: Any) -> str:
    return domain_digest(CLAIM_DOMAIN, claim)


def derive_nullifier(seed: Union[str, bytes], requester: str, record_id: int) -> str:
    """One-time nullifier for a (seed, requester, record) triple."""
    if isinstance(seed, (bytes, bytearray)):
        seed = bytes(seed).hex()
    if not isinstance(seed, str) or not seed:
        raise InvalidInput("seed must be a non-empty string or bytes", field="seed")
    ensure_valid(Validators.validate_uint(record_id, "record_id"))
    return domain_digest(
        NULLIFIER_DOMAIN,
        {"seed": seed, "requester": requester, "record_id": record_id},
    )


def nullifier_hash(nullifier: Union[str, bytes]) -> str:
    """Publishable digest of a nullifier."""
    nullifier = ensure_valid(Validators.validate_digest(nullifier, "nullifier"))
    return domain_digest(NULLIFIER_HASH_DOMAIN, nullifier)
