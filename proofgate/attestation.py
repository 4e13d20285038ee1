"""
proofgate Attestation Store

Versioned verifying-key metadata and trusted-attestor verification results.

Proof verification happens off-system. For each verifying-key version exactly
one attestor is trusted to record whether a given (public inputs, proof) pair
verified. The access gate never looks at a proof itself; it asks a Verifier,
and the default Verifier answers from this store.

Keys:
    keys            vk_version -> VerifyingKeyMeta   deactivated, never deleted
    attestations    (vk_version, public_inputs_hash, proof_hash) -> Attestation
                    write-once

TTL policy: ``ttl == 0`` means the store's default TTL; any TTL is capped at
``max_ttl`` (one day unless configured lower).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Type, runtime_checkable

from proofgate.config import MAX_ATTESTATION_TTL
from proofgate.errors import (
    AlreadyInitialized,
    AttestationExists,
    AttestationExpired,
    AttestationNotFound,
    AttestationRejected,
    GateError,
    InvalidInput,
    KeyInactive,
    KeyNotFound,
    NotInitialized,
    Unauthorized,
    VersionConflict,
)
from proofgate.events import AttestationSubmitted, EventBus, KeyDeactivated, KeyRegistered
from proofgate.hardening import CryptoUtils, Validators, ensure_valid
from proofgate.ledger import Ledger
from proofgate.observability import GateLayer, get_logger, timed_operation
from proofgate.schema import ATTESTATION_SCHEMA, first_error_field
from proofgate.signing import verify_envelope

logger = get_logger("attestation", GateLayer.ATTESTATION)

ATTESTATION_TYPE = "proofgate.attestation.v1"

AttestationKey = Tuple[int, str, str]


@dataclass(frozen=True)
class VerifyingKeyMeta:
    """Metadata for one deployed verifying key."""
    vk_version: int
    vk_hash: str
    circuit_id: str
    attestor: str
    created_at: int
    metadata_hash: Optional[str] = None
    active: bool = True
    deactivated_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Attestation:
    """An attestor's immutable record of one verification result."""
    vk_version: int
    public_inputs_hash: str
    proof_hash: str
    verified: bool
    attestor: str
    created_at: int
    expires_at: int

    @property
    def key(self) -> AttestationKey:
        return (self.vk_version, self.public_inputs_hash, self.proof_hash)

    def is_live(self, now: int) -> bool:
        return self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# VERIFIER INTERFACE
# =============================================================================

@runtime_checkable
class Verifier(Protocol):
    """Answers whether a (public inputs, proof) pair verified under a key version."""

    def verify(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> bool:
        ...


class AttestedVerifier:
    """Verifier backed by attestations in an AttestationStore."""

    def __init__(self, store: "AttestationStore"):
        self.store = store

    def verify(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> bool:
        return self.store.verify_attestation(vk_version, public_inputs_hash, proof_hash)


# =============================================================================
# STORE
# =============================================================================

class AttestationStore:
    """Verifying keys and the attestations written against them."""

    def __init__(
        self,
        ledger: Ledger,
        events: Optional[EventBus] = None,
        max_ttl: int = MAX_ATTESTATION_TTL,
    ):
        ensure_valid(Validators.validate_uint(max_ttl, "max_ttl", min_value=1, max_value=MAX_ATTESTATION_TTL))
        self._ledger = ledger
        self._events = events
        self._max_ttl = max_ttl
        self._admin: Optional[str] = None
        self._default_ttl = 0
        self._keys: Dict[int, VerifyingKeyMeta] = {}
        self._attestations: Dict[AttestationKey, Attestation] = {}

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def max_ttl(self) -> int:
        return self._max_ttl

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    # ─── administration ────────────────────────────────────────────────

    def _validate_default_ttl(self, ttl: int) -> int:
        return ensure_valid(Validators.validate_uint(ttl, "default_ttl", min_value=1, max_value=self._max_ttl))

    def initialize(self, admin: str, default_ttl: int) -> None:
        admin = ensure_valid(Validators.validate_principal(admin, "admin"))
        default_ttl = self._validate_default_ttl(default_ttl)
        with self._ledger.transaction():
            if self._admin is not None:
                raise AlreadyInitialized("attestation store already initialized")
            self._admin = admin
            self._default_ttl = default_ttl
        logger.info("Attestation store initialized", operation="initialize", default_ttl=default_ttl)

    def _require_admin(self, caller: str) -> None:
        if self._admin is None:
            raise NotInitialized("attestation store not initialized")
        if not CryptoUtils.secure_compare_str(caller, self._admin):
            raise Unauthorized("caller is not the attestation store admin")

    def set_default_ttl(self, caller: str, ttl: int) -> None:
        ttl = self._validate_default_ttl(ttl)
        with self._ledger.transaction():
            self._require_admin(caller)
            self._default_ttl = ttl

    def register_key(
        self,
        caller: str,
        vk_version: int,
        vk_hash: str,
        circuit_id: str,
        attestor: str,
        metadata_hash: Optional[str] = None,
    ) -> VerifyingKeyMeta:
        """Register a verifying key and the single attestor trusted for it."""
        vk_version = ensure_valid(Validators.validate_uint(vk_version, "vk_version", min_value=1))
        vk_hash = ensure_valid(Validators.validate_digest(vk_hash, "vk_hash"))
        circuit_id = ensure_valid(Validators.validate_string(circuit_id, "circuit_id", max_length=128))
        attestor = ensure_valid(Validators.validate_principal(attestor, "attestor"))
        if metadata_hash is not None:
            metadata_hash = ensure_valid(Validators.validate_digest(metadata_hash, "metadata_hash"))

        with self._ledger.transaction():
            self._require_admin(caller)
            if vk_version in self._keys:
                raise VersionConflict(f"verifying key version {vk_version} already registered", field="vk_version")
            now = self._ledger.timestamp()
            meta = VerifyingKeyMeta(
                vk_version=vk_version,
                vk_hash=vk_hash,
                circuit_id=circuit_id,
                attestor=attestor,
                created_at=now,
                metadata_hash=metadata_hash,
            )
            self._keys[vk_version] = meta
            self._emit(KeyRegistered(vk_version=vk_version, attestor=attestor, timestamp=now))

        logger.info("Verifying key registered", operation="register_key", vk_version=vk_version, circuit_id=circuit_id)
        return meta

    def deactivate_key(self, caller: str, vk_version: int) -> bool:
        """Deactivate a key version. Returns False if it was already inactive."""
        with self._ledger.transaction():
            self._require_admin(caller)
            meta = self._keys.get(vk_version)
            if meta is None:
                raise KeyNotFound(f"verifying key version {vk_version} not registered", field="vk_version")
            if not meta.active:
                return False
            now = self._ledger.timestamp()
            self._keys[vk_version] = replace(meta, active=False, deactivated_at=now)
            self._emit(KeyDeactivated(vk_version=vk_version, timestamp=now))

        logger.warning("Verifying key deactivated", operation="deactivate_key", vk_version=vk_version)
        return True

    # ─── key queries ───────────────────────────────────────────────────

    def get_key(self, vk_version: int) -> Optional[VerifyingKeyMeta]:
        with self._ledger.transaction():
            return self._keys.get(vk_version)

    def is_key_active(self, vk_version: int) -> bool:
        with self._ledger.transaction():
            meta = self._keys.get(vk_version)
            return meta is not None and meta.active

    def list_keys(self, active_only: bool = False) -> List[VerifyingKeyMeta]:
        with self._ledger.transaction():
            keys = [self._keys[v] for v in sorted(self._keys)]
        if active_only:
            keys = [k for k in keys if k.active]
        return keys

    # ─── attestations ──────────────────────────────────────────────────

    def _effective_ttl(self, ttl: int) -> int:
        ttl = ensure_valid(Validators.validate_uint(ttl, "ttl"))
        if ttl == 0:
            return self._default_ttl
        return min(ttl, self._max_ttl)

    def _write_attestation(
        self,
        attestor: str,
        vk_version: int,
        public_inputs_hash: str,
        proof_hash: str,
        verified: bool,
        ttl: int,
    ) -> Attestation:
        if not isinstance(verified, bool):
            raise InvalidInput("verified must be a boolean", field="verified")
        vk_version = ensure_valid(Validators.validate_uint(vk_version, "vk_version", min_value=1))
        public_inputs_hash = ensure_valid(Validators.validate_digest(public_inputs_hash, "public_inputs_hash"))
        proof_hash = ensure_valid(Validators.validate_digest(proof_hash, "proof_hash"))

        with self._ledger.transaction():
            if self._admin is None:
                raise NotInitialized("attestation store not initialized")
            meta = self._keys.get(vk_version)
            if meta is None:
                raise KeyNotFound(f"verifying key version {vk_version} not registered", field="vk_version")
            if not CryptoUtils.secure_compare_str(attestor, meta.attestor):
                raise Unauthorized("caller is not the attestor for this key version")
            if not meta.active:
                raise KeyInactive(f"verifying key version {vk_version} is inactive", field="vk_version")

            key = (vk_version, public_inputs_hash, proof_hash)
            if key in self._attestations:
                raise AttestationExists("attestation already recorded for these hashes")

            now = self._ledger.timestamp()
            record = Attestation(
                vk_version=vk_version,
                public_inputs_hash=public_inputs_hash,
                proof_hash=proof_hash,
                verified=verified,
                attestor=meta.attestor,
                created_at=now,
                expires_at=now + self._effective_ttl(ttl),
            )
            self._attestations[key] = record
            self._emit(AttestationSubmitted(
                vk_version=vk_version,
                verified=verified,
                expires_at=record.expires_at,
                timestamp=now,
            ))

        logger.info(
            "Attestation submitted",
            operation="submit_attestation",
            vk_version=vk_version,
            verified=verified,
            expires_at=record.expires_at,
        )
        return record

    @timed_operation(logger, "submit_attestation")
    def submit_attestation(
        self,
        attestor: str,
        vk_version: int,
        public_inputs_hash: str,
        proof_hash: str,
        verified: bool,
        ttl: int = 0,
    ) -> Attestation:
        """Record a verification result. Only the key's registered attestor may call this."""
        return self._write_attestation(attestor, vk_version, public_inputs_hash, proof_hash, verified, ttl)

    def submit_signed_attestation(self, envelope: Mapping[str, Any]) -> Attestation:
        """
        Record a verification result carried in a signed envelope.

        The envelope's Ed25519 proof stands in for the caller identity: its
        did:key must be the attestor registered for ``vk_version``.
        """
        envelope = dict(envelope)
        problem = first_error_field(envelope, ATTESTATION_SCHEMA)
        if problem is not None:
            field, message = problem
            raise InvalidInput(message, field=field or None)

        check = verify_envelope(envelope)
        if not check.ok:
            logger.warning("Signed attestation rejected", operation="submit_signed_attestation", error_code="unauthorized")
            raise Unauthorized(f"attestation signature invalid: {check.error}")

        return self._write_attestation(
            check.signer,
            envelope["vk_version"],
            envelope["public_inputs_hash"],
            envelope["proof_hash"],
            envelope["verified"],
            envelope["ttl"],
        )

    def get_attestation(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> Optional[Attestation]:
        key = self._lookup_key(vk_version, public_inputs_hash, proof_hash)
        with self._ledger.transaction():
            return self._attestations.get(key)

    def _lookup_key(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> AttestationKey:
        return (
            ensure_valid(Validators.validate_uint(vk_version, "vk_version")),
            ensure_valid(Validators.validate_digest(public_inputs_hash, "public_inputs_hash")),
            ensure_valid(Validators.validate_digest(proof_hash, "proof_hash")),
        )

    def _evaluate(
        self, vk_version: int, public_inputs_hash: str, proof_hash: str,
    ) -> Tuple[Optional[Attestation], Optional[Type[GateError]]]:
        key = self._lookup_key(vk_version, public_inputs_hash, proof_hash)
        with self._ledger.transaction():
            meta = self._keys.get(vk_version)
            if meta is None:
                return None, KeyNotFound
            if not meta.active:
                return None, KeyInactive
            record = self._attestations.get(key)
            if record is None:
                return None, AttestationNotFound
            if not record.verified:
                return record, AttestationRejected
            if not record.is_live(self._ledger.timestamp()):
                return record, AttestationExpired
            return record, None

    def check_attestation(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> Attestation:
        """Return the live, positive attestation or raise the precise reason it is unusable."""
        record, error = self._evaluate(vk_version, public_inputs_hash, proof_hash)
        if error is not None:
            raise error(f"attestation unusable for key version {vk_version}")
        return record

    def verify_attestation(self, vk_version: int, public_inputs_hash: str, proof_hash: str) -> bool:
        """True iff a positive, unexpired attestation exists under an active key."""
        _, error = self._evaluate(vk_version, public_inputs_hash, proof_hash)
        return error is None

    def export_store(self) -> Dict[str, Any]:
        with self._ledger.transaction():
            return {
                "default_ttl": self._default_ttl,
                "max_ttl": self._max_ttl,
                "keys": [self._keys[v].to_dict() for v in sorted(self._keys)],
                "attestation_count": len(self._attestations),
            }

    def _emit(self, event) -> None:
        if self._events is not None:
            self._events.publish(event)
