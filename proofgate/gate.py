"""
proofgate Access Gate

Validates proof submissions end-to-end, issues short-lived access grants and
enforces them on privileged reads.

submit_proof pipeline (short-circuits on the first failure):

    received
      │  1. precondition       initialized, not paused, collaborators wired,
      │                        grant_ttl readable,
      │                        vk_version active
      │  2. requester binding  requester_commitment == commit_principal(requester)
      │  3. commitment         record_commitment == commitment on file
      │  4. root               credential_root is the issuer's active root, not revoked
      │  5. time window        min_timestamp <= now <= max_timestamp
      │  6. attestation        Verifier.verify(vk_version, pih, proof_hash)
      │  7. nullifier          atomic check-and-insert
      │  8. grant              expires_at = now + grant_ttl
      ▼  9. ProofAccepted
    granted

Each call runs inside one ledger transaction. A rejection raises a GateError,
emits ProofRejected and leaves nullifiers and grants untouched.

Nullifier scope is global: one consumed set across every issuer and circuit.
Grants are keyed by (record_id, requester); a newer proof replaces the grant.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from proofgate.attestation import AttestationStore, AttestedVerifier, Verifier
from proofgate.config import ConfigError, ConfigValidationError, GateConfig
from proofgate.errors import (
    AlreadyInitialized,
    AttestationRejected,
    CommitmentMismatch,
    GateError,
    GrantExpired,
    GrantMissing,
    InvalidInput,
    KeyInactive,
    KeyNotFound,
    Misconfigured,
    NotInitialized,
    NullifierReused,
    Paused,
    RequesterMismatch,
    RootMismatch,
    RootRevoked,
    TimestampOutOfBounds,
    Unauthorized,
)
from proofgate.events import AccessDenied, AccessGranted, EventBus, ProofAccepted, ProofRejected
from proofgate.hardening import AtomicCounter, CryptoUtils, Validators, ensure_valid
from proofgate.inputs import (
    PublicInputs,
    commit_principal,
    compute_proof_hash,
    public_inputs_hash,
)
from proofgate.ledger import Ledger
from proofgate.observability import GateLayer, correlated, get_logger, timed_operation
from proofgate.records import RecordStore
from proofgate.registry import CredentialRootRegistry

logger = get_logger("gate", GateLayer.GATE)

GrantKey = Tuple[int, str]


# =============================================================================
# OWNED STATE
# =============================================================================

class NullifierSet:
    """Write-once set of consumed nullifiers."""

    def __init__(self):
        self._consumed: Dict[str, int] = {}
        self._lock = threading.Lock()

    def consume(self, nullifier: str, now: int) -> bool:
        """
        Insert ``nullifier`` if it is fresh.

        Returns True if it was fresh, False if it had already been consumed.
        """
        with self._lock:
            if nullifier in self._consumed:
                return False
            self._consumed[nullifier] = now
            return True

    def __contains__(self, nullifier: str) -> bool:
        with self._lock:
            return nullifier in self._consumed

    def __len__(self) -> int:
        with self._lock:
            return len(self._consumed)


@dataclass(frozen=True)
class AccessGrant:
    """Time-limited authorization written by a successful proof submission."""
    record_id: int
    requester_commitment: str
    pseudonym: str
    issuer_id: str
    created_at: int
    expires_at: int
    scope: str = "read"

    def is_live(self, now: int) -> bool:
        return self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GrantHandle:
    """What a successful submitter gets back."""
    record_id: int
    pseudonym: str
    scope: str
    expires_at: int
    nullifier_hash: str


# =============================================================================
# GATE
# =============================================================================

class AccessGate:
    """
    Proof-gated access control over a RecordStore.

    Args:
        ledger: Execution environment shared with the registry and the store.
        events: Optional bus for audit events.
        config: Gate settings; ``zk_enforced`` and ``grant_ttl_seconds`` are
            read on every call.
    """

    def __init__(
        self,
        ledger: Ledger,
        events: Optional[EventBus] = None,
        config: Optional[GateConfig] = None,
    ):
        self._ledger = ledger
        self._events = events
        self._config = config or GateConfig()
        self._admin: Optional[str] = None
        self._paused = False
        self._record_store: Optional[RecordStore] = None
        self._attestation_store: Optional[AttestationStore] = None
        self._registry: Optional[CredentialRootRegistry] = None
        self._verifier: Optional[Verifier] = None
        self._nullifiers = NullifierSet()
        self._grants: Dict[GrantKey, AccessGrant] = {}
        self._accepted = AtomicCounter(0)
        self._rejected = AtomicCounter(0)

    # ─── administration ────────────────────────────────────────────────

    def initialize(
        self,
        admin: str,
        record_store: RecordStore,
        attestation_store: Optional[AttestationStore] = None,
        credential_registry: Optional[CredentialRootRegistry] = None,
        verifier: Optional[Verifier] = None,
    ) -> None:
        admin = ensure_valid(Validators.validate_principal(admin, "admin"))
        if not isinstance(record_store, RecordStore):
            raise InvalidInput("record_store does not implement RecordStore", field="record_store")
        with self._ledger.transaction():
            if self._admin is not None:
                raise AlreadyInitialized("gate already initialized")
            if verifier is not None:
                self._install_verifier(verifier)
            if attestation_store is not None:
                self._install_attestation_store(attestation_store)
            if credential_registry is not None:
                self._install_registry(credential_registry)
            self._record_store = record_store
            self._admin = admin
        logger.info("Gate initialized", operation="initialize", zk_enforced=self.zk_enforced)

    def _require_admin(self, caller: str) -> None:
        if self._admin is None:
            raise NotInitialized("gate not initialized")
        if not CryptoUtils.secure_compare_str(caller, self._admin):
            raise Unauthorized("caller is not the gate admin")

    def _check_ledger(self, component: Any, name: str) -> None:
        if component.ledger is not self._ledger:
            raise Misconfigured(f"{name} runs on a different ledger", field=name)

    def _install_registry(self, registry: CredentialRootRegistry) -> None:
        self._check_ledger(registry, "credential_registry")
        self._registry = registry

    def _install_attestation_store(self, store: AttestationStore) -> None:
        self._check_ledger(store, "attestation_store")
        replace_verifier = self._verifier is None or isinstance(self._verifier, AttestedVerifier)
        self._attestation_store = store
        if replace_verifier:
            self._verifier = AttestedVerifier(store)

    def _install_verifier(self, verifier: Verifier) -> None:
        if not isinstance(verifier, Verifier):
            raise InvalidInput("verifier does not implement Verifier", field="verifier")
        self._verifier = verifier

    def set_credential_registry(self, caller: str, registry: CredentialRootRegistry) -> None:
        with self._ledger.transaction():
            self._require_admin(caller)
            self._install_registry(registry)

    def set_attestation_store(self, caller: str, store: AttestationStore) -> None:
        """Install ``store``; an AttestedVerifier over it replaces any attestation-backed verifier."""
        with self._ledger.transaction():
            self._require_admin(caller)
            self._install_attestation_store(store)

    def set_verifier(self, caller: str, verifier: Verifier) -> None:
        with self._ledger.transaction():
            self._require_admin(caller)
            self._install_verifier(verifier)

    def set_zk_enforced(self, caller: str, enforced: bool) -> None:
        if not isinstance(enforced, bool):
            raise InvalidInput("enforced must be a boolean", field="zk_enforced")
        with self._ledger.transaction():
            self._require_admin(caller)
            self._config.zk_enforced.set(enforced)
        logger.warning("ZK enforcement changed", operation="set_zk_enforced", zk_enforced=enforced)

    def set_grant_ttl(self, caller: str, ttl: int) -> None:
        ttl = ensure_valid(Validators.validate_uint(ttl, "grant_ttl", min_value=1))
        with self._ledger.transaction():
            self._require_admin(caller)
            try:
                self._config.grant_ttl_seconds.set(ttl)
            except ConfigValidationError as e:
                raise InvalidInput(str(e), field="grant_ttl") from e

    def pause(self, caller: str) -> None:
        """Halt proof submissions and privileged reads."""
        with self._ledger.transaction():
            self._require_admin(caller)
            self._paused = True
        logger.warning("Gate paused", operation="pause")

    def unpause(self, caller: str) -> None:
        with self._ledger.transaction():
            self._require_admin(caller)
            self._paused = False
        logger.info("Gate unpaused", operation="unpause")

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def zk_enforced(self) -> bool:
        return self._setting("zk_enforced")

    @property
    def grant_ttl(self) -> int:
        return self._setting("grant_ttl_seconds")

    def _setting(self, name: str) -> Any:
        """Read a gate setting; an unreadable one fails closed as Misconfigured."""
        try:
            return getattr(self._config, name).get()
        except ConfigError as e:
            raise Misconfigured(f"gate setting {name} is invalid: {e}", field=name) from e

    # ─── proof submission ──────────────────────────────────────────────

    @correlated
    @timed_operation(logger, "submit_proof")
    def submit_proof(
        self,
        requester: str,
        public_inputs: Union[PublicInputs, Mapping[str, Any]],
        proof_bytes: bytes,
        scope: str = "read",
    ) -> GrantHandle:
        """
        Validate a proof submission and, on success, write an access grant.

        Raises the GateError subclass for the first failing check.
        """
        with self._ledger.transaction():
            now = self._ledger.timestamp()
            try:
                handle = self._admit(requester, public_inputs, proof_bytes, scope, now)
            except GateError as e:
                self._rejected.increment()
                self._emit(ProofRejected(
                    record_id=_record_id_hint(public_inputs),
                    reason_code=e.reason_code,
                    timestamp=now,
                ))
                logger.info(
                    "Proof rejected",
                    operation="submit_proof",
                    error_code=e.reason_code,
                    record_id=_record_id_hint(public_inputs),
                )
                raise

        self._accepted.increment()
        logger.info(
            "Proof accepted",
            operation="submit_proof",
            record_id=handle.record_id,
            pseudonym=handle.pseudonym,
            expires_at=handle.expires_at,
        )
        return handle

    def _admit(
        self,
        requester: str,
        public_inputs: Union[PublicInputs, Mapping[str, Any]],
        proof_bytes: bytes,
        scope: str,
        now: int,
    ) -> GrantHandle:
        # 1. precondition
        if self._admin is None:
            raise NotInitialized("gate not initialized")
        if self._paused:
            raise Paused("gate is paused")
        registry, store, verifier, records = self._collaborators()
        grant_ttl = self.grant_ttl

        requester = ensure_valid(Validators.validate_principal(requester, "requester"))
        scope = ensure_valid(Validators.validate_string(scope, "scope", max_length=64))
        pi = public_inputs if isinstance(public_inputs, PublicInputs) else PublicInputs.from_dict(public_inputs)
        proof_hash = compute_proof_hash(proof_bytes)

        if not store.is_key_active(pi.vk_version):
            if store.get_key(pi.vk_version) is None:
                raise KeyNotFound(f"verifying key version {pi.vk_version} not registered", field="vk_version")
            raise KeyInactive(f"verifying key version {pi.vk_version} is inactive", field="vk_version")

        # 2. requester binding
        if not CryptoUtils.secure_compare_str(pi.requester_commitment, commit_principal(requester)):
            raise RequesterMismatch("requester_commitment does not commit to the requester", field="requester_commitment")

        # 3. commitment binding
        on_file = records.record_commitment_of(pi.record_id)
        if on_file is None:
            raise CommitmentMismatch("no commitment on file for record", field="record_id")
        if not CryptoUtils.secure_compare_str(pi.record_commitment, on_file):
            raise CommitmentMismatch("record_commitment does not match the record on file", field="record_commitment")

        # 4. root consistency
        if registry.is_root_revoked(pi.issuer_id, pi.credential_root):
            raise RootRevoked("credential_root has been revoked", field="credential_root")
        if not CryptoUtils.secure_compare_str(pi.credential_root, registry.get_active_root(pi.issuer_id)):
            raise RootMismatch("credential_root is not the issuer's active root", field="credential_root")

        # 5. timestamp window
        if not pi.min_timestamp <= now <= pi.max_timestamp:
            raise TimestampOutOfBounds("ledger time outside the proof's validity window")

        # 6. attestation
        pih = public_inputs_hash(pi)
        if not verifier.verify(pi.vk_version, pih, proof_hash):
            store.check_attestation(pi.vk_version, pih, proof_hash)
            raise AttestationRejected("verifier declined the proof")

        # 7. nullifier; nothing after this step may fail
        if not self._nullifiers.consume(pi.nullifier, now):
            raise NullifierReused("nullifier already consumed", field="nullifier")

        # 8. grant
        grant = AccessGrant(
            record_id=pi.record_id,
            requester_commitment=pi.requester_commitment,
            pseudonym=pi.pseudonym,
            issuer_id=pi.issuer_id,
            created_at=now,
            expires_at=now + grant_ttl,
            scope=scope,
        )
        self._grants[(pi.record_id, requester)] = grant

        # 9. audit
        subject = pi.audit_subject()
        self._emit(ProofAccepted.for_subject(subject, now))

        return GrantHandle(
            record_id=grant.record_id,
            pseudonym=grant.pseudonym,
            scope=grant.scope,
            expires_at=grant.expires_at,
            nullifier_hash=subject.nullifier_hash,
        )

    def _collaborators(self) -> Tuple[CredentialRootRegistry, AttestationStore, Verifier, RecordStore]:
        missing = [
            name for name, value in (
                ("credential_registry", self._registry),
                ("attestation_store", self._attestation_store),
                ("verifier", self._verifier),
                ("record_store", self._record_store),
            )
            if value is None
        ]
        if missing:
            raise Misconfigured(f"gate is missing collaborators: {', '.join(missing)}")
        return self._registry, self._attestation_store, self._verifier, self._record_store

    # ─── read path ─────────────────────────────────────────────────────

    @correlated
    def authorize_read(self, requester: str, record_id: int) -> Optional[AccessGrant]:
        """
        Decide a privileged read.

        The ACL is evaluated first and a failure there never consults grants.
        Returns the grant relied on, or None in ACL-only mode.
        """
        with self._ledger.transaction():
            now = self._ledger.timestamp()
            grant = self._decide_read(requester, record_id, now)
            self._emit_granted(record_id, grant, now)
        return grant

    def _decide_read(self, requester: str, record_id: int, now: int) -> Optional[AccessGrant]:
        try:
            return self._authorize(requester, record_id, now)
        except GateError as e:
            self._emit(AccessDenied(
                record_id=record_id if _is_uint(record_id) else 0,
                reason_code=e.reason_code,
                timestamp=now,
            ))
            logger.info("Read denied", operation="authorize_read", error_code=e.reason_code)
            raise

    def _emit_granted(self, record_id: int, grant: Optional[AccessGrant], now: int) -> None:
        self._emit(AccessGranted(
            record_id=record_id,
            pseudonym=grant.pseudonym if grant else "",
            timestamp=now,
        ))

    def _authorize(self, requester: str, record_id: int, now: int) -> Optional[AccessGrant]:
        if self._admin is None:
            raise NotInitialized("gate not initialized")
        if self._paused:
            raise Paused("gate is paused")
        requester = ensure_valid(Validators.validate_principal(requester, "requester"))
        record_id = ensure_valid(Validators.validate_uint(record_id, "record_id"))

        if not self._record_store.acl_permits(record_id, requester):
            raise Unauthorized("requester is not on the record's access list")

        if not self.zk_enforced:
            return None

        if self._registry is None or self._attestation_store is None or self._verifier is None:
            raise Misconfigured("zk enforcement is on but the gate is not fully configured")

        grant = self._grants.get((record_id, requester))
        if grant is None:
            raise GrantMissing("no access grant for this record")
        if not grant.is_live(now):
            raise GrantExpired("access grant has expired")
        return grant

    @correlated
    def get_record(self, requester: str, record_id: int) -> Any:
        """
        Privileged read: authorize, then fetch from the record store.

        AccessGranted is emitted only once the fetch has returned.
        """
        with self._ledger.transaction():
            now = self._ledger.timestamp()
            grant = self._decide_read(requester, record_id, now)
            content = self._record_store.fetch(record_id)
            self._emit_granted(record_id, grant, now)
        return content

    # ─── queries ───────────────────────────────────────────────────────

    def get_grant_status(self, record_id: int, requester: str) -> Optional[int]:
        """``expires_at`` of a live grant, or None."""
        requester = ensure_valid(Validators.validate_principal(requester, "requester"))
        record_id = ensure_valid(Validators.validate_uint(record_id, "record_id"))
        with self._ledger.transaction():
            grant = self._grants.get((record_id, requester))
            if grant is None or not grant.is_live(self._ledger.timestamp()):
                return None
            return grant.expires_at

    def is_nullifier_used(self, nullifier: str) -> bool:
        nullifier = ensure_valid(Validators.validate_digest(nullifier, "nullifier"))
        return nullifier in self._nullifiers

    def purge_expired_grants(self) -> int:
        """Drop expired grants. Storage hygiene only; expiry is enforced at read time."""
        with self._ledger.transaction():
            now = self._ledger.timestamp()
            expired = [k for k, g in self._grants.items() if not g.is_live(now)]
            for key in expired:
                del self._grants[key]
        if expired:
            logger.debug("Purged expired grants", operation="purge_expired_grants", count=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, int]:
        with self._ledger.transaction():
            return {
                "accepted": self._accepted.get(),
                "rejected": self._rejected.get(),
                "nullifiers": len(self._nullifiers),
                "grants": len(self._grants),
            }

    def _emit(self, event) -> None:
        if self._events is not None:
            self._events.publish(event)


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _record_id_hint(public_inputs: Any) -> int:
    """Record id for a rejection event, even when the inputs failed to parse."""
    if isinstance(public_inputs, PublicInputs):
        return public_inputs.record_id
    if isinstance(public_inputs, Mapping) and _is_uint(public_inputs.get("record_id")):
        return public_inputs["record_id"]
    return 0
