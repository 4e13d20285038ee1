"""
proofgate Credential Root Registry

Per-issuer versioned credential roots with revocation tracking.

Storage model:
    history      issuer_id -> {version -> IssuerRoot}   append-only log
    active       issuer_id -> version                   active pointer
    revoked      {(issuer_id, root_hash)}               revocation set

Rotating a root appends a new version and moves the pointer; the previous
entry stays in the log with ``superseded_at`` set, so ``root_active_at`` can
answer what was active at any past ledger time. Revoking the active root
clears the pointer, leaving the issuer without an active root until it
publishes a new one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Set, Tuple

from proofgate.errors import (
    AlreadyInitialized,
    NotInitialized,
    RootNotFound,
    RootRevoked,
    Unauthorized,
    VersionConflict,
)
from proofgate.events import EventBus, RootRevoked as RootRevokedEvent, RootUpdated
from proofgate.hardening import (
    CryptoUtils,
    InvariantChecker,
    InvariantViolation,
    Validators,
    ensure_valid,
)
from proofgate.ledger import Ledger
from proofgate.observability import GateLayer, get_logger, timed_operation

logger = get_logger("registry", GateLayer.REGISTRY)


@dataclass(frozen=True)
class IssuerRoot:
    """One published credential root."""
    issuer_id: str
    root_hash: str
    version: int
    activated_at: int
    metadata_hash: Optional[str] = None
    active: bool = True
    superseded_at: Optional[int] = None
    revoked: bool = False
    revoked_at: Optional[int] = None

    def was_active_at(self, timestamp: int) -> bool:
        if timestamp < self.activated_at:
            return False
        if self.superseded_at is not None and timestamp >= self.superseded_at:
            return False
        if self.revoked_at is not None and timestamp >= self.revoked_at:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CredentialRootRegistry:
    """
    Tracks which credential roots each issuer currently vouches for.

    Mutators are gated on the global admin, the issuer principal itself, or
    the issuer's delegated admin, and run inside one ledger transaction.
    """

    def __init__(self, ledger: Ledger, events: Optional[EventBus] = None):
        self._ledger = ledger
        self._events = events
        self._admin: Optional[str] = None
        self._issuer_admins: Dict[str, str] = {}
        self._history: Dict[str, Dict[int, IssuerRoot]] = {}
        self._active: Dict[str, int] = {}
        self._revoked: Set[Tuple[str, str]] = set()
        self._revocation_roots: Dict[str, Dict[str, Any]] = {}

    # ─── administration ────────────────────────────────────────────────

    def initialize(self, admin: str) -> None:
        admin = ensure_valid(Validators.validate_principal(admin, "admin"))
        with self._ledger.transaction():
            if self._admin is not None:
                raise AlreadyInitialized("registry already initialized")
            self._admin = admin
        logger.info("Registry initialized", operation="initialize")

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def admin(self) -> Optional[str]:
        return self._admin

    def _require_initialized(self) -> str:
        if self._admin is None:
            raise NotInitialized("registry not initialized")
        return self._admin

    def _require_admin(self, caller: str) -> None:
        admin = self._require_initialized()
        if not CryptoUtils.secure_compare_str(caller, admin):
            raise Unauthorized("caller is not the registry admin")

    def _require_issuer_authority(self, caller: str, issuer_id: str) -> None:
        admin = self._require_initialized()
        if CryptoUtils.secure_compare_str(caller, admin):
            return
        if CryptoUtils.secure_compare_str(caller, issuer_id):
            return
        if CryptoUtils.secure_compare_str(caller, self._issuer_admins.get(issuer_id)):
            return
        raise Unauthorized("caller may not manage roots for this issuer")

    def set_issuer_admin(self, caller: str, issuer_id: str, issuer_admin: str) -> None:
        """Delegate root management for ``issuer_id`` to ``issuer_admin``."""
        issuer_id = ensure_valid(Validators.validate_principal(issuer_id, "issuer_id"))
        issuer_admin = ensure_valid(Validators.validate_principal(issuer_admin, "issuer_admin"))
        with self._ledger.transaction():
            self._require_admin(caller)
            self._issuer_admins[issuer_id] = issuer_admin
        logger.info("Issuer admin set", operation="set_issuer_admin", issuer_id=issuer_id)

    def get_issuer_admin(self, issuer_id: str) -> Optional[str]:
        with self._ledger.transaction():
            return self._issuer_admins.get(issuer_id)

    # ─── roots ─────────────────────────────────────────────────────────

    @timed_operation(logger, "set_root")
    def set_root(
        self,
        caller: str,
        issuer_id: str,
        root_hash: str,
        version: Optional[int] = None,
        metadata_hash: Optional[str] = None,
    ) -> int:
        """
        Publish ``root_hash`` as the issuer's active root.

        ``version=None`` assigns the next version. An explicit version must be
        strictly greater than every version already logged for the issuer.
        Returns the version that was activated.
        """
        issuer_id = ensure_valid(Validators.validate_principal(issuer_id, "issuer_id"))
        root_hash = ensure_valid(Validators.validate_digest(root_hash, "root_hash"))
        if metadata_hash is not None:
            metadata_hash = ensure_valid(Validators.validate_digest(metadata_hash, "metadata_hash"))
        if version is not None:
            version = ensure_valid(Validators.validate_uint(version, "version", min_value=1))

        with self._ledger.transaction():
            self._require_issuer_authority(caller, issuer_id)

            if (issuer_id, root_hash) in self._revoked:
                raise RootRevoked("root was revoked and cannot be re-activated", field="root_hash")

            history = self._history.get(issuer_id, {})
            latest = max(history) if history else 0
            if version is None:
                version = latest + 1
            try:
                InvariantChecker.check_monotonic_increase("version", latest, version, strict=True)
            except InvariantViolation as e:
                raise VersionConflict(str(e), field="version") from e

            now = self._ledger.timestamp()
            previous = self._active.get(issuer_id)
            if previous is not None:
                history[previous] = replace(history[previous], active=False, superseded_at=now)

            history[version] = IssuerRoot(
                issuer_id=issuer_id,
                root_hash=root_hash,
                version=version,
                activated_at=now,
                metadata_hash=metadata_hash,
            )
            self._history[issuer_id] = history
            self._active[issuer_id] = version
            self._emit(RootUpdated(issuer_id=issuer_id, version=version, timestamp=now))

        logger.info("Root updated", operation="set_root", issuer_id=issuer_id, version=version)
        return version

    def revoke_root(self, caller: str, issuer_id: str, root_hash: str) -> bool:
        """
        Revoke a historical root, active or not.

        Returns False if the root was already revoked.
        """
        issuer_id = ensure_valid(Validators.validate_principal(issuer_id, "issuer_id"))
        root_hash = ensure_valid(Validators.validate_digest(root_hash, "root_hash"))

        with self._ledger.transaction():
            self._require_issuer_authority(caller, issuer_id)

            history = self._history.get(issuer_id, {})
            matching = [v for v, r in history.items() if r.root_hash == root_hash]
            if not matching:
                raise RootNotFound("root was never published for this issuer", field="root_hash")
            if (issuer_id, root_hash) in self._revoked:
                return False

            now = self._ledger.timestamp()
            for v in matching:
                history[v] = replace(history[v], active=False, revoked=True, revoked_at=now)
            self._revoked.add((issuer_id, root_hash))

            if self._active.get(issuer_id) in matching:
                del self._active[issuer_id]

            self._emit(RootRevokedEvent(issuer_id=issuer_id, version=max(matching), timestamp=now))

        logger.warning("Root revoked", operation="revoke_root", issuer_id=issuer_id, version=max(matching))
        return True

    def set_revocation_root(self, caller: str, issuer_id: str, revocation_root: str) -> None:
        """Publish the issuer's accumulator over revoked credentials."""
        issuer_id = ensure_valid(Validators.validate_principal(issuer_id, "issuer_id"))
        revocation_root = ensure_valid(Validators.validate_digest(revocation_root, "revocation_root"))
        with self._ledger.transaction():
            self._require_issuer_authority(caller, issuer_id)
            self._revocation_roots[issuer_id] = {
                "revocation_root": revocation_root,
                "updated_at": self._ledger.timestamp(),
            }

    def get_revocation_root(self, issuer_id: str) -> Optional[str]:
        with self._ledger.transaction():
            entry = self._revocation_roots.get(issuer_id)
            return entry["revocation_root"] if entry else None

    # ─── queries ───────────────────────────────────────────────────────

    def get_active_root(self, issuer_id: str) -> Optional[str]:
        """The issuer's active root, or None if it has none."""
        with self._ledger.transaction():
            version = self._active.get(issuer_id)
            if version is None:
                return None
            return self._history[issuer_id][version].root_hash

    def get_active_version(self, issuer_id: str) -> int:
        with self._ledger.transaction():
            return self._active.get(issuer_id, 0)

    def get_root(self, issuer_id: str, version: int) -> Optional[IssuerRoot]:
        with self._ledger.transaction():
            return self._history.get(issuer_id, {}).get(version)

    def root_history(self, issuer_id: str) -> List[IssuerRoot]:
        with self._ledger.transaction():
            history = self._history.get(issuer_id, {})
            return [history[v] for v in sorted(history)]

    def root_active_at(self, issuer_id: str, timestamp: int) -> Optional[str]:
        """Root that was active for ``issuer_id`` at a past ledger time."""
        with self._ledger.transaction():
            history = self._history.get(issuer_id, {})
            for version in sorted(history, reverse=True):
                entry = history[version]
                if entry.was_active_at(timestamp):
                    return entry.root_hash
            return None

    def is_root_revoked(self, issuer_id: str, root_hash: str) -> bool:
        root_hash = ensure_valid(Validators.validate_digest(root_hash, "root_hash"))
        with self._ledger.transaction():
            return (issuer_id, root_hash) in self._revoked

    def export_registry(self) -> Dict[str, Any]:
        """Audit snapshot of every issuer's log, pointer and revocations."""
        with self._ledger.transaction():
            return {
                "issuers": {
                    issuer_id: {
                        "active_version": self._active.get(issuer_id, 0),
                        "roots": [history[v].to_dict() for v in sorted(history)],
                        "revocation_root": self._revocation_roots.get(issuer_id, {}).get("revocation_root"),
                    }
                    for issuer_id, history in self._history.items()
                },
                "issuer_admins": dict(self._issuer_admins),
                "revoked": sorted([list(k) for k in self._revoked]),
            }

    def _emit(self, event) -> None:
        if self._events is not None:
            self._events.publish(event)
