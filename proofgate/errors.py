"""
proofgate Error Taxonomy

Every rejection raised by the registry, the attestation store or the access
gate is a GateError carrying a stable ReasonCode. Reason codes are part of the
public contract: clients key their retry logic on them, and they are the only
failure detail that reaches the audit event stream.

Permanent errors (NullifierReused, CommitmentMismatch) cannot be fixed by
re-submitting the same proof instance; everything else is recoverable with
corrected inputs.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ReasonCode(Enum):
    """Stable, client-visible rejection codes."""
    UNAUTHORIZED = "unauthorized"
    ALREADY_INITIALIZED = "already_initialized"
    NOT_INITIALIZED = "not_initialized"
    PAUSED = "paused"
    MISCONFIGURED = "misconfigured"
    INVALID_INPUT = "invalid_input"
    REQUESTER_MISMATCH = "requester_mismatch"
    VERSION_CONFLICT = "version_conflict"
    COMMITMENT_MISMATCH = "commitment_mismatch"
    ROOT_NOT_FOUND = "root_not_found"
    ROOT_MISMATCH = "root_mismatch"
    ROOT_REVOKED = "root_revoked"
    KEY_NOT_FOUND = "key_not_found"
    KEY_INACTIVE = "key_inactive"
    ATTESTATION_EXISTS = "attestation_exists"
    ATTESTATION_NOT_FOUND = "attestation_not_found"
    ATTESTATION_EXPIRED = "attestation_expired"
    ATTESTATION_REJECTED = "attestation_rejected"
    NULLIFIER_REUSED = "nullifier_reused"
    GRANT_MISSING = "grant_missing"
    GRANT_EXPIRED = "grant_expired"
    TIMESTAMP_OUT_OF_BOUNDS = "timestamp_out_of_bounds"


class GateError(Exception):
    """Base class for all proofgate rejections."""

    code: ReasonCode = ReasonCode.INVALID_INPUT
    permanent: bool = False

    def __init__(self, message: str = "", field: Optional[str] = None):
        self.message = message or self.code.value
        self.field = field
        super().__init__(self.message)

    @property
    def reason_code(self) -> str:
        return self.code.value

    def to_dict(self) -> dict:
        out = {"reason_code": self.code.value, "message": self.message, "permanent": self.permanent}
        if self.field:
            out["field"] = self.field
        return out


class Unauthorized(GateError):
    """Caller lacks the required role or attestor identity."""
    code = ReasonCode.UNAUTHORIZED


class AlreadyInitialized(GateError):
    code = ReasonCode.ALREADY_INITIALIZED


class NotInitialized(GateError):
    code = ReasonCode.NOT_INITIALIZED


class Paused(GateError):
    code = ReasonCode.PAUSED


class Misconfigured(GateError):
    """Enforcement requested without the collaborators it needs. Fails closed."""
    code = ReasonCode.MISCONFIGURED


class InvalidInput(GateError):
    """Malformed public inputs, bad hash lengths, out-of-range values."""
    code = ReasonCode.INVALID_INPUT


class RequesterMismatch(InvalidInput):
    """requester_commitment does not commit to the submitting principal."""
    code = ReasonCode.REQUESTER_MISMATCH


class VersionConflict(GateError):
    """Duplicate or out-of-order version for a root or verifying key."""
    code = ReasonCode.VERSION_CONFLICT


class CommitmentMismatch(GateError):
    code = ReasonCode.COMMITMENT_MISMATCH
    permanent = True


class RootNotFound(GateError):
    code = ReasonCode.ROOT_NOT_FOUND


class RootMismatch(GateError):
    code = ReasonCode.ROOT_MISMATCH


class RootRevoked(GateError):
    code = ReasonCode.ROOT_REVOKED


class KeyNotFound(GateError):
    code = ReasonCode.KEY_NOT_FOUND


class KeyInactive(GateError):
    code = ReasonCode.KEY_INACTIVE


class AttestationExists(GateError):
    code = ReasonCode.ATTESTATION_EXISTS


class AttestationNotFound(GateError):
    code = ReasonCode.ATTESTATION_NOT_FOUND


class AttestationExpired(GateError):
    code = ReasonCode.ATTESTATION_EXPIRED


class AttestationRejected(GateError):
    """The attestor recorded the proof as failing verification."""
    code = ReasonCode.ATTESTATION_REJECTED


class NullifierReused(GateError):
    code = ReasonCode.NULLIFIER_REUSED
    permanent = True


class GrantMissing(GateError):
    code = ReasonCode.GRANT_MISSING


class GrantExpired(GateError):
    code = ReasonCode.GRANT_EXPIRED


class TimestampOutOfBounds(GateError):
    code = ReasonCode.TIMESTAMP_OUT_OF_BOUNDS
