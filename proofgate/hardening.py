"""
proofgate Validation and Hardening

Input checks, constant-time comparison and small thread-safety primitives
shared by the credential registry, the attestation store and the access gate.

Security model:
    - every caller-supplied value is validated before it touches state
    - roots, commitments and principals are compared in constant time
    - state mutations happen under the ledger transaction lock
    - version counters only move forward
"""

from __future__ import annotations

import hmac
import re
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional

from proofgate.canonical import normalize_hex32
from proofgate.errors import InvalidInput


class ValidationError(Exception):
    """One failed check on one field."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class InvariantViolation(Exception):
    """A state transition would break an ordering invariant."""


@dataclass
class ValidationResult:
    """Outcome of a validator: the cleaned value, or the errors found."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    @property
    def first_error(self) -> Optional[ValidationError]:
        return self.errors[0] if self.errors else None

    @classmethod
    def ok(cls, value: Any) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=value)

    @classmethod
    def fail(cls, field_name: str, message: str, value: Any = None) -> "ValidationResult":
        return cls(is_valid=False, errors=[ValidationError(field_name, message, value)])


class Validators:
    """Validators for the identifiers, digests and sizes the gate accepts."""

    # addresses, DIDs (with fragment) and opaque issuer ids
    PRINCIPAL_PATTERN = re.compile(r"^[A-Za-z0-9:._#-]{1,256}$")

    MAX_STRING_LENGTH = 4096
    MAX_PROOF_BYTES = 1024 * 1024
    MAX_U64 = (1 << 64) - 1

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        """Strip surrounding whitespace and NUL bytes, then check length and pattern."""
        if not isinstance(value, str):
            return ValidationResult.fail(field_name, f"Expected string, got {type(value).__name__}", value)

        cleaned = value.strip().replace("\x00", "")
        limit = max_length or cls.MAX_STRING_LENGTH
        if len(cleaned) < min_length:
            return ValidationResult.fail(field_name, f"Too short (min {min_length} chars)", value)
        if len(cleaned) > limit:
            return ValidationResult.fail(field_name, f"Too long (max {limit} chars)", value)
        if pattern is not None and not pattern.match(cleaned):
            return ValidationResult.fail(field_name, "Does not match required pattern", value)
        return ValidationResult.ok(cleaned)

    @classmethod
    def validate_principal(cls, value: Any, field_name: str = "principal") -> ValidationResult:
        """Caller, requester, issuer or attestor identifier."""
        return cls.validate_string(value, field_name, max_length=256, pattern=cls.PRINCIPAL_PATTERN)

    @classmethod
    def validate_digest(cls, value: Any, field_name: str = "digest") -> ValidationResult:
        """32-byte value as hex (optional 0x) or raw bytes; normalized to lowercase hex."""
        try:
            return ValidationResult.ok(normalize_hex32(value, field_name))
        except ValueError as e:
            return ValidationResult.fail(field_name, str(e), value)

    @classmethod
    def validate_uint(
        cls,
        value: Any,
        field_name: str,
        min_value: int = 0,
        max_value: Optional[int] = None,
    ) -> ValidationResult:
        """Unsigned integer within bounds; bools are not integers here."""
        upper = cls.MAX_U64 if max_value is None else max_value
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.fail(field_name, f"Expected integer, got {type(value).__name__}", value)
        if value < min_value:
            return ValidationResult.fail(field_name, f"Below minimum ({min_value})", value)
        if value > upper:
            return ValidationResult.fail(field_name, f"Exceeds maximum ({upper})", value)
        return ValidationResult.ok(value)

    @classmethod
    def validate_bytes(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """bytes or bytearray (returned as bytes) within length bounds."""
        if isinstance(value, bytearray):
            value = bytes(value)
        if not isinstance(value, bytes):
            return ValidationResult.fail(field_name, f"Expected bytes, got {type(value).__name__}")

        limit = max_length or cls.MAX_PROOF_BYTES
        if len(value) < min_length:
            return ValidationResult.fail(field_name, f"Too short (min {min_length} bytes)")
        if len(value) > limit:
            return ValidationResult.fail(field_name, f"Too long (max {limit} bytes)")
        return ValidationResult.ok(value)


def ensure_valid(result: ValidationResult) -> Any:
    """Return the sanitized value, or raise InvalidInput naming the first bad field."""
    if not result.is_valid:
        err = result.first_error
        raise InvalidInput(err.message, field=err.field)
    return result.sanitized_value


class CryptoUtils:

    @staticmethod
    def secure_compare_str(a: Optional[str], b: Optional[str]) -> bool:
        """Constant-time string equality. None never matches, not even None."""
        if a is None or b is None:
            return False
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


class AtomicCounter:
    """Lock-guarded integer counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value


class InvariantChecker:

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
        strict: bool = False,
    ) -> None:
        """Raise InvariantViolation if ``new_value`` moves backwards (or stands still, when strict)."""
        if new_value > old_value or (new_value == old_value and not strict):
            return
        qualifier = "strictly " if strict else ""
        raise InvariantViolation(
            f"{field_name} must be {qualifier}monotonically increasing: "
            f"cannot go from {old_value} to {new_value}"
        )
