"""
Record store collaborator.

The access gate does not store records. It consumes a RecordStore for the
commitment on file for a record and for the conventional ACL decision, and
only calls ``fetch`` once every check has passed.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Optional, Protocol, Set, runtime_checkable

from proofgate.hardening import Validators, ensure_valid
from proofgate.inputs import compute_record_commitment


@runtime_checkable
class RecordStore(Protocol):
    """What the gate needs from record storage."""

    def record_commitment_of(self, record_id: int) -> Optional[str]:
        """Commitment currently on file, or None for an unknown record."""
        ...

    def acl_permits(self, record_id: int, requester: str) -> bool:
        ...

    def fetch(self, record_id: int) -> Any:
        ...


class InMemoryRecordStore:
    """
    Reference RecordStore for development and tests.

    Commitments are computed from record content, so updating a record
    invalidates proofs made against its previous content.
    """

    def __init__(self):
        self._records: Dict[int, Any] = {}
        self._commitments: Dict[int, str] = {}
        self._acl: Dict[int, Set[str]] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def add_record(self, content: Any, owner: Optional[str] = None) -> int:
        """Store ``content`` and return its record id. ``owner`` gets ACL access."""
        commitment = compute_record_commitment(content)
        with self._lock:
            record_id = self._next_id
            self._next_id += 1
            self._records[record_id] = copy.deepcopy(content)
            self._commitments[record_id] = commitment
            self._acl[record_id] = set()
        if owner is not None:
            self.grant_acl(record_id, owner)
        return record_id

    def update_record(self, record_id: int, content: Any) -> str:
        commitment = compute_record_commitment(content)
        with self._lock:
            if record_id not in self._records:
                raise KeyError(record_id)
            self._records[record_id] = copy.deepcopy(content)
            self._commitments[record_id] = commitment
        return commitment

    def grant_acl(self, record_id: int, principal: str) -> None:
        principal = ensure_valid(Validators.validate_principal(principal, "principal"))
        with self._lock:
            if record_id not in self._records:
                raise KeyError(record_id)
            self._acl[record_id].add(principal)

    def revoke_acl(self, record_id: int, principal: str) -> bool:
        with self._lock:
            members = self._acl.get(record_id, set())
            if principal in members:
                members.discard(principal)
                return True
            return False

    def record_commitment_of(self, record_id: int) -> Optional[str]:
        with self._lock:
            return self._commitments.get(record_id)

    def acl_permits(self, record_id: int, requester: str) -> bool:
        with self._lock:
            return requester in self._acl.get(record_id, ())

    def fetch(self, record_id: int) -> Any:
        with self._lock:
            if record_id not in self._records:
                raise KeyError(record_id)
            return copy.deepcopy(self._records[record_id])
