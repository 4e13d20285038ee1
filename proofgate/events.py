"""
proofgate Event Infrastructure

One-way, audit-minimal output channel for registry, attestation and gate
activity.

    ┌──────────────────────────────────────────────────────────────────┐
    │  Registry / Attestation Store / Access Gate                      │
    │         │ publish(Event)                                         │
    │         ▼                                                        │
    │  EventBus ──► subscribers (priority order, optional filter)      │
    │         │                                                        │
    │         ▼                                                        │
    │  EventLog   append-only, hash-chained, queryable                 │
    └──────────────────────────────────────────────────────────────────┘

Payload discipline: event fields are primitives only (str, int, bool). Proof
and access events are built from an AuditSubject, which carries the record id,
the requester pseudonym and a hash of the nullifier and nothing else, so
witness values, claim contents and cleartext identities cannot reach the
stream.
"""

from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Type

from proofgate.canonical import jcs_canonicalize
from proofgate.hardening import AtomicCounter
from proofgate.observability import GateLayer, get_logger

logger = get_logger("events", GateLayer.EVENTS)

_PRIMITIVES = (str, int, bool, type(None))


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Event:
    """
    Base class for all events.

    ``timestamp`` is the ledger time of the call that produced the event.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = 0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, _PRIMITIVES):
                raise TypeError(
                    f"{type(self).__name__}.{f.name} must be a primitive, got {type(value).__name__}"
                )

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def digest(self) -> str:
        """Deterministic digest of event content using JCS canonicalization."""
        return hashlib.sha256(jcs_canonicalize(self.to_dict())).hexdigest()


@dataclass(frozen=True)
class AuditSubject:
    """The only view of a proof submission that may be published."""
    record_id: int
    pseudonym: str
    nullifier_hash: str = ""


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RootUpdated(Event):
    """An issuer published a new active credential root."""
    issuer_id: str = ""
    version: int = 0


@dataclass(frozen=True)
class RootRevoked(Event):
    issuer_id: str = ""
    version: int = 0


@dataclass(frozen=True)
class KeyRegistered(Event):
    vk_version: int = 0
    attestor: str = ""


@dataclass(frozen=True)
class KeyDeactivated(Event):
    vk_version: int = 0


@dataclass(frozen=True)
class AttestationSubmitted(Event):
    vk_version: int = 0
    verified: bool = False
    expires_at: int = 0


@dataclass(frozen=True)
class ProofAccepted(Event):
    record_id: int = 0
    pseudonym: str = ""
    nullifier_hash: str = ""

    @classmethod
    def for_subject(cls, subject: AuditSubject, timestamp: int) -> "ProofAccepted":
        return cls(
            record_id=subject.record_id,
            pseudonym=subject.pseudonym,
            nullifier_hash=subject.nullifier_hash,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class ProofRejected(Event):
    record_id: int = 0
    reason_code: str = ""


@dataclass(frozen=True)
class AccessGranted(Event):
    """A privileged read passed every check. ``pseudonym`` is empty in ACL-only mode."""
    record_id: int = 0
    pseudonym: str = ""


@dataclass(frozen=True)
class AccessDenied(Event):
    record_id: int = 0
    reason_code: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler {getattr(handler, '__name__', handler)} failed for {event.event_type}: {cause}")


class EventBus:
    """
    Synchronous in-memory pub/sub.

    Handlers run in priority order (higher first). A failing handler never
    aborts the publishing call; the failure goes to ``on_error`` or the log.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Example:
            @bus.subscribe(ProofRejected)
            def on_reject(event):
                ...
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers_to_call = [
                r for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
                and (r.filter_func is None or r.filter_func(event))
            ]

        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            if self._on_error:
                self._on_error(error)
            else:
                logger.error(str(error), exc_info=True, event_type=event.event_type)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EventRecord:
    """A logged event with its position in the hash chain."""
    sequence_number: int
    event: Event
    previous_digest: str
    record_digest: str


class EventLog:
    """
    Append-only, tamper-evident event log.

    Each record's digest covers the event digest and the previous record's
    digest, so any edit or reordering breaks ``verify_chain``.
    """

    GENESIS = "0" * 64

    def __init__(self):
        self._records: List[EventRecord] = []
        self._lock = threading.Lock()
        self._sequence = AtomicCounter(0)

    @staticmethod
    def _chain_digest(previous: str, event: Event) -> str:
        return hashlib.sha256((previous + event.digest()).encode()).hexdigest()

    def attach(self, bus: EventBus) -> "EventLog":
        bus.subscribe(Event, priority=100)(self.append)
        return self

    def append(self, event: Event) -> EventRecord:
        with self._lock:
            previous = self._records[-1].record_digest if self._records else self.GENESIS
            record = EventRecord(
                sequence_number=self._sequence.increment(),
                event=event,
                previous_digest=previous,
                record_digest=self._chain_digest(previous, event),
            )
            self._records.append(record)
            return record

    def events(self, event_type: Optional[Type[Event]] = None) -> List[Event]:
        with self._lock:
            records = list(self._records)
        return [r.event for r in records if event_type is None or isinstance(r.event, event_type)]

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """Returns (valid, first_invalid_index)."""
        with self._lock:
            previous = self.GENESIS
            for i, record in enumerate(self._records):
                if record.previous_digest != previous:
                    return (False, i)
                if self._chain_digest(previous, record.event) != record.record_digest:
                    return (False, i)
                previous = record.record_digest
            return (True, None)

    def export(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "sequence_number": r.sequence_number,
                    "record_digest": r.record_digest,
                    **r.event.to_dict(),
                }
                for r in self._records
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
