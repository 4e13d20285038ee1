"""
Deployment wiring.

Builds a registry, attestation store and access gate on one shared ledger and
event bus, configured from a ProofgateConfig.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from proofgate.attestation import AttestationStore, Verifier
from proofgate.config import ProofgateConfig
from proofgate.events import EventBus, EventLog
from proofgate.gate import AccessGate
from proofgate.ledger import Clock, Ledger
from proofgate.records import InMemoryRecordStore, RecordStore
from proofgate.registry import CredentialRootRegistry


@dataclass
class Deployment:
    ledger: Ledger
    bus: EventBus
    event_log: EventLog
    registry: CredentialRootRegistry
    attestations: AttestationStore
    gate: AccessGate
    records: RecordStore


def create_deployment(
    admin: str,
    config: Optional[ProofgateConfig] = None,
    clock: Optional[Clock] = None,
    record_store: Optional[RecordStore] = None,
    verifier: Optional[Verifier] = None,
) -> Deployment:
    """
    Create and initialize every component with ``admin`` as their admin.

    The event log is attached to the bus before any component is initialized,
    so it sees every event from the first one on.
    """
    config = config or ProofgateConfig()
    ledger = Ledger(clock)
    bus = EventBus()
    event_log = EventLog().attach(bus)

    registry = CredentialRootRegistry(ledger, bus)
    registry.initialize(admin)

    attestations = AttestationStore(ledger, bus, max_ttl=config.attestation.max_ttl_seconds.get())
    attestations.initialize(admin, config.attestation.default_ttl_seconds.get())

    records = record_store if record_store is not None else InMemoryRecordStore()
    gate = AccessGate(ledger, bus, config.gate)
    gate.initialize(
        admin,
        records,
        attestation_store=attestations,
        credential_registry=registry,
        verifier=verifier,
    )

    return Deployment(
        ledger=ledger,
        bus=bus,
        event_log=event_log,
        registry=registry,
        attestations=attestations,
        gate=gate,
        records=records,
    )
