"""
proofgate: proof-gated access control for sensitive records

A requester presents an off-system zero-knowledge proof and its public inputs.
The gate admits a privileged read only after cross-checking the record
commitment, the issuer's credential root, a trusted attestor's verification
result, the proof's time window and nullifier freshness. Success stores a
short-lived grant that later reads consult alongside the conventional ACL.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────┐
    │  ACCESS GATE                                                         │
    │    gate.py         submit_proof pipeline, grants, read enforcement   │
    │    records.py      RecordStore collaborator (commitments, ACL)       │
    │                                                                      │
    │  REGISTRIES                                                          │
    │    registry.py     Per-issuer versioned credential roots, revocation │
    │    attestation.py  Verifying keys, attestations, Verifier interface  │
    │                                                                      │
    │  SUPPORT                                                             │
    │    inputs.py       PublicInputs, domain-separated hashes             │
    │    signing.py      Ed25519 did:key proofs for signed attestations    │
    │    schema.py       JSON Schema validation                            │
    │    events.py       Audit-minimal events, bus, hash-chained log       │
    │    ledger.py       Monotonic time, call serialization                │
    │    config.py       YAML + environment configuration                  │
    │    observability.py  Structured logging                              │
    └─────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: enforcement without its collaborators denies access.

    No Partial Commits: a rejected submission consumes no nullifier and
    writes no grant.

    Audit Minimalism: events carry record ids, pseudonyms, reason codes and
    nullifier hashes. Never witness values, claims or cleartext identities.
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import proofgate modules on first access."""

    if name in ("AccessGate", "AccessGrant", "GrantHandle", "NullifierSet"):
        from proofgate import gate
        return getattr(gate, name)

    if name in ("CredentialRootRegistry", "IssuerRoot"):
        from proofgate import registry
        return getattr(registry, name)

    if name in ("AttestationStore", "Attestation", "VerifyingKeyMeta",
                "Verifier", "AttestedVerifier"):
        from proofgate import attestation
        return getattr(attestation, name)

    if name in ("PublicInputs", "public_inputs_hash", "compute_proof_hash",
                "commit_principal", "compute_pseudonym", "compute_record_commitment",
                "derive_nullifier", "nullifier_hash"):
        from proofgate import inputs
        return getattr(inputs, name)

    if name in ("RecordStore", "InMemoryRecordStore"):
        from proofgate import records
        return getattr(records, name)

    if name in ("Ledger", "ManualClock", "SystemClock"):
        from proofgate import ledger
        return getattr(ledger, name)

    if name in ("EventBus", "EventLog", "AuditSubject"):
        from proofgate import events
        return getattr(events, name)

    if name in ("Deployment", "create_deployment"):
        from proofgate import deployment
        return getattr(deployment, name)

    if name in ("GateError", "ReasonCode"):
        from proofgate import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'proofgate' has no attribute '{name}'")


__all__ = [
    "__version__",
    "AccessGate",
    "AccessGrant",
    "GrantHandle",
    "NullifierSet",
    "CredentialRootRegistry",
    "IssuerRoot",
    "AttestationStore",
    "Attestation",
    "VerifyingKeyMeta",
    "Verifier",
    "AttestedVerifier",
    "PublicInputs",
    "public_inputs_hash",
    "compute_proof_hash",
    "commit_principal",
    "compute_pseudonym",
    "compute_record_commitment",
    "derive_nullifier",
    "nullifier_hash",
    "RecordStore",
    "InMemoryRecordStore",
    "Ledger",
    "ManualClock",
    "SystemClock",
    "EventBus",
    "EventLog",
    "AuditSubject",
    "Deployment",
    "create_deployment",
    "GateError",
    "ReasonCode",
]
