import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import proofgate`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from proofgate.config import ProofgateConfig  # noqa: E402
from proofgate.deployment import create_deployment  # noqa: E402
from proofgate.inputs import (  # noqa: E402
    PublicInputs,
    commit_principal,
    compute_claim_commitment,
    compute_proof_hash,
    compute_pseudonym,
    derive_nullifier,
    public_inputs_hash,
)
from proofgate.ledger import ManualClock  # noqa: E402


ADMIN = "admin"
ISSUER = "issuer-1"
ATTESTOR = "attestor-a"
HOLDER = "holder-1"
ROOT_1 = "11" * 32
ROOT_2 = "12" * 32
VK_HASH = "ab" * 32
PROVIDER_COMMITMENT = "22" * 32
PROOF = b"\x01groth16-proof-bytes"
GRANT_TTL = 3600
RECORD = {"patient": "p-001", "diagnosis": "hypertension", "notes": "confidential"}


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: stress tests (skipped unless PROOFGATE_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('PROOFGATE_RUN_SLOW')
    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set PROOFGATE_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Config values bind PROOFGATE_* variables; keep the host environment out of tests."""
    for name in list(os.environ):
        if name.startswith("PROOFGATE_") and name != "PROOFGATE_RUN_SLOW":
            monkeypatch.delenv(name, raising=False)


class World:
    """
    A deployment with one issuer root, one verifying key, one record and
    ZK enforcement on. The ledger clock starts at t=100.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.deployment = create_deployment(ADMIN, config=ProofgateConfig(), clock=clock)
        self.gate = self.deployment.gate
        self.registry = self.deployment.registry
        self.attestations = self.deployment.attestations
        self.records = self.deployment.records
        self.events = self.deployment.event_log

        self.record_id = self.records.add_record(RECORD, owner=HOLDER)
        self.registry.set_root(ADMIN, ISSUER, ROOT_1)
        self.attestations.register_key(ADMIN, 1, VK_HASH, "record-access-v1", ATTESTOR)
        self.gate.set_zk_enforced(ADMIN, True)

    def inputs(self, requester: str = HOLDER, seed: str = "seed-1", **overrides) -> PublicInputs:
        record_id = overrides.pop("record_id", self.record_id)
        fields = dict(
            record_id=record_id,
            record_commitment=self.records.record_commitment_of(record_id) or "00" * 32,
            credential_root=ROOT_1,
            issuer_id=ISSUER,
            requester_commitment=commit_principal(requester),
            provider_commitment=PROVIDER_COMMITMENT,
            claim_commitment=compute_claim_commitment({"role": "physician", "licensed": True}),
            min_timestamp=0,
            max_timestamp=10_000,
            nullifier=derive_nullifier(seed, requester, record_id),
            pseudonym=compute_pseudonym(requester, ISSUER, record_id),
            vk_version=1,
        )
        fields.update(overrides)
        return PublicInputs(**fields)

    def attest(self, pi: PublicInputs, proof: bytes = PROOF, verified: bool = True, ttl: int = 3600):
        return self.attestations.submit_attestation(
            ATTESTOR, pi.vk_version, public_inputs_hash(pi), compute_proof_hash(proof), verified, ttl,
        )

    def submit(self, pi: PublicInputs, proof: bytes = PROOF, requester: str = HOLDER):
        return self.gate.submit_proof(requester, pi, proof)

    def attest_and_submit(self, pi: PublicInputs, proof: bytes = PROOF, requester: str = HOLDER):
        self.attest(pi, proof)
        return self.submit(pi, proof, requester)


@pytest.fixture
def clock():
    return ManualClock(100)


@pytest.fixture
def world(clock):
    return World(clock)
