"""
Access Gate: the submit_proof pipeline.

Covers acceptance, every rejection reason, the no-partial-commit guarantee
and admin controls.
"""

import pytest

from conftest import ADMIN, ATTESTOR, GRANT_TTL, HOLDER, ISSUER, PROOF, ROOT_1, ROOT_2, VK_HASH


class TestAcceptance:

    def test_valid_submission_grants_access(self, world):
        from proofgate.inputs import nullifier_hash

        pi = world.inputs()
        handle = world.attest_and_submit(pi)

        assert handle.record_id == world.record_id
        assert handle.pseudonym == pi.pseudonym
        assert handle.scope == "read"
        assert handle.expires_at == 100 + GRANT_TTL
        assert handle.nullifier_hash == nullifier_hash(pi.nullifier)
        assert world.gate.is_nullifier_used(pi.nullifier)
        assert world.gate.get_grant_status(world.record_id, HOLDER) == 100 + GRANT_TTL

    def test_holder_lifecycle(self, world, clock):
        """Accept at t=100, read at t=150, replay at t=200, read after expiry."""
        from proofgate.errors import GrantExpired, NullifierReused

        pi = world.inputs()
        world.attest(pi, ttl=3600)
        assert world.submit(pi).expires_at == 100 + GRANT_TTL

        clock.set(150)
        assert world.gate.get_record(HOLDER, world.record_id)["patient"] == "p-001"

        clock.set(200)
        with pytest.raises(NullifierReused):
            world.submit(pi)

        clock.set(150 + GRANT_TTL + 1)
        with pytest.raises(GrantExpired):
            world.gate.get_record(HOLDER, world.record_id)

    def test_mapping_inputs_accepted(self, world):
        pi = world.inputs()
        world.attest(pi)
        handle = world.gate.submit_proof(HOLDER, pi.to_dict(), PROOF)
        assert handle.pseudonym == pi.pseudonym

    def test_custom_scope_recorded(self, world):
        pi = world.inputs()
        world.attest(pi)
        assert world.gate.submit_proof(HOLDER, pi, PROOF, scope="export").scope == "export"

    def test_new_proof_replaces_grant(self, world, clock):
        first = world.inputs(seed="seed-1")
        world.attest_and_submit(first)

        clock.set(1000)
        second = world.inputs(seed="seed-2")
        world.attest_and_submit(second)

        assert world.gate.get_grant_status(world.record_id, HOLDER) == 1000 + GRANT_TTL
        assert world.gate.stats()["grants"] == 1
        assert world.gate.stats()["accepted"] == 2

    def test_grant_ttl_from_config(self, world):
        world.gate.set_grant_ttl(ADMIN, 60)
        pi = world.inputs()
        assert world.attest_and_submit(pi).expires_at == 160


class TestReplay:

    def test_identical_resubmission(self, world):
        from proofgate.errors import NullifierReused

        pi = world.inputs()
        world.attest_and_submit(pi)
        with pytest.raises(NullifierReused) as exc:
            world.submit(pi)
        assert exc.value.permanent

    def test_same_nullifier_other_fields(self, world):
        """The nullifier alone decides freshness; new windows do not help."""
        from proofgate.errors import NullifierReused

        pi = world.inputs()
        world.attest_and_submit(pi)

        replay = world.inputs(max_timestamp=20_000, nullifier=pi.nullifier)
        world.attest(replay)
        with pytest.raises(NullifierReused):
            world.submit(replay)

    def test_nullifier_scope_is_global(self, world):
        """A nullifier consumed on one record cannot be spent on another."""
        from proofgate.errors import NullifierReused

        pi = world.inputs()
        world.attest_and_submit(pi)

        other_id = world.records.add_record({"patient": "p-002"}, owner=HOLDER)
        other = world.inputs(record_id=other_id, nullifier=pi.nullifier)
        world.attest(other)
        with pytest.raises(NullifierReused):
            world.submit(other)


class TestRootChecks:

    def test_stale_root_rejected(self, world):
        from proofgate.errors import RootMismatch

        pi = world.inputs(credential_root=ROOT_2)
        world.attest(pi)
        with pytest.raises(RootMismatch):
            world.submit(pi)
        assert not world.gate.is_nullifier_used(pi.nullifier)

    def test_rotation_invalidates_old_proofs(self, world):
        from proofgate.errors import RootMismatch

        pi = world.inputs()
        world.attest(pi)
        world.registry.set_root(ADMIN, ISSUER, ROOT_2)
        with pytest.raises(RootMismatch):
            world.submit(pi)

        fresh = world.inputs(credential_root=ROOT_2, seed="seed-2")
        world.attest_and_submit(fresh)

    def test_revoked_root(self, world):
        from proofgate.errors import RootRevoked

        pi = world.inputs()
        world.attest(pi)
        world.registry.revoke_root(ADMIN, ISSUER, ROOT_1)
        with pytest.raises(RootRevoked):
            world.submit(pi)

    def test_revoked_historical_root_reports_revocation(self, world):
        from proofgate.errors import RootRevoked

        world.registry.set_root(ADMIN, ISSUER, ROOT_2)
        world.registry.revoke_root(ADMIN, ISSUER, ROOT_1)
        pi = world.inputs()
        world.attest(pi)
        with pytest.raises(RootRevoked):
            world.submit(pi)

    def test_unknown_issuer(self, world):
        from proofgate.errors import RootMismatch

        pi = world.inputs(issuer_id="issuer-9")
        world.attest(pi)
        with pytest.raises(RootMismatch):
            world.submit(pi)


class TestBindings:

    def test_commitment_mismatch_is_permanent(self, world):
        from proofgate.errors import CommitmentMismatch

        pi = world.inputs(record_commitment="ee" * 32)
        world.attest(pi)
        with pytest.raises(CommitmentMismatch) as exc:
            world.submit(pi)
        assert exc.value.permanent

    def test_record_update_invalidates_proof(self, world):
        from proofgate.errors import CommitmentMismatch

        pi = world.inputs()
        world.attest(pi)
        world.records.update_record(world.record_id, {"patient": "p-001", "diagnosis": "revised"})
        with pytest.raises(CommitmentMismatch):
            world.submit(pi)

    def test_unknown_record(self, world):
        from proofgate.errors import CommitmentMismatch

        pi = world.inputs(record_id=999)
        world.attest(pi)
        with pytest.raises(CommitmentMismatch):
            world.submit(pi)

    def test_proof_for_someone_else(self, world):
        """Submitting another principal's proof fails the requester binding."""
        from proofgate.errors import InvalidInput, RequesterMismatch

        pi = world.inputs(requester=HOLDER)
        world.attest(pi)
        with pytest.raises(RequesterMismatch) as exc:
            world.submit(pi, requester="thief-1")
        assert isinstance(exc.value, InvalidInput)
        assert exc.value.reason_code == "requester_mismatch"
        assert not world.gate.is_nullifier_used(pi.nullifier)

    def test_empty_proof_bytes(self, world):
        from proofgate.errors import InvalidInput

        with pytest.raises(InvalidInput):
            world.submit(world.inputs(), proof=b"")

    def test_malformed_mapping(self, world):
        from proofgate.errors import InvalidInput

        data = world.inputs().to_dict()
        data["credential_root"] = "nope"
        with pytest.raises(InvalidInput) as exc:
            world.gate.submit_proof(HOLDER, data, PROOF)
        assert exc.value.field == "credential_root"


class TestTimeWindow:

    @pytest.mark.parametrize("lo,hi", [(0, 99), (101, 500)])
    def test_outside_window(self, world, lo, hi):
        from proofgate.errors import TimestampOutOfBounds

        pi = world.inputs(min_timestamp=lo, max_timestamp=hi)
        world.attest(pi)
        with pytest.raises(TimestampOutOfBounds):
            world.submit(pi)

    @pytest.mark.parametrize("lo,hi", [(100, 100), (0, 100), (100, 200)])
    def test_window_bounds_inclusive(self, world, lo, hi):
        pi = world.inputs(min_timestamp=lo, max_timestamp=hi)
        world.attest_and_submit(pi)


class TestAttestationChecks:

    def test_no_attestation(self, world):
        from proofgate.errors import AttestationNotFound

        with pytest.raises(AttestationNotFound):
            world.submit(world.inputs())

    def test_expired_attestation(self, world, clock):
        from proofgate.errors import AttestationExpired

        pi = world.inputs()
        world.attest(pi, ttl=50)
        clock.set(150)
        with pytest.raises(AttestationExpired):
            world.submit(pi)

    def test_negative_attestation(self, world):
        from proofgate.errors import AttestationRejected

        pi = world.inputs()
        world.attest(pi, verified=False)
        with pytest.raises(AttestationRejected):
            world.submit(pi)

    def test_attestation_for_other_proof(self, world):
        from proofgate.errors import AttestationNotFound

        pi = world.inputs()
        world.attest(pi, proof=b"\x02other-proof")
        with pytest.raises(AttestationNotFound):
            world.submit(pi)

    def test_attestation_for_other_inputs(self, world):
        """Attestations bind every public input through the inputs hash."""
        from proofgate.errors import AttestationNotFound

        world.attest(world.inputs(max_timestamp=9_999))
        with pytest.raises(AttestationNotFound):
            world.submit(world.inputs())

    def test_inactive_key(self, world):
        from proofgate.errors import KeyInactive

        pi = world.inputs()
        world.attest(pi)
        world.attestations.deactivate_key(ADMIN, 1)
        with pytest.raises(KeyInactive):
            world.submit(pi)

    def test_unknown_key(self, world):
        from proofgate.errors import KeyNotFound

        with pytest.raises(KeyNotFound):
            world.submit(world.inputs(vk_version=4))

    def test_key_rotation(self, world):
        world.attestations.register_key(ADMIN, 2, "cd" * 32, "record-access-v2", ATTESTOR)
        world.attestations.deactivate_key(ADMIN, 1)
        pi = world.inputs(vk_version=2)
        world.attest_and_submit(pi)

    def test_deactivation_keeps_existing_grants(self, world):
        pi = world.inputs()
        world.attest_and_submit(pi)
        world.attestations.deactivate_key(ADMIN, 1)
        assert world.gate.authorize_read(HOLDER, world.record_id).pseudonym == pi.pseudonym


class RecordingVerifier:

    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    def verify(self, vk_version, public_inputs_hash, proof_hash):
        self.calls.append((vk_version, public_inputs_hash, proof_hash))
        return self.answer


class TestCustomVerifier:

    def test_custom_verifier_consulted(self, world):
        from proofgate.inputs import compute_proof_hash, public_inputs_hash

        verifier = RecordingVerifier(True)
        world.gate.set_verifier(ADMIN, verifier)
        pi = world.inputs()
        world.submit(pi)
        assert verifier.calls == [(1, public_inputs_hash(pi), compute_proof_hash(PROOF))]

    def test_declining_verifier_with_positive_attestation(self, world):
        from proofgate.errors import AttestationRejected

        world.gate.set_verifier(ADMIN, RecordingVerifier(False))
        pi = world.inputs()
        world.attest(pi)
        with pytest.raises(AttestationRejected):
            world.submit(pi)

    def test_verifier_must_implement_protocol(self, world):
        from proofgate.errors import InvalidInput

        with pytest.raises(InvalidInput):
            world.gate.set_verifier(ADMIN, object())

    def test_attestation_store_swap_keeps_custom_verifier(self, world):
        from proofgate.attestation import AttestationStore

        verifier = RecordingVerifier(True)
        world.gate.set_verifier(ADMIN, verifier)
        store = AttestationStore(world.deployment.ledger)
        store.initialize(ADMIN, 600)
        store.register_key(ADMIN, 1, VK_HASH, "record-access-v1", ATTESTOR)
        world.gate.set_attestation_store(ADMIN, store)

        world.submit(world.inputs())
        assert len(verifier.calls) == 1


class TestNoPartialCommit:

    def test_rejection_emits_event_and_changes_nothing(self, world):
        from proofgate.errors import RootMismatch
        from proofgate.events import ProofAccepted, ProofRejected

        before = world.gate.stats()
        pi = world.inputs(credential_root=ROOT_2)
        world.attest(pi)
        with pytest.raises(RootMismatch):
            world.submit(pi)

        after = world.gate.stats()
        assert after["nullifiers"] == before["nullifiers"]
        assert after["grants"] == before["grants"]
        assert after["rejected"] == before["rejected"] + 1
        assert world.gate.get_grant_status(world.record_id, HOLDER) is None
        assert world.events.events(ProofAccepted) == []
        (rejected,) = world.events.events(ProofRejected)
        assert rejected.reason_code == "root_mismatch"
        assert rejected.record_id == world.record_id

    def test_rejected_then_corrected(self, world):
        """A recoverable failure leaves the nullifier spendable."""
        from proofgate.errors import AttestationNotFound

        pi = world.inputs()
        with pytest.raises(AttestationNotFound):
            world.submit(pi)
        world.attest(pi)
        world.submit(pi)

    @pytest.mark.parametrize("raw", ["abc", "0", "-5"])
    def test_unreadable_grant_ttl_fails_closed(self, world, monkeypatch, raw):
        """A bad grant TTL is caught before the nullifier is consumed."""
        from proofgate.errors import Misconfigured
        from proofgate.events import ProofAccepted, ProofRejected

        pi = world.inputs()
        world.attest(pi)
        monkeypatch.setenv("PROOFGATE_GRANT_TTL", raw)

        with pytest.raises(Misconfigured) as exc:
            world.submit(pi)
        assert exc.value.field == "grant_ttl_seconds"
        assert world.gate.is_nullifier_used(pi.nullifier) is False
        assert world.gate.get_grant_status(world.record_id, HOLDER) is None
        assert world.gate.stats()["nullifiers"] == 0
        assert world.events.events(ProofAccepted) == []
        (rejected,) = world.events.events(ProofRejected)
        assert rejected.reason_code == "misconfigured"

        monkeypatch.delenv("PROOFGATE_GRANT_TTL")
        assert world.submit(pi).expires_at == 100 + GRANT_TTL

    def test_environment_ttl_applies_until_admin_sets_one(self, world, monkeypatch):
        monkeypatch.setenv("PROOFGATE_GRANT_TTL", "7200")
        assert world.gate.grant_ttl == 7200

        world.gate.set_grant_ttl(ADMIN, 60)
        assert world.gate.grant_ttl == 60
        assert world.attest_and_submit(world.inputs()).expires_at == 160

    def test_failing_subscriber_after_nullifier_keeps_grant(self, world):
        """Steps after the nullifier insert cannot fail the submission."""
        from proofgate.events import ProofAccepted

        @world.deployment.bus.subscribe(ProofAccepted)
        def broken(event):
            raise RuntimeError("subscriber down")

        world.deployment.bus._on_error = lambda error: None
        pi = world.inputs()
        world.attest_and_submit(pi)

        assert world.gate.is_nullifier_used(pi.nullifier)
        assert world.gate.get_grant_status(world.record_id, HOLDER) == 100 + GRANT_TTL


class TestAdministration:

    def test_paused_gate(self, world):
        from proofgate.errors import Paused

        pi = world.inputs()
        world.attest(pi)
        world.gate.pause(ADMIN)
        assert world.gate.paused
        with pytest.raises(Paused):
            world.submit(pi)

        world.gate.unpause(ADMIN)
        world.submit(pi)

    def test_uninitialized_gate(self, clock):
        from proofgate.errors import NotInitialized
        from proofgate.gate import AccessGate
        from proofgate.ledger import Ledger

        gate = AccessGate(Ledger(clock))
        with pytest.raises(NotInitialized):
            gate.submit_proof(HOLDER, {}, PROOF)

    def test_missing_collaborators(self, clock):
        from proofgate.errors import Misconfigured
        from proofgate.gate import AccessGate
        from proofgate.ledger import Ledger
        from proofgate.records import InMemoryRecordStore

        gate = AccessGate(Ledger(clock))
        gate.initialize(ADMIN, InMemoryRecordStore())
        with pytest.raises(Misconfigured):
            gate.submit_proof(HOLDER, {}, PROOF)

    def test_foreign_ledger_rejected(self, world, clock):
        from proofgate.errors import Misconfigured
        from proofgate.ledger import Ledger
        from proofgate.registry import CredentialRootRegistry

        foreign = CredentialRootRegistry(Ledger(clock))
        with pytest.raises(Misconfigured):
            world.gate.set_credential_registry(ADMIN, foreign)

    def test_double_initialize(self, world):
        from proofgate.errors import AlreadyInitialized

        with pytest.raises(AlreadyInitialized):
            world.gate.initialize(ADMIN, world.records)

    @pytest.mark.parametrize("call", [
        lambda g: g.pause("mallory"),
        lambda g: g.unpause("mallory"),
        lambda g: g.set_zk_enforced("mallory", False),
        lambda g: g.set_grant_ttl("mallory", 10),
        lambda g: g.set_verifier("mallory", RecordingVerifier(True)),
    ])
    def test_admin_only(self, world, call):
        from proofgate.errors import Unauthorized

        with pytest.raises(Unauthorized):
            call(world.gate)
        assert world.gate.zk_enforced
        assert not world.gate.paused

    def test_bad_grant_ttl(self, world):
        from proofgate.errors import InvalidInput

        with pytest.raises(InvalidInput):
            world.gate.set_grant_ttl(ADMIN, 0)
        assert world.gate.grant_ttl == GRANT_TTL
