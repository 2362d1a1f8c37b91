"""
Tests for the verification engine.

Covers the short-circuit order of the checks, tamper detection on stored
and presented documents, and derived expiry.
"""

import copy
import json
from datetime import datetime, timezone

import pytest

from permit_vc.core.builder import CredentialBuilder
from permit_vc.core.crypto import KeyPair
from permit_vc.core.exceptions import SignatureInfrastructureError, ValidationError
from permit_vc.core.models import VerificationReason
from permit_vc.core.verification import VerificationEngine

ISSUER = "did:web:permits.example.org"


@pytest.fixture
def engine(store, proof_engine, clock):
    return VerificationEngine(store, proof_engine, clock=clock)


@pytest.fixture
def issue(store, proof_engine, clock):
    builder = CredentialBuilder(clock=clock)

    def _issue(claims=None):
        credential = builder.build(claims or {"permitType": "FOOD_VENDOR"}, issuer=ISSUER)
        proof = proof_engine.sign(credential.canonical_bytes())
        store.put(credential, proof)
        return credential.to_document(proof)

    return _issue


def test_valid_credential(engine, issue, clock):
    document = issue()
    result = engine.verify(document["id"])

    assert result.valid
    assert result
    assert result.reason == VerificationReason.NONE
    assert result.credential_id == document["id"]
    assert result.checked_at == clock()


def test_unknown_credential(engine):
    result = engine.verify("urn:uuid:missing")
    assert not result.valid
    assert result.reason == VerificationReason.UNKNOWN_CREDENTIAL


def test_revoked_credential_reports_reason(engine, issue, store):
    document = issue()
    store.revoke(document["id"], "permit withdrawn")

    result = engine.verify(document["id"])
    assert result.reason == VerificationReason.REVOKED
    assert result.revocation_reason == "permit withdrawn"
    assert result.to_dict()["revocationReason"] == "permit withdrawn"


def test_revocation_is_checked_before_expiry(engine, issue, store, clock):
    document = issue({"validUntil": "2024-06-30"})
    store.revoke(document["id"])
    clock.set(datetime(2024, 7, 1, tzinfo=timezone.utc))
    assert engine.verify(document["id"]).reason == VerificationReason.REVOKED


def test_expiry_is_checked_before_signature(engine, issue, store, clock):
    document = issue({"validUntil": "2024-06-30"})
    with store._get_connection() as conn:
        conn.execute(
            "UPDATE credentials SET proof = replace(proof, 'assertionMethod', 'x')"
        )
    clock.set(datetime(2024, 7, 1, tzinfo=timezone.utc))
    assert engine.verify(document["id"]).reason == VerificationReason.EXPIRED


def test_tampered_stored_document_is_detected(engine, issue, store):
    document = issue({"permitType": "FOOD_VENDOR", "stallCount": 1})
    tampered = copy.deepcopy(document)
    del tampered["proof"]
    tampered["credentialSubject"]["stallCount"] = 5
    with store._get_connection() as conn:
        conn.execute(
            "UPDATE credentials SET document = ? WHERE credential_id = ?",
            (json.dumps(tampered), document["id"]),
        )

    assert engine.verify(document["id"]).reason == VerificationReason.INVALID_SIGNATURE


def test_verification_does_not_write(engine, issue, store, clock):
    document = issue({"validUntil": "2024-06-30"})
    before = store.get(document["id"])
    clock.set(datetime(2025, 1, 1, tzinfo=timezone.utc))
    engine.verify(document["id"])
    assert store.get(document["id"]) == before


def test_expiry_with_clock_rollback(engine, issue, clock):
    document = issue({"validUntil": "2025-01-15"})
    clock.set(datetime(2025, 1, 16, tzinfo=timezone.utc))
    assert engine.verify(document["id"]).reason == VerificationReason.EXPIRED

    clock.set(datetime(2025, 1, 10, tzinfo=timezone.utc))
    assert engine.verify(document["id"]).valid


def test_explicit_now_overrides_clock(engine, issue):
    document = issue({"validUntil": "2025-01-15"})
    later = datetime(2026, 1, 1, tzinfo=timezone.utc)
    result = engine.verify(document["id"], now=later)
    assert result.reason == VerificationReason.EXPIRED
    assert result.checked_at == later


def test_naive_now_is_read_as_utc(engine, issue):
    document = issue({"validUntil": "2025-01-15"})
    result = engine.verify(document["id"], now=datetime(2026, 1, 1))
    assert result.reason == VerificationReason.EXPIRED
    assert result.checked_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert engine.verify(document["id"], now=datetime(2025, 1, 15, 12)).valid


def test_revoked_signing_key_raises(engine, issue, key_ring, key_pair):
    document = issue()
    key_ring.revoke_key(key_pair.kid)
    with pytest.raises(SignatureInfrastructureError):
        engine.verify(document["id"])


def test_rotated_key_still_verifies_old_credentials(engine, issue, key_ring):
    document = issue()
    key_ring.rotate(KeyPair.generate(f"{ISSUER}#key-2"))
    assert engine.verify(document["id"]).valid


class TestVerifyDocument:
    def test_presented_document_is_valid(self, engine, issue):
        document = issue()
        assert engine.verify_document(document).valid

    def test_member_order_does_not_matter(self, engine, issue):
        document = issue()
        reordered = dict(reversed(list(document.items())))
        assert engine.verify_document(reordered).valid

    def test_edited_claim_is_detected(self, engine, issue, store):
        document = issue({"permitType": "FOOD_VENDOR", "applicant": "J. Doe"})
        document["credentialSubject"]["applicant"] = "M. Smith"

        assert engine.verify_document(document).reason == VerificationReason.INVALID_SIGNATURE
        # The stored copy is untouched
        assert engine.verify(document["id"]).valid

    def test_edited_proof_is_detected(self, engine, issue):
        document = issue()
        document["proof"]["created"] = "not a date"
        assert engine.verify_document(document).reason == VerificationReason.INVALID_SIGNATURE

    def test_unknown_document(self, engine, issue):
        document = issue()
        document["id"] = "urn:uuid:never-issued"
        assert engine.verify_document(document).reason == VerificationReason.UNKNOWN_CREDENTIAL

    def test_revoked_document(self, engine, issue, store):
        document = issue()
        store.revoke(document["id"])
        assert engine.verify_document(document).reason == VerificationReason.REVOKED

    def test_input_is_not_mutated(self, engine, issue):
        document = issue()
        snapshot = copy.deepcopy(document)
        engine.verify_document(document)
        assert document == snapshot

    @pytest.mark.parametrize("missing", ["id", "proof", "credentialSubject", "issuanceDate"])
    def test_malformed_document_raises(self, engine, issue, missing):
        document = issue()
        del document[missing]
        with pytest.raises(ValidationError):
            engine.verify_document(document)
