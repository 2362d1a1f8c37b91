import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from permit_vc.core.models import (
    Credential,
    Proof,
    VerificationReason,
    VerificationResult,
    parse_timestamp,
)

DOCUMENT = {
    "@context": ["https://www.w3.org/2018/credentials/v1", "https://digit.org/credentials/permit/v1"],
    "id": "urn:uuid:7f0c",
    "type": ["VerifiableCredential", "PermitCredential"],
    "issuer": "did:web:permits.example.org",
    "issuanceDate": "2024-06-01T10:00:00Z",
    "credentialSubject": {"id": "did:example:holder", "permitType": "FOOD_VENDOR"},
}

PROOF = {
    "type": "Ed25519Signature2020",
    "created": "2024-06-01T10:00:00Z",
    "verificationMethod": "did:web:permits.example.org#key-1",
    "proofPurpose": "assertionMethod",
    "proofValue": "c2ln",
}


def test_parse_timestamp_normalizes_to_utc():
    assert parse_timestamp("2024-06-01T12:00:00+02:00") == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-06-01T10:00:00") == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)


def test_credential_document_round_trip():
    credential = Credential.from_document(DOCUMENT)
    assert credential.holder == "did:example:holder"
    assert credential.subject_claims == {"permitType": "FOOD_VENDOR"}
    assert credential.to_document() == DOCUMENT


def test_canonical_bytes_are_stable():
    credential = Credential.from_document(DOCUMENT)
    assert credential.canonical_bytes() == Credential.from_document(
        json.loads(json.dumps(credential.to_document()))
    ).canonical_bytes()
    assert credential.canonical_bytes().startswith(b'{"@context":')


def test_credential_is_immutable():
    credential = Credential.from_document(DOCUMENT)
    with pytest.raises(PydanticValidationError):
        credential.issuer = "did:web:evil"


def test_proof_aliases_round_trip():
    proof = Proof.from_document(PROOF)
    assert proof.verification_key_id == PROOF["verificationMethod"]
    assert proof.algorithm == "Ed25519Signature2020"
    assert proof.to_document() == PROOF


def test_proof_requires_signature():
    with pytest.raises(PydanticValidationError):
        Proof.from_document({k: v for k, v in PROOF.items() if k != "proofValue"})


def test_verification_result_serialization():
    result = VerificationResult(
        valid=False,
        reason=VerificationReason.EXPIRED,
        credential_id="urn:uuid:7f0c",
        checked_at=datetime(2025, 1, 16, tzinfo=timezone.utc),
    )
    assert not result
    assert json.loads(result.to_json()) == {
        "valid": False,
        "reason": "EXPIRED",
        "credentialId": "urn:uuid:7f0c",
        "checkedAt": "2025-01-16T00:00:00Z",
    }
