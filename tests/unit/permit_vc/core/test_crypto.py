"""Tests for key handling and the Ed25519 proof engine."""

from datetime import timedelta

import pytest

from permit_vc.core.crypto import KeyPair, KeyRing, ProofEngine, b64url_decode, b64url_encode
from permit_vc.core.exceptions import SignatureInfrastructureError
from permit_vc.core.models import PROOF_PURPOSE, PROOF_TYPE

PAYLOAD = b'{"id":"urn:uuid:1234","issuer":"did:web:permits.example.org"}'


def test_b64url_round_trip_without_padding():
    encoded = b64url_encode(b"\xfb\xff\x00")
    assert "=" not in encoded
    assert b64url_decode(encoded) == b"\xfb\xff\x00"


class TestKeyPair:
    def test_pem_round_trip(self, tmp_path):
        key = KeyPair.generate("did:web:x#key-1")
        path = tmp_path / "signing.pem"
        path.write_bytes(key.private_pem())

        loaded = KeyPair.from_pem_file(path, kid="did:web:x#key-1")
        assert loaded.public_bytes() == key.public_bytes()
        assert loaded.kid == "did:web:x#key-1"

    def test_jwk_round_trip(self):
        key = KeyPair.generate("k1")
        public = key.to_jwk()
        assert public == {"kty": "OKP", "crv": "Ed25519", "kid": "k1", "x": public["x"]}

        restored = KeyPair.from_jwk(key.to_jwk(private=True))
        assert restored.kid == "k1"
        assert restored.public_bytes() == key.public_bytes()

    def test_jwk_with_mismatched_public_key_is_rejected(self):
        jwk = KeyPair.generate("k1").to_jwk(private=True)
        jwk["x"] = KeyPair.generate("k2").to_jwk()["x"]
        with pytest.raises(ValueError):
            KeyPair.from_jwk(jwk)

    def test_jwk_without_private_material_is_rejected(self):
        with pytest.raises(ValueError):
            KeyPair.from_jwk(KeyPair.generate("k1").to_jwk())

    def test_validity_window(self, clock):
        key = KeyPair.generate("k1")
        key.not_before = clock()
        key.not_after = clock() + timedelta(days=1)
        assert key.can_sign_at(clock())
        assert not key.can_sign_at(clock() - timedelta(seconds=1))
        assert not key.can_sign_at(clock() + timedelta(days=2))


class TestProofEngine:
    def test_sign_and_verify(self, proof_engine, key_pair, clock):
        proof = proof_engine.sign(PAYLOAD)

        assert proof.type == PROOF_TYPE
        assert proof.proof_purpose == PROOF_PURPOSE
        assert proof.verification_method == key_pair.kid
        assert proof.created == clock()
        assert len(b64url_decode(proof.proof_value)) == 64
        assert proof_engine.verify(PAYLOAD, proof)

    def test_tampered_bytes_fail(self, proof_engine):
        proof = proof_engine.sign(PAYLOAD)
        assert not proof_engine.verify(PAYLOAD.replace(b"1234", b"1235"), proof)

    def test_signature_is_domain_separated(self, proof_engine, key_pair):
        proof = proof_engine.sign(PAYLOAD)
        raw = key_pair.sign(PAYLOAD)
        assert proof.proof_value != b64url_encode(raw)

    def test_malformed_signature_fails(self, proof_engine):
        proof = proof_engine.sign(PAYLOAD)
        assert not proof_engine.verify(PAYLOAD, proof.model_copy(update={"proof_value": "!!!"}))
        assert not proof_engine.verify(
            PAYLOAD, proof.model_copy(update={"proof_value": b64url_encode(b"short")})
        )

    def test_wrong_type_or_purpose_fails(self, proof_engine):
        proof = proof_engine.sign(PAYLOAD)
        assert not proof_engine.verify(PAYLOAD, proof.model_copy(update={"type": "RsaSignature2018"}))
        assert not proof_engine.verify(
            PAYLOAD, proof.model_copy(update={"proof_purpose": "authentication"})
        )

    def test_unknown_key_fails(self, proof_engine):
        proof = proof_engine.sign(PAYLOAD)
        assert not proof_engine.verify(
            PAYLOAD, proof.model_copy(update={"verification_method": "did:web:other#key-9"})
        )

    def test_explicit_verification_key(self, proof_engine):
        other = KeyPair.generate("other")
        proof = proof_engine.sign(PAYLOAD, signing_key=other)
        assert proof.verification_method == "other"
        assert proof_engine.verify(PAYLOAD, proof, verification_key=other.public_key)
        # The ring does not know "other"
        assert not proof_engine.verify(PAYLOAD, proof)

    def test_provider_failure_raises(self, clock):
        class BrokenProvider(KeyRing):
            def signing_key(self):
                raise RuntimeError("HSM unreachable")

        engine = ProofEngine(BrokenProvider(clock=clock), clock=clock)
        with pytest.raises(SignatureInfrastructureError):
            engine.sign(PAYLOAD)


class TestKeyRing:
    def test_rotation_keeps_old_keys_verifiable(self, key_ring, proof_engine):
        old_proof = proof_engine.sign(PAYLOAD)
        new_key = KeyPair.generate("did:web:permits.example.org#key-2")
        key_ring.rotate(new_key)

        new_proof = proof_engine.sign(PAYLOAD)
        assert new_proof.verification_method == new_key.kid
        assert proof_engine.verify(PAYLOAD, old_proof)
        assert proof_engine.verify(PAYLOAD, new_proof)
        assert set(key_ring.list_keys()) == {old_proof.verification_method, new_key.kid}

    def test_revoked_key_raises(self, key_ring, proof_engine, key_pair):
        proof = proof_engine.sign(PAYLOAD)
        key_ring.revoke_key(key_pair.kid)

        with pytest.raises(SignatureInfrastructureError):
            proof_engine.sign(PAYLOAD)
        with pytest.raises(SignatureInfrastructureError):
            proof_engine.verify(PAYLOAD, proof)

    def test_empty_ring_cannot_sign(self, clock):
        with pytest.raises(SignatureInfrastructureError):
            KeyRing(clock=clock).signing_key()

    def test_key_outside_window_cannot_sign(self, clock):
        key = KeyPair.generate("k1")
        key.not_after = clock() - timedelta(days=1)
        with pytest.raises(SignatureInfrastructureError):
            KeyRing(key, clock=clock).signing_key()

    def test_added_key_is_verification_only(self, key_ring, key_pair):
        extra = KeyPair.generate("extra")
        key_ring.add_key(extra)
        assert key_ring.signing_key().kid == key_pair.kid
        assert key_ring.verification_key("extra") is extra.public_key
        with pytest.raises(KeyError):
            key_ring.verification_key("missing")
