# SPDX-License-Identifier: MPL-2.0
"""Cryptographic primitives and the proof engine.

Signing keys are reached only through a :class:`SigningKeyProvider`, so the
engine never holds a global issuer key. :class:`KeyRing` is the in-process
provider: it keeps every key it has ever signed with, which lets documents
issued before a rotation stay verifiable against their original key.
"""

from __future__ import annotations

import abc
import base64
import binascii
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union, cast

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.exceptions import SignatureInfrastructureError
from permit_vc.core.models import PROOF_PURPOSE, PROOF_TYPE, Proof

logger = logging.getLogger(__name__)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@dataclass
class KeyPair:
    """Represents an Ed25519 signing key with its identifier.

    ``not_before``/``not_after`` bound when the key may *sign*; verification
    of documents signed inside the window keeps working afterwards.
    """

    private_key: ed25519.Ed25519PrivateKey
    public_key: ed25519.Ed25519PublicKey
    kid: str = field(default_factory=lambda: f"key-{os.urandom(8).hex()}")
    not_before: datetime | None = None
    not_after: datetime | None = None

    @classmethod
    def generate(cls, kid: str | None = None) -> KeyPair:
        """Generate a new key pair.

        Args:
            kid: Optional key identifier.  If omitted, a random identifier is
                generated.
        """

        private_key = ed25519.Ed25519PrivateKey.generate()
        return cls(
            private_key=private_key,
            public_key=private_key.public_key(),
            kid=kid or f"key-{os.urandom(8).hex()}",
        )

    def sign(self, data: bytes) -> bytes:
        """Sign data with the private key."""
        return cast("bytes", self.private_key.sign(data))

    def can_sign_at(self, when: datetime) -> bool:
        if self.not_before and when < self.not_before:
            return False
        if self.not_after and when > self.not_after:
            return False
        return True

    def public_bytes(self) -> bytes:
        """Get the public key as bytes."""
        return cast(
            "bytes",
            self.public_key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            ),
        )

    def private_pem(self) -> bytes:
        return cast(
            "bytes",
            self.private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )

    @classmethod
    def from_pem_file(cls, path: Union[str, Path], kid: str | None = None) -> KeyPair:
        """Load a PKCS#8 PEM-encoded Ed25519 private key."""
        key_data = Path(path).read_bytes()
        private_key = serialization.load_pem_private_key(key_data, password=None)
        if not isinstance(private_key, ed25519.Ed25519PrivateKey):
            raise ValueError("Unsupported private key type. Must be Ed25519.")
        return cls(
            private_key=private_key,
            public_key=private_key.public_key(),
            kid=kid or f"key-{os.urandom(8).hex()}",
        )

    # ------------------------------------------------------------------
    # JWK helpers
    # ------------------------------------------------------------------
    def to_jwk(self, private: bool = False) -> dict:
        """Return the key in JSON Web Key (JWK) format.

        Args:
            private: If ``True`` include the private key material.  The default
                is ``False`` which returns only the public key.
        """

        jwk = {
            "kty": "OKP",
            "crv": "Ed25519",
            "kid": self.kid,
            "x": b64url_encode(self.public_bytes()),
        }

        if private:
            private_bytes = cast(
                "bytes",
                self.private_key.private_bytes(
                    encoding=serialization.Encoding.Raw,
                    format=serialization.PrivateFormat.Raw,
                    encryption_algorithm=serialization.NoEncryption(),
                ),
            )
            jwk["d"] = b64url_encode(private_bytes)

        return jwk

    @classmethod
    def from_jwk(cls, jwk: dict) -> KeyPair:
        """Construct a :class:`KeyPair` from private JWK data."""

        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Unsupported JWK parameters")
        if "d" not in jwk:
            raise ValueError("JWK does not contain private key material")

        private_key = ed25519.Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"]))
        public_key = private_key.public_key()
        if b64url_decode(jwk["x"]) != public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ):
            raise ValueError("JWK public key does not match private key")

        if jwk.get("kid"):
            return cls(private_key=private_key, public_key=public_key, kid=jwk["kid"])
        return cls(private_key=private_key, public_key=public_key)


class SigningKeyProvider(abc.ABC):
    """Source of the issuer's signing key and of historical verification keys."""

    @abc.abstractmethod
    def signing_key(self) -> KeyPair:
        """Return the key to sign new proofs with."""

    @abc.abstractmethod
    def verification_key(self, kid: str) -> ed25519.Ed25519PublicKey:
        """Return the public key for ``kid``.

        Raises:
            KeyError: ``kid`` is not a key this provider knows.
            SignatureInfrastructureError: the key cannot be used (revoked,
                backend unreachable).
        """


class KeyRing(SigningKeyProvider):
    """A simple in-memory key provider.

    Tracks key pairs by ``kid``, one of which is active for signing.
    Rotating keeps the previous keys available for verification; revoked
    keys can neither sign nor verify.
    """

    def __init__(self, active: Optional[KeyPair] = None, clock: Clock = utc_now) -> None:
        self._keys: dict[str, KeyPair] = {}
        self._revoked: set[str] = set()
        self._active_kid: Optional[str] = None
        self._lock = threading.Lock()
        self._clock = clock
        if active is not None:
            self.rotate(active)

    def add_key(self, key_pair: KeyPair) -> None:
        """Add ``key_pair`` for verification without making it active."""

        with self._lock:
            self._keys[key_pair.kid] = key_pair

    def rotate(self, key_pair: KeyPair) -> None:
        """Make ``key_pair`` the active signing key."""

        with self._lock:
            self._keys[key_pair.kid] = key_pair
            previous, self._active_kid = self._active_kid, key_pair.kid
        logger.info("Active signing key changed from %s to %s", previous, key_pair.kid)

    def revoke_key(self, kid: str) -> None:
        """Mark ``kid`` as revoked."""

        with self._lock:
            self._revoked.add(kid)
        logger.warning("Signing key %s revoked", kid)

    def signing_key(self) -> KeyPair:
        with self._lock:
            kid = self._active_kid
            key = self._keys.get(kid) if kid else None
            revoked = kid in self._revoked
        if key is None:
            raise SignatureInfrastructureError("No active signing key configured")
        if revoked:
            raise SignatureInfrastructureError(f"Active signing key {kid} is revoked", {"kid": kid})
        if not key.can_sign_at(self._clock()):
            raise SignatureInfrastructureError(
                f"Active signing key {kid} is outside its validity window", {"kid": kid}
            )
        return key

    def verification_key(self, kid: str) -> ed25519.Ed25519PublicKey:
        with self._lock:
            if kid in self._revoked:
                raise SignatureInfrastructureError(f"Verification key {kid} is revoked", {"kid": kid})
            key = self._keys.get(kid)
        if key is None:
            raise KeyError(kid)
        return key.public_key

    def list_keys(self) -> dict[str, KeyPair]:
        """Return a mapping of all stored keys."""

        with self._lock:
            return dict(self._keys)


class ProofEngine:
    """Produces and checks detached Ed25519 proofs over canonical bytes.

    The signed frame is ``DOMAIN + canonical_bytes``. Ed25519 signatures are
    deterministic, but :meth:`verify` only relies on the signature checking
    out, never on the signature bytes themselves.
    """

    DOMAIN = b"permit-vc-v1"

    def __init__(self, key_provider: SigningKeyProvider, clock: Clock = utc_now) -> None:
        self.key_provider = key_provider
        self._clock = clock

    def sign(self, canonical_bytes: bytes, signing_key: Optional[KeyPair] = None) -> Proof:
        """Sign ``canonical_bytes`` with ``signing_key`` or the provider's active key."""

        if signing_key is None:
            try:
                signing_key = self.key_provider.signing_key()
            except SignatureInfrastructureError:
                raise
            except Exception as exc:
                logger.error("Signing key lookup failed: %s", exc)
                raise SignatureInfrastructureError(f"Signing key lookup failed: {exc}") from exc

        signature = signing_key.sign(self.DOMAIN + canonical_bytes)
        return Proof(
            type=PROOF_TYPE,
            created=self._clock().replace(microsecond=0),
            verification_method=signing_key.kid,
            proof_purpose=PROOF_PURPOSE,
            proof_value=b64url_encode(signature),
        )

    def verify(
        self,
        canonical_bytes: bytes,
        proof: Proof,
        verification_key: Optional[ed25519.Ed25519PublicKey] = None,
    ) -> bool:
        """Return whether ``proof`` is a valid signature over ``canonical_bytes``.

        Wrong or unknown keys, tampered bytes, unsupported proof types and
        malformed signatures all yield ``False``. Only a failing key lookup
        raises :class:`SignatureInfrastructureError`.
        """

        if proof.type != PROOF_TYPE or proof.proof_purpose != PROOF_PURPOSE:
            return False

        if verification_key is None:
            try:
                verification_key = self.key_provider.verification_key(proof.verification_method)
            except KeyError:
                logger.info("Unknown verification key %s", proof.verification_method)
                return False
            except SignatureInfrastructureError:
                raise
            except Exception as exc:
                logger.error("Verification key lookup failed: %s", exc)
                raise SignatureInfrastructureError(f"Verification key lookup failed: {exc}") from exc

        try:
            signature = b64url_decode(proof.proof_value)
        except (binascii.Error, ValueError):
            return False
        if len(signature) != 64:
            return False

        try:
            verification_key.verify(signature, self.DOMAIN + canonical_bytes)
        except InvalidSignature:
            return False
        return True


__all__ = [
    "KeyPair",
    "KeyRing",
    "ProofEngine",
    "SigningKeyProvider",
    "b64url_decode",
    "b64url_encode",
]
