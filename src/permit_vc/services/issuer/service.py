# SPDX-License-Identifier: MPL-2.0
"""Credential Service

Transport-agnostic facade over the credential engine: issue, verify, revoke,
generate presentation codes and resolve scanned codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from permit_vc.core.builder import CredentialBuilder
from permit_vc.core.canonicalization import format_timestamp
from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.config import Settings
from permit_vc.core.crypto import KeyPair, KeyRing, ProofEngine, SigningKeyProvider
from permit_vc.core.exceptions import ConfigurationError, NotFoundError
from permit_vc.core.models import (
    Credential,
    PresentationReference,
    Proof,
    StoredCredential,
    VerificationResult,
    VisualCode,
)
from permit_vc.core.presentation import PresentationChannel
from permit_vc.core.store import VALIDITY_CLAIMS, CredentialStore
from permit_vc.core.verification import VerificationEngine

logger = logging.getLogger(__name__)

HOLDER_NAME_CLAIMS = ("holderName", "applicantName", "applicant", "name")
SUMMARY_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class IssuedCredential:
    """A freshly issued credential together with its proof."""

    credential: Credential
    proof: Proof

    @property
    def id(self) -> str:  # noqa: A003
        return self.credential.id

    @property
    def document(self) -> Dict[str, Any]:
        return self.credential.to_document(self.proof)


@dataclass
class ScanResolution:
    """Outcome of resolving a scanned presentation code."""

    reference: PresentationReference
    verification: VerificationResult
    presentation_expired: bool
    display: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vcId": self.reference.credential_id,
            "status": "VALID" if self.verification.valid else self.verification.reason.value,
            "verification": self.verification.to_dict(),
            "presentation": {
                **self.reference.to_dict(),
                "expired": self.presentation_expired,
            },
            "permitDetails": self.display,
        }


def display_fields(
    credential: Credential, validity_claims: Iterable[str] = VALIDITY_CLAIMS
) -> Dict[str, Any]:
    """Denormalised, human-facing fields of a credential for scan results."""

    claims = credential.subject_claims
    holder_name = next((claims[k] for k in HOLDER_NAME_CLAIMS if claims.get(k)), None)
    details: Dict[str, Any] = {
        "holderName": holder_name,
        "permitType": claims.get("permitType"),
        "issuer": credential.issuer,
        "issuanceDate": format_timestamp(credential.issuance_date),
        "claimSummary": {k: v for k, v in claims.items() if isinstance(v, SUMMARY_TYPES)},
    }
    if "businessName" in claims:
        details["businessName"] = claims["businessName"]
    expiry = next((claims[k] for k in validity_claims if claims.get(k) is not None), None)
    if expiry is not None:
        details["expiryDate"] = expiry
    return details


def key_provider_from_settings(settings: Settings, clock: Clock = utc_now) -> SigningKeyProvider:
    """Resolve the configured signing key into a :class:`KeyRing`."""

    kid = settings.key_id or f"{settings.issuer}#key-1"
    if settings.signing_key_path:
        try:
            key_pair = KeyPair.from_pem_file(settings.signing_key_path, kid=kid)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"Cannot load signing key from {settings.signing_key_path}: {exc}"
            ) from exc
    else:
        logger.warning("PERMIT_VC_SIGNING_KEY not set; using an ephemeral signing key")
        key_pair = KeyPair.generate(kid)
    return KeyRing(key_pair, clock=clock)


class CredentialService:
    """Issues, verifies, revokes and presents permit credentials."""

    def __init__(
        self,
        store: CredentialStore,
        proof_engine: ProofEngine,
        issuer: str,
        builder: Optional[CredentialBuilder] = None,
        channel: Optional[PresentationChannel] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.proof_engine = proof_engine
        self.issuer = issuer
        self.clock = clock
        self.builder = builder or CredentialBuilder(clock=clock)
        self.channel = channel or PresentationChannel(clock=clock)
        self.verifier = VerificationEngine(store, proof_engine, clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Clock = utc_now,
        key_provider: Optional[SigningKeyProvider] = None,
    ) -> CredentialService:
        provider = key_provider or key_provider_from_settings(settings, clock)
        return cls(
            store=CredentialStore(settings.database, timeout=settings.store_timeout, clock=clock),
            proof_engine=ProofEngine(provider, clock=clock),
            issuer=settings.issuer,
            builder=CredentialBuilder(clock=clock),
            channel=PresentationChannel(
                base_url=settings.qr_base_url,
                ttl_seconds=settings.qr_ttl_seconds,
                clock=clock,
            ),
            clock=clock,
        )

    def issue(
        self,
        subject_claims: Mapping[str, Any],
        holder: Optional[str] = None,
        issuer: Optional[str] = None,
        types: Optional[Iterable[str]] = None,
    ) -> IssuedCredential:
        """Build, sign and persist a credential.

        Nothing is stored unless both building and signing succeed.

        Raises:
            ValidationError: Invalid claims.
            SignatureInfrastructureError: The signing key is unavailable.
            ConflictError: The assigned id already exists.
            StoreUnavailable: The store did not answer in time.
        """
        credential = self.builder.build(
            subject_claims, issuer=issuer or self.issuer, types=types, holder=holder
        )
        proof = self.proof_engine.sign(credential.canonical_bytes())
        self.store.put(credential, proof)
        logger.info("Issued credential %s signed with %s", credential.id, proof.verification_method)
        return IssuedCredential(credential=credential, proof=proof)

    def get(self, credential_id: str) -> StoredCredential:
        return self.store.get(credential_id)

    def verify(self, credential_id: str) -> VerificationResult:
        return self.verifier.verify(credential_id)

    def verify_document(self, document: Dict[str, Any]) -> VerificationResult:
        return self.verifier.verify_document(document)

    def revoke(self, credential_id: str, reason: Optional[str] = None) -> StoredCredential:
        return self.store.revoke(credential_id, reason)

    def generate_presentation_code(self, credential_id: str) -> VisualCode:
        """Render a QR code pointing at live verification of ``credential_id``.

        Raises:
            NotFoundError: The credential does not exist.
        """
        if not self.store.exists(credential_id):
            raise NotFoundError(
                f"Credential {credential_id} not found", {"credential_id": credential_id}
            )
        return self.channel.encode(credential_id)

    def resolve_scanned_code(self, scanned_payload: str) -> ScanResolution:
        """Decode a scanned payload and verify the referenced credential now.

        Raises:
            ValidationError: The payload is not a verification reference.
        """
        reference = self.channel.decode(scanned_payload)
        return self.resolve_reference(reference)

    def resolve_reference(self, reference: PresentationReference) -> ScanResolution:
        now = self.clock()
        verification = self.verifier.verify(reference.credential_id, now=now)
        display: Dict[str, Any] = {}
        try:
            record = self.store.get(reference.credential_id)
        except NotFoundError:
            record = None
        if record is not None:
            display = display_fields(record.credential, self.store.validity_claims)
        return ScanResolution(
            reference=reference,
            verification=verification,
            presentation_expired=not reference.is_fresh(now),
            display=display,
        )
