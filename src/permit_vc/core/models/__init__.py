# SPDX-License-Identifier: MPL-2.0
"""Data models for permit credentials."""
from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from permit_vc.core.canonicalization import canonical_credential_bytes, format_timestamp

BASE_CONTEXT = "https://www.w3.org/2018/credentials/v1"
PERMIT_CONTEXT = "https://digit.org/credentials/permit/v1"
BASE_TYPE = "VerifiableCredential"
PERMIT_TYPE = "PermitCredential"

PROOF_TYPE = "Ed25519Signature2020"
PROOF_PURPOSE = "assertionMethod"


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CredentialStatus(str, Enum):
    """Lifecycle status of a credential.

    ``EXPIRED`` is only ever derived at query time, never stored.
    """

    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class VerificationReason(str, Enum):
    """Reason attached to every verification outcome."""

    NONE = "NONE"
    UNKNOWN_CREDENTIAL = "UNKNOWN_CREDENTIAL"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class Proof(BaseModel):
    """Detached Ed25519 proof over a credential's canonical bytes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = PROOF_TYPE  # noqa: A003
    created: datetime
    verification_method: str = Field(alias="verificationMethod")
    proof_purpose: str = Field(default=PROOF_PURPOSE, alias="proofPurpose")
    proof_value: str = Field(alias="proofValue")

    @field_validator("created", mode="before")
    @classmethod
    def normalize_created(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @property
    def algorithm(self) -> str:
        return self.type

    @property
    def verification_key_id(self) -> str:
        return self.verification_method

    def to_document(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "created": format_timestamp(self.created),
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
            "proofValue": self.proof_value,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Proof:
        return cls.model_validate(document)


class Credential(BaseModel):
    """A permit credential as assembled by the builder.

    The wire form nests ``holder`` as ``credentialSubject.id`` next to the
    subject claims, following the W3C VC data model.
    """

    model_config = ConfigDict(frozen=True)

    id: str  # noqa: A003
    context: tuple[str, ...] = (BASE_CONTEXT, PERMIT_CONTEXT)
    type: tuple[str, ...] = (BASE_TYPE, PERMIT_TYPE)  # noqa: A003
    issuer: str
    issuance_date: datetime
    subject_claims: dict[str, Any]
    holder: Optional[str] = None

    @field_validator("issuance_date", mode="before")
    @classmethod
    def normalize_issuance_date(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    def credential_subject(self) -> dict[str, Any]:
        subject: dict[str, Any] = {}
        if self.holder is not None:
            subject["id"] = self.holder
        subject.update(copy.deepcopy(self.subject_claims))
        return subject

    def to_document(self, proof: Optional[Proof] = None) -> dict[str, Any]:
        """Return the JSON-ready credential document, optionally with its proof."""
        document: dict[str, Any] = {
            "@context": list(self.context),
            "id": self.id,
            "type": list(self.type),
            "issuer": self.issuer,
            "issuanceDate": format_timestamp(self.issuance_date),
            "credentialSubject": self.credential_subject(),
        }
        if proof is not None:
            document["proof"] = proof.to_document()
        return document

    def canonical_bytes(self) -> bytes:
        return canonical_credential_bytes(self.to_document())

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Credential:
        subject = dict(document["credentialSubject"])
        holder = subject.pop("id", None)
        return cls(
            id=document["id"],
            context=tuple(document["@context"]),
            type=tuple(document["type"]),
            issuer=document["issuer"],
            issuance_date=document["issuanceDate"],
            subject_claims=subject,
            holder=holder,
        )


@dataclass(frozen=True)
class StoredCredential:
    """Authoritative store record: document, proof and stored status."""

    credential: Credential
    proof: Proof
    status: CredentialStatus
    created_at: datetime
    updated_at: datetime
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None

    @property
    def id(self) -> str:  # noqa: A003
        return self.credential.id


@dataclass(frozen=True)
class PresentationReference:
    """Short-lived pointer to a credential, carried in a visual code.

    A reference never proves validity; ``expires_at`` only bounds how long the
    code counts as a fresh presentation.
    """

    credential_id: str
    issued_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    def is_fresh(self, now: datetime) -> bool:
        return self.issued_at <= now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "credentialId": self.credential_id,
            "issuedAt": format_timestamp(self.issued_at),
            "expiresAt": format_timestamp(self.expires_at),
        }


@dataclass
class VisualCode:
    """Scannable rendering of a presentation reference."""

    payload: str
    image: str
    reference: PresentationReference
    media_type: str = "image/svg+xml"

    @property
    def expires_at(self) -> datetime:
        return self.reference.expires_at


@dataclass
class VerificationResult:
    """Result of verifying a credential."""

    valid: bool
    reason: VerificationReason
    credential_id: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    revocation_reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> dict[str, Any]:
        """Convert the result to a dictionary."""
        result: dict[str, Any] = {
            "valid": self.valid,
            "reason": self.reason.value,
            "credentialId": self.credential_id,
            "checkedAt": format_timestamp(self.checked_at),
        }
        if self.revocation_reason is not None:
            result["revocationReason"] = self.revocation_reason
        return result

    def to_json(self, indent: int = 2) -> str:
        """Convert the result to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)
