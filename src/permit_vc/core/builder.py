# SPDX-License-Identifier: MPL-2.0
"""Credential assembly.

The builder is pure: it assigns an identity and issuance date, checks the
claims and returns an unsigned :class:`Credential`. Uniqueness of the id is
enforced by the store at insertion time.
"""
from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Optional

from permit_vc.core.canonicalization import canonicalize
from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.exceptions import CanonicalizationError, ValidationError
from permit_vc.core.models import BASE_CONTEXT, BASE_TYPE, PERMIT_CONTEXT, PERMIT_TYPE, Credential

RESERVED_CLAIMS = frozenset({"id", "proof", "issuer", "issuanceDate"})

IdFactory = Callable[[], str]


def new_credential_id() -> str:
    return f"urn:uuid:{uuid.uuid4()}"


def _ordered_types(types: Optional[Iterable[str]]) -> tuple[str, ...]:
    requested = [PERMIT_TYPE] if types is None else list(types)
    ordered = [BASE_TYPE]
    for tag in requested:
        if not isinstance(tag, str) or not tag:
            raise ValidationError("Credential types must be non-empty strings", {"type": tag})
        if tag not in ordered:
            ordered.append(tag)
    return tuple(ordered)


class CredentialBuilder:
    """Assembles canonical permit credentials from subject claims."""

    def __init__(
        self,
        clock: Clock = utc_now,
        id_factory: IdFactory = new_credential_id,
        context: Iterable[str] = (BASE_CONTEXT, PERMIT_CONTEXT),
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self.context = tuple(context)
        if not self.context or self.context[0] != BASE_CONTEXT:
            raise ValueError(f"Credential context must start with {BASE_CONTEXT}")

    def build(
        self,
        subject_claims: Mapping[str, Any],
        issuer: str,
        types: Optional[Iterable[str]] = None,
        holder: Optional[str] = None,
    ) -> Credential:
        """Build an unsigned credential.

        Args:
            subject_claims: Flat mapping of approved-permit fields.
            issuer: Issuer identity string.
            types: Extra type tags; ``VerifiableCredential`` is always first.
            holder: Optional holder identity, rendered as ``credentialSubject.id``.

        Raises:
            ValidationError: empty claims, reserved claim names, or claims
                that cannot be canonicalized.
        """
        if not isinstance(subject_claims, Mapping) or not subject_claims:
            raise ValidationError("subjectClaims must be a non-empty mapping")

        reserved = sorted(RESERVED_CLAIMS.intersection(subject_claims))
        if reserved:
            raise ValidationError(
                f"subjectClaims use reserved field names: {', '.join(reserved)}",
                {"reserved": reserved},
            )

        if not isinstance(issuer, str) or not issuer:
            raise ValidationError("issuer must be a non-empty string")
        if holder is not None and (not isinstance(holder, str) or not holder):
            raise ValidationError("holder must be a non-empty string when given")

        try:
            # Keep only JSON values so stored and presented documents agree
            claims = json.loads(canonicalize(dict(subject_claims)))
        except CanonicalizationError as exc:
            raise ValidationError(f"subjectClaims are not serialisable: {exc}") from exc

        return Credential(
            id=self._id_factory(),
            context=self.context,
            type=_ordered_types(types),
            issuer=issuer,
            # Second precision keeps issuanceDate <= now for any clock resolution
            issuance_date=self._clock().replace(microsecond=0),
            subject_claims=claims,
            holder=holder,
        )


def canonical_bytes(credential: Credential) -> bytes:
    """Return the byte form that proofs are computed over."""
    return credential.canonical_bytes()
