# SPDX-License-Identifier: MPL-2.0
"""
Verification engine for permit credentials.

Checks run cheapest first and stop at the first failure:

1. the credential exists in the store
2. it has not been revoked
3. its validity window has not elapsed
4. its proof verifies over the canonical bytes

An invalid credential is a normal result carrying a reason code. Only
infrastructure faults (:class:`StoreUnavailable`,
:class:`SignatureInfrastructureError`) are raised. Verification never
writes to the store.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from permit_vc.core.canonicalization import canonical_credential_bytes
from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.crypto import ProofEngine
from permit_vc.core.exceptions import NotFoundError
from permit_vc.core.models import (
    CredentialStatus,
    Proof,
    StoredCredential,
    VerificationReason,
    VerificationResult,
    parse_timestamp,
)
from permit_vc.core.models.schema import validate_document
from permit_vc.core.store import CredentialStore

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Verifies stored or presented credentials against the store and proof engine."""

    def __init__(self, store: CredentialStore, proof_engine: ProofEngine, clock: Clock = utc_now):
        self.store = store
        self.proof_engine = proof_engine
        self._clock = clock

    def verify(self, credential_id: str, now: Optional[datetime] = None) -> VerificationResult:
        """Verify the stored credential ``credential_id``.

        Args:
            credential_id: Id of the credential to verify
            now: Instant to evaluate expiry at; defaults to the engine clock

        Returns:
            A VerificationResult with a definite reason code
        """
        checked_at = parse_timestamp(now) if now is not None else self._clock()
        record = self._lookup(credential_id)
        if record is None:
            return self._result(VerificationReason.UNKNOWN_CREDENTIAL, credential_id, checked_at)

        failure = self._store_side_failure(record, checked_at)
        if failure is not None:
            return failure

        if not self.proof_engine.verify(record.credential.canonical_bytes(), record.proof):
            return self._result(VerificationReason.INVALID_SIGNATURE, credential_id, checked_at)

        return self._result(VerificationReason.NONE, credential_id, checked_at)

    def verify_document(
        self, document: Dict[str, Any], now: Optional[datetime] = None
    ) -> VerificationResult:
        """Verify a full presented credential document.

        Store-side status comes from the authoritative stored copy; the
        signature is checked over the presented document with its own proof,
        so any edit to the presented fields yields INVALID_SIGNATURE.

        Raises:
            ValidationError: The document does not match the credential schema.
        """
        validate_document(document)
        document = copy.deepcopy(document)
        checked_at = parse_timestamp(now) if now is not None else self._clock()
        credential_id = document["id"]

        record = self._lookup(credential_id)
        if record is None:
            return self._result(VerificationReason.UNKNOWN_CREDENTIAL, credential_id, checked_at)

        failure = self._store_side_failure(record, checked_at)
        if failure is not None:
            return failure

        try:
            proof = Proof.from_document(document["proof"])
        except ValueError:
            # Unparseable proof fields cannot carry a valid signature
            return self._result(VerificationReason.INVALID_SIGNATURE, credential_id, checked_at)

        if not self.proof_engine.verify(canonical_credential_bytes(document), proof):
            return self._result(VerificationReason.INVALID_SIGNATURE, credential_id, checked_at)

        return self._result(VerificationReason.NONE, credential_id, checked_at)

    def _lookup(self, credential_id: str) -> Optional[StoredCredential]:
        try:
            return self.store.get(credential_id)
        except NotFoundError:
            return None

    def _store_side_failure(
        self, record: StoredCredential, checked_at: datetime
    ) -> Optional[VerificationResult]:
        if record.status == CredentialStatus.REVOKED:
            return self._result(
                VerificationReason.REVOKED,
                record.id,
                checked_at,
                revocation_reason=record.revocation_reason,
            )
        if self.store.credential_expired(record.credential, checked_at):
            return self._result(VerificationReason.EXPIRED, record.id, checked_at)
        return None

    @staticmethod
    def _result(
        reason: VerificationReason,
        credential_id: str,
        checked_at: datetime,
        revocation_reason: Optional[str] = None,
    ) -> VerificationResult:
        result = VerificationResult(
            valid=reason == VerificationReason.NONE,
            reason=reason,
            credential_id=credential_id,
            checked_at=checked_at,
            revocation_reason=revocation_reason,
        )
        logger.info("Verified credential %s: %s", credential_id, reason.value)
        return result

