# SPDX-License-Identifier: MPL-2.0
"""Core credential lifecycle engine."""
from permit_vc.core.builder import CredentialBuilder
from permit_vc.core.canonicalization import canonical_credential_bytes, canonicalize
from permit_vc.core.crypto import KeyPair, KeyRing, ProofEngine, SigningKeyProvider
from permit_vc.core.presentation import PresentationChannel
from permit_vc.core.store import CredentialStore
from permit_vc.core.verification import VerificationEngine

__all__ = [
    "canonicalize",
    "canonical_credential_bytes",
    "CredentialBuilder",
    "CredentialStore",
    "KeyPair",
    "KeyRing",
    "PresentationChannel",
    "ProofEngine",
    "SigningKeyProvider",
    "VerificationEngine",
]
