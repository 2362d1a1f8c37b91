# SPDX-License-Identifier: MPL-2.0
"""
Permit VC - Verifiable credentials for approved permits.

This package issues permit credentials sealed with Ed25519 proofs, keeps them
in an append-only store, verifies them against revocation and expiry, and
renders QR presentation codes that point back to live verification.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "1.0.0"

with contextlib.suppress(Exception):
    __version__ = version("permit-vc")


# Core components
from permit_vc.core import (
    CredentialBuilder,
    CredentialStore,
    KeyPair,
    KeyRing,
    PresentationChannel,
    ProofEngine,
    VerificationEngine,
    canonicalize,
)
from permit_vc.services.issuer import CredentialService

# Public API
__all__ = [
    "canonicalize",
    "CredentialBuilder",
    "CredentialService",
    "CredentialStore",
    "KeyPair",
    "KeyRing",
    "PresentationChannel",
    "ProofEngine",
    "VerificationEngine",
    "__version__",
]
