# SPDX-License-Identifier: MPL-2.0
"""
Permit credential issuer service.

Wires the builder, proof engine, store, verification engine and
presentation channel behind one facade.
"""

from .service import CredentialService, IssuedCredential, ScanResolution, display_fields

__all__ = ["CredentialService", "IssuedCredential", "ScanResolution", "display_fields"]
