# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for the permit credential engine.

Invalid credentials are not errors: the verification engine reports them as
typed results. The exceptions below cover malformed input, identity
conflicts, unknown credentials and infrastructure faults.
"""

from typing import Any, Dict, Optional


class PermitVCError(Exception):
    """Base exception for all permit credential errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PermitVCError):
    """Raised when input to the builder or a presented document is malformed."""

    pass


class CanonicalizationError(ValidationError):
    """Raised when data cannot be canonicalized."""

    pass


class ConflictError(PermitVCError):
    """Raised when a credential id is already present in the store."""

    pass


class NotFoundError(PermitVCError):
    """Raised when a requested credential does not exist."""

    pass


class StoreUnavailable(PermitVCError):
    """Raised when the credential store cannot answer within its timeout.

    Transient; the caller decides whether to retry.
    """

    pass


class SignatureInfrastructureError(PermitVCError):
    """Raised when key lookup fails during signing or verification."""

    pass


class ConfigurationError(PermitVCError):
    """Raised when configuration is invalid or missing."""

    pass
