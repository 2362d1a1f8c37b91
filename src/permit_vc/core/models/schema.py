# SPDX-License-Identifier: MPL-2.0
"""JSON schema for presented permit credential documents."""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator

from permit_vc.core.exceptions import ValidationError

CREDENTIAL_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "https://digit.org/credentials/permit/v1/credential.schema.json",
    "title": "Permit Verifiable Credential",
    "type": "object",
    "required": ["@context", "id", "type", "issuer", "issuanceDate", "credentialSubject", "proof"],
    "properties": {
        "@context": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string"},
            "prefixItems": [{"const": "https://www.w3.org/2018/credentials/v1"}],
        },
        "id": {"type": "string", "minLength": 1},
        "type": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string"},
            "contains": {"const": "VerifiableCredential"},
        },
        "issuer": {"type": "string", "minLength": 1},
        "issuanceDate": {"type": "string", "format": "date-time", "minLength": 1},
        "credentialSubject": {
            "type": "object",
            "minProperties": 1,
            "properties": {"id": {"type": "string"}},
        },
        "proof": {"$ref": "#/$defs/proof"},
    },
    "$defs": {
        "proof": {
            "type": "object",
            "required": ["type", "created", "verificationMethod", "proofValue"],
            "properties": {
                "type": {"type": "string"},
                "created": {"type": "string", "minLength": 1},
                "verificationMethod": {"type": "string", "minLength": 1},
                "proofPurpose": {"type": "string"},
                "proofValue": {"type": "string"},
            },
        }
    },
}

_VALIDATOR = Draft202012Validator(CREDENTIAL_SCHEMA)


def validate_document(document: Any) -> None:
    """Raise :class:`ValidationError` listing every schema violation in ``document``."""

    errors = sorted(_VALIDATOR.iter_errors(document), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [
            f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
            for error in errors
        ]
        raise ValidationError("Malformed credential document", details={"errors": messages})
