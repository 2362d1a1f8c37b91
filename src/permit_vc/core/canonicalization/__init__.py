# SPDX-License-Identifier: MPL-2.0
"""Canonicalization utilities following JSON Canonicalization Scheme (RFC 8785).

Credential documents are serialised with a fixed top-level field order so the
signed bytes never depend on how a document was held in memory.
"""

from __future__ import annotations

import json
import math
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

from permit_vc.core.exceptions import CanonicalizationError

# Top-level order of the signed credential fields; ``proof`` is never signed.
CREDENTIAL_FIELD_ORDER = (
    "@context",
    "id",
    "type",
    "issuer",
    "issuanceDate",
    "credentialSubject",
)


def _normalize(value: Any) -> Any:
    """Recursively normalise a value for canonical JSON serialisation."""

    if isinstance(value, str):
        return unicodedata.normalize("NFC", value)

    if isinstance(value, bool) or value is None or isinstance(value, int):
        return value

    if isinstance(value, float):
        # RFC 8785: reject NaN/Infinity and emit the most compact form
        if not math.isfinite(value):
            raise CanonicalizationError("Non-finite float values are not allowed")
        if value.is_integer():
            return int(value)
        return float(Decimal(str(value)))

    if isinstance(value, datetime):
        return format_timestamp(value)

    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]

    if isinstance(value, Mapping):
        if any(not isinstance(k, str) for k in value):
            raise CanonicalizationError("Dictionary keys must be strings")
        normalized: dict[str, Any] = {}
        for k, v in value.items():
            key = unicodedata.normalize("NFC", k)
            if key in normalized:
                raise CanonicalizationError(f"Duplicate key after normalization: {key!r}")
            normalized[key] = _normalize(v)
        return normalized

    raise CanonicalizationError(f"Type {type(value)!r} is not supported for canonicalization")


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as RFC 3339 UTC without superfluous zeros."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    iso = value.isoformat(timespec="microseconds").replace("+00:00", "Z")
    if "." in iso:
        main, rest = iso.split(".", 1)
        frac, _ = rest.split("Z")
        frac = frac.rstrip("0")
        iso = main + ("." + frac if frac else "") + "Z"
    return iso


def canonicalize(data: Any) -> str:
    """Convert data to a canonical JSON string.

    The implementation performs Unicode NFC normalisation and follows the
    JSON Canonicalization Scheme (RFC 8785) for numbers and datetimes.
    """

    canonical_data = _normalize(data)
    try:
        return json.dumps(
            canonical_data,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(str(exc)) from exc


def canonicalize_ordered(data: Mapping[str, Any], field_order: Iterable[str]) -> bytes:
    """Serialise the fields of ``data`` named in ``field_order``, in that order.

    Missing fields are skipped. Each value is canonicalized with
    :func:`canonicalize`, so nested objects still use sorted keys.
    """

    members = []
    for name in field_order:
        if name not in data:
            continue
        members.append(json.dumps(name, ensure_ascii=False) + ":" + canonicalize(data[name]))
    return ("{" + ",".join(members) + "}").encode("utf-8")


def canonical_credential_bytes(document: Mapping[str, Any]) -> bytes:
    """Return the exact bytes that are signed for a credential document."""

    return canonicalize_ordered(document, CREDENTIAL_FIELD_ORDER)

