# SPDX-License-Identifier: MPL-2.0
"""Presentation channel: QR-encoded verification references.

A code carries a verification URL of the form::

    <base_url>/<quoted credential id>?iat=<epoch seconds>&exp=<epoch seconds>

Decoding only parses the URL. Resolving a reference must always go back to
the verification engine, so revocation after a code was printed is honoured.
"""

from __future__ import annotations

import base64
import io
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, quote, unquote, urlsplit

import qrcode
import qrcode.constants
import qrcode.image.svg

from permit_vc.core.clock import Clock, utc_now
from permit_vc.core.config import DEFAULT_QR_BASE_URL, DEFAULT_QR_TTL_SECONDS
from permit_vc.core.exceptions import ValidationError
from permit_vc.core.models import PresentationReference, VisualCode

logger = logging.getLogger(__name__)


def render_qr_svg(payload: str) -> str:
    """Render ``payload`` as a QR code and return it as an SVG data URI."""

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


class PresentationChannel:
    """Encodes credential ids into scannable codes and parses scanned payloads."""

    def __init__(
        self,
        base_url: str = DEFAULT_QR_BASE_URL,
        ttl_seconds: float = DEFAULT_QR_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        if int(ttl_seconds) < 1:
            raise ValueError("Presentation TTL must be at least one second")
        self.ttl = timedelta(seconds=int(ttl_seconds))
        self._clock = clock
        self._base = urlsplit(self.base_url)

    def reference_for(self, credential_id: str) -> PresentationReference:
        issued_at = self._clock().replace(microsecond=0)
        return PresentationReference(
            credential_id=credential_id,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
        )

    def payload_for(self, reference: PresentationReference) -> str:
        return (
            f"{self.base_url}/{quote(reference.credential_id, safe='')}"
            f"?iat={int(reference.issued_at.timestamp())}"
            f"&exp={int(reference.expires_at.timestamp())}"
        )

    def encode(self, credential_id: str) -> VisualCode:
        """Build a fresh reference for ``credential_id`` and render it as a QR code."""

        if not credential_id:
            raise ValidationError("credential id must not be empty")
        reference = self.reference_for(credential_id)
        payload = self.payload_for(reference)
        logger.debug("Rendering presentation code for %s", credential_id)
        return VisualCode(payload=payload, image=render_qr_svg(payload), reference=reference)

    def decode(self, scanned_payload: str) -> PresentationReference:
        """Parse a scanned payload back into a reference. No validity check is made.

        Raises:
            ValidationError: The payload is not a verification URL of this channel.
        """

        if not isinstance(scanned_payload, str) or not scanned_payload.strip():
            raise ValidationError("Scanned payload is empty")

        parts = urlsplit(scanned_payload.strip())
        base_path = self._base.path.rstrip("/")
        if (
            parts.scheme != self._base.scheme
            or parts.netloc != self._base.netloc
            or not parts.path.startswith(base_path + "/")
        ):
            raise ValidationError(
                "Scanned payload is not a verification reference of this issuer",
                {"payload": scanned_payload},
            )

        encoded_id = parts.path[len(base_path) + 1:]
        if not encoded_id or "/" in encoded_id:
            raise ValidationError("Scanned payload has no credential id", {"payload": scanned_payload})

        query = parse_qs(parts.query, strict_parsing=False)
        try:
            issued_at = datetime.fromtimestamp(int(query["iat"][0]), timezone.utc)
            expires_at = datetime.fromtimestamp(int(query["exp"][0]), timezone.utc)
            return PresentationReference(
                credential_id=unquote(encoded_id),
                issued_at=issued_at,
                expires_at=expires_at,
            )
        except (KeyError, IndexError, ValueError, OverflowError, OSError) as exc:
            raise ValidationError(
                f"Scanned payload has an invalid expiry horizon: {exc}",
                {"payload": scanned_payload},
            ) from exc
