"""Tests for QR presentation codes."""

import base64
from datetime import datetime, timedelta, timezone

import pytest

from permit_vc.core.exceptions import ValidationError
from permit_vc.core.models import PresentationReference
from permit_vc.core.presentation import PresentationChannel, render_qr_svg

BASE_URL = "https://permits.example.org/vc/verify"


def test_render_qr_svg_returns_svg_data_uri():
    image = render_qr_svg(f"{BASE_URL}/urn%3Auuid%3A1")
    prefix = "data:image/svg+xml;base64,"
    assert image.startswith(prefix)
    assert b"<svg" in base64.b64decode(image[len(prefix):])


def test_encode_builds_verification_url(channel, clock):
    code = channel.encode("urn:uuid:1234")
    issued = int(clock().timestamp())

    assert code.payload == f"{BASE_URL}/urn%3Auuid%3A1234?iat={issued}&exp={issued + 3600}"
    assert code.media_type == "image/svg+xml"
    assert code.image.startswith("data:image/svg+xml;base64,")
    assert code.expires_at == clock() + timedelta(hours=1)


def test_round_trip(channel, clock):
    code = channel.encode("urn:uuid:1234")
    reference = channel.decode(code.payload)

    assert reference == code.reference
    assert reference.credential_id == "urn:uuid:1234"
    assert reference.issued_at == clock()


def test_ids_with_reserved_characters_survive(channel):
    credential_id = "permit/2024?ward=7&zone=b#x"
    assert channel.decode(channel.encode(credential_id).payload).credential_id == credential_id


def test_decode_performs_no_validity_check(channel, clock):
    payload = channel.encode("urn:uuid:1234").payload
    clock.advance(days=30)
    reference = channel.decode(payload)
    assert reference.credential_id == "urn:uuid:1234"
    assert not reference.is_fresh(clock())


def test_freshness_window(channel, clock):
    reference = channel.encode("urn:uuid:1234").reference
    assert reference.is_fresh(clock())
    assert reference.is_fresh(clock() + timedelta(minutes=59))
    assert not reference.is_fresh(clock() + timedelta(hours=1))
    assert not reference.is_fresh(clock() - timedelta(seconds=1))


def test_trailing_slash_in_base_url(clock):
    channel = PresentationChannel(base_url=BASE_URL + "/", clock=clock)
    assert channel.decode(channel.encode("abc").payload).credential_id == "abc"


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "   ",
        "not a url",
        "https://evil.example.org/vc/verify/urn%3Auuid%3A1?iat=1&exp=2",
        "http://permits.example.org/vc/verify/urn%3Auuid%3A1?iat=1&exp=2",
        "https://permits.example.org/other/urn%3Auuid%3A1?iat=1&exp=2",
        "https://permits.example.org/vc/verify/?iat=1&exp=2",
        "https://permits.example.org/vc/verify/a/b?iat=1&exp=2",
        "https://permits.example.org/vc/verify/urn%3Auuid%3A1",
        "https://permits.example.org/vc/verify/urn%3Auuid%3A1?iat=x&exp=2",
        "https://permits.example.org/vc/verify/urn%3Auuid%3A1?iat=5&exp=2",
    ],
)
def test_decode_rejects_foreign_or_malformed_payloads(channel, payload):
    with pytest.raises(ValidationError):
        channel.decode(payload)


def test_encode_rejects_empty_id(channel):
    with pytest.raises(ValidationError):
        channel.encode("")


def test_ttl_must_be_positive(clock):
    with pytest.raises(ValueError):
        PresentationChannel(ttl_seconds=0, clock=clock)


def test_reference_requires_expiry_after_issue():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        PresentationReference("urn:uuid:1", issued_at=now, expires_at=now)
