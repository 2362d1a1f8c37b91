"""Shared fixtures for the permit credential tests."""

from datetime import datetime, timedelta, timezone

import pytest

from permit_vc.core.crypto import KeyPair, KeyRing, ProofEngine
from permit_vc.core.presentation import PresentationChannel
from permit_vc.core.store import CredentialStore
from permit_vc.services.issuer import CredentialService

ISSUER = "did:web:permits.example.org"
BASE_URL = "https://permits.example.org/vc/verify"
START = datetime(2024, 6, 1, 10, 0, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock():
    return MutableClock(START)


@pytest.fixture
def key_pair():
    return KeyPair.generate(f"{ISSUER}#key-1")


@pytest.fixture
def key_ring(key_pair, clock):
    return KeyRing(key_pair, clock=clock)


@pytest.fixture
def proof_engine(key_ring, clock):
    return ProofEngine(key_ring, clock=clock)


@pytest.fixture
def store(clock):
    store = CredentialStore(":memory:", timeout=1.0, clock=clock)
    yield store
    store.close()


@pytest.fixture
def channel(clock):
    return PresentationChannel(base_url=BASE_URL, ttl_seconds=3600, clock=clock)


@pytest.fixture
def service(store, proof_engine, channel, clock):
    return CredentialService(
        store=store,
        proof_engine=proof_engine,
        issuer=ISSUER,
        channel=channel,
        clock=clock,
    )


@pytest.fixture
def food_vendor_claims():
    return {
        "permitType": "FOOD_VENDOR",
        "applicant": "J. Doe",
        "validUntil": "2025-01-15",
    }
