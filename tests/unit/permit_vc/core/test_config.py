import pytest

from permit_vc.core.config import DEFAULT_QR_BASE_URL, Settings, load_settings
from permit_vc.core.exceptions import ConfigurationError


def test_defaults():
    settings = load_settings({})
    assert settings == Settings()
    assert settings.database == ":memory:"
    assert settings.qr_base_url == DEFAULT_QR_BASE_URL
    assert settings.qr_ttl_seconds == 86400
    assert settings.signing_key_path is None


def test_environment_overrides():
    settings = load_settings(
        {
            "PERMIT_VC_DATABASE": "/var/lib/permits.db",
            "PERMIT_VC_ISSUER": "did:web:city.example.org",
            "PERMIT_VC_SIGNING_KEY": "/etc/permits/key.pem",
            "PERMIT_VC_KEY_ID": "did:web:city.example.org#2024",
            "QR_BASE_URL": "https://city.example.org/vc/verify/",
            "PERMIT_VC_QR_TTL_SECONDS": "600",
            "PERMIT_VC_STORE_TIMEOUT": "2.5",
            "LOG_LEVEL": "DEBUG",
            "ALLOWED_ORIGINS": "https://a.example.org, https://b.example.org",
            "TRUSTED_HOSTS": "city.example.org",
        }
    )
    assert settings.database == "/var/lib/permits.db"
    assert settings.issuer == "did:web:city.example.org"
    assert settings.signing_key_path == "/etc/permits/key.pem"
    assert settings.key_id == "did:web:city.example.org#2024"
    assert settings.qr_base_url == "https://city.example.org/vc/verify"
    assert settings.qr_ttl_seconds == 600
    assert settings.store_timeout == 2.5
    assert settings.log_level == "debug"
    assert settings.allowed_origins == ("https://a.example.org", "https://b.example.org")
    assert settings.trusted_hosts == ("city.example.org",)


@pytest.mark.parametrize(
    "env",
    [
        {"LOG_LEVEL": "verbose"},
        {"QR_BASE_URL": "ftp://example.org"},
        {"PERMIT_VC_ISSUER": "  "},
        {"PERMIT_VC_QR_TTL_SECONDS": "0"},
        {"PERMIT_VC_STORE_TIMEOUT": "soon"},
    ],
)
def test_invalid_values_raise(env):
    with pytest.raises(ConfigurationError):
        load_settings(env)
