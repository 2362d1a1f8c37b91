# SPDX-License-Identifier: MPL-2.0
"""Runtime configuration loaded from the environment.

Settings are resolved once at process start and passed explicitly to the
components that need them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from permit_vc.core.exceptions import ConfigurationError

DEFAULT_ISSUER = "did:web:permits.digit.org"
DEFAULT_QR_BASE_URL = "http://localhost:8080/vc/verify"
DEFAULT_QR_TTL_SECONDS = 24 * 60 * 60
LOG_LEVELS = ("debug", "info", "warning", "error")


def _getenv(env: Mapping[str, str], name: str, default: str) -> str:
    return env.get(name, default).strip()


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _getenv(env, name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    database: str = ":memory:"
    issuer: str = DEFAULT_ISSUER
    signing_key_path: Optional[str] = None
    key_id: Optional[str] = None
    qr_base_url: str = DEFAULT_QR_BASE_URL
    qr_ttl_seconds: float = DEFAULT_QR_TTL_SECONDS
    store_timeout: float = 5.0
    log_level: str = "info"
    allowed_origins: tuple[str, ...] = field(
        default=("http://localhost:3000", "http://localhost:8000")
    )
    trusted_hosts: tuple[str, ...] = field(default=("localhost", "127.0.0.1", "testserver"))


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ``)."""

    env = os.environ if env is None else env

    log_level = _getenv(env, "LOG_LEVEL", "info").lower()
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(f"LOG_LEVEL must be debug|info|warning|error (got {log_level!r})")

    qr_base_url = _getenv(env, "QR_BASE_URL", DEFAULT_QR_BASE_URL).rstrip("/")
    if not qr_base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"QR_BASE_URL must be an http(s) URL (got {qr_base_url!r})")

    issuer = _getenv(env, "PERMIT_VC_ISSUER", DEFAULT_ISSUER)
    if not issuer:
        raise ConfigurationError("PERMIT_VC_ISSUER must not be empty")

    return Settings(
        database=_getenv(env, "PERMIT_VC_DATABASE", ":memory:") or ":memory:",
        issuer=issuer,
        signing_key_path=_getenv(env, "PERMIT_VC_SIGNING_KEY", "") or None,
        key_id=_getenv(env, "PERMIT_VC_KEY_ID", "") or None,
        qr_base_url=qr_base_url,
        qr_ttl_seconds=_positive_float(env, "PERMIT_VC_QR_TTL_SECONDS", DEFAULT_QR_TTL_SECONDS),
        store_timeout=_positive_float(env, "PERMIT_VC_STORE_TIMEOUT", 5.0),
        log_level=log_level,
        allowed_origins=tuple(
            o.strip()
            for o in _getenv(env, "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
            if o.strip()
        ),
        trusted_hosts=tuple(
            h.strip()
            for h in _getenv(env, "TRUSTED_HOSTS", "localhost,127.0.0.1,testserver").split(",")
            if h.strip()
        ),
    )


def configure_logging(level_name: str = "info") -> None:
    """Configure root logging once for the service or CLI."""

    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )
