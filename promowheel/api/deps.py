"""
promowheel.api.deps — FastAPI dependency injection
====================================================
"""

from __future__ import annotations

import ipaddress
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from promowheel.config import PromoWheelConfig, load_config
from promowheel.database.engine import create_db_engine
from promowheel.engine.identity import Identity
from promowheel.services.notifications import LogNotifier, Notifier

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "promowheel-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PromoWheelConfig:
    """``$PROMOWHEEL_CONFIG`` (default ``config.yaml``), or built-in defaults if absent."""
    path = Path(os.getenv("PROMOWHEEL_CONFIG", "config.yaml"))
    if not path.exists():
        logger.info("No config file at %s; using defaults", path)
        return PromoWheelConfig()
    return load_config(path)


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return LogNotifier()


# ---------------------------------------------------------------------------
# Participant identity
# ---------------------------------------------------------------------------
_FORWARDED_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


def _is_trusted(peer: str, trusted_proxies: tuple[str, ...]) -> bool:
    try:
        address = ipaddress.ip_address(peer)
    except ValueError:
        return False
    return any(address in ipaddress.ip_network(net, strict=False) for net in trusted_proxies)


def _first_hop(value: str) -> str | None:
    candidate = value.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def client_ip(request: Request, trusted_proxies: tuple[str, ...] = ()) -> str | None:
    """Client IP used for the per-IP limit.

    Forwarded headers (CDN header, then proxy chain, then ``x-real-ip``) are
    only believed when the socket peer is a trusted proxy; anyone else is
    counted by the socket peer address.
    """
    peer = request.client.host if request.client else None
    if peer and trusted_proxies and _is_trusted(peer, trusted_proxies):
        for name in _FORWARDED_HEADERS:
            value = request.headers.get(name)
            if value:
                forwarded = _first_hop(value)
                if forwarded:
                    return forwarded
    return peer


def build_identity(
    request: Request,
    *,
    email: str | None = None,
    phone: str | None = None,
    device_fingerprint: str | None = None,
    trusted_proxies: tuple[str, ...] = (),
) -> Identity:
    return Identity.build(
        email=email,
        phone=phone,
        ip=client_ip(request, trusted_proxies),
        device_fingerprint=device_fingerprint,
    )


# ---------------------------------------------------------------------------
# Bearer token auth
# ---------------------------------------------------------------------------
def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_operator(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Validate JWT and return the operator id (``sub``). Raises 401 if invalid."""
    payload = _decode_bearer(authorization)
    operator_id = payload.get("sub")
    if not operator_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return str(operator_id)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
