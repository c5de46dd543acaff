"""
HS256 access tokens carrying the caller's organization memberships.

Tokens are normally minted by the identity layer in front of this service;
``create_access_token`` exists for service-to-service callers and tests.
Claims: ``sub`` (username), ``role``, ``user_id``, ``orgs`` (organization ids),
``iat`` and ``exp``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional


_HEADER = {"alg": "HS256", "typ": "JWT"}


class TokenError(ValueError):
    """Raised for any token that must not be trusted."""


@dataclass(frozen=True)
class AccessClaims:
    username: str
    role: str
    user_id: str
    organization_ids: frozenset[str]
    expires_at: datetime


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64(value: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (ValueError, TypeError) as exc:
        raise TokenError("Malformed token segment") from exc


def _json_segment(data: dict) -> str:
    return _b64(json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8"))


def signing_secret() -> str:
    secret = (os.getenv("FLEET_JWT_SECRET") or "").strip()
    if secret:
        return secret
    env = (os.getenv("FLEET_ENV") or os.getenv("APP_ENV") or "dev").strip().lower()
    if env == "prod":
        return ""
    return "dev-jwt-secret-change-me"


def token_ttl() -> timedelta:
    try:
        minutes = int(os.getenv("FLEET_JWT_EXP_MIN", "720"))
    except ValueError:
        minutes = 720
    return timedelta(minutes=max(1, minutes))


def _signature(signing_input: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()


def create_access_token(
    *,
    sub: str,
    role: str,
    user_id: str,
    organization_ids: Iterable[str] = (),
    ttl: Optional[timedelta] = None,
) -> str:
    secret = signing_secret()
    if not secret:
        raise RuntimeError("FLEET_JWT_SECRET is required when auth is enabled")
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": sub,
        "role": role,
        "user_id": user_id,
        "orgs": sorted({str(o) for o in organization_ids if o}),
        "iat": int(issued.timestamp()),
        "exp": int((issued + (ttl or token_ttl())).timestamp()),
    }
    signing_input = f"{_json_segment(_HEADER)}.{_json_segment(claims)}"
    return f"{signing_input}.{_b64(_signature(signing_input, secret))}"


def decode_access_token(token: str) -> AccessClaims:
    secret = signing_secret()
    if not secret:
        raise TokenError("JWT secret not configured")
    try:
        header_b64, claims_b64, signature_b64 = token.split(".")
    except ValueError as exc:
        raise TokenError("Malformed token") from exc

    signing_input = f"{header_b64}.{claims_b64}"
    if not hmac.compare_digest(_signature(signing_input, secret), _unb64(signature_b64)):
        raise TokenError("Invalid signature")
    try:
        header = json.loads(_unb64(header_b64))
        claims = json.loads(_unb64(claims_b64))
    except ValueError as exc:
        raise TokenError("Malformed token payload") from exc
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise TokenError("Unsupported token algorithm")
    if not isinstance(claims, dict):
        raise TokenError("Invalid payload")

    try:
        exp = int(claims.get("exp") or 0)
    except (TypeError, ValueError) as exc:
        raise TokenError("Invalid exp") from exc
    if exp <= int(datetime.now(timezone.utc).timestamp()):
        raise TokenError("Token expired")

    role = str(claims.get("role") or "").strip().upper()
    username = str(claims.get("sub") or "").strip()
    user_id = str(claims.get("user_id") or "").strip()
    orgs = claims.get("orgs") or []
    if not role or not username or not user_id or not isinstance(orgs, list):
        raise TokenError("Invalid token claims")
    return AccessClaims(
        username=username,
        role=role,
        user_id=user_id,
        organization_ids=frozenset(str(o) for o in orgs if o),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
