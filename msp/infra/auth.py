from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
JWT_ISSUER = os.getenv("JWT_ISSUER", "msp-asset-billing")

# Every service call is scoped by tenant_id, so a token without one is useless.
REQUIRED_CLAIMS = ["exp", "iat", "iss", "sub", "tenant_id"]


def create_access_token(
    *,
    user_id: str,
    tenant_id: str,
    permissions: list[str] | None = None,
    username: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    issued_at = datetime.now(UTC)
    claims: dict[str, Any] = {
        "iss": JWT_ISSUER,
        "sub": user_id,
        "tenant_id": tenant_id,
        "permissions": sorted(set(permissions or [])),
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN),
    }
    if username is not None:
        claims["username"] = username
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature, expiry and issuer; raises ``jwt.InvalidTokenError`` otherwise."""
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        issuer=JWT_ISSUER,
        options={"require": REQUIRED_CLAIMS},
    )
    if not isinstance(claims.get("permissions", []), list):
        raise jwt.InvalidTokenError("permissions claim must be a list")
    return claims
