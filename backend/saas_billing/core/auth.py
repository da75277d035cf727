"""Verification of access tokens issued by the external identity provider."""

from typing import Any

from jose import jwt

from saas_billing.config import settings


def decode_token(token: str) -> dict[str, Any]:
    """Decode and verify a provider JWT. Raises jose.JWTError when invalid or expired."""
    if not settings.auth_jwt_secret:
        raise RuntimeError("AUTH_JWT_SECRET is not configured")
    audience = settings.auth_jwt_audience or None
    return jwt.decode(
        token,
        settings.auth_jwt_secret,
        algorithms=[settings.auth_jwt_algorithm],
        audience=audience,
        options={"verify_aud": audience is not None},
    )
