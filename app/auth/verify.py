"""
verify.py
---------
Purpose:
    Bearer JWT verification for the scheduling API.

Notes:
    - HS256 with JWT_SECRET when configured (service-to-service and local dev).
    - Otherwise ES256/RS256 keys fetched from JWT_JWKS_URL and cached.
    - The ``sub`` claim is the acting user id.
    - Provides `auth_dependency` for protected routes.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

_security = HTTPBearer()
_jwk_client: PyJWKClient | None = None


def _get_jwk_client() -> PyJWKClient:
    global _jwk_client
    if _jwk_client is None:
        if not settings.JWT_JWKS_URL:
            raise RuntimeError("Neither JWT_SECRET nor JWT_JWKS_URL is configured")
        _jwk_client = PyJWKClient(settings.JWT_JWKS_URL)
    return _jwk_client


def _decode(token: str) -> dict:
    options = {"verify_exp": True, "verify_aud": bool(settings.JWT_AUDIENCE)}

    if settings.JWT_SECRET:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )

    signing_key = _get_jwk_client().get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256", "RS256"],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


def verify_jwt(token: str) -> dict:
    try:
        decoded = _decode(token)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    if not decoded.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decoded


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)
