"""
FormStock Service — Security helper (JWT decode only, shared secret)

Tokens are issued by the external identity provider; this service only
needs the owner id carried in the ``sub`` claim.
"""
from typing import Any

from jose import jwt, JWTError

from formstock.core.config import get_settings

settings = get_settings()


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


def owner_id_from_claims(claims: dict[str, Any]) -> str:
    owner_id = claims.get("sub")
    if not owner_id:
        raise JWTError("Token has no subject claim")
    return str(owner_id)
