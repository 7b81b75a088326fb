"""
FormStock Service — Owner authentication middleware

Owner routes need a Bearer JWT from the identity provider. Respondent routes
under /public and the ops endpoints are served without one.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from formstock.core.security import decode_token, owner_id_from_claims

OPEN_PATHS = frozenset({"/", "/health", "/metrics", "/docs", "/openapi.json"})
OPEN_PREFIXES = ("/public/", "/metrics")


def is_open_path(path: str) -> bool:
    return path in OPEN_PATHS or path.startswith(OPEN_PREFIXES)


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": detail}, headers={"WWW-Authenticate": "Bearer"})


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Sets request.state.user (claims) and request.state.owner_id for owner routes."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS" or is_open_path(request.url.path):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme != "Bearer" or not token:
            return _unauthorized("Missing or invalid Authorization header. Expected: Bearer <token>")

        try:
            claims = decode_token(token)
            owner_id = owner_id_from_claims(claims)
        except JWTError as exc:
            return _unauthorized(f"Invalid or expired token: {exc}")

        request.state.user = claims
        request.state.owner_id = owner_id
        return await call_next(request)
