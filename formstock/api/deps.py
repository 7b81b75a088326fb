"""
FormStock Service — Shared route dependencies
"""
from fastapi import HTTPException, Request, status

from formstock.core.errors import FormStockError


def get_current_owner(request: Request) -> str:
    """Owner id that JWTAuthMiddleware resolved from the token's ``sub`` claim."""
    owner_id = getattr(request.state, "owner_id", None)
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    return owner_id


def as_http_exception(exc: FormStockError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
