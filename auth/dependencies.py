"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Clients authenticate with an "Authorization: Bearer <token>" header carrying
the JWT returned by POST /api/auth/login.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

The store and settings are read from request.app.state, where the lifespan
put them. Nothing here resolves configuration on its own.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    payload = decode_access_token(token, request.app.state.settings)
    if payload is None:
        return None
    return request.app.state.user_store.get_by_id(payload["id"])


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
