"""
api/routes/auth.py -- Registration and login endpoints.

Routes:
  POST /api/auth/register  -- create an account; 201 with the public user fields
  POST /api/auth/login     -- email/password login; returns a Bearer JWT
  GET  /api/auth/me        -- current user info (requires auth)

Security:
  POST /login is rate-limited to 10 requests/minute per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, RegisterRequest, UserResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password
from core.config import ServiceSettings, parse_expiry

logger = logging.getLogger("campus.api")

router = APIRouter()


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a local account. The password is stored only as a bcrypt hash."""
    user_store: UserStore = request.app.state.user_store

    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        )

    new_user = User(email=body.email, name=body.name, hashed_password=hash_password(body.password))
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # A concurrent registration won the race between the check and the insert.
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        ) from exc

    logger.info("Registered user %s", user_id)
    new_user.id = user_id
    return _user_to_response(new_user)


@limiter.limit("10/minute")  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a signed JWT.

    Wrong email and wrong password share one generic error so the response
    does not reveal which accounts exist.
    """
    user_store: UserStore = request.app.state.user_store
    settings: ServiceSettings = request.app.state.settings

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid credentials."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user, settings)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=token,
            expires_in=parse_expiry(settings.jwt_expires_in),
            user=_user_to_response(user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return _user_to_response(current_user)
