"""
api/routes/auth.py -- Registration, login, profile and user management endpoints.

Routes:
  POST  /api/auth/register          -- create an analyst account; returns a token
  POST  /api/auth/login             -- email/password login; returns a token
  GET   /api/auth/me                -- current user (requires auth)
  PUT   /api/auth/me                -- update own username/email (requires auth)
  PUT   /api/auth/change-password   -- change own password (requires auth)
  GET   /api/auth/users             -- list all users (admin only)
  PATCH /api/auth/users/{id}        -- change role / active flag (admin only)

Security:
  [H2] register and login are rate-limited per client IP (Settings).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M4] PATCH /users/{id} blocks self-deactivation, and deactivating or
       demoting the last active admin.
  [M5] Cache-Control: no-store on responses that carry a token.
  Registration never accepts a role. Elevation happens only through
  PATCH /users/{id} or the CLI.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    PasswordChange,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin
from auth.models import Role, User
from auth.passwords import verify_password
from auth.store import UserStore
from auth.tokens import TokenService, authenticate_user
from core.config import get_settings
from core.errors import DuplicateEntry, Internal, NotFound, Unauthenticated, ValidationError

_DUPLICATE_USER = "User with this email or username already exists."

# Auth policy:
# - POST  /api/auth/register:         public, rate-limited
# - POST  /api/auth/login:            public, rate-limited
# - GET   /api/auth/me:               requires auth (get_current_user)
# - PUT   /api/auth/me:               requires auth (get_current_user)
# - PUT   /api/auth/change-password:  requires auth (get_current_user)
# - GET   /api/auth/users:            requires admin (require_admin)
# - PATCH /api/auth/users/{id}:       requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(lambda: get_settings().register_rate_limit)  # [H2] must be ABOVE @router
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an analyst account and log it in.

    Uniqueness of username and email is left to the database: a collision
    surfaces as IntegrityError and becomes a 409.
    """
    user_store: UserStore = request.app.state.user_store
    tokens: TokenService = request.app.state.tokens

    try:
        user_id = user_store.create_user(
            User(username=body.username, email=body.email, role=Role.ANALYST),
            password=body.password,
        )
    except IntegrityError as exc:
        raise DuplicateEntry(_DUPLICATE_USER) from exc

    user = _reload(user_store, user_id)
    return _token_response(
        AuthResponse(
            message="User registered successfully",
            user=UserResponse.from_user(user),
            token=tokens.issue(user.id, user.role),
        ),
        status_code=201,
    )


@limiter.limit(lambda: get_settings().login_rate_limit)  # [H2] must be ABOVE @router
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all get the same
    401 body so the response does not reveal which one it was.
    """
    user_store: UserStore = request.app.state.user_store
    tokens: TokenService = request.app.state.tokens

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise Unauthenticated("Invalid credentials or account is inactive.")

    return _token_response(
        AuthResponse(
            message="Login successful",
            user=UserResponse.from_user(user),
            token=tokens.issue(user.id, user.role),
        ),
        status_code=200,
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.put("/auth/me", response_model=ProfileResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update the caller's username and/or email. Blank fields are ignored."""
    user_store: UserStore = request.app.state.user_store

    updates = {name: value for name, value in body.model_dump().items() if value is not None}
    if updates:
        try:
            user_store.update_user(current_user.id, **updates)
        except IntegrityError as exc:
            raise DuplicateEntry(_DUPLICATE_USER) from exc

    return ProfileResponse(
        message="Profile updated successfully",
        user=UserResponse.from_user(_reload(user_store, current_user.id)),
    )


@router.put("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Replace the caller's password after re-checking the current one.

    Issued tokens stay valid until they expire: there is no revocation list.
    """
    user_store: UserStore = request.app.state.user_store

    if not verify_password(body.current_password, current_user.hashed_password or ""):
        raise Unauthenticated("Current password is incorrect.")

    user_store.set_password(current_user.id, body.new_password)
    return MessageResponse(message="Password changed successfully")


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Change a user's role or active status. Admin only.

    [M4] Prevents:
      - Self-deactivation (admin accidentally locking themselves out).
      - Deactivating or demoting the last active admin (no recovery path
        short of the CLI).
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")

    updates: dict = {}
    if body.role is not None:
        updates["role"] = body.role
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if not updates:
        raise ValidationError("No fields to update.")

    if body.is_active is False and target.id == current_user.id:
        raise ValidationError("You cannot deactivate your own account.")

    loses_admin = body.is_active is False or (body.role is not None and body.role != Role.ADMIN)
    if target.role == Role.ADMIN and target.is_active and loses_admin:
        if user_store.count_active_admins() <= 1:
            raise ValidationError("Cannot deactivate or demote the last active admin account.")

    user_store.update_user(user_id, **updates)
    return UserResponse.from_user(_reload(user_store, user_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _reload(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise Internal("User not found after write.")
    return user


def _token_response(payload: AuthResponse, status_code: int) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
