"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
role-based authorization.

get_current_user() is the Authenticator: it reads the
"Authorization: Bearer <token>" header, verifies the token with the
TokenService on app.state, loads the user from the UserStore, and attaches
the user to request.state.user.

require_roles(*roles) is the Authorizer factory. The role set is fixed when
the route is registered, not per request:

    @router.delete("/things/{id}")
    def delete(user: User = Depends(require_roles(Role.ADMIN))): ...

The guard depends on get_current_user, so FastAPI always resolves identity
before checking the role.

Failure messages: a missing header gets its own message; a bad signature,
an expired token, an unknown user and an inactive account all produce the
same "Invalid or expired token." response.

Layer rule: no imports from api/ or ioc/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import InvalidToken, TokenService
from core.errors import Forbidden, Unauthenticated

_NO_TOKEN = "No token provided. Please login."
_BAD_TOKEN = "Invalid or expired token."


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request) -> User:
    """Require authentication. Raises Unauthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthenticated(_NO_TOKEN)

    tokens: TokenService = request.app.state.tokens
    try:
        claims = tokens.verify(token)
    except InvalidToken:
        raise Unauthenticated(_BAD_TOKEN) from None

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated(_BAD_TOKEN)

    request.state.user = user
    return user


def require_roles(*roles: Role) -> Callable[..., User]:
    """Build a guard that admits only users holding one of the given roles.

    Arguments are coerced through Role() here, at registration time, so a
    misspelled role fails at import instead of silently denying (or
    granting) access at request time.
    """
    if not roles:
        raise ValueError("require_roles() needs at least one role")
    allowed = tuple(dict.fromkeys(Role(r) for r in roles))
    label = " or ".join(r.value for r in allowed)

    def guard(request: Request, user: User = Depends(get_current_user)) -> User:
        identity = getattr(request.state, "user", None) or user
        if identity is None:
            raise Unauthenticated("Please login first.")
        if identity.role not in allowed:
            raise Forbidden(f"Access denied. Required role: {label}")
        return identity

    guard.__name__ = f"require_{'_or_'.join(r.value for r in allowed)}"
    return guard


def require_admin(user: User = Depends(require_roles(Role.ADMIN))) -> User:
    """Shorthand guard for admin-only routes."""
    return user
