"""
auth/tokens.py -- JWT session tokens and credential authentication.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id as string), user_id,
       role, iat and exp. They are stateless: verification checks signature
       and expiry only, there is no server-side revocation list.

  TokenService holds the signing secret and the default lifetime. It is built
       once in the API lifespan from core.config.Settings and stored on
       app.state; nothing below it reads configuration on its own.

  authenticate_user() always runs exactly one bcrypt check, against the real
       hash or against DUMMY_HASH, so response time does not reveal whether an
       email is registered.

Layer rule: no imports from api/ or ioc/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import Role
from auth.passwords import DUMMY_HASH, verify_password

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("iocregistry.auth")

_ALGORITHM = "HS256"


class InvalidToken(Exception):
    """Raised by TokenService.verify() for any token that must not be trusted."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role: Role


class TokenService:
    """Issue and verify signed, time-limited session tokens.

    Usage:
        tokens = TokenService(settings.secret_key, settings.token_expire_seconds)
        token = tokens.issue(user.id, user.role)
        claims = tokens.verify(token)   # raises InvalidToken
    """

    def __init__(self, secret_key: str, expire_seconds: int = 7 * 24 * 60 * 60) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty signing secret.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, user_id: int, role: Role, expire_seconds: int | None = None) -> str:
        """Encode a signed JWT binding user_id and role.

        expire_seconds overrides the service default for this one token.
        Values <= 0 produce an already-expired token, which tests use to
        exercise the expiry path.
        """
        duration = self.expire_seconds if expire_seconds is None else expire_seconds
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "role": Role(role).value,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a JWT.

        Raises InvalidToken when the signature does not match, the token is
        malformed or expired, a claim is missing, or the role is unknown.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc
        try:
            return TokenClaims(user_id=int(payload["user_id"]), role=Role(payload["role"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken("token claims are incomplete") from exc


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    - Unknown email: bcrypt runs against DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash
    - Inactive account: the password is still checked before rejecting

    Returns the User on success, None on any failure. Callers must not
    distinguish between the failure reasons in their response.
    """
    user = store.get_by_email(email)
    if user is None or not user.hashed_password:
        verify_password(password, DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        logger.info("Rejected login for inactive user %s", user.id)
        return None
    return user
