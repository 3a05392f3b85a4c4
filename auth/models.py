"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors ioc/models.py
-- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/ or ioc/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of user roles, ordered from least to most privileged.

    analyst    -- read-only
    researcher -- read + create/update IOCs
    admin      -- full control, including delete and user management
    """

    ANALYST = "analyst"
    RESEARCHER = "researcher"
    ADMIN = "admin"


@dataclass
class User:
    """Represents an authenticated identity.

    hashed_password is the bcrypt digest. It never leaves the auth layer --
    API response models do not declare the field, so it cannot be serialized.
    """

    username: str
    email: str
    role: Role = Role.ANALYST
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
