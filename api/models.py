"""
API request and response models for the IOC registry REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
ioc/models.py, which own the internal domain representation. Route handlers
map between the two.

IOC request models come in one pair (create + patch) per IOC kind. The pairs
share every field and differ only in the ClassVar `kind`, which selects the
value-format rule applied to ioc_value. Format rules themselves live in
ioc/models.py so the CSV importer applies exactly the same checks.

UserResponse deliberately has no password field: a User dataclass can be
mapped to it, but the digest can never reach a client.
"""

from datetime import datetime
from typing import Annotated, ClassVar, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from auth.models import Role, User
from core.timestamps import to_iso
from ioc.models import CONFIDENCE_MAX, CONFIDENCE_MIN, IOCKind, IOCRecord, normalize_ioc_value

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# ioc fields that are NOT NULL in storage. A PATCH may omit them, but may not
# set them to null.
_REQUIRED_IOC_FIELDS = frozenset({"ioc_id", "ioc_value", "threat_type", "confidence_level", "first_seen", "reporter"})


def _normalize_email(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    error: str
    message: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------

# Emails are compared case-insensitively: trimmed and lowercased on the way in.
NormalizedEmail = Annotated[str, BeforeValidator(_normalize_email)]


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    There is no role field: self-registration always creates an analyst.
    Unknown keys (including "role") are ignored.
    """

    username: str = Field(min_length=2, max_length=64)
    email: NormalizedEmail = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: NormalizedEmail = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/auth/me. Omitted or blank fields are left unchanged."""

    username: Optional[str] = Field(default=None, min_length=2, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("username", "email", mode="before")
    @classmethod
    def blank_means_unchanged(cls, value, info: ValidationInfo):
        if not isinstance(value, str):
            return value
        value = value.strip()
        if not value:
            return None
        return _normalize_email(value) if info.field_name == "email" else value


class PasswordChange(BaseModel):
    """Request body for PUT /api/auth/change-password (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=128)
    new_password: str = Field(alias="newPassword", min_length=6, max_length=128)


class UserPatch(BaseModel):
    """Request body for PATCH /api/auth/users/{id}. Admin only."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class AuthResponse(BaseModel):
    """Response for register and login: the user plus a fresh bearer token."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse
    token: str


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


# ---------------------------------------------------------------------------
# IOC -- requests
# ---------------------------------------------------------------------------


class IOCCreate(BaseModel):
    """Base request body for POST /api/{resource}. Use the per-kind subclasses."""

    kind: ClassVar[IOCKind]

    model_config = ConfigDict(str_strip_whitespace=True)

    ioc_id: str = Field(min_length=1, max_length=255)
    ioc_value: str = Field(min_length=1, max_length=2048)
    threat_type: str = Field(min_length=1, max_length=100)
    malware: Optional[str] = Field(default=None, max_length=255)
    malware_printable: Optional[str] = Field(default=None, max_length=255)
    confidence_level: int = Field(ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)
    first_seen: datetime
    last_seen: Optional[datetime] = None
    reference: Optional[str] = Field(default=None, max_length=4000)
    tags: Optional[str] = Field(default=None, max_length=1000)
    reporter: str = Field(min_length=1, max_length=255)

    @field_validator("ioc_value")
    @classmethod
    def check_ioc_value(cls, value: str) -> str:
        return normalize_ioc_value(cls.kind, value)

    def to_record(self) -> IOCRecord:
        return IOCRecord(
            ioc_id=self.ioc_id,
            ioc_value=self.ioc_value,
            threat_type=self.threat_type,
            malware=self.malware,
            malware_printable=self.malware_printable,
            confidence_level=self.confidence_level,
            first_seen=to_iso(self.first_seen),
            last_seen=to_iso(self.last_seen) if self.last_seen else None,
            reference=self.reference,
            tags=self.tags,
            reporter=self.reporter,
        )


class IOCPatch(BaseModel):
    """Base request body for PUT /api/{resource}/{id}: any subset of IOCCreate fields."""

    kind: ClassVar[IOCKind]

    model_config = ConfigDict(str_strip_whitespace=True)

    ioc_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    ioc_value: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    threat_type: Optional[str] = Field(default=None, min_length=1, max_length=100)
    malware: Optional[str] = Field(default=None, max_length=255)
    malware_printable: Optional[str] = Field(default=None, max_length=255)
    confidence_level: Optional[int] = Field(default=None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX)
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    reference: Optional[str] = Field(default=None, max_length=4000)
    tags: Optional[str] = Field(default=None, max_length=1000)
    reporter: Optional[str] = Field(default=None, min_length=1, max_length=255)

    @field_validator("ioc_value")
    @classmethod
    def check_ioc_value(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return normalize_ioc_value(cls.kind, value)

    @model_validator(mode="after")
    def reject_null_required(self) -> "IOCPatch":
        nulls = sorted(n for n in _REQUIRED_IOC_FIELDS & self.model_fields_set if getattr(self, n) is None)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self

    def to_fields(self) -> dict:
        """Return only the fields the client sent, in storage form."""
        fields = self.model_dump(exclude_unset=True)
        for name in ("first_seen", "last_seen"):
            if fields.get(name) is not None:
                fields[name] = to_iso(fields[name])
        return fields


class Sha256Create(IOCCreate):
    kind: ClassVar[IOCKind] = IOCKind.SHA256


class Sha256Patch(IOCPatch):
    kind: ClassVar[IOCKind] = IOCKind.SHA256


class UrlCreate(IOCCreate):
    kind: ClassVar[IOCKind] = IOCKind.URL


class UrlPatch(IOCPatch):
    kind: ClassVar[IOCKind] = IOCKind.URL


class IpPortCreate(IOCCreate):
    kind: ClassVar[IOCKind] = IOCKind.IPPORT


class IpPortPatch(IOCPatch):
    kind: ClassVar[IOCKind] = IOCKind.IPPORT


IOC_CREATE_MODELS: dict[IOCKind, type[IOCCreate]] = {
    IOCKind.SHA256: Sha256Create,
    IOCKind.URL: UrlCreate,
    IOCKind.IPPORT: IpPortCreate,
}

IOC_PATCH_MODELS: dict[IOCKind, type[IOCPatch]] = {
    IOCKind.SHA256: Sha256Patch,
    IOCKind.URL: UrlPatch,
    IOCKind.IPPORT: IpPortPatch,
}


# ---------------------------------------------------------------------------
# IOC -- responses
# ---------------------------------------------------------------------------


class IOCResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    ioc_id: str
    ioc_value: str
    threat_type: str
    malware: Optional[str]
    malware_printable: Optional[str]
    confidence_level: int
    first_seen: str
    last_seen: Optional[str]
    reference: Optional[str]
    tags: Optional[str]
    reporter: str
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: IOCRecord) -> "IOCResponse":
        """Factory Method: the dataclass-to-wire mapping lives with the output model."""
        return cls(
            id=record.id,
            ioc_id=record.ioc_id,
            ioc_value=record.ioc_value,
            threat_type=record.threat_type,
            malware=record.malware,
            malware_printable=record.malware_printable,
            confidence_level=record.confidence_level,
            first_seen=record.first_seen,
            last_seen=record.last_seen,
            reference=record.reference,
            tags=record.tags,
            reporter=record.reporter,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class IOCListResponse(BaseModel):
    """Response for GET /api/{resource}. total counts all matches, not just this page."""

    model_config = ConfigDict(frozen=True)

    total: int
    page: int
    limit: int
    data: list[IOCResponse]
