"""
API request and response models for the marketplace auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON keys are camelCase (displayName, linkedAccounts, ...). Every model
derives from _CamelModel, which generates the aliases; FastAPI serializes
response_model output by alias, and requests accept either spelling.

Tokens never appear in any response model. They travel only in cookies.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import LinkedAccounts, User, UserIdentity
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _within_bcrypt_limit(value: str) -> str:
    # max_length counts characters; bcrypt counts UTF-8 bytes.
    if password_too_long(value):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(_CamelModel):
    """Request body for POST /auth/signup.

    ADMIN is not a signup role; admins are created with `main.py create-admin`.
    """

    email: EmailStr
    password: str = Field(min_length=6, max_length=50)
    role: Literal["INFLUENCER", "ADVERTISER"]
    display_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    website: Optional[str] = Field(default=None, max_length=500)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _within_bcrypt_limit(v)


class LoginRequest(_CamelModel):
    """Request body for POST /auth/login.

    Length limits are loose: a wrong password of any plausible length must
    reach the credential check and produce a 401.
    """

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class PasswordChangeRequest(_CamelModel):
    """Request body for PUT /auth/password. currentPassword is omitted by OAuth-only users."""

    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: str = Field(min_length=6, max_length=50)

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, v: str) -> str:
        return _within_bcrypt_limit(v)


class StatusUpdateRequest(_CamelModel):
    """Request body for PATCH /auth/users/{user_id}/status."""

    status: Literal["ACTIVE", "INACTIVE", "SUSPENDED"]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of a user. Never includes the password hash."""

    id: int
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    role: str
    status: str
    website: Optional[str] = None
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            display_name=user.display_name,
            role=user.role,
            status=user.status,
            website=user.website,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class UserEnvelope(_CamelModel):
    """Response for signup, login and status changes."""

    user: UserResponse


class SuccessResponse(_CamelModel):
    success: bool = True
    message: Optional[str] = None


class LogoutAllResponse(_CamelModel):
    success: bool = True
    session_count: int


class SessionCountResponse(_CamelModel):
    """Response for GET /auth/sessions."""

    active_session_count: int


class LinkedAccountResponse(_CamelModel):
    provider: str
    email: Optional[str] = None
    linked_at: Optional[str] = None
    last_updated: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: UserIdentity) -> "LinkedAccountResponse":
        return cls(
            provider=identity.provider,
            email=identity.provider_email,
            linked_at=identity.linked_at,
            last_updated=identity.updated_at,
        )


class AuthMethodsResponse(_CamelModel):
    password: bool
    oauth: bool
    providers: list[str] = Field(default_factory=list)


class MeResponse(_CamelModel):
    """Response for GET /auth/me."""

    user: UserResponse
    linked_accounts: list[LinkedAccountResponse] = Field(default_factory=list)
    auth_methods: AuthMethodsResponse
    has_password: bool

    @classmethod
    def build(cls, user: User, linked: LinkedAccounts) -> "MeResponse":
        return cls(
            user=UserResponse.from_user(user),
            linked_accounts=[LinkedAccountResponse.from_identity(i) for i in linked.identities],
            auth_methods=AuthMethodsResponse(
                password=linked.has_password,
                oauth=bool(linked.identities),
                providers=linked.providers,
            ),
            has_password=linked.has_password,
        )


class LinkStatusResponse(_CamelModel):
    """Response for GET /auth/link."""

    identities: list[LinkedAccountResponse] = Field(default_factory=list)
    has_password: bool
    primary_email: Optional[str] = None
    total_auth_methods: int

    @classmethod
    def build(cls, linked: LinkedAccounts) -> "LinkStatusResponse":
        return cls(
            identities=[LinkedAccountResponse.from_identity(i) for i in linked.identities],
            has_password=linked.has_password,
            primary_email=linked.primary_email,
            total_auth_methods=linked.total_auth_methods,
        )


class ProviderInfo(_CamelModel):
    name: str
    label: str


class ProvidersResponse(_CamelModel):
    """Response for GET /auth/providers."""

    providers: list[ProviderInfo] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Error / health envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
