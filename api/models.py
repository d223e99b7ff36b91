"""
API request and response models for splkit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dicts and dataclasses in auth/,
which own the internal representation. Route handlers map between the two.

Field bounds here are transport limits only. Password complexity, email
validity and uniqueness are decided by auth.users.Users so the numeric error
codes stay the single source of truth.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    errors carries the numeric ErrorCode values reported by Users or
    Authentication, when the failure came from there.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: list[int] = []


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(default="", max_length=255)
    # Not stripped by Users; surrounding whitespace is part of the password.
    password: str = Field(default="", max_length=255)
    remember: bool = False


class RegisterRequest(BaseModel):
    username: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=255)


class RecoverRequest(BaseModel):
    """Either field identifies the account; email wins when both are given."""

    email: str = Field(default="", max_length=255)
    username: str = Field(default="", max_length=255)


class ResetRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)
    password: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a users row. Never carries passwd or recovery data."""

    user_id: int
    username: str
    email: str
    regdate: str
    active: bool
    role: str
    last_login: Optional[str] = None


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)
    email: str = Field(min_length=3, max_length=255)
    role: str = Field(default="member", pattern=r"^(admin|member)$")
    active: bool = True


class UserPatch(BaseModel):
    """Partial update. Fields left as None are not changed."""

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=72)
    role: Optional[str] = Field(default=None, pattern=r"^(admin|member)$")
    active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class UploadedFile(BaseModel):
    filename: str
    size: int


class UploadResponse(BaseModel):
    files: list[UploadedFile]
