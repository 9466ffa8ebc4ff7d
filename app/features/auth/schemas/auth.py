import re
from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase keys and serializes as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Requests ────────────────────────────────────


class RegisterRequest(CamelModel):
    full_name: Optional[str] = Field(None, max_length=255)
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30)
    phone_number: Optional[str] = None
    dob: Optional[date] = Field(None, validation_alias=AliasChoices("dob", "DOB"))
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Usernames are stored lowercased; login looks them up the same way."""
        v = v.strip()
        if not re.match(r"^[A-Za-z0-9_.-]+$", v):
            raise ValueError("Username can only contain letters, numbers, dots, underscores, and hyphens")
        if v.isdigit():
            raise ValueError("Username cannot be only numbers")
        return v.lower()

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not re.fullmatch(r"\d{10}", v):
            raise ValueError("Phone number must be 10 digits")
        return v


class EmailRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., validation_alias=AliasChoices("otp", "code"))

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError("OTP must be numeric")
        return v


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email, username, or 10-digit phone number")
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


# ── Responses ───────────────────────────────────


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class UserSummary(CamelModel):
    id: str
    username: str
    email: str
    is_verified: bool


class UserResponse(CamelModel):
    """Public profile: no password hash, no session version."""

    id: str
    full_name: Optional[str] = None
    username: str
    email: str
    phone_number: Optional[str] = None
    dob: Optional[date] = None
    is_verified: bool
    avatar_url: Optional[str] = None
    avatar_id: Optional[str] = None
    cover_info: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class AuthResult(CamelModel):
    user: UserSummary
    tokens: TokenPair
