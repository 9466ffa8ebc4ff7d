from app.features.auth.schemas.auth import (
    AuthResult,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenPair,
    UserResponse,
    UserSummary,
    VerifyOtpRequest,
)

__all__ = [
    "AuthResult",
    "ChangePasswordRequest",
    "EmailRequest",
    "LoginRequest",
    "RefreshTokenRequest",
    "RegisterRequest",
    "TokenPair",
    "UserResponse",
    "UserSummary",
    "VerifyOtpRequest",
]
