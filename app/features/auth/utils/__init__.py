from app.features.auth.utils.security import (
    decode_access_token,
    decode_refresh_token,
    generate_otp,
    hash_password,
    issue_token_pair,
    verify_password,
)

__all__ = [
    "decode_access_token",
    "decode_refresh_token",
    "generate_otp",
    "hash_password",
    "issue_token_pair",
    "verify_password",
]
