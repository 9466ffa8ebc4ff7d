import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

import bcrypt
import jwt

from app.platform.config import settings
from app.platform.exceptions import ServerConfigError, TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenClaims(NamedTuple):
    user_id: str
    version: str


def hash_password(password: str) -> str:
    password_hash = hashlib.sha256(password.encode("utf-8")).digest()

    # Generate salt and hash with bcrypt
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_hash, salt)

    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against its hash.
    Uses SHA-256 pre-hashing to match the hashing method.
    """
    if not hashed_password:
        return False
    password_hash = hashlib.sha256(plain_password.encode("utf-8")).digest()
    try:
        return bcrypt.checkpw(password_hash, hashed_password.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def generate_otp(length: Optional[int] = None) -> str:
    """Generate a fixed-width numeric OTP drawn uniformly from [10^(n-1), 10^n)."""
    length = length or settings.OTP_LENGTH
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def _secret(token_type: str) -> str:
    secret = (
        settings.ACCESS_TOKEN_SECRET
        if token_type == ACCESS_TOKEN_TYPE
        else settings.REFRESH_TOKEN_SECRET
    )
    if not secret:
        logger.critical(f"{token_type} token secret is not configured")
        raise ServerConfigError(detail=f"{token_type.upper()}_TOKEN_SECRET is not set")
    return secret


def ensure_token_secrets() -> None:
    """Fail closed unless both signing secrets are configured."""
    _secret(ACCESS_TOKEN_TYPE)
    _secret(REFRESH_TOKEN_TYPE)


def _encode(user_id: str, version: str, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.utcnow()
    to_encode = {
        "userId": user_id,
        "version": version,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, _secret(token_type), algorithm=settings.ALGORITHM)


def create_access_token(user_id: str, version: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    return _encode(
        user_id,
        version,
        ACCESS_TOKEN_TYPE,
        expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS),
    )


def create_refresh_token(user_id: str, version: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token (longer expiry)"""
    return _encode(
        user_id,
        version,
        REFRESH_TOKEN_TYPE,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def issue_token_pair(user_id: str, version: str) -> dict:
    # Check both secrets up front so a half-configured server never signs anything
    ensure_token_secrets()
    return {
        "access_token": create_access_token(user_id, version),
        "refresh_token": create_refresh_token(user_id, version),
    }


def _decode(token: str, token_type: str) -> TokenClaims:
    secret = _secret(token_type)
    label = "Refresh token" if token_type == REFRESH_TOKEN_TYPE else "Token"
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError(f"Unauthorized - {label} expired")
    except jwt.PyJWTError:
        raise TokenInvalidError(f"Unauthorized - Invalid {label.lower()}")

    user_id = payload.get("userId")
    version = payload.get("version")
    if payload.get("type") != token_type or not user_id or version is None:
        raise TokenInvalidError(f"Unauthorized - Invalid {label.lower()}")
    return TokenClaims(user_id=str(user_id), version=str(version))


def decode_access_token(token: str) -> TokenClaims:
    """Decode and verify a JWT access token"""
    return _decode(token, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> TokenClaims:
    """Decode and verify a JWT refresh token"""
    return _decode(token, REFRESH_TOKEN_TYPE)
