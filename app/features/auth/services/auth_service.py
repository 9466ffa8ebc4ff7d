import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.models.user import User
from app.features.auth.schemas.auth import (
    AuthResult,
    RegisterRequest,
    TokenPair,
    UserResponse,
    UserSummary,
)
from app.features.auth.utils.identity import normalize_email, resolve_identifier
from app.features.auth.utils.security import (
    decode_refresh_token,
    hash_password,
    issue_token_pair,
    verify_password,
)
from app.platform.async_db_helper import atomic, fetch_one, refresh_instance
from app.platform.config import settings
from app.platform.exceptions import (
    ConflictError,
    InternalError,
    InvalidCredentialError,
    NotFoundError,
    NotVerifiedError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        return await fetch_one(self.db, select(User).where(User.id == user_id))

    async def register_user(self, request: RegisterRequest) -> UserResponse:
        email = normalize_email(request.email)
        username = request.username.lower()

        clauses = [User.email == email, User.username == username]
        if request.phone_number:
            clauses.append(User.phone_number == request.phone_number)
        existing = await fetch_one(self.db, select(User).where(or_(*clauses)))
        if existing is not None:
            if existing.email == email:
                raise ConflictError("User with this email already exists")
            if existing.username == username:
                raise ConflictError("Username already taken")
            raise ConflictError("Phone number already registered")

        new_user = User(
            email=email,
            username=username,
            phone_number=request.phone_number,
            full_name=request.full_name,
            dob=request.dob,
            password_hash=hash_password(request.password),
            is_verified=False,
            avatar_url=settings.DEFAULT_AVATAR_URL,
            avatar_id=settings.DEFAULT_AVATAR_ID,
            cover_info={},
        )

        try:
            async with atomic(self.db):
                self.db.add(new_user)
        except InternalError as e:
            # lost a race with another registration for the same identity
            if isinstance(e.__cause__, IntegrityError):
                raise ConflictError("User with email/username already exists")
            raise

        await refresh_instance(self.db, new_user)
        logger.info(f"User registered - user: {new_user.id}, email: {email}")

        return UserResponse.model_validate(new_user)

    async def login_user(self, identifier: str, password: str) -> AuthResult:
        column, value = resolve_identifier(identifier)
        user = await fetch_one(self.db, select(User).where(getattr(User, column) == value))

        if user is None:
            raise NotFoundError("User not found")
        if not user.password_hash:
            raise InvalidCredentialError("Invalid user record")
        if not verify_password(password, user.password_hash):
            logger.warning(f"Password login failed - user: {user.id}")
            raise InvalidCredentialError("Incorrect password")
        if not user.is_verified:
            raise NotVerifiedError("Email not verified. Please verify first.")

        tokens = issue_token_pair(user.id, user.version)
        logger.info(f"Password login - user: {user.id}")

        return AuthResult(user=UserSummary.model_validate(user), tokens=TokenPair(**tokens))

    async def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        The user must still exist and still be on the version the refresh
        token was minted with, so a version bump revokes refresh tokens too.
        """
        claims = decode_refresh_token(refresh_token)
        user = await self.get_user_by_id(claims.user_id)

        if user is None:
            raise UnauthorizedError("Unauthorized - User not found")
        if user.version != claims.version:
            logger.warning(f"Refresh rejected - stale token version - user: {user.id}")
            raise UnauthorizedError("Unauthorized - Invalid token version")

        return TokenPair(**issue_token_pair(user.id, user.version))

    async def change_password(self, user_id: str, old_password: str, new_password: str) -> TokenPair:
        """
        Replace the password hash and bump ``version``.

        Every token issued before the change stops working; the returned
        pair is minted with the new version.
        """
        if not new_password:
            raise ValidationError("New password is required")

        user = await self.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if not verify_password(old_password, user.password_hash):
            raise InvalidCredentialError("Old password incorrect")

        if old_password == new_password:
            raise ValidationError("New password must be different from current password")

        async with atomic(self.db):
            user.password_hash = hash_password(new_password)
            user.bump_version()
            tokens = issue_token_pair(user.id, user.version)

        logger.info(f"Password changed, sessions revoked - user: {user.id}")
        return TokenPair(**tokens)
