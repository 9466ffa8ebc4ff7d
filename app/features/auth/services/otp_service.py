import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import BackgroundTasks, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.models.otp import Otp, OtpFlow
from app.features.auth.models.user import User
from app.features.auth.schemas.auth import AuthResult, TokenPair, UserSummary
from app.features.auth.services.email_service import send_otp_email
from app.features.auth.utils.identity import normalize_email
from app.features.auth.utils.security import generate_otp, issue_token_pair
from app.platform.async_db_helper import atomic, fetch_one
from app.platform.config import settings
from app.platform.exceptions import (
    AlreadyVerifiedError,
    ConflictError,
    InvalidCodeError,
    NotFoundError,
    NotVerifiedError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)


class OtpService:
    """
    Issues, rate-limits and consumes email OTPs.

    Every code lives in the ``otps`` table keyed by normalized email. Issuing
    replaces older rows for the email in the same transaction that inserts
    the new one, and verification deletes the consumed row in the same
    transaction that flips ``is_verified``. Emails are handed to
    ``background_tasks`` and never awaited here.
    """

    def __init__(self, db: AsyncSession, background_tasks: BackgroundTasks):
        self.db = db
        self.background_tasks = background_tasks

    async def _get_user(self, email: str, for_update: bool = False) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        if for_update:
            # serializes issue/verify for one email on databases with row locks
            stmt = stmt.with_for_update()
        return await fetch_one(self.db, stmt)

    async def _latest_otp(self, email: str) -> Optional[Otp]:
        return await fetch_one(
            self.db,
            select(Otp).where(Otp.email == email).order_by(Otp.created_at.desc()).limit(1),
        )

    async def _check_cooldown(self, email: str, now: datetime) -> None:
        latest = await self._latest_otp(email)
        if latest is None:
            return
        elapsed = (now - latest.created_at).total_seconds()
        if elapsed < settings.OTP_RESEND_COOLDOWN_SECONDS:
            logger.warning(
                f"OTP resend rate limited - email: {email}, seconds_since_last: {elapsed:.2f}"
            )
            raise RateLimitedError(
                f"OTP requests are limited to one per {settings.OTP_RESEND_COOLDOWN_SECONDS} seconds."
            )

    async def select_flow(self, email: str, flow: OtpFlow) -> str:
        """
        Check that ``email`` may enter ``flow`` and return it normalized.

        register: the address must not belong to anyone yet.
        login: the address must belong to a verified user.
        """
        email = normalize_email(email)
        user = await self._get_user(email)

        if flow == OtpFlow.REGISTER:
            if user is not None:
                if user.is_verified:
                    raise ConflictError("Email already registered and verified")
                raise ConflictError("Email already registered but not verified")
            return email

        if user is None:
            raise NotFoundError("User not found")
        if not user.is_verified:
            raise NotVerifiedError()
        return email

    async def issue_otp(self, email: str, flow: OtpFlow, enforce_cooldown: bool = False) -> Otp:
        """
        Replace any codes for ``email`` with one fresh code and email it.

        The delete and insert commit together. Delivery is scheduled on
        ``background_tasks`` only after the commit.
        """
        email = normalize_email(email)
        code = generate_otp()

        async with atomic(self.db):
            user = await self._get_user(email, for_update=True)
            if user is None:
                raise NotFoundError("User not found")

            now = datetime.utcnow()
            if enforce_cooldown:
                await self._check_cooldown(email, now)

            await self.db.execute(delete(Otp).where(Otp.email == email))
            otp = Otp(
                email=email,
                otp=code,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
            )
            self.db.add(otp)
            username = user.username

        logger.info(f"{flow.value} OTP issued - email: {email}, expires_at: {otp.expires_at}")

        self.background_tasks.add_task(send_otp_email, email, username, code, flow)
        return otp

    async def verify_otp(self, email: str, code: str, flow: OtpFlow) -> AuthResult:
        """
        Consume a code and mint a token pair.

        Raises NotFoundError (no user), InvalidCodeError (no matching
        unexpired code), AlreadyVerifiedError (register flow, user already
        verified) or NotVerifiedError (login flow, user not verified).
        """
        email = normalize_email(email)
        code = str(code).strip() if code is not None else ""
        if not code:
            raise InvalidCodeError("OTP is required")

        async with atomic(self.db):
            user = await self._get_user(email, for_update=True)
            stored = await fetch_one(
                self.db,
                select(Otp)
                .where(
                    Otp.email == email,
                    Otp.otp == code,
                    Otp.expires_at > datetime.utcnow(),
                )
                .order_by(Otp.created_at.desc())
                .limit(1)
                .with_for_update(),
            )

            if user is None:
                raise NotFoundError("User not found")
            if stored is None:
                logger.warning(f"OTP verification failed - invalid or expired code - email: {email}")
                raise InvalidCodeError()
            if flow == OtpFlow.REGISTER and user.is_verified:
                raise AlreadyVerifiedError()
            if flow == OtpFlow.LOGIN and not user.is_verified:
                raise NotVerifiedError("User Not Verified", status_code=status.HTTP_400_BAD_REQUEST)

            # rowcount 0 means a concurrent verify consumed it first
            deleted = await self.db.execute(delete(Otp).where(Otp.id == stored.id))
            if deleted.rowcount != 1:
                raise InvalidCodeError()

            if flow == OtpFlow.REGISTER:
                user.is_verified = True

            tokens = issue_token_pair(user.id, user.version)

        logger.info(f"{flow.value} OTP verified - user: {user.id}, email: {email}")

        return AuthResult(
            user=UserSummary.model_validate(user),
            tokens=TokenPair(**tokens),
        )

    async def resend_otp(self, email: str) -> Otp:
        """Send a new registration code, at most once per cooldown window."""
        email = normalize_email(email)
        user = await self._get_user(email)

        if user is None:
            raise NotFoundError("User not found!")
        if user.is_verified:
            raise AlreadyVerifiedError("Email already verified!")

        return await self.issue_otp(email, OtpFlow.REGISTER, enforce_cooldown=True)
