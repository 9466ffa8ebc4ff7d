import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from fastapi import BackgroundTasks
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from app.features.auth.models.otp import Otp, OtpFlow
from app.features.auth.models.user import User
from app.features.auth.services.email_service import send_otp_email
from app.features.auth.services.otp_service import OtpService
from app.features.auth.utils.security import decode_access_token, hash_password
from app.platform.config import settings
from app.platform.db.session import Database
from app.platform.exceptions import (
    AlreadyVerifiedError,
    ConflictError,
    InternalError,
    InvalidCodeError,
    NotFoundError,
    NotVerifiedError,
    RateLimitedError,
    ServerConfigError,
    ValidationError,
)


async def otp_codes(db, email):
    result = await db.execute(select(Otp.otp).where(Otp.email == email))
    return list(result.scalars().all())


async def is_verified(db, email):
    result = await db.execute(select(User.is_verified).where(User.email == email))
    return result.scalar_one()


async def age_otps(db, email, seconds):
    """Push every OTP for ``email`` ``seconds`` into the past."""
    past = datetime.utcnow() - timedelta(seconds=seconds)
    await db.execute(update(Otp).where(Otp.email == email).values(created_at=past))
    await db.commit()


class TestSelectFlow:
    @pytest.mark.asyncio
    async def test_register_allows_new_email(self, db_session, background_tasks):
        service = OtpService(db_session, background_tasks)

        assert await service.select_flow("  New@X.com ", OtpFlow.REGISTER) == "new@x.com"

    @pytest.mark.asyncio
    async def test_register_conflicts_with_existing_user(self, db_session, background_tasks, make_user):
        await make_user(is_verified=False)
        service = OtpService(db_session, background_tasks)

        with pytest.raises(ConflictError) as exc_info:
            await service.select_flow("A@x.com", OtpFlow.REGISTER)
        assert "not verified" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_register_conflicts_with_verified_user(self, db_session, background_tasks, make_user):
        await make_user(is_verified=True)
        service = OtpService(db_session, background_tasks)

        with pytest.raises(ConflictError) as exc_info:
            await service.select_flow("a@x.com", OtpFlow.REGISTER)
        assert "and verified" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_login_requires_existing_verified_user(self, db_session, background_tasks, make_user):
        service = OtpService(db_session, background_tasks)

        with pytest.raises(NotFoundError):
            await service.select_flow("a@x.com", OtpFlow.LOGIN)

        await make_user(is_verified=False)
        with pytest.raises(NotVerifiedError):
            await service.select_flow("a@x.com", OtpFlow.LOGIN)

    @pytest.mark.asyncio
    async def test_missing_email(self, db_session, background_tasks):
        service = OtpService(db_session, background_tasks)

        with pytest.raises(ValidationError):
            await service.select_flow("   ", OtpFlow.LOGIN)


class TestIssueOtp:
    @pytest.mark.asyncio
    async def test_issue_creates_single_row(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)

        otp = await service.issue_otp("A@X.com", OtpFlow.REGISTER)

        assert otp.email == "a@x.com"
        assert otp.otp == "1234"
        window = otp.expires_at - otp.created_at
        assert window == timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
        assert await otp_codes(db_session, "a@x.com") == ["1234"]

    @pytest.mark.asyncio
    async def test_issue_replaces_previous_codes(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)

        fixed_otp.return_value = "1111"
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)
        fixed_otp.return_value = "2222"
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        assert await otp_codes(db_session, "a@x.com") == ["2222"]

    @pytest.mark.asyncio
    async def test_issue_requires_user(self, db_session, background_tasks):
        service = OtpService(db_session, background_tasks)

        with pytest.raises(NotFoundError):
            await service.issue_otp("ghost@x.com", OtpFlow.LOGIN)

        result = await db_session.execute(select(func.count()).select_from(Otp))
        assert result.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_issue_schedules_email(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)

        await service.issue_otp("a@x.com", OtpFlow.LOGIN)

        assert len(background_tasks.tasks) == 1
        task = background_tasks.tasks[0]
        assert task.func is send_otp_email
        assert task.args == ("a@x.com", "alice", "1234", OtpFlow.LOGIN)

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_change_outcome(
        self, db_session, background_tasks, make_user, fixed_otp, mock_send_email
    ):
        await make_user()
        mock_send_email.side_effect = RuntimeError("smtp down")
        service = OtpService(db_session, background_tasks)

        await service.issue_otp("a@x.com", OtpFlow.REGISTER)
        # run the scheduled delivery the way Starlette would after the response
        await background_tasks()

        mock_send_email.assert_called_once()
        assert await otp_codes(db_session, "a@x.com") == ["1234"]


class TestVerifyOtp:
    @pytest.mark.asyncio
    async def test_register_scenario(self, db_session, background_tasks, make_user, fixed_otp):
        user = await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        result = await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)

        assert result.user.is_verified is True
        assert result.user.email == "a@x.com"
        claims = decode_access_token(result.tokens.access_token)
        assert claims.user_id == user.id
        assert claims.version == user.version
        assert await is_verified(db_session, "a@x.com") is True
        assert await otp_codes(db_session, "a@x.com") == []

        with pytest.raises(InvalidCodeError):
            await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)

    @pytest.mark.asyncio
    async def test_wrong_code(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        with pytest.raises(InvalidCodeError):
            await service.verify_otp("a@x.com", "9999", OtpFlow.REGISTER)

        assert await is_verified(db_session, "a@x.com") is False
        assert await otp_codes(db_session, "a@x.com") == ["1234"]

    @pytest.mark.asyncio
    async def test_expired_code(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)
        await db_session.execute(
            update(Otp)
            .where(Otp.email == "a@x.com")
            .values(expires_at=datetime.utcnow() - timedelta(seconds=1))
        )
        await db_session.commit()

        with pytest.raises(InvalidCodeError):
            await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)

        assert await is_verified(db_session, "a@x.com") is False

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, background_tasks):
        service = OtpService(db_session, background_tasks)

        with pytest.raises(NotFoundError):
            await service.verify_otp("ghost@x.com", "1234", OtpFlow.REGISTER)

    @pytest.mark.asyncio
    async def test_register_flow_rejects_verified_user(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user(is_verified=True)
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.LOGIN)

        with pytest.raises(AlreadyVerifiedError):
            await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)

        assert await otp_codes(db_session, "a@x.com") == ["1234"]

    @pytest.mark.asyncio
    async def test_login_flow_rejects_unverified_user(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user(is_verified=False)
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        with pytest.raises(NotVerifiedError) as exc_info:
            await service.verify_otp("a@x.com", "1234", OtpFlow.LOGIN)
        assert exc_info.value.status_code == 400

        assert await is_verified(db_session, "a@x.com") is False

    @pytest.mark.asyncio
    async def test_login_flow_consumes_code_without_touching_verification(
        self, db_session, background_tasks, make_user, fixed_otp
    ):
        await make_user(is_verified=True)
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.LOGIN)

        result = await service.verify_otp("a@x.com", "1234", OtpFlow.LOGIN)

        assert result.tokens.access_token
        assert await is_verified(db_session, "a@x.com") is True
        assert await otp_codes(db_session, "a@x.com") == []

    @pytest.mark.asyncio
    async def test_missing_secret_rolls_back(
        self, db_session, background_tasks, make_user, fixed_otp, monkeypatch
    ):
        await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)
        monkeypatch.setattr(settings, "REFRESH_TOKEN_SECRET", None)

        with pytest.raises(ServerConfigError):
            await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)

        assert await is_verified(db_session, "a@x.com") is False
        assert await otp_codes(db_session, "a@x.com") == ["1234"]


class TestResendOtp:
    @pytest.mark.asyncio
    async def test_resend_within_cooldown_is_rate_limited(
        self, db_session, background_tasks, make_user, fixed_otp
    ):
        await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        with pytest.raises(RateLimitedError):
            await service.resend_otp("a@x.com")

        assert await otp_codes(db_session, "a@x.com") == ["1234"]
        assert len(background_tasks.tasks) == 1

    @pytest.mark.asyncio
    async def test_resend_after_cooldown_replaces_code(
        self, db_session, background_tasks, make_user, fixed_otp
    ):
        await make_user()
        service = OtpService(db_session, background_tasks)
        await service.issue_otp("a@x.com", OtpFlow.REGISTER)
        await age_otps(db_session, "a@x.com", seconds=31)

        fixed_otp.return_value = "5678"
        await service.resend_otp("a@x.com")

        assert await otp_codes(db_session, "a@x.com") == ["5678"]
        with pytest.raises(InvalidCodeError):
            await service.verify_otp("a@x.com", "1234", OtpFlow.REGISTER)
        result = await service.verify_otp("a@x.com", "5678", OtpFlow.REGISTER)
        assert result.user.is_verified is True

    @pytest.mark.asyncio
    async def test_resend_without_previous_code(self, db_session, background_tasks, make_user, fixed_otp):
        await make_user()
        service = OtpService(db_session, background_tasks)

        otp = await service.resend_otp("a@x.com")

        assert otp.otp == "1234"

    @pytest.mark.asyncio
    async def test_resend_for_verified_user(self, db_session, background_tasks, make_user):
        await make_user(is_verified=True)
        service = OtpService(db_session, background_tasks)

        with pytest.raises(AlreadyVerifiedError):
            await service.resend_otp("a@x.com")

    @pytest.mark.asyncio
    async def test_resend_for_unknown_user(self, db_session, background_tasks):
        service = OtpService(db_session, background_tasks)

        with pytest.raises(NotFoundError):
            await service.resend_otp("ghost@x.com")


class TestStoreFaults:
    @pytest.mark.asyncio
    async def test_commit_failure_becomes_internal_error(
        self, db_session, background_tasks, make_user, fixed_otp
    ):
        await make_user()
        service = OtpService(db_session, background_tasks)
        fault = OperationalError("COMMIT", {}, Exception("disk gone"))

        with patch.object(db_session, "commit", AsyncMock(side_effect=fault)):
            with pytest.raises(InternalError) as exc_info:
                await service.issue_otp("a@x.com", OtpFlow.REGISTER)

        assert exc_info.value.message == "Something went wrong"
        assert "disk gone" in exc_info.value.detail
        assert exc_info.value.__cause__ is fault
        # nothing committed, nothing sent
        assert background_tasks.tasks == []
        assert await otp_codes(db_session, "a@x.com") == []


@pytest_asyncio.fixture
async def file_database(tmp_path):
    """A file-backed store so several sessions can hold their own connections."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'otp.db'}")
    database.connect()
    await database.create_all()
    async with database.session_factory() as session:
        session.add(
            User(
                email="a@x.com",
                username="alice",
                password_hash=hash_password("pw1"),
                is_verified=False,
                cover_info={},
            )
        )
        await session.commit()
    yield database
    await database.disconnect()


class TestConcurrency:
    ATTEMPTS = 5

    @pytest.mark.asyncio
    async def test_code_is_consumed_once(self, file_database, fixed_otp):
        async with file_database.session_factory() as session:
            await OtpService(session, BackgroundTasks()).issue_otp("a@x.com", OtpFlow.REGISTER)

        async def verify():
            async with file_database.session_factory() as session:
                try:
                    await OtpService(session, BackgroundTasks()).verify_otp(
                        "a@x.com", "1234", OtpFlow.REGISTER
                    )
                    return "ok"
                except InvalidCodeError:
                    return "invalid"

        outcomes = await asyncio.gather(*(verify() for _ in range(self.ATTEMPTS)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == self.ATTEMPTS - 1
        async with file_database.session_factory() as session:
            assert await otp_codes(session, "a@x.com") == []
            assert await is_verified(session, "a@x.com") is True

    @pytest.mark.asyncio
    async def test_concurrent_issues_leave_one_code(self, file_database, fixed_otp):
        async def issue():
            async with file_database.session_factory() as session:
                await OtpService(session, BackgroundTasks()).issue_otp("a@x.com", OtpFlow.REGISTER)

        await asyncio.gather(*(issue() for _ in range(self.ATTEMPTS)))

        async with file_database.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Otp))
            assert result.scalar_one() == 1
