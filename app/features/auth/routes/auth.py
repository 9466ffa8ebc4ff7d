from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.dependencies.auth import SessionContext, get_current_session
from app.features.auth.models.otp import OtpFlow
from app.features.auth.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    VerifyOtpRequest,
)
from app.features.auth.services.auth_service import AuthService
from app.features.auth.services.otp_service import OtpService
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
    description="Create an unverified account and email a registration OTP",
)
async def register(
    request: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user account.
    The account stays unverified until the emailed OTP is confirmed at
    **/auth/otp/register/verify**.
    """
    otp_service = OtpService(db, background_tasks)
    email = await otp_service.select_flow(request.email, OtpFlow.REGISTER)

    user = await AuthService(db).register_user(request)
    await otp_service.issue_otp(email, OtpFlow.REGISTER)

    return api_response(
        data={"user": user},
        message="User registered successfully. OTP sent to your email",
        status_code=status.HTTP_201_CREATED,
    )


@router.post(
    "/otp/register/verify",
    response_model=dict,
    summary="Verify email with OTP",
)
async def verify_register_otp(
    request: VerifyOtpRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    result = await OtpService(db, background_tasks).verify_otp(
        request.email, request.otp, OtpFlow.REGISTER
    )
    return api_response(data=result, message="Email verified successfully")


@router.post(
    "/otp/login",
    response_model=dict,
    summary="Request a login OTP",
)
async def send_login_otp(
    request: EmailRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    otp_service = OtpService(db, background_tasks)
    email = await otp_service.select_flow(request.email, OtpFlow.LOGIN)
    await otp_service.issue_otp(email, OtpFlow.LOGIN)
    return api_response(message="OTP sent to your email")


@router.post(
    "/otp/login/verify",
    response_model=dict,
    summary="Log in with OTP",
)
async def verify_login_otp(
    request: VerifyOtpRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    result = await OtpService(db, background_tasks).verify_otp(
        request.email, request.otp, OtpFlow.LOGIN
    )
    return api_response(data=result, message="Logged in successfully")


@router.post(
    "/otp/resend",
    response_model=dict,
    summary="Resend the registration OTP",
)
async def resend_otp(
    request: EmailRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    await OtpService(db, background_tasks).resend_otp(request.email)
    return api_response(message="OTP sent to your email")


@router.post(
    "/login",
    response_model=dict,
    summary="Login with password",
    description="Authenticate with email, username or 10-digit phone number plus password",
)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await AuthService(db).login_user(request.identifier, request.password)
    return api_response(data=result, message="Login successful")


@router.post("/refresh", response_model=dict, summary="Refresh the token pair")
async def refresh(request: RefreshTokenRequest, db: AsyncSession = Depends(get_db)):
    tokens = await AuthService(db).refresh_tokens(request.refresh_token)
    return api_response(data={"tokens": tokens}, message="Tokens refreshed successfully")


@router.post(
    "/change-password",
    response_model=dict,
    summary="Change password",
    description="Change the password and sign out every other session",
)
async def change_password(
    request: ChangePasswordRequest,
    session: SessionContext = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    tokens = await AuthService(db).change_password(
        user_id=session.id,
        old_password=request.old_password,
        new_password=request.new_password,
    )
    return api_response(
        data={"tokens": tokens},
        message="Password changed successfully. Other sessions have been signed out.",
    )
