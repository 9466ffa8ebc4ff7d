from app.features.auth.models.otp import OtpFlow
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.services.email import env, send_email

logger = get_logger("auth_email")

OTP_SUBJECTS = {
    OtpFlow.REGISTER: "Your OTP for email verification",
    OtpFlow.LOGIN: "Your OTP for login",
}

OTP_INTRO = {
    OtpFlow.REGISTER: (
        f"Welcome to {settings.APP_NAME}! Please verify your email address by entering "
        "the One-Time Password (OTP) below:"
    ),
    OtpFlow.LOGIN: (
        "Use the One-Time Password (OTP) below to securely log in to your "
        f"{settings.APP_NAME} account:"
    ),
}

OTP_CLOSING = {
    OtpFlow.REGISTER: "If you did not request this verification, you can safely ignore this email.",
    OtpFlow.LOGIN: "If you did not attempt to log in, please ignore this email.",
}


def render_otp_email(otp: str, username: str, flow: OtpFlow) -> str:
    template = env.get_template("otp_email.html")
    return template.render(
        app_name=settings.APP_NAME,
        logo_url=settings.LOGO_URL,
        support_email=settings.SUPPORT_EMAIL,
        team_name=settings.MAIL_FROM_NAME,
        username=username,
        otp_code=otp,
        intro_text=OTP_INTRO[flow],
        closing_text=OTP_CLOSING[flow],
        expiration_minutes=settings.OTP_EXPIRE_MINUTES,
    )


def send_otp_email(to_email: str, username: str, otp: str, flow: OtpFlow) -> bool:
    """
    Background task: deliver an OTP email.

    Runs after the response is sent. Failures are logged and swallowed; the
    OTP row is already committed and stays valid either way.
    """
    try:
        html_content = render_otp_email(otp, username, flow)
        delivered = send_email(to_email, OTP_SUBJECTS[flow], html_content)
    except Exception as e:
        logger.error(f"Error sending {flow.value} OTP email to {to_email}: {str(e)}")
        return False

    if not delivered:
        logger.warning(f"{flow.value} OTP email to {to_email} was not delivered")
    return delivered
