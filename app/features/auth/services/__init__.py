from app.features.auth.services.auth_service import AuthService
from app.features.auth.services.otp_service import OtpService

__all__ = ["AuthService", "OtpService"]
