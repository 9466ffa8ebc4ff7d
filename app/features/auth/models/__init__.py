from app.features.auth.models.otp import Otp, OtpFlow
from app.features.auth.models.user import User

__all__ = ["User", "Otp", "OtpFlow"]
