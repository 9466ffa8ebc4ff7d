import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from app.platform.db.base import BaseModel


class OtpFlow(str, enum.Enum):
    """Which preconditions and side effects an OTP verification applies."""

    REGISTER = "register"
    LOGIN = "login"


class Otp(BaseModel):
    """
    One-time passcode sent to an email address.

    Rows are keyed by the normalized email only (no foreign key to users):
    issuing a new code deletes every older row for that email, and a
    successful verification deletes the consumed row. Expiry is checked
    lazily at verification time.
    """

    __tablename__ = "otps"
    email = Column(String(255), nullable=False, index=True)
    otp = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    # set client-side so the resend cooldown has sub-second precision
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Otp(id={self.id}, email={self.email}, expires_at={self.expires_at})>"
