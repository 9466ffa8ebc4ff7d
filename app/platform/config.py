from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Doc-Cluster"
    ENVIRONMENT: Literal["local", "test", "staging", "production"] = "local"
    DEBUG: bool = False

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./doc_cluster.db"
    DB_CREATE_ALL: bool = False  # migrations own the schema outside local/test

    # ── Email Configuration ─────────────────────
    MAIL_HOST: str = "smtp.gmail.com"
    MAIL_PORT: int = 587
    MAIL_USERNAME: str = "your-email-id"
    MAIL_PASSWORD: str = "your-password"
    MAIL_ENCRYPTION: str = "tls"
    MAIL_FROM_ADDRESS: str = "example@localhost"
    MAIL_FROM_NAME: str = "Doc-Cluster Team"

    EMAIL_RELAY_URL: str = ""
    EMAIL_RELAY_API_KEY: str = ""
    EMAIL_RELAY_TIMEOUT: int = 30

    SUPPORT_EMAIL: str = "doccluster4u@gmail.com"
    LOGO_URL: str = "https://i.ibb.co/T1BNfgR/Untitled.jpg"

    # ── JWT / Auth ──────────────────────────────
    ACCESS_TOKEN_SECRET: Optional[str] = None
    REFRESH_TOKEN_SECRET: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    ALGORITHM: str = "HS256"

    # ── OTP ─────────────────────────────────────
    OTP_LENGTH: int = 4
    OTP_EXPIRE_MINUTES: int = 10
    OTP_RESEND_COOLDOWN_SECONDS: int = 30

    # ── Profile defaults ────────────────────────
    DEFAULT_AVATAR_URL: str = (
        "https://img.freepik.com/premium-vector/user-profile-icon-flat-style-member-avatar-"
        "vector-illustration-isolated-background-human-permission-sign-business-concept_157943-15752.jpg"
    )
    DEFAULT_AVATAR_ID: str = "/"

    # ── Logging ─────────────────────────────────
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
