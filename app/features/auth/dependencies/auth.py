import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.models.user import User
from app.features.auth.services.auth_service import AuthService
from app.features.auth.utils.security import decode_access_token
from app.platform.db.session import get_db
from app.platform.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Identity attached to a request that passed the session guard."""

    id: str
    version: str


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Unauthorized - No token provided")

    token = authorization[len("Bearer "):].strip()
    if not token or " " in token:
        raise UnauthorizedError("Unauthorized - Invalid token format")
    return token


async def authenticate(db: AsyncSession, authorization: Optional[str]) -> Tuple[SessionContext, User]:
    """
    Validate a bearer credential against the current user state. Read-only.

    Order: header shape, signing secret (ServerConfigError), signature and
    expiry (TokenExpiredError / TokenInvalidError), user exists, token
    version equals the stored version.
    """
    token = extract_bearer_token(authorization)
    claims = decode_access_token(token)

    user = await AuthService(db).get_user_by_id(claims.user_id)
    if user is None:
        raise UnauthorizedError("Unauthorized - User not found")

    if user.version != claims.version:
        logger.info(f"Rejected token with stale version - user: {user.id}")
        raise UnauthorizedError("Unauthorized - Invalid token version")

    return SessionContext(id=user.id, version=user.version), user


async def get_current_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> SessionContext:
    """Dependency for routes that only need the caller's id and version."""
    session, _ = await authenticate(db, authorization)
    request.state.auth = session
    return session


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency for routes that need the caller's full user record."""
    session, user = await authenticate(db, authorization)
    request.state.auth = session
    return user
