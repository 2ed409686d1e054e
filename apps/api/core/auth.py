"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Resolving the bearer token into an explicit AuthContext (user + live session)
- Getting the current authenticated user
- Subscription-gated write access
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from core.database import get_db
from core.exceptions import SubscriptionRequiredError, UnauthorizedError
from core.security import decode_access_token
from models import AuthSession, User

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """
    Who is calling, established per request.

    Created from a token at sign-in, torn down by revoking ``session`` at
    sign-out. Services never look the caller up themselves; they receive it.
    """

    user: User
    session: AuthSession

    @property
    def user_id(self) -> UUID:
        return self.user.id


def _parse_uuid(value: Optional[str], detail: str) -> UUID:
    if not value:
        raise UnauthorizedError(detail)
    try:
        return UUID(str(value))
    except ValueError:
        raise UnauthorizedError(detail)


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AuthContext:
    """
    Resolve the bearer token into an AuthContext.

    Raises 401 if the token is missing, malformed, expired, or bound to a
    revoked session.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = _parse_uuid(payload.get("sub"), "Invalid token payload")
    session_id = _parse_uuid(payload.get("sid"), "Invalid token payload")

    session = db.query(AuthSession).filter(AuthSession.id == session_id).first()
    if session is None or session.user_id != user_id or not session.is_live():
        raise UnauthorizedError("Session expired or signed out")

    return AuthContext(user=session.user, session=session)


def get_current_user(ctx: AuthContext = Depends(get_auth_context)) -> User:
    """Get the current authenticated user."""
    return ctx.user


def require_write_access(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
) -> AuthContext:
    """
    Allow record writes only with an active subscription or a running trial.

    Reads never go through this dependency.
    """
    from services.subscription_access import get_access_status

    access = get_access_status(db, user=ctx.user)
    if not access.can_write:
        raise SubscriptionRequiredError()
    return ctx
