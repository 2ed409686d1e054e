"""
Authentication API endpoints.

Provides:
- User registration (opens the sign-up trial)
- Login (JWT token bound to a server-side session)
- Profile (display name)
- Token refresh (rotates the session)
- Logout (revokes the session)
"""
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, EmailStr, field_serializer
from sqlalchemy.orm import Session

from core.auth import AuthContext, get_auth_context
from core.database import get_db
from core.exceptions import ConflictError, UnauthorizedError, ValidationError
from core.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    get_password_hash,
    verify_password,
)
from models import AuthSession, User, utcnow
from services.subscription_access import provision_trial

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8


class UserRegister(BaseModel):
    """Schema for user registration."""
    email: EmailStr
    password: str
    display_name: Optional[str] = None


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    """Schema for profile changes."""
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    """Schema for user response."""
    id: UUID
    email: str
    display_name: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('id')
    def serialize_id(self, id: UUID) -> str:
        return str(id)


class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = ACCESS_TOKEN_EXPIRE_MINUTES * 60  # seconds
    user: Optional[UserResponse] = None


def _open_session(db: Session, user: User) -> TokenResponse:
    """Create a session row and the token that references it. Commits."""
    expires_at = utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    session = AuthSession(user_id=user.id, expires_at=expires_at)
    db.add(session)
    db.commit()
    db.refresh(session)

    access_token = create_access_token(
        data={"sub": str(user.id), "sid": str(session.id), "email": user.email},
        expires_at=expires_at,
    )
    return TokenResponse(
        access_token=access_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserRegister,
    db: Session = Depends(get_db)
):
    """
    Register a new user account.

    Starts the free trial and signs the user in.
    """
    email = user_data.email.strip().lower()

    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise ConflictError("Email already registered")

    if len(user_data.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password")

    user = User(
        email=email,
        password_hash=get_password_hash(user_data.password),
        display_name=user_data.display_name or email.split("@")[0],
    )
    db.add(user)
    db.flush()
    provision_trial(db, user=user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered user {user.id}")
    return _open_session(db, user)


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: UserLogin,
    db: Session = Depends(get_db)
):
    """Authenticate user and return a session-bound JWT."""
    email = credentials.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.info("Failed login attempt")
        raise UnauthorizedError("Invalid email or password")

    return _open_session(db, user)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    ctx: AuthContext = Depends(get_auth_context)
):
    """Get current authenticated user information."""
    return ctx.user


@router.patch("/me", response_model=UserResponse)
def update_current_user(
    user_update: UserUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """
    Update the signed-in user's profile.

    Only the display name is editable; a blank name clears it.
    """
    if user_update.display_name is not None:
        name = user_update.display_name.strip()
        ctx.user.display_name = name or None
    db.add(ctx.user)
    db.commit()
    db.refresh(ctx.user)
    return ctx.user


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """
    Refresh access token.

    The presented session is revoked and replaced; the old token stops working.
    """
    ctx.session.revoked_at = utcnow()
    db.add(ctx.session)
    return _open_session(db, ctx.user)


@router.post("/logout")
def logout(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """Revoke the session behind the presented token."""
    ctx.session.revoked_at = utcnow()
    db.add(ctx.session)
    db.commit()
    logger.info(f"User {ctx.user_id} signed out")
    return {"success": True}
