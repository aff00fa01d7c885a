"""
Authentication router: registration, login and current-user lookup.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.passwords import hash_password, verify_password
from services.permissions import Role, capabilities_for
from services.session_token import create_session_token

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    # Any `role` field in the body is ignored; registrations are always plain users.
    username: str
    email: str
    password: str

    @field_validator("username", "email", mode="after")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("username", "email", "password")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Username, email, and password are required")
        return value


class LoginRequest(BaseModel):
    username: str
    password: str


class UserSummary(BaseModel):
    id: int
    username: str
    email: str
    role: str


class AuthResponse(BaseModel):
    message: str
    token: str
    expires_at: int
    user: UserSummary


class CurrentUserResponse(UserSummary):
    capabilities: List[str]


def _summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, username=user.username, email=user.email, role=user.role)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("auth_register"))],
)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a plain user account and return a session token."""
    existing_username = await db.execute(select(User.id).where(User.username == request.username))
    if existing_username.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Username already exists")

    existing_email = await db.execute(select(User.id).where(User.email == request.email))
    if existing_email.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Email already exists")

    user = User(
        username=request.username,
        email=request.email,
        password_hash=hash_password(request.password),
        role=Role.USER.value,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Username or email already exists") from exc
    logger.info("User %s registered (id=%s)", user.username, user.id)

    session = create_session_token(user.id, user.role)
    return AuthResponse(
        message="User created successfully",
        token=session["token"],
        expires_at=session["expires_at"],
        user=_summary(user),
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(rate_limit("auth_login"))],
)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange username/password for a session token."""
    if not request.username or not request.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    result = await db.execute(select(User).where(User.username == request.username))
    user = result.scalar_one_or_none()
    if not user or not verify_password(request.password, user.password_hash):
        logger.warning("Failed login for username %r", request.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    session = create_session_token(user.id, user.role)
    logger.info("Login successful for user %s", user.username)
    return AuthResponse(
        message="Login successful",
        token=session["token"],
        expires_at=session["expires_at"],
        user=_summary(user),
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(auth: AuthContext = Depends(get_auth_context)):
    """Return the session user with the capabilities their role grants."""
    return CurrentUserResponse(
        id=auth.user_id,
        username=auth.username,
        email=auth.email or "",
        role=auth.role.value,
        capabilities=capabilities_for(auth.role),
    )
