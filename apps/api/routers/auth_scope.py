"""Authentication and role-capability dependencies for gated routes."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from services.permissions import Capability, Role, parse_role, role_allows
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: int
    username: str
    email: Optional[str]
    role: Role

    def can(self, capability: Capability) -> bool:
        return role_allows(self.role, capability)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Resolve the authenticated user (with their current role) from a Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    result = await db.execute(select(User).where(User.id == int(payload["sub"])))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="Session user no longer exists.")

    return AuthContext(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=parse_role(user.role),
    )


def require_capability(capability: Capability) -> Callable[..., AuthContext]:
    """Return a dependency that admits only roles holding `capability`."""

    async def _dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if not auth.can(capability):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return auth

    return _dependency
