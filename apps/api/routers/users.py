"""
User administration router (admin only): list accounts and change roles.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, require_capability
from services.permissions import Capability, Role

router = APIRouter()
logger = logging.getLogger(__name__)


class UserListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: str
    created_at: Optional[datetime] = None


class RoleUpdate(BaseModel):
    role: str


class MessageResponse(BaseModel):
    message: str


@router.get("", response_model=List[UserListItem])
async def list_users(
    _auth: AuthContext = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return result.scalars().all()


@router.put("/{user_id}", response_model=MessageResponse)
async def update_user_role(
    user_id: int,
    request: RoleUpdate,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
):
    """Change a user's role. Only the role is editable here."""
    try:
        role = Role(request.role)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid role") from exc

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    previous_role = user.role
    user.role = role.value
    await db.commit()
    logger.info("User %s role changed %s -> %s by admin %s", user_id, previous_role, role.value, auth.user_id)
    return MessageResponse(message="User role updated successfully")
