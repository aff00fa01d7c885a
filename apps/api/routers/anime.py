"""
Anime catalog router: list/detail for everyone, mutations for staff and admins.
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from database import get_db
from models.anime import Anime
from routers.auth_scope import AuthContext, require_capability
from services.permissions import Capability
from services.upload_storage import log_orphaned_assets

router = APIRouter()
logger = logging.getLogger(__name__)

AnimeStatus = Literal["ongoing", "completed", "upcoming"]


def blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class AnimeWrite(BaseModel):
    title: str
    description: Optional[str] = None
    genre: Optional[str] = None
    status: AnimeStatus = "ongoing"
    release_year: Optional[int] = Field(default=None, ge=1900, le=2100)
    logo_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    studio: Optional[str] = None
    tags: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _title_required(cls, value):
        if value is None or not str(value).strip():
            raise ValueError("Title is required")
        return str(value).strip()

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or "ongoing"

    @field_validator(
        "description", "genre", "release_year", "logo_url", "cover_image_url", "studio", "tags",
        mode="before",
    )
    @classmethod
    def _blank_optional(cls, value):
        return blank_to_none(value)


class AnimeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    genre: Optional[str] = None
    status: str
    release_year: Optional[int] = None
    logo_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    studio: Optional[str] = None
    tags: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreatedResponse(BaseModel):
    message: str
    id: int


class MessageResponse(BaseModel):
    message: str


async def get_anime_or_404(db: AsyncSession, anime_id: int, *, with_episodes: bool = False) -> Anime:
    query = select(Anime).where(Anime.id == anime_id)
    if with_episodes:
        query = query.options(selectinload(Anime.episodes))
    result = await db.execute(query)
    anime = result.scalar_one_or_none()
    if not anime:
        raise HTTPException(status_code=404, detail="Anime not found")
    return anime


@router.get("", response_model=List[AnimeResponse])
async def list_anime(db: AsyncSession = Depends(get_db)):
    """All titles, newest first."""
    result = await db.execute(select(Anime).order_by(Anime.created_at.desc(), Anime.id.desc()))
    return result.scalars().all()


@router.get("/{anime_id}", response_model=AnimeResponse)
async def get_anime(anime_id: int, db: AsyncSession = Depends(get_db)):
    return await get_anime_or_404(db, anime_id)


@router.post("", response_model=CreatedResponse, status_code=201)
async def create_anime(
    request: AnimeWrite,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    anime = Anime(**request.model_dump(), created_by=auth.user_id)
    db.add(anime)
    await db.commit()
    logger.info("Anime %s created by user %s", anime.id, auth.user_id)
    return CreatedResponse(message="Anime created successfully", id=anime.id)


@router.put("/{anime_id}", response_model=MessageResponse)
async def update_anime(
    anime_id: int,
    request: AnimeWrite,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    """Replace every editable field of a title."""
    anime = await get_anime_or_404(db, anime_id)
    values = request.model_dump()
    replaced = [
        getattr(anime, field)
        for field in ("logo_url", "cover_image_url")
        if getattr(anime, field) and getattr(anime, field) != values[field]
    ]
    for field, value in values.items():
        setattr(anime, field, value)
    await db.commit()
    log_orphaned_assets(replaced, f"updating anime {anime_id}")
    logger.info("Anime %s updated by user %s", anime_id, auth.user_id)
    return MessageResponse(message="Anime updated successfully")


@router.delete("/{anime_id}", response_model=MessageResponse)
async def delete_anime(
    anime_id: int,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    """Delete a title together with its episodes."""
    anime = await get_anime_or_404(db, anime_id, with_episodes=True)
    asset_urls = [anime.logo_url, anime.cover_image_url]
    for episode in anime.episodes:
        asset_urls.extend([episode.video_url, episode.download_url, episode.thumbnail_url])
    episode_count = len(anime.episodes)

    await db.delete(anime)
    await db.commit()
    log_orphaned_assets(set(asset_urls), f"deleting anime {anime_id}")
    logger.info("Anime %s deleted by user %s (%d episodes removed)", anime_id, auth.user_id, episode_count)
    return MessageResponse(message="Anime deleted successfully")
