"""
Episode router. Episodes hang off an anime; numbering is not forced unique.
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.episode import Episode
from routers.anime import CreatedResponse, MessageResponse, blank_to_none, get_anime_or_404
from routers.auth_scope import AuthContext, require_capability
from services.permissions import Capability
from services.upload_storage import log_orphaned_assets

router = APIRouter()
logger = logging.getLogger(__name__)

ASSET_FIELDS = ("video_url", "download_url", "thumbnail_url")


class EpisodeWrite(BaseModel):
    episode_number: int = Field(ge=1)
    title: str
    description: Optional[str] = None
    video_url: Optional[str] = None
    download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    subtitle_type: Literal["subbed", "dubbed"] = "subbed"

    @field_validator("title", mode="before")
    @classmethod
    def _title_required(cls, value):
        if value is None or not str(value).strip():
            raise ValueError("Episode title is required")
        return str(value).strip()

    @field_validator("subtitle_type", mode="before")
    @classmethod
    def _default_subtitle_type(cls, value):
        return value or "subbed"

    @field_validator("description", "video_url", "download_url", "thumbnail_url", "duration", mode="before")
    @classmethod
    def _blank_optional(cls, value):
        return blank_to_none(value)

    @model_validator(mode="after")
    def _download_defaults_to_video(self):
        if not self.download_url:
            self.download_url = self.video_url
        return self


class EpisodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    anime_id: int
    episode_number: int
    title: str
    description: Optional[str] = None
    video_url: Optional[str] = None
    download_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[int] = None
    subtitle_type: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


async def _get_episode_or_404(db: AsyncSession, episode_id: int) -> Episode:
    result = await db.execute(select(Episode).where(Episode.id == episode_id))
    episode = result.scalar_one_or_none()
    if not episode:
        raise HTTPException(status_code=404, detail="Episode not found")
    return episode


@router.get("/anime/{anime_id}/episodes", response_model=List[EpisodeResponse])
async def list_episodes(anime_id: int, db: AsyncSession = Depends(get_db)):
    """Episodes of one title in episode-number order."""
    result = await db.execute(
        select(Episode)
        .where(Episode.anime_id == anime_id)
        .order_by(Episode.episode_number.asc(), Episode.id.asc())
    )
    return result.scalars().all()


@router.post("/anime/{anime_id}/episodes", response_model=CreatedResponse, status_code=201)
async def create_episode(
    anime_id: int,
    request: EpisodeWrite,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    await get_anime_or_404(db, anime_id)
    episode = Episode(anime_id=anime_id, **request.model_dump(), created_by=auth.user_id)
    db.add(episode)
    await db.commit()
    logger.info(
        "Episode %s (#%s) added to anime %s by user %s",
        episode.id,
        episode.episode_number,
        anime_id,
        auth.user_id,
    )
    return CreatedResponse(message="Episode created successfully", id=episode.id)


@router.get("/episodes/{episode_id}", response_model=EpisodeResponse)
async def get_episode(episode_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_episode_or_404(db, episode_id)


@router.put("/episodes/{episode_id}", response_model=MessageResponse)
async def update_episode(
    episode_id: int,
    request: EpisodeWrite,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    episode = await _get_episode_or_404(db, episode_id)
    values = request.model_dump()
    kept = {values[field] for field in ASSET_FIELDS}
    replaced = [getattr(episode, field) for field in ASSET_FIELDS if getattr(episode, field) not in kept]
    for field, value in values.items():
        setattr(episode, field, value)
    await db.commit()
    log_orphaned_assets(set(replaced), f"updating episode {episode_id}")
    logger.info("Episode %s updated by user %s", episode_id, auth.user_id)
    return MessageResponse(message="Episode updated successfully")


@router.delete("/episodes/{episode_id}", response_model=MessageResponse)
async def delete_episode(
    episode_id: int,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_CATALOG)),
    db: AsyncSession = Depends(get_db),
):
    episode = await _get_episode_or_404(db, episode_id)
    asset_urls = {getattr(episode, field) for field in ASSET_FIELDS}
    await db.delete(episode)
    await db.commit()
    log_orphaned_assets(asset_urls, f"deleting episode {episode_id}")
    logger.info("Episode %s deleted by user %s", episode_id, auth.user_id)
    return MessageResponse(message="Episode deleted successfully")
