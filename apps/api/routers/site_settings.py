"""
Site branding settings router.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, require_capability
from services.permissions import Capability
from services.site_settings import SiteSettingsCache, upsert_settings
from services.upload_storage import log_orphaned_assets

router = APIRouter()
logger = logging.getLogger(__name__)


class SiteSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    site_name: Optional[str] = None
    site_logo: Optional[str] = None
    site_announcement: Optional[str] = None
    hero_image: Optional[str] = None


class SiteSettingsUpdateResponse(BaseModel):
    message: str
    updated: List[str]


def get_settings_cache(request: Request) -> SiteSettingsCache:
    cache = getattr(request.app.state, "site_settings_cache", None)
    if cache is None:
        cache = SiteSettingsCache()
        request.app.state.site_settings_cache = cache
    return cache


@router.get("", response_model=Dict[str, Optional[str]])
async def get_site_settings(
    cache: SiteSettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    """Public flat key/value map of branding settings."""
    return await cache.get(db)


@router.post("", response_model=SiteSettingsUpdateResponse)
async def update_site_settings(
    request: SiteSettingsUpdate,
    auth: AuthContext = Depends(require_capability(Capability.MANAGE_SITE)),
    cache: SiteSettingsCache = Depends(get_settings_cache),
    db: AsyncSession = Depends(get_db),
):
    """Update only the supplied keys; each key is written independently."""
    values = request.model_dump(exclude_unset=True)
    if not values:
        raise HTTPException(status_code=400, detail="No settings supplied")

    previous = await cache.get(db)
    updated = await upsert_settings(db, values, updated_by=auth.user_id)
    cache.invalidate()

    replaced = [
        previous.get(key)
        for key in ("site_logo", "hero_image")
        if key in values and previous.get(key) != values[key]
    ]
    log_orphaned_assets(replaced, "updating site settings")
    logger.info("Site settings %s updated by user %s", ", ".join(updated), auth.user_id)
    return SiteSettingsUpdateResponse(message="Site settings updated successfully", updated=updated)
