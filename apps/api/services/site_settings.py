"""Site branding settings: defaults, persistence helpers and the read cache."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.site_setting import SiteSetting

logger = logging.getLogger(__name__)

DEFAULT_SITE_SETTINGS: Dict[str, str] = {
    "site_name": "ShinigamiStream",
    "site_logo": "死",
    "site_announcement": "",
    "hero_image": "",
}
KNOWN_SETTING_KEYS = tuple(DEFAULT_SITE_SETTINGS)


async def load_settings_map(db: AsyncSession) -> Dict[str, Optional[str]]:
    result = await db.execute(select(SiteSetting.key, SiteSetting.value).order_by(SiteSetting.id))
    return {key: value for key, value in result.all()}


async def seed_default_settings(db: AsyncSession) -> int:
    """Insert default rows for known keys that are missing. Returns how many were added."""
    existing = await load_settings_map(db)
    missing = [key for key in KNOWN_SETTING_KEYS if key not in existing]
    for key in missing:
        db.add(SiteSetting(key=key, value=DEFAULT_SITE_SETTINGS[key]))
    if missing:
        await db.commit()
    return len(missing)


async def upsert_settings(
    db: AsyncSession,
    values: Mapping[str, Optional[str]],
    updated_by: Optional[int],
) -> list[str]:
    """Write each supplied key independently; rows are created when absent."""
    if not values:
        return []
    result = await db.execute(select(SiteSetting).where(SiteSetting.key.in_(list(values))))
    rows = {row.key: row for row in result.scalars().all()}
    for key, value in values.items():
        row = rows.get(key)
        if row is None:
            db.add(SiteSetting(key=key, value=value, updated_by=updated_by))
        else:
            row.value = value
            row.updated_by = updated_by
    await db.commit()
    return sorted(values)


class SiteSettingsCache:
    """
    Application-owned cache of the settings map.

    Loaded lazily on first read and dropped by `invalidate()`, which the
    settings update route calls after a successful commit.
    """

    def __init__(self) -> None:
        self._values: Optional[Dict[str, Optional[str]]] = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._values is not None

    async def get(self, db: AsyncSession) -> Dict[str, Optional[str]]:
        if self._values is None:
            async with self._lock:
                if self._values is None:
                    generation = self._generation
                    values = await load_settings_map(db)
                    # An invalidate() during the read means the map may predate a commit.
                    if generation != self._generation:
                        return dict(values)
                    self._values = values
                    logger.debug("Site settings cache loaded (%d keys)", len(values))
        return dict(self._values)

    def invalidate(self) -> None:
        self._generation += 1
        self._values = None
