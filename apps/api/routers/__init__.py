"""Routers package."""

from . import (
    health,
    auth,
    anime,
    episodes,
    site_settings,
    users,
    uploads,
    assets,
)
