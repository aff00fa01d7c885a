"""Models package."""

from .user import User
from .anime import Anime
from .episode import Episode
from .site_setting import SiteSetting
