"""Anime title model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Anime(Base):
    """A catalog title. Asset URLs point at files accepted by the upload receiver."""

    __tablename__ = "anime"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    genre = Column(String, nullable=True)
    status = Column(String, nullable=False, default="ongoing")  # ongoing, completed, upcoming
    release_year = Column(Integer, nullable=True)
    logo_url = Column(String, nullable=True)
    cover_image_url = Column(String, nullable=True)
    studio = Column(String, nullable=True)
    tags = Column(String, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    episodes = relationship(
        "Episode",
        back_populates="anime",
        cascade="all, delete-orphan",
        order_by="Episode.episode_number",
    )
