from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Text,
    CheckConstraint,
    Index,
)

from models.base_model import BaseModel, Base


class Video(BaseModel, Base):
    __tablename__ = "videos"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    thumbnail = Column(String(500), nullable=True)
    # playback is delegated to the CDN; we only keep its URL
    video_url = Column(String(500), nullable=True)
    duration = Column(String(20), nullable=True)  # display form, e.g. "1h 45m" or "45m"
    category = Column(String(100), nullable=True)
    genre = Column(String(100), nullable=True)
    rating = Column(Numeric(3, 1), nullable=True, default=0)
    release_year = Column(Integer, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("(rating IS NULL) OR (rating >= 0 AND rating <= 10)", name="ck_videos_rating_range"),
        CheckConstraint("view_count >= 0", name="ck_videos_view_count_nonnegative"),
        Index("ix_videos_title", "title"),
        Index("ix_videos_category", "category"),
        Index("ix_videos_genre", "genre"),
        Index("ix_videos_release_year", "release_year"),
    )
