"""Database models"""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.core.database import Base


class Event(Base):
    """Canonical crawled event"""

    __tablename__ = "events"

    # autoincrement id doubles as the stream cursor
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    event_type = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="active")
    event_date = Column(DateTime, nullable=False, index=True)
    event_end_date = Column(DateTime, nullable=True)

    venue_name = Column(String(500), nullable=True)
    venue_address = Column(String(1000), nullable=True)
    city = Column(String(200), nullable=False, index=True)
    country = Column(String(8), nullable=False, default="US")
    is_online = Column(Boolean, nullable=False, default=False)

    is_free = Column(Boolean, nullable=False, default=False)
    price_min = Column(Float, nullable=True)
    price_max = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")

    organizer_name = Column(String(500), nullable=True)
    organizer_description = Column(Text, nullable=True)
    organizer_rating = Column(Float, nullable=True)
    capacity = Column(Integer, nullable=True)
    registered_count = Column(Integer, nullable=False, default=0)

    tech_stack = Column(JSON, nullable=False, default=list)
    quality_score = Column(Float, nullable=False, default=0)
    completeness_score = Column(Float, nullable=False, default=0)
    external_url = Column(String(2048), nullable=True)
    image_url = Column(String(2048), nullable=True)

    source_platform = Column(String(32), nullable=False)
    source_id = Column(String(255), nullable=False)

    scraped_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    categories = relationship(
        "EventCategory",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("source_platform", "source_id", name="uq_events_source_identity"),
        Index("idx_events_title_city", "title", "city"),
        Index("idx_events_quality_date", "quality_score", "event_date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, platform={self.source_platform}, source_id={self.source_id})>"


class EventCategory(Base):
    """Denormalized tag row derived from tech stack and event type"""

    __tablename__ = "event_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(32), nullable=False, index=True)  # technology | event_type
    value = Column(String(100), nullable=False)
    confidence = Column(Float, nullable=False, default=1.0)

    event = relationship("Event", back_populates="categories")

    __table_args__ = (
        UniqueConstraint("event_id", "category", "value", name="uq_event_categories_value"),
    )

    def __repr__(self) -> str:
        return f"<EventCategory(event_id={self.event_id}, {self.category}={self.value})>"


class ScrapingJob(Base):
    """One crawl request and its lifecycle"""

    __tablename__ = "scraping_jobs"

    id = Column(String(64), primary_key=True)
    platform = Column(String(32), nullable=False, index=True)  # luma | eventbrite | multi
    status = Column(String(16), nullable=False, index=True)
    query = Column(String(200), nullable=True)
    city = Column(String(500), nullable=True)  # comma separated for batch jobs
    platforms = Column(JSON, nullable=False, default=list)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    events_scraped = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ScrapingJob(id={self.id}, status={self.status})>"
