"""Strict event shape check before anything is written"""

from dataclasses import asdict
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.crawlers.records import EventDraft


class EventSchema(BaseModel):
    """Validated canonical event"""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=10)
    event_type: Literal["workshop", "conference", "meetup", "hackathon", "networking"]
    event_date: datetime
    event_end_date: Optional[datetime] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    city: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_online: bool
    is_free: bool
    price_min: Optional[float] = Field(None, ge=0)
    price_max: Optional[float] = Field(None, ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    organizer_name: Optional[str] = None
    organizer_description: Optional[str] = None
    organizer_rating: Optional[float] = Field(None, ge=0, le=5)
    capacity: Optional[int] = Field(None, ge=1)
    registered_count: int = Field(..., ge=0)
    tech_stack: List[str]
    quality_score: float = Field(..., ge=0, le=100)
    external_url: AnyHttpUrl
    image_url: Optional[AnyHttpUrl] = None
    source_platform: Literal["eventbrite", "meetup", "luma"]
    source_id: str = Field(..., min_length=1)

    @field_validator("image_url", mode="before")
    @classmethod
    def empty_image_is_none(cls, v):
        return v or None


def validate_draft(draft: EventDraft) -> Optional[EventSchema]:
    """Validated model, or None when the draft breaks the schema"""
    try:
        return EventSchema.model_validate(asdict(draft))
    except ValidationError:
        return None


def validation_errors(draft: EventDraft) -> List[str]:
    try:
        EventSchema.model_validate(asdict(draft))
    except ValidationError as e:
        return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
    return []
