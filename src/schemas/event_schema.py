"""Pydantic schemas for the HTTP surface (camelCase on the wire)"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.core.config import settings
from src.core.security import SecurityValidator

Platform = Literal["luma", "eventbrite"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchFilters(CamelModel):
    """Optional store filters; "all" disables one"""
    city: Optional[str] = Field(None, max_length=100, description="City (case-insensitive)")
    event_type: Optional[Literal["workshop", "conference", "meetup", "hackathon", "networking", "all"]] = None
    price: Optional[Literal["free", "paid", "all"]] = None
    date: Optional[Literal["today", "thisWeek", "thisMonth", "nextMonth", "all"]] = None
    platforms: Optional[List[Platform]] = Field(None, max_length=2)

    @field_validator("city")
    @classmethod
    def strip_city(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SearchRequest(CamelModel):
    """Streaming search request"""
    query: str = Field(..., min_length=1, max_length=100, description="Search term")
    filters: SearchFilters = Field(default_factory=SearchFilters)
    platforms: List[Platform] = Field(default_factory=lambda: list(settings.default_platforms), min_length=1)
    max_results: int = Field(50, ge=1, le=100)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return SecurityValidator.validate_query(v)

    @property
    def effective_platforms(self) -> List[str]:
        return list(self.filters.platforms or self.platforms)

    @property
    def crawl_city(self) -> str:
        city = self.filters.city
        return city if city and city != "all" else settings.default_city


class CategoryPayload(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    value: str
    confidence: float


class EventPayload(CamelModel):
    """Event as streamed to clients"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    event_type: str
    event_date: datetime
    event_end_date: Optional[datetime] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    city: str
    country: str
    is_online: bool
    is_free: bool
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: str
    organizer_name: Optional[str] = None
    organizer_description: Optional[str] = None
    organizer_rating: Optional[float] = None
    capacity: Optional[int] = None
    registered_count: int = 0
    tech_stack: List[str] = Field(default_factory=list)
    quality_score: float
    completeness_score: float = 0
    external_url: Optional[str] = None
    image_url: Optional[str] = None
    source_platform: str
    source_id: str
    scraped_at: Optional[datetime] = None
    categories: List[CategoryPayload] = Field(default_factory=list)


def serialize_event(event: Any) -> Dict[str, Any]:
    """ORM Event -> JSON-ready camelCase dict (session must still be open)"""
    return EventPayload.model_validate(event).model_dump(by_alias=True, mode="json")


class JobStatusResponse(CamelModel):
    job_id: str
    status: str
    events_scraped: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    events: Optional[List[Dict[str, Any]]] = None
    total: Optional[int] = None
    error: Optional[str] = None


class TriggerRequest(CamelModel):
    """Batch crawl request (every field optional)"""
    cities: Optional[List[str]] = Field(None, max_length=10)
    platforms: Optional[List[Platform]] = Field(None, max_length=2)
    max_events: Optional[int] = Field(None, ge=1, le=100)
    query: Optional[str] = Field(None, max_length=100)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return SecurityValidator.validate_query(v)


class TriggerResponse(CamelModel):
    success: bool
    job_id: str
    status: str
    message: str
    cities: List[str]
    platforms: List[str]


class JobSummary(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: str
    status: str
    query: Optional[str] = None
    city: Optional[str] = None
    platforms: List[str] = Field(default_factory=list)
    events_scraped: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class ScrapingStatusResponse(CamelModel):
    jobs: List[JobSummary]
    total: int


class HealthResponse(BaseModel):
    """Health check"""
    status: str
    timestamp: datetime
    version: str
    cache: str
    database: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class EventListResponse(CamelModel):
    """One page of stored events"""
    events: List[Dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination
