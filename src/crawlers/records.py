"""Raw crawl records and their mappers

Each crawl backend emits one of two record variants. The variants carry
typed fields parsed from the backend payload, and ``to_draft`` maps either
of them into the single ``EventDraft`` shape the pipeline consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Type, Union

from src.core.logging import logger

LUMA_BASE_URL = "https://lu.ma"
UNKNOWN_ORGANIZER = "Unknown"
EVENTBRITE_NO_ORGANIZER = "Organizer not available"
DEFAULT_START_TIME = "18:00"


@dataclass
class EventDraft:
    """Canonical event shape before scoring and validation"""

    title: str
    description: str
    event_date: Optional[datetime]
    city: str
    source_platform: str
    source_id: str
    event_end_date: Optional[datetime] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    country: str = "US"
    is_online: bool = False
    is_free: bool = False
    price_min: Optional[float] = 0.0
    price_max: Optional[float] = 0.0
    currency: str = "USD"
    organizer_name: Optional[str] = None
    organizer_description: Optional[str] = None
    organizer_rating: Optional[float] = None
    capacity: Optional[int] = None
    registered_count: int = 0
    external_url: Optional[str] = None
    image_url: Optional[str] = None
    event_type: str = "workshop"
    tech_stack: list[str] = field(default_factory=list)
    quality_score: float = 0.0
    completeness_score: float = 0.0

    def with_updates(self, **changes: Any) -> "EventDraft":
        return replace(self, **changes)


@dataclass(frozen=True)
class LumaRecord:
    """Luma event as returned by the discover API or the managed actor"""

    api_id: Optional[str]
    name: Optional[str]
    backend: str
    description: str = ""
    start_at: Optional[str] = None
    end_at: Optional[str] = None
    url: Optional[str] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    is_online: bool = False
    is_free: bool = False
    price: Optional[float] = None
    organizer_name: Optional[str] = None
    organizer_description: Optional[str] = None
    capacity: Optional[int] = None
    registered_count: int = 0
    cover_url: Optional[str] = None

    platform = "luma"

    @classmethod
    def from_payload(cls, item: dict, backend: str) -> "LumaRecord":
        """Parse a discover entry or actor item

        Both shapes nest the event under ``event`` and keep calendar, hosts
        and ticket info at the top level.
        """
        nested = _mapping(item.get("event"))
        calendar = _mapping(item.get("calendar") or nested.get("calendar"))
        hosts = item.get("hosts") or nested.get("hosts")
        first_host = _mapping(hosts[0]) if isinstance(hosts, list) and hosts else {}
        ticket_info = _mapping(item.get("ticket_info") or nested.get("ticket_info"))
        geo = _mapping(nested.get("geo_address_info") or item.get("geo_address_info"))
        location = _mapping(nested.get("location") or nested.get("venue") or item.get("location"))

        description = (
            _text(nested.get("description"))
            or _text(item.get("description"))
            or extract_prosemirror_text(item.get("description_mirror"))
            or extract_prosemirror_text(nested.get("description_mirror"))
        )

        location_type = nested.get("location_type") or item.get("location_type")
        event_type = nested.get("event_type") or item.get("event_type")

        return cls(
            api_id=nested.get("api_id") or item.get("api_id"),
            name=nested.get("name") or item.get("name"),
            backend=backend,
            description=description,
            start_at=item.get("start_at") or nested.get("start_at"),
            end_at=item.get("end_at") or nested.get("end_at"),
            url=nested.get("url") or item.get("url"),
            venue_name=location.get("name") or geo.get("address") or geo.get("city_state"),
            venue_address=location.get("address") or geo.get("full_address") or geo.get("address"),
            is_online=location_type == "online" or event_type == "online",
            is_free=bool(ticket_info.get("is_free")),
            price=_number(ticket_info.get("price")),
            organizer_name=calendar.get("name") or first_host.get("name"),
            organizer_description=calendar.get("description") or first_host.get("bio_short"),
            capacity=_int(nested.get("capacity") or item.get("capacity")),
            registered_count=_int(
                nested.get("registered_count") or item.get("registered_count") or item.get("guest_count")
            ) or 0,
            cover_url=nested.get("cover_url") or item.get("cover_url") or item.get("mainImageUrl"),
        )


@dataclass(frozen=True)
class EventbriteRecord:
    """Eventbrite event (flat shape, from the actor or the search page)"""

    id: Optional[str]
    name: Optional[str]
    backend: str
    url: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    summary: str = ""
    full_description: str = ""
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    is_online: bool = False
    is_free: bool = False
    price: Optional[float] = None
    organizer_name: Optional[str] = None
    image_url: Optional[str] = None

    platform = "eventbrite"

    @classmethod
    def from_payload(cls, item: dict, backend: str) -> "EventbriteRecord":
        venue = item.get("primary_venue") or item.get("venue") or {}
        if not isinstance(venue, dict):
            venue = {"name": _text(venue)}
        address = venue.get("address") or {}
        ticket_info = _mapping(item.get("ticket_info"))
        organizer = item.get("organizer") or {}
        image = item.get("image") or {}

        return cls(
            id=_text(item.get("eventbrite_event_id") or item.get("id") or item.get("eid") or item.get("api_id")) or None,
            name=item.get("name") or item.get("title"),
            backend=backend,
            url=item.get("url") or item.get("event_url"),
            start_date=item.get("start_date"),
            start_time=item.get("start_time"),
            end_date=item.get("end_date"),
            summary=_text(item.get("summary")),
            full_description=_text(item.get("full_description") or item.get("description")),
            venue_name=venue.get("name"),
            venue_address=address.get("localized_address_display") if isinstance(address, dict) else _text(address),
            is_online=bool(item.get("is_online_event") or item.get("is_online")),
            is_free=bool(ticket_info.get("is_free") or item.get("is_free")),
            price=_number(ticket_info.get("price")),
            organizer_name=organizer.get("name") if isinstance(organizer, dict) else _text(organizer),
            image_url=image.get("url") if isinstance(image, dict) else (item.get("image_url") or None),
        )


RawRecord = Union[LumaRecord, EventbriteRecord]


def parse_records(items: Iterable[Any], record_cls: Type[RawRecord], backend: str) -> List[RawRecord]:
    """Parse payload items into records, skipping the ones that do not parse

    Returns:
        the records that parsed, in input order
    """
    records: List[RawRecord] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        try:
            records.append(record_cls.from_payload(item, backend))
        except (AttributeError, TypeError, ValueError, KeyError, IndexError) as e:
            logger.warning(
                f"[RECORDS] Skipping malformed {record_cls.platform}/{backend} item #{index}: {type(e).__name__}: {e}"
            )
    return records


def to_draft(record: RawRecord, city: str) -> EventDraft:
    """Map a raw record of either variant into an EventDraft"""
    if isinstance(record, LumaRecord):
        return _luma_to_draft(record, city)
    if isinstance(record, EventbriteRecord):
        return _eventbrite_to_draft(record, city)
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


def _luma_to_draft(record: LumaRecord, city: str) -> EventDraft:
    price = record.price or 0.0
    return EventDraft(
        title=record.name or "Untitled Event",
        description=record.description or "",
        event_date=parse_datetime(record.start_at),
        event_end_date=parse_datetime(record.end_at),
        city=city,
        venue_name=record.venue_name or city,
        venue_address=record.venue_address or city,
        is_online=record.is_online,
        is_free=record.is_free,
        price_min=price,
        price_max=price,
        organizer_name=record.organizer_name or UNKNOWN_ORGANIZER,
        organizer_description=record.organizer_description or "",
        capacity=record.capacity,
        registered_count=record.registered_count,
        external_url=luma_event_url(record.url, record.api_id),
        image_url=record.cover_url or None,
        source_platform="luma",
        source_id=record.api_id or "",
    )


def _eventbrite_to_draft(record: EventbriteRecord, city: str) -> EventDraft:
    price = record.price or 0.0
    return EventDraft(
        title=record.name or "Untitled Event",
        description=record.full_description or record.summary or "",
        event_date=eventbrite_start(record.start_date, record.start_time),
        event_end_date=parse_datetime(record.end_date),
        city=city,
        venue_name=record.venue_name or city,
        venue_address=record.venue_address or city,
        is_online=record.is_online,
        is_free=record.is_free,
        price_min=price,
        price_max=price,
        organizer_name=record.organizer_name or EVENTBRITE_NO_ORGANIZER,
        organizer_description="",
        external_url=record.url or None,
        image_url=record.image_url or None,
        source_platform="eventbrite",
        source_id=record.id or "",
    )


def luma_event_url(url: Optional[str], api_id: Optional[str]) -> Optional[str]:
    """Luma payloads carry either a full URL or just the slug"""
    if url and url.startswith("http"):
        return url
    if url:
        return f"{LUMA_BASE_URL}/{url.lstrip('/')}"
    if api_id:
        return f"{LUMA_BASE_URL}/{api_id}"
    return None


def eventbrite_start(start_date: Optional[str], start_time: Optional[str]) -> Optional[datetime]:
    """Combine Eventbrite's split date/time fields (time defaults to 18:00)"""
    if not start_date:
        return None
    if "T" in start_date:
        return parse_datetime(start_date)
    return parse_datetime(f"{start_date}T{start_time or DEFAULT_START_TIME}")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"[RECORDS] Unparseable timestamp: {value!r}")
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def extract_prosemirror_text(doc: Any) -> str:
    """Flatten a ProseMirror document to plain text

    Text nodes are kept as-is, nested content is flattened recursively and
    non-empty parts are joined with newlines.
    """
    if not doc:
        return ""
    if isinstance(doc, str):
        return doc
    if not isinstance(doc, dict):
        return ""
    if isinstance(doc.get("text"), str):
        return doc["text"]

    content = doc.get("content")
    if not isinstance(content, list):
        return ""

    parts = []
    for node in content:
        if not isinstance(node, dict):
            continue
        if isinstance(node.get("text"), str):
            text = node["text"]
        elif isinstance(node.get("content"), list):
            text = extract_prosemirror_text({"content": node["content"]})
        else:
            text = ""
        if text:
            parts.append(text)
    return "\n".join(parts)


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("major_value") or value.get("value")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
