"""Event repository - store access for events and their categories"""
import calendar
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.exceptions import DatabaseConnectionException, DatabaseQueryException
from src.core.logging import logger
from src.repositories.models import Event, EventCategory, ScrapingJob

CategoryRow = Tuple[str, str, float]


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def date_filter_bounds(date_filter: Optional[str], now: datetime) -> Optional[Tuple[datetime, datetime]]:
    """Translate a named date filter into a [start, end) window"""
    if not date_filter or date_filter == "all":
        return None
    if date_filter == "today":
        return now, now + timedelta(days=1)
    if date_filter == "thisWeek":
        return now, now + timedelta(days=7)
    if date_filter == "thisMonth":
        return now, _add_months(now, 1)
    if date_filter == "nextMonth":
        start = _add_months(now, 1)
        return start, _add_months(start, 1)
    return None


def _is_active(value: Optional[Any]) -> bool:
    return value is not None and value != "" and value != "all"


class EventRepository:
    """Event data access layer"""

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, operation: str, error: Exception):
        self.db.rollback()
        logger.error(f"[DB] {operation} failed: {type(error).__name__}: {error}")
        if isinstance(error, (OperationalError, InterfaceError)):
            raise DatabaseConnectionException(str(error), details={"operation": operation}) from error
        raise DatabaseQueryException(operation, str(error)) from error

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------
    def search(
        self,
        query: str,
        *,
        city: Optional[str] = None,
        event_type: Optional[str] = None,
        price: Optional[str] = None,
        date: Optional[str] = None,
        platforms: Optional[Sequence[str]] = None,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Event], int]:
        """Active future events matching a query, best first

        Returns:
            (events ordered by quality desc then date asc, total match count)
        """
        now = now or datetime.utcnow()
        try:
            q = self.db.query(Event).filter(Event.status == "active", Event.event_date >= now)

            term = (query or "").strip()
            if term:
                pattern = f"%{term.lower()}%"
                q = q.filter(
                    or_(
                        func.lower(Event.title).like(pattern),
                        func.lower(Event.description).like(pattern),
                        func.lower(Event.organizer_name).like(pattern),
                        func.lower(Event.venue_name).like(pattern),
                        cast(Event.tech_stack, String).like(f'%"{term.lower()}"%'),
                    )
                )

            if _is_active(city):
                q = q.filter(func.lower(Event.city) == city.lower())
            if _is_active(event_type):
                q = q.filter(Event.event_type == event_type)
            if price == "free":
                q = q.filter(Event.is_free.is_(True))
            elif price == "paid":
                q = q.filter(Event.is_free.is_(False))

            bounds = date_filter_bounds(date, now)
            if bounds:
                q = q.filter(Event.event_date >= bounds[0], Event.event_date < bounds[1])

            if platforms:
                q = q.filter(Event.source_platform.in_(list(platforms)))

            total = q.count()
            events = (
                q.order_by(Event.quality_score.desc(), Event.event_date.asc(), Event.id.asc())
                .offset(max(0, offset))
                .limit(limit)
                .all()
            )
            return events, total
        except SQLAlchemyError as e:
            self._fail("search", e)

    # ------------------------------------------------------------------
    # deduplication lookups
    # ------------------------------------------------------------------
    def find_by_source(self, platform: str, source_id: str) -> Optional[Event]:
        try:
            return (
                self.db.query(Event)
                .filter(Event.source_platform == platform, Event.source_id == source_id)
                .first()
            )
        except SQLAlchemyError as e:
            self._fail("find_by_source", e)

    def find_similar(
        self,
        title: str,
        city: str,
        platform: str,
        event_date: datetime,
        window: timedelta,
    ) -> Optional[Event]:
        """Same title (case-insensitive), city and platform within +/- window"""
        try:
            return (
                self.db.query(Event)
                .filter(
                    func.lower(Event.title) == title.lower(),
                    Event.city == city,
                    Event.source_platform == platform,
                    Event.event_date >= event_date - window,
                    Event.event_date <= event_date + window,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self._fail("find_similar", e)

    def find_by_url_prefix(self, normalized_url: str) -> Optional[Event]:
        try:
            return (
                self.db.query(Event)
                .filter(Event.external_url.startswith(normalized_url, autoescape=True))
                .first()
            )
        except SQLAlchemyError as e:
            self._fail("find_by_url_prefix", e)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def create_with_categories(self, fields: Dict[str, Any], categories: Sequence[CategoryRow]) -> Event:
        """Insert an event and its category rows in one transaction"""
        try:
            event = Event(**fields)
            event.categories = [
                EventCategory(category=category, value=value, confidence=confidence)
                for category, value, confidence in _unique(categories)
            ]
            self.db.add(event)
            self.db.commit()
            self.db.refresh(event)
            return event
        except SQLAlchemyError as e:
            self._fail("create_with_categories", e)

    def replace_enrichment(self, event: Event, fields: Dict[str, Any], categories: Sequence[CategoryRow]) -> Event:
        """Overwrite an existing event with richer data and rebuild its categories"""
        try:
            for key, value in fields.items():
                if key in ("source_platform", "source_id", "scraped_at", "created_at"):
                    continue
                setattr(event, key, value)
            event.last_updated = datetime.utcnow()
            event.categories.clear()
            self.db.flush()
            event.categories.extend(
                EventCategory(category=category, value=value, confidence=confidence)
                for category, value, confidence in _unique(categories)
            )
            self.db.commit()
            self.db.refresh(event)
            return event
        except SQLAlchemyError as e:
            self._fail("replace_enrichment", e)

    def delete_expired(self, before: datetime) -> int:
        """Delete events dated before a cutoff (retention sweep)"""
        try:
            expired_ids = [row[0] for row in self.db.query(Event.id).filter(Event.event_date < before).all()]
            if not expired_ids:
                return 0
            self.db.query(EventCategory).filter(EventCategory.event_id.in_(expired_ids)).delete(
                synchronize_session=False
            )
            deleted = self.db.query(Event).filter(Event.id.in_(expired_ids)).delete(synchronize_session=False)
            self.db.commit()
            return int(deleted)
        except SQLAlchemyError as e:
            self._fail("delete_expired", e)

    # ------------------------------------------------------------------
    # live job cursor
    # ------------------------------------------------------------------
    def events_for_job(self, job: ScrapingJob, after_id: int = 0, limit: int = 50) -> List[Event]:
        """Events a running job has persisted since it started

        Scoped to the job's city (or comma separated cities) and platforms,
        newer than the cursor, in ascending id order.
        """
        since = job.started_at or job.created_at or (datetime.utcnow() - timedelta(minutes=1))
        try:
            q = self.db.query(Event).filter(Event.scraped_at >= since, Event.id > after_id)

            if job.city and job.city != "all":
                cities = [c.strip() for c in job.city.split(",") if c.strip()]
                if len(cities) == 1:
                    q = q.filter(Event.city == cities[0])
                elif cities:
                    q = q.filter(Event.city.in_(cities))

            if job.platforms:
                q = q.filter(Event.source_platform.in_(list(job.platforms)))

            return q.order_by(Event.id.asc()).limit(limit).all()
        except SQLAlchemyError as e:
            self._fail("events_for_job", e)


def _unique(categories: Sequence[CategoryRow]) -> List[CategoryRow]:
    seen = set()
    result: List[CategoryRow] = []
    for category, value, confidence in categories:
        key = (category, value)
        if key in seen:
            continue
        seen.add(key)
        result.append((category, value, confidence))
    return result
