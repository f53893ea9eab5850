"""Event processing pipeline

raw record -> draft -> backfill -> tags/type/scores -> completeness gate
-> schema -> topic filter -> date filters -> dedup -> persist

Every stage can reject. Rejects are ordinary results carrying a reason,
and no exception escapes ``process``: one bad record never stops a batch.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from src.core.config import settings
from src.core.database import get_db_context
from src.core.exceptions import DatabaseConnectionException, DatabaseException
from src.core.logging import logger
from src.crawlers.details import DetailFetcher
from src.crawlers.records import UNKNOWN_ORGANIZER, EventDraft, RawRecord, to_draft
from src.repositories.impl.event_repository import CategoryRow, EventRepository

from .classification import assign_event_type
from .dedup import Deduplicator, DuplicateTier, normalize_source_id
from .filters import is_tech_event
from .schema import validate_draft, validation_errors
from .scoring import calculate_completeness, calculate_quality_score, missing_fields
from .tagging import extract_tech_stack

STUB_DESCRIPTION_MARKER = "Technology event:"


class RejectReason(str, Enum):
    COMPLETENESS = "completeness"
    VALIDATION = "validation"
    NON_TECH = "non-tech"
    OLD_DATE = "old-date"
    PAST_EVENT = "past-event"
    DUPLICATE = "duplicate"
    DB_ERROR = "db-error"
    ERROR = "error"


@dataclass
class ProcessResult:
    saved: bool
    reason: Optional[str] = None
    event_id: Optional[int] = None
    duplicate_tier: Optional[DuplicateTier] = None
    enriched: bool = False

    @classmethod
    def stored(cls, event_id: int) -> "ProcessResult":
        return cls(saved=True, event_id=event_id)

    @classmethod
    def rejected(cls, reason: RejectReason, **kwargs: Any) -> "ProcessResult":
        return cls(saved=False, reason=reason.value, **kwargs)


@dataclass
class RejectTally:
    """Saved / rejected counts for one batch"""

    saved: int = 0
    rejected: Counter = field(default_factory=Counter)
    url_prefix_matches: int = 0
    enriched: int = 0
    saved_ids: List[int] = field(default_factory=list)

    def add(self, result: ProcessResult) -> None:
        if result.saved:
            self.saved += 1
            if result.event_id is not None:
                self.saved_ids.append(result.event_id)
            return
        self.rejected[result.reason or RejectReason.ERROR.value] += 1
        if result.duplicate_tier == DuplicateTier.URL_PREFIX:
            self.url_prefix_matches += 1
        if result.enriched:
            self.enriched += 1

    def merge(self, other: "RejectTally") -> None:
        self.saved += other.saved
        self.rejected.update(other.rejected)
        self.url_prefix_matches += other.url_prefix_matches
        self.enriched += other.enriched
        self.saved_ids.extend(other.saved_ids)

    @property
    def total_rejected(self) -> int:
        return sum(self.rejected.values())

    def summary(self) -> str:
        reasons = ", ".join(f"{reason}={count}" for reason, count in sorted(self.rejected.items())) or "none"
        return (
            f"saved={self.saved} rejected={self.total_rejected} ({reasons}) "
            f"url_prefix_matches={self.url_prefix_matches} enriched={self.enriched}"
        )


def build_categories(tech_stack: Iterable[str], event_type: str) -> List[CategoryRow]:
    categories: List[CategoryRow] = [("technology", tag.lower(), 1.0) for tag in tech_stack]
    categories.append(("event_type", event_type, 1.0))
    return categories


class EventProcessor:
    """Turns raw crawl records into stored events

    Args:
        session_factory: sessionmaker used for every store call
        detail_fetcher: optional backfill source for stub descriptions
        clock: returns naive-UTC "now" (injectable for tests)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        detail_fetcher: Optional[DetailFetcher] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.detail_fetcher = detail_fetcher
        self.clock = clock

    async def process(self, record: RawRecord, platform: str, city: str) -> ProcessResult:
        try:
            return await self._process(record, platform, city)
        except Exception as e:
            logger.error(f"[PIPELINE] Unexpected error on {platform} record: {type(e).__name__}: {e}")
            return ProcessResult.rejected(RejectReason.ERROR)

    async def process_batch(self, records: Iterable[RawRecord], platform: str, city: str) -> RejectTally:
        tally = RejectTally()
        for record in records:
            tally.add(await self.process(record, platform, city))
        logger.info(f"[PIPELINE] {platform}/{city}: {tally.summary()}")
        return tally

    async def _process(self, record: RawRecord, platform: str, city: str) -> ProcessResult:
        draft = to_draft(record, city)
        draft = draft.with_updates(source_id=normalize_source_id(draft.source_id, platform))

        draft = await self._backfill(draft)

        tech_stack = extract_tech_stack(draft.title, draft.description)
        draft = draft.with_updates(
            tech_stack=tech_stack,
            event_type=assign_event_type(draft.title, draft.description),
        )
        now = self.clock()
        draft = draft.with_updates(
            quality_score=calculate_quality_score(draft, now),
            completeness_score=calculate_completeness(draft),
        )

        if draft.completeness_score < settings.completeness_threshold:
            logger.info(
                f"[PIPELINE] Reject {platform} (completeness {draft.completeness_score:.0f}): "
                f"'{draft.title}' missing {', '.join(missing_fields(draft))}"
            )
            return ProcessResult.rejected(RejectReason.COMPLETENESS)

        if validate_draft(draft) is None:
            logger.info(f"[PIPELINE] Reject {platform} (validation): '{draft.title}' {validation_errors(draft)}")
            return ProcessResult.rejected(RejectReason.VALIDATION)

        if settings.tech_filter_enabled and not is_tech_event(draft.title, draft.description, draft.tech_stack):
            logger.info(f"[PIPELINE] Reject {platform} (non-tech): '{draft.title}'")
            return ProcessResult.rejected(RejectReason.NON_TECH)

        if draft.event_date < settings.event_min_date:
            logger.info(f"[PIPELINE] Reject {platform} (old-date {draft.event_date:%Y-%m-%d}): '{draft.title}'")
            return ProcessResult.rejected(RejectReason.OLD_DATE)

        stale_before = now - timedelta(days=settings.past_event_grace_days)
        if settings.past_event_filter_enabled and draft.event_date < stale_before:
            logger.info(f"[PIPELINE] Reject {platform} (past-event {draft.event_date:%Y-%m-%d}): '{draft.title}'")
            return ProcessResult.rejected(RejectReason.PAST_EVENT)

        return self._persist(draft, platform)

    async def _backfill(self, draft: EventDraft) -> EventDraft:
        description = draft.description or ""
        needs_details = len(description) < settings.backfill_min_description or STUB_DESCRIPTION_MARKER in description
        if self.detail_fetcher is None or not draft.external_url or not needs_details:
            return draft

        details = await self.detail_fetcher.fetch(draft.external_url)
        if details is None:
            return draft

        changes: Dict[str, Any] = {}
        if details.description and len(details.description) >= settings.backfill_min_description:
            changes["description"] = details.description
        if details.organizer_name and details.organizer_name != UNKNOWN_ORGANIZER:
            changes["organizer_name"] = details.organizer_name
        if changes:
            logger.info(f"[PIPELINE] Backfilled {sorted(changes)} for '{draft.title}'")
            return draft.with_updates(**changes)
        return draft

    def _persist(self, draft: EventDraft, platform: str) -> ProcessResult:
        fields = event_fields(draft)
        categories = build_categories(draft.tech_stack, draft.event_type)
        try:
            with get_db_context(self.session_factory) as db:
                repository = EventRepository(db)
                match = Deduplicator(repository).find_duplicate(draft)
                if match is not None:
                    enriched = False
                    if (
                        match.tier == DuplicateTier.SOURCE_ID
                        and draft.completeness_score > (match.event.completeness_score or 0)
                    ):
                        repository.replace_enrichment(match.event, fields, categories)
                        enriched = True
                    logger.info(
                        f"[DEDUP] Duplicate {platform} event '{draft.title}' "
                        f"(tier={match.tier.value}, existing={match.event_id}, enriched={enriched})"
                    )
                    return ProcessResult.rejected(
                        RejectReason.DUPLICATE,
                        event_id=match.event_id,
                        duplicate_tier=match.tier,
                        enriched=enriched,
                    )

                event = repository.create_with_categories(fields, categories)
                logger.info(
                    f"[PIPELINE] Saved {platform} event '{draft.title}' "
                    f"(id={event.id}, completeness={draft.completeness_score:.0f})"
                )
                return ProcessResult.stored(event.id)
        except (DatabaseConnectionException, OperationalError, InterfaceError) as e:
            logger.error(f"[PIPELINE] Store unreachable, '{draft.title}' not saved: {e}")
            return ProcessResult.rejected(RejectReason.DB_ERROR)
        except DatabaseException as e:
            if isinstance(e.__cause__, IntegrityError):
                # concurrent crawl inserted the same source identity first
                logger.info(f"[DEDUP] Lost insert race for '{draft.title}' ({draft.source_id})")
                return ProcessResult.rejected(RejectReason.DUPLICATE, duplicate_tier=DuplicateTier.SOURCE_ID)
            logger.error(f"[PIPELINE] Store error for '{draft.title}': {e}")
            return ProcessResult.rejected(RejectReason.ERROR)


def event_fields(draft: EventDraft) -> Dict[str, Any]:
    """Column values for a new or re-enriched Event row"""
    fields = asdict(draft)
    fields["status"] = "active"
    fields["scraped_at"] = datetime.utcnow()
    fields["last_updated"] = datetime.utcnow()
    return fields
