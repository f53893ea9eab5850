"""Quality (ranking) and completeness (persistence gate) scores

Both are additive heuristics capped at 100. Quality orders search
results; completeness decides whether a draft is worth storing.
"""

from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from src.crawlers.records import EVENTBRITE_NO_ORGANIZER, UNKNOWN_ORGANIZER, EventDraft

PLACEHOLDER_ORGANIZERS = (UNKNOWN_ORGANIZER, EVENTBRITE_NO_ORGANIZER)


def calculate_quality_score(draft: EventDraft, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    score = 0
    if draft.title and len(draft.title) > 10:
        score += 20
    if draft.description and len(draft.description) > 50:
        score += 20
    if draft.event_date and draft.event_date > now:
        score += 20
    if draft.city and draft.venue_name:
        score += 15
    if draft.organizer_name and draft.organizer_name != UNKNOWN_ORGANIZER:
        score += 15
    if draft.tech_stack:
        score += 10
    return min(score, 100)


def calculate_completeness(draft: EventDraft) -> int:
    score = 0
    if draft.title and len(draft.title) >= 3:
        score += 10

    description = draft.description or ""
    if len(description) >= 100:
        score += 20
    elif len(description) >= 50:
        score += 10

    if draft.event_date:
        score += 10
    if draft.city:
        score += 10
    if draft.tech_stack:
        score += 15
    if draft.organizer_name and draft.organizer_name not in PLACEHOLDER_ORGANIZERS:
        score += 10
    if is_valid_url(draft.external_url):
        score += 10
    if draft.venue_name and draft.venue_name != draft.city:
        score += 5
    return min(score, 100)


def is_valid_url(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def missing_fields(draft: EventDraft) -> list:
    """Names of the completeness criteria a draft misses (for reject logs)"""
    missing = []
    if not draft.title or len(draft.title) < 3:
        missing.append("title")
    if len(draft.description or "") < 100:
        missing.append("description")
    if not draft.event_date:
        missing.append("date")
    if not draft.tech_stack:
        missing.append("tags")
    if not draft.organizer_name or draft.organizer_name in PLACEHOLDER_ORGANIZERS:
        missing.append("organizer")
    if not is_valid_url(draft.external_url):
        missing.append("url")
    return missing
