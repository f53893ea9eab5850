"""Event processing pipeline"""

from .classification import assign_event_type
from .dedup import Deduplicator, DuplicateMatch, DuplicateTier, normalize_source_id, normalize_url
from .processor import EventProcessor, ProcessResult, RejectReason, RejectTally
from .scoring import calculate_completeness, calculate_quality_score
from .tagging import extract_tech_stack

__all__ = [
    "assign_event_type",
    "Deduplicator",
    "DuplicateMatch",
    "DuplicateTier",
    "normalize_source_id",
    "normalize_url",
    "EventProcessor",
    "ProcessResult",
    "RejectReason",
    "RejectTally",
    "calculate_completeness",
    "calculate_quality_score",
    "extract_tech_stack",
]
