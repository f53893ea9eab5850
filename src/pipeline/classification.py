"""Event type assignment (first matching rule wins)"""

EVENT_TYPES = ("workshop", "conference", "meetup", "hackathon", "networking")
DEFAULT_EVENT_TYPE = "workshop"

_RULES = (
    ("conference", ("conference", "summit")),
    ("workshop", ("workshop", "training")),
    ("meetup", ("meetup", "networking")),
    ("hackathon", ("hackathon", "hack")),
)


def assign_event_type(title: str, description: str) -> str:
    text = f"{title or ''} {description or ''}".lower()
    for event_type, needles in _RULES:
        if any(needle in text for needle in needles):
            return event_type
    return DEFAULT_EVENT_TYPE
