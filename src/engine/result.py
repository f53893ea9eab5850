"""Stream messages - the records a search stream emits

Each message goes over the wire as ``data: {"type", "data", "timestamp"}``
followed by a blank line.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class StreamMessageType(str, Enum):
    EVENT = "event"
    PLATFORM_STATUS = "platform_status"
    SEARCH_COMPLETE = "search_complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class ResultSource(str, Enum):
    DATABASE = "database"
    CACHE = "cache"
    LIVE_SCRAPING = "live_scraping"


@dataclass
class PlatformStatus:
    platform: str
    status: str  # pending | running | completed | failed
    events_found: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "platform": self.platform,
            "status": self.status,
            "eventsFound": self.events_found,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class StreamMessage:
    type: StreamMessageType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.type == StreamMessageType.SEARCH_COMPLETE

    @classmethod
    def event(cls, event: Dict[str, Any], source: ResultSource, platform: Optional[str]) -> "StreamMessage":
        return cls(StreamMessageType.EVENT, {"event": event, "source": source.value, "platform": platform})

    @classmethod
    def platform_status(cls, statuses: List[PlatformStatus]) -> "StreamMessage":
        return cls(StreamMessageType.PLATFORM_STATUS, {"platforms": [s.to_dict() for s in statuses]})

    @classmethod
    def search_complete(
        cls,
        total_events: int,
        source: ResultSource,
        *,
        cached: Optional[bool] = None,
        timeout: Optional[bool] = None,
        job_status: Optional[str] = None,
        platforms_scraped: Optional[List[str]] = None,
    ) -> "StreamMessage":
        data: Dict[str, Any] = {"totalEvents": total_events, "source": source.value}
        if cached is not None:
            data["cached"] = cached
        if timeout is not None:
            data["timeout"] = timeout
        if job_status is not None:
            data["jobStatus"] = job_status
        if platforms_scraped is not None:
            data["platformsScraped"] = platforms_scraped
        return cls(StreamMessageType.SEARCH_COMPLETE, data)

    @classmethod
    def error(cls, message: str, error: str) -> "StreamMessage":
        return cls(StreamMessageType.ERROR, {"message": message, "error": error})

    @classmethod
    def heartbeat(cls) -> "StreamMessage":
        return cls(StreamMessageType.HEARTBEAT, {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat() + "Z",
        }

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False, default=str)}\n\n"
