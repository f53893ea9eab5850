"""Engine layer - streaming search orchestration

- SearchOrchestrator: cache -> store -> live crawl, as a message stream
- StreamBudget: wall-clock deadline and heartbeat pacing
- StreamMessage: wire records of a search stream
- CacheAdapter: fail-open search result cache
"""

from .budget import StreamBudget, StreamBudgetConfig
from .cache_adapter import CacheAdapter, search_cache_key
from .orchestrator import LivePhase, SearchOrchestrator
from .result import PlatformStatus, ResultSource, StreamMessage, StreamMessageType

__all__ = [
    "SearchOrchestrator",
    "LivePhase",
    "StreamBudget",
    "StreamBudgetConfig",
    "CacheAdapter",
    "search_cache_key",
    "StreamMessage",
    "StreamMessageType",
    "PlatformStatus",
    "ResultSource",
]
