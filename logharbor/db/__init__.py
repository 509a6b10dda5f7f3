from logharbor.db.schemas import IndexedDocument, LogEvent, LogLevel, welcome_event
from logharbor.db.search import SearchIndex

__all__ = [
    "IndexedDocument",
    "LogEvent",
    "LogLevel",
    "SearchIndex",
    "welcome_event",
]
