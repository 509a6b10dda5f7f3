"""Log event, indexed document and health API schemas."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def rfc3339_now() -> str:
    """Current UTC time as an RFC3339 string (second precision)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    DEBUG = "DEBUG"


class LogEvent(BaseModel):
    """
    One structured log line as produced by an agent.

    Wire format is snake_case JSON; optional fields are left out when unset.
    Instances are frozen once created.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    level: LogLevel
    message: str
    timestamp: str
    service: str
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    ip: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")


class IndexedDocument(BaseModel):
    """A LogEvent wrapped with the time it was written to the search index."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    indexed_at: str = Field(default_factory=rfc3339_now, alias="@timestamp")
    log_entry: LogEvent

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def welcome_event() -> LogEvent:
    """First message every viewer receives after connecting."""
    return LogEvent(
        level=LogLevel.INFO,
        message="Connected to LogHarbor WebSocket",
        timestamp=rfc3339_now(),
        service="log-processor",
    )


class HealthOut(BaseModel):
    status: str = "healthy"
    timestamp: str
    service: str = "log-processor"
    version: str = "1.0.0"
    clients: int = 0


class StatsOut(BaseModel):
    """Processor counters (in-memory)."""
    status: str = "unknown"
    received: int = 0
    indexed: int = 0
    index_errors: int = 0
    index_dropped: int = 0
    malformed: int = 0
    dropped: int = 0
    evicted: int = 0
    errors: int = 0
    queue_depth_hwm: int = 0
    clients: int = 0
