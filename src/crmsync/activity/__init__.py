"""Activity log: leveled audit entries in a capped SQLite table."""

from crmsync.activity.handler import ActivityLogger, infer_source
from crmsync.activity.levels import (
    LEVEL_TO_SEVERITY,
    LogLevel,
    get_level_severity,
    get_severity_level,
    is_valid_level,
)
from crmsync.activity.storage import DEFAULT_CAP, LogEntry, LogStorage

__all__ = [
    "ActivityLogger",
    "infer_source",
    "LogLevel",
    "LEVEL_TO_SEVERITY",
    "get_level_severity",
    "get_severity_level",
    "is_valid_level",
    "LogStorage",
    "LogEntry",
    "DEFAULT_CAP",
]
