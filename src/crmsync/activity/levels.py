"""Activity log levels and their integer severities (RFC 5424 subset)."""

from enum import Enum
from typing import Dict, Optional, Union


class LogLevel(str, Enum):
    """Activity log level.

    - error: Error conditions
    - warning: Warning conditions
    - notice: Normal but significant condition
    - info: Informational messages
    """

    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"


LEVEL_TO_SEVERITY: Dict[str, int] = {
    LogLevel.ERROR.value: 500,
    LogLevel.WARNING.value: 400,
    LogLevel.NOTICE.value: 300,
    LogLevel.INFO.value: 200,
}

SEVERITY_TO_LEVEL: Dict[int, str] = {v: k for k, v in LEVEL_TO_SEVERITY.items()}


def _level_name(level: Union[str, LogLevel]) -> str:
    if isinstance(level, LogLevel):
        return level.value
    return str(level).lower()


def is_valid_level(level: Union[str, LogLevel]) -> bool:
    return _level_name(level) in LEVEL_TO_SEVERITY


def get_level_severity(level: Union[str, LogLevel]) -> int:
    """Severity for a level name, or 0 if not recognized."""
    return LEVEL_TO_SEVERITY.get(_level_name(level), 0)


def get_severity_level(severity: int) -> Optional[str]:
    """Level name for a severity, or None if not recognized."""
    return SEVERITY_TO_LEVEL.get(severity)
