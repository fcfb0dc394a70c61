"""Activity logger: filters, enriches and stores audit entries.

handle() runs each entry through:
1. the global enable_logging switch
2. the logging_errors_only switch
3. source resolution (explicit context["source"], else the calling
   crmsync module, else "unknown")
4. change-set filtering: context["meta_array"] is reduced to active
   contact fields, and an entry whose change set ends up empty is dropped
5. a LogHandled event, then persistence
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from crmsync.activity.levels import LogLevel, get_level_severity
from crmsync.activity.storage import LogStorage
from crmsync.events import EventBus, LogHandled
from crmsync.settings import SettingsStore

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown"
META_KEY = "meta_array"


def infer_source() -> str:
    """Name the crmsync modules on the call stack, outermost first.

    Best effort only: callers outside crmsync yield "unknown".
    """
    found: List[str] = []
    for frame_info in inspect.stack(context=0):
        module = frame_info.frame.f_globals.get("__name__", "")
        if not module.startswith("crmsync.") or module.startswith("crmsync.activity"):
            continue
        name = module.rsplit(".", 1)[-1]
        if name not in found:
            found.append(name)
    if not found:
        return UNKNOWN_SOURCE
    return ", ".join(reversed(found))


class ActivityLogger:
    """Writes leveled activity entries to LogStorage."""

    def __init__(
        self,
        settings: SettingsStore,
        storage: LogStorage,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the logger.

        Args:
            settings: Settings store (logging switches, contact fields)
            storage: Log table
            bus: Event bus receiving LogHandled events
            clock: Timestamp source
        """
        self.settings = settings
        self.storage = storage
        self.bus = bus
        self.clock = clock

    def handle(
        self,
        level: Union[str, LogLevel],
        user: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """Handle a log entry.

        Args:
            level: info | notice | warning | error
            user: Local user ID the entry is about (0 for none)
            message: Log message
            context: Extra information; "source" overrides the inferred
                source, "meta_array" holds a field change set

        Returns:
            log_id of the stored row, or None if the entry was dropped
        """
        level_name = level.value if isinstance(level, LogLevel) else str(level).lower()

        if not self.settings.enable_logging:
            return None

        if self.settings.logging_errors_only and level_name != LogLevel.ERROR.value:
            return None

        timestamp = self.clock()
        context = dict(context or {})

        source = context.get("source") or infer_source()

        # Filter out fields that aren't enabled for sync
        if context.get(META_KEY):
            contact_fields = self.settings.contact_fields
            context[META_KEY] = {
                key: value
                for key, value in context[META_KEY].items()
                if key in contact_fields and contact_fields[key].active
            }

        # Nothing worth logging for a push of only disabled fields
        if META_KEY in context and not context[META_KEY]:
            return None

        if self.bus is not None:
            self.bus.publish(
                LogHandled(
                    timestamp=timestamp,
                    level=level_name,
                    user=user,
                    message=message,
                    source=source,
                    context=context or None,
                )
            )

        return self.storage.insert(
            timestamp=timestamp,
            level=get_level_severity(level_name),
            user_id=user,
            source=source,
            message=message,
            context=context,
        )

    def info(self, user: int, message: str, **context: Any) -> Optional[int]:
        return self.handle(LogLevel.INFO, user, message, context)

    def notice(self, user: int, message: str, **context: Any) -> Optional[int]:
        return self.handle(LogLevel.NOTICE, user, message, context)

    def warning(self, user: int, message: str, **context: Any) -> Optional[int]:
        return self.handle(LogLevel.WARNING, user, message, context)

    def error(self, user: int, message: str, **context: Any) -> Optional[int]:
        return self.handle(LogLevel.ERROR, user, message, context)

    def flush(self) -> int:
        """Empty the log table."""
        deleted = self.storage.flush()
        logger.info(f"Flushed {deleted} activity log entries")
        return deleted

    def delete(self, log_ids: Iterable[int]) -> int:
        """Delete entries by ID."""
        return self.storage.delete(log_ids)
