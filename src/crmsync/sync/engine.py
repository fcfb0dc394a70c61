"""Sync engine: drives one CRM connection and moves data between local
users and CRM contacts.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> SYNCING -> CONNECTED
    CONNECTING -> ERROR when connect fails, SYNCING -> ERROR on an auth failure
    ERROR -> DISCONNECTED via disconnect(), or straight back to CONNECTING

sync() refreshes the available-tags and CRM-fields caches. Both are fetched
before either is written, so a failure in the second step leaves the first
cache untouched.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from crmsync.activity.handler import ActivityLogger
from crmsync.activity.levels import LogLevel
from crmsync.connectors.base import AuthError, ConnectorError, ConnectResult
from crmsync.crm.adapters.base import BaseCRMAdapter
from crmsync.crm.models import Contact, ContactId, Credentials
from crmsync.events import EventBus, SyncCompleted
from crmsync.settings import SettingsStore
from crmsync.sync.users import UserNotFoundError, UserRecord, UserStore

logger = logging.getLogger(__name__)

EMAIL_FIELD = "user_email"


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SYNCING = "syncing"
    ERROR = "error"


class SyncStateError(RuntimeError):
    """Operation not allowed in the engine's current state."""

    def __init__(self, operation: str, state: SyncState):
        super().__init__(f"Cannot {operation} while {state.value}")
        self.operation = operation
        self.state = state


class TagChanges(BaseModel):
    """Result of reconciling a contact's tags with a desired set."""

    applied: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class SyncEngine:
    """Orchestrates a single CRM adapter.

    Args:
        adapter: Active CRM adapter
        settings: Settings store shared with the adapter
        users: Local user records
        bus: Event bus for SyncCompleted
        activity_logger: Optional activity log for user-facing audit entries
    """

    def __init__(
        self,
        adapter: BaseCRMAdapter,
        settings: SettingsStore,
        users: Optional[UserStore] = None,
        bus: Optional[EventBus] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.adapter = adapter
        self.settings = settings
        self.users = users
        self.bus = bus or EventBus()
        self.activity_logger = activity_logger
        self._state = SyncState.DISCONNECTED
        self.last_error: Optional[ConnectorError] = None

    @property
    def state(self) -> SyncState:
        return self._state

    def _transition(self, state: SyncState) -> None:
        logger.debug(f"{self.adapter.slug}: {self._state.value} -> {state.value}")
        self._state = state

    def _require_connected(self, operation: str) -> None:
        if self._state != SyncState.CONNECTED:
            raise SyncStateError(operation, self._state)

    def _log(self, level: LogLevel, user_id: int, message: str, **context: Any) -> None:
        if self.activity_logger is None:
            return
        context.setdefault("source", self.adapter.slug)
        self.activity_logger.handle(level, user_id, message, context)

    # =========================================================================
    # Connection
    # =========================================================================

    def connect(
        self, credentials: Optional[Credentials] = None, test: bool = True
    ) -> ConnectResult:
        """Connect the adapter and move to CONNECTED, or to ERROR on failure."""
        if self._state in (SyncState.CONNECTING, SyncState.SYNCING):
            raise SyncStateError("connect", self._state)

        self._transition(SyncState.CONNECTING)
        result = self.adapter.connect(credentials, test=test)

        if result:
            self.last_error = None
            self.settings.set("connection_configured", True)
            self.adapter.apply_default_fields()
            self._transition(SyncState.CONNECTED)
            return result

        self.last_error = result.error
        self._transition(SyncState.ERROR)
        self._log(LogLevel.ERROR, 0, f"Error connecting to {self.adapter.name}: {result.message}")
        return result

    def disconnect(self) -> None:
        """Drop the session and return to DISCONNECTED."""
        self.adapter.params = None
        self._transition(SyncState.DISCONNECTED)

    # =========================================================================
    # Catalog sync
    # =========================================================================

    def sync(self) -> SyncCompleted:
        """Refresh the available-tags and CRM-fields caches.

        Tags are fetched first, then fields. Both caches are committed only
        when both fetches succeed.

        Returns:
            The SyncCompleted event that was published

        Raises:
            SyncStateError: If not CONNECTED
            ConnectorError: If either fetch fails
        """
        self._require_connected("sync")
        self._transition(SyncState.SYNCING)

        try:
            tags = self.adapter.sync_tags()
            fields = self.adapter.sync_fields()
        except AuthError as e:
            self.last_error = e
            self._transition(SyncState.ERROR)
            self._log(LogLevel.ERROR, 0, f"Error syncing with {self.adapter.name}: {e.message}")
            raise
        except Exception:
            self._transition(SyncState.CONNECTED)
            raise

        self.settings.set("available_tags", tags)
        self.settings.set("crm_fields", fields)
        self._transition(SyncState.CONNECTED)

        event = SyncCompleted(crm=self.adapter.slug, tag_count=len(tags), field_count=len(fields))
        self.bus.publish(event)
        logger.info(f"{self.adapter.name}: synced {len(tags)} tags and {len(fields)} fields")
        return event

    # =========================================================================
    # Users and contacts
    # =========================================================================

    def _user(self, user_id: int) -> UserRecord:
        if self.users is None:
            raise UserNotFoundError(user_id)
        user = self.users.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _contact_id_for(self, user: UserRecord) -> Optional[ContactId]:
        """Cached contact ID, else lookup by email (cached on success)."""
        if user.contact_id is not None:
            return user.contact_id
        contact_id = self.adapter.get_contact_id(user.email)
        if contact_id is not None and self.users is not None:
            self.users.set_contact_id(user.user_id, contact_id)
        return contact_id

    def resync_lists(self, user_id: int) -> Optional[List[str]]:
        """Re-pull a user's list/tag membership and store it on the user.

        Runs as a deferred reaction to user changes, so failures are logged
        and None is returned instead of raising.
        """
        if self._state != SyncState.CONNECTED:
            result = self.connect(test=False)
            if not result:
                logger.warning(f"resync_lists({user_id}): connect failed: {result.message}")
                return None

        try:
            user = self._user(user_id)
            contact_id = self._contact_id_for(user)
            if contact_id is None:
                logger.info(f"resync_lists({user_id}): no contact for {user.email}")
                return None
            lists = self.adapter.get_lists(contact_id)
        except (ConnectorError, UserNotFoundError) as e:
            logger.warning(f"resync_lists({user_id}) failed: {e}")
            self._log(LogLevel.ERROR, user_id, f"Error resyncing lists: {e}")
            return None

        self.users.set_lists(user_id, lists)
        self._log(
            LogLevel.INFO,
            user_id,
            f"Resynced lists for contact ID {contact_id}",
            lists=lists,
        )
        return lists

    def push_user(self, user_id: int) -> ContactId:
        """Create or update the CRM contact for a local user."""
        self._require_connected("push_user")
        user = self._user(user_id)

        values = dict(user.meta)
        values.setdefault(EMAIL_FIELD, user.email)

        contact_id = self._contact_id_for(user)
        if contact_id is None:
            contact_id = self.adapter.add_contact(values)
            self.users.set_contact_id(user_id, contact_id)
            self._log(
                LogLevel.INFO,
                user_id,
                f"Added contact ID {contact_id}",
                meta_array=values,
            )
        else:
            self.adapter.update_contact(contact_id, values)
            self._log(
                LogLevel.INFO,
                user_id,
                f"Synced user meta to contact ID {contact_id}",
                meta_array=values,
            )
        return contact_id

    def pull_user(self, user_id: int) -> Optional[Contact]:
        """Load a user's contact fields and tags from the CRM into the user record.

        Returns:
            The pulled contact, or None when the user has no contact
        """
        self._require_connected("pull_user")
        user = self._user(user_id)
        contact_id = self._contact_id_for(user)
        if contact_id is None:
            logger.info(f"pull_user({user_id}): no contact for {user.email}")
            return None

        values = self.adapter.load_contact(contact_id)
        tags = self.adapter.get_tags(contact_id)
        self.users.update_meta(user_id, values)
        self.users.set_tags(user_id, tags)
        self._log(
            LogLevel.INFO,
            user_id,
            f"Loaded user meta from contact ID {contact_id}",
            meta_array=values,
        )
        return Contact(contact_id=contact_id, email=user.email, fields=values, tags=set(tags))

    # =========================================================================
    # Tags
    # =========================================================================

    def set_contact_tags(
        self,
        contact_id: ContactId,
        desired: Iterable[str],
        user_id: Optional[int] = None,
    ) -> TagChanges:
        """Make a contact's tags equal to desired.

        Missing tags are applied, extra tags removed; tags in both sets are
        left alone.
        """
        self._require_connected("set_contact_tags")
        wanted = list(dict.fromkeys(str(tag) for tag in desired))
        current = self.adapter.get_tags(contact_id)

        changes = TagChanges(
            applied=[tag for tag in wanted if tag not in current],
            removed=[tag for tag in current if tag not in wanted],
        )
        if changes.applied:
            self.adapter.apply_tags(changes.applied, contact_id)
        if changes.removed:
            self.adapter.remove_tags(changes.removed, contact_id)

        if user_id is not None and self.users is not None:
            self.users.set_tags(user_id, wanted)
            if changes.applied or changes.removed:
                self._log(
                    LogLevel.INFO,
                    user_id,
                    f"Updated tags for contact ID {contact_id}",
                    tags_applied=changes.applied,
                    tags_removed=changes.removed,
                )
        return changes

    def apply_tags(self, user_id: int, tags: Iterable[str]) -> bool:
        """Apply tags to a user's contact and record them on the user."""
        self._require_connected("apply_tags")
        tags = [str(tag) for tag in tags]
        user = self._user(user_id)
        contact_id = self._contact_id_for(user)
        if contact_id is None:
            self._log(LogLevel.WARNING, user_id, f"No contact found for {user.email}, tags not applied")
            return False

        self.adapter.apply_tags(tags, contact_id)
        self.users.set_tags(user_id, list(dict.fromkeys(user.tags + tags)))
        self._log(LogLevel.INFO, user_id, f"Applied tags to contact ID {contact_id}", tags=tags)
        return True

    def remove_tags(self, user_id: int, tags: Iterable[str]) -> bool:
        """Remove tags from a user's contact and from the user's record."""
        self._require_connected("remove_tags")
        tags = [str(tag) for tag in tags]
        user = self._user(user_id)
        contact_id = self._contact_id_for(user)
        if contact_id is None:
            return False

        self.adapter.remove_tags(tags, contact_id)
        self.users.set_tags(user_id, [tag for tag in user.tags if tag not in tags])
        self._log(LogLevel.INFO, user_id, f"Removed tags from contact ID {contact_id}", tags=tags)
        return True

    # =========================================================================
    # Import
    # =========================================================================

    def import_contacts(self, tag_id: str) -> Dict[ContactId, Dict[str, Any]]:
        """Load every contact carrying a tag.

        Returns:
            contact_id -> local field values, in the CRM's page order
        """
        self._require_connected("import_contacts")
        contact_ids = self.adapter.load_contacts(tag_id)
        imported = {contact_id: self.adapter.load_contact(contact_id) for contact_id in contact_ids}
        self._log(
            LogLevel.NOTICE,
            0,
            f"Imported {len(imported)} contacts with tag {tag_id}",
        )
        return imported
