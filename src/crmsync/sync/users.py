"""Local user records the sync engine reads from and writes back to.

The host application owns its users; crmsync only needs a narrow view of
them: the email used for contact lookup, the field values (meta) pushed
to and pulled from the CRM, and the CRM-side state cached per user
(contact ID, tags, lists).
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from crmsync.crm.models import ContactId


class UserRecord(BaseModel):
    """A local user as seen by the sync engine."""

    user_id: int
    email: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    contact_id: Optional[ContactId] = None
    tags: List[str] = Field(default_factory=list)
    lists: List[str] = Field(default_factory=list)


@runtime_checkable
class UserStore(Protocol):
    """Storage for local user records."""

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...

    def set_contact_id(self, user_id: int, contact_id: Optional[ContactId]) -> None:
        ...

    def update_meta(self, user_id: int, values: Mapping[str, Any]) -> None:
        ...

    def set_tags(self, user_id: int, tags: List[str]) -> None:
        ...

    def set_lists(self, user_id: int, lists: List[str]) -> None:
        ...


class UserNotFoundError(KeyError):
    """Raised when a local user ID is unknown."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"Unknown user: {user_id}")


class InMemoryUserStore:
    """Dict-backed UserStore for embedding applications without their own user table."""

    def __init__(self, users: Optional[List[UserRecord]] = None):
        self._lock = threading.Lock()
        self._users: Dict[int, UserRecord] = {}
        for user in users or []:
            self._users[user.user_id] = user

    def add_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            self._users[user.user_id] = user
        return user

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        wanted = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == wanted:
                    return user.model_copy(deep=True)
        return None

    def list_users(self) -> List[UserRecord]:
        with self._lock:
            return [user.model_copy(deep=True) for user in self._users.values()]

    def _replace(self, user_id: int, **changes: Any) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            self._users[user_id] = user.model_copy(update=changes, deep=True)

    def set_contact_id(self, user_id: int, contact_id: Optional[ContactId]) -> None:
        self._replace(user_id, contact_id=contact_id)

    def update_meta(self, user_id: int, values: Mapping[str, Any]) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            meta = dict(user.meta)
            meta.update(values)
            self._users[user_id] = user.model_copy(update={"meta": meta}, deep=True)

    def set_tags(self, user_id: int, tags: List[str]) -> None:
        self._replace(user_id, tags=list(tags))

    def set_lists(self, user_id: int, lists: List[str]) -> None:
        self._replace(user_id, lists=list(lists))
