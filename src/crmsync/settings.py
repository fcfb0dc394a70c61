"""Settings store: the configuration object injected into adapters and engines.

Holds the active CRM slug, per-CRM credentials, the available-tags and
CRM-fields caches, the contact field table and the logging flags.

Values are replaced whole on every ``set()`` and readers always receive a
copy, so a reader never observes a cache halfway through replacement.
An optional JSON file mirrors the store on disk.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from crmsync.crm.models import Credentials, FieldDefinition, Tag

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "crm": None,
    "credentials": {},
    "available_tags": {},
    "crm_fields": {},
    "contact_fields": {},
    "enable_logging": True,
    "logging_errors_only": False,
    "connection_configured": False,
}


class SettingsStore:
    """Key/value settings with typed helpers for the keys crmsync uses.

    Supports context manager protocol so file-backed stores flush on exit:
        with SettingsStore.load(path) as settings:
            settings.set("crm", "mautic")
    """

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        path: Optional[Path] = None,
    ):
        """Initialize the store.

        Args:
            values: Initial values (merged over DEFAULTS)
            path: Optional JSON file that every write is persisted to
        """
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = copy.deepcopy(DEFAULTS)
        if values:
            self._values.update(copy.deepcopy(dict(values)))
        self.path = Path(path) if path is not None else None

    @classmethod
    def load(cls, path: Path) -> "SettingsStore":
        """Create a store backed by a JSON file, reading it if it exists."""
        path = Path(path)
        values: Dict[str, Any] = {}
        if path.exists():
            with open(path, encoding="utf-8") as f:
                values = json.load(f)
        return cls(values=values, path=path)

    def __enter__(self) -> "SettingsStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.save()

    # =========================================================================
    # Generic access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the value stored under key."""
        with self._lock:
            if key not in self._values or self._values[key] is None:
                return default
            return copy.deepcopy(self._values[key])

    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under key."""
        new_value = copy.deepcopy(value)
        with self._lock:
            self._values[key] = new_value
            self._persist()

    def get_all(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._values)

    def set_all(self, values: Mapping[str, Any]) -> None:
        new_values = copy.deepcopy(DEFAULTS)
        new_values.update(copy.deepcopy(dict(values)))
        with self._lock:
            self._values = new_values
            self._persist()

    def save(self) -> None:
        """Write the store to its JSON file (no-op for in-memory stores)."""
        with self._lock:
            self._persist()

    def _persist(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, sort_keys=True, default=str)
        tmp_path.replace(self.path)

    # =========================================================================
    # Typed helpers
    # =========================================================================

    @property
    def crm(self) -> Optional[str]:
        """Slug of the active CRM."""
        return self.get("crm")

    def credentials(self, slug: str) -> Credentials:
        """Credential bundle for one CRM."""
        all_credentials = self.get("credentials", {})
        return Credentials(**all_credentials.get(slug, {}))

    def set_credentials(self, slug: str, credentials: Credentials) -> None:
        with self._lock:
            all_credentials = self.get("credentials", {})
            all_credentials[slug] = credentials.model_dump(exclude_none=True)
            self.set("credentials", all_credentials)

    def update_credentials(self, slug: str, **values: Any) -> None:
        """Merge values into one CRM's credential bundle."""
        with self._lock:
            current = self.credentials(slug).model_dump(exclude_none=True)
            current.update(values)
            self.set_credentials(slug, Credentials(**current))

    @property
    def available_tags(self) -> Dict[str, str]:
        return self.get("available_tags", {})

    def tags(self) -> List[Tag]:
        """The available-tags cache as Tag models, in cache order."""
        return [Tag(tag_id=tag_id, label=label) for tag_id, label in self.available_tags.items()]

    @property
    def crm_fields(self) -> Dict[str, str]:
        return self.get("crm_fields", {})

    @property
    def contact_fields(self) -> Dict[str, FieldDefinition]:
        """Field definitions keyed by local field slug."""
        raw = self.get("contact_fields", {})
        return {
            key: FieldDefinition(local_key=key, **{k: v for k, v in data.items() if k != "local_key"})
            for key, data in raw.items()
        }

    def set_contact_fields(self, fields: Mapping[str, FieldDefinition]) -> None:
        self.set(
            "contact_fields",
            {key: definition.model_dump() for key, definition in fields.items()},
        )

    @property
    def enable_logging(self) -> bool:
        return bool(self.get("enable_logging", True))

    @property
    def logging_errors_only(self) -> bool:
        return bool(self.get("logging_errors_only", False))

    def merge_available_tags(self, tags: Mapping[str, str]) -> Dict[str, str]:
        """Add tags to the available-tags cache without removing any.

        Args:
            tags: tag_id -> label of tags seen outside a full tag sync

        Returns:
            The tags that were not previously known
        """
        with self._lock:
            current = self.available_tags
            new_tags = {tag_id: label for tag_id, label in tags.items() if tag_id not in current}
            if new_tags:
                merged = dict(current)
                merged.update(new_tags)
                self.set("available_tags", merged)
                logger.debug(f"Merged {len(new_tags)} unseen tags into the available tags cache")
            return new_tags
