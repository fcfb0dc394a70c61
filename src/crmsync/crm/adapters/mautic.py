"""Mautic adapter.

Basic-auth access to the Mautic REST API. Mautic tags are free-form
labels, so a tag's ID is its label and applying an unknown tag creates it.
Errors arrive as ``{"errors": [{"code": ..., "message": ...}]}``, sometimes
with a 200 status, so every response body is checked.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from crmsync.connectors.base import (
    MAUTIC_POLICY,
    AuthError,
    BasicAuth,
    NotFoundError,
    VendorError,
)
from crmsync.connectors.http_client import HTTPClient, HTTPResponse
from crmsync.crm.adapters.base import BaseCRMAdapter, _unique
from crmsync.crm.models import ContactId, Credentials

logger = logging.getLogger(__name__)

HINT_404 = (
    "404 error. This sometimes happens when you've just enabled the API "
    "and Mautic's cache needs to be rebuilt."
)
HINT_403 = (
    "403 error. You need to enable the API from within Mautic's "
    "configuration settings."
)

WEBHOOK_EVENT = "mautic.lead_post_save_update"


def _first_error(body: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(body, dict) or not body.get("errors"):
        return None
    errors = body["errors"]
    first = errors[0] if isinstance(errors, list) else errors
    if isinstance(first, dict):
        return first
    return {"message": str(first)}


def parse_mautic_error(body: Any) -> Optional[str]:
    """Extract the first error message from a Mautic payload."""
    error = _first_error(body)
    return error.get("message") if error else None


def _records(collection: Any) -> List[Dict[str, Any]]:
    """Mautic lists come back as dicts keyed by ID or as plain lists."""
    if isinstance(collection, dict):
        return list(collection.values())
    return list(collection or [])


class MauticAdapter(BaseCRMAdapter):
    """Mautic REST API adapter."""

    slug = "mautic"
    name = "Mautic"
    page_size = 50
    default_policy = MAUTIC_POLICY

    def _build_client(self, credentials: Credentials) -> HTTPClient:
        return HTTPClient(
            auth=BasicAuth(
                username=credentials.username or "",
                password=credentials.password or "",
            ),
            policy=self.policy,
            base_url=f"{(credentials.url or '').rstrip('/')}/api",
            connector_name=self.slug,
            error_parser=parse_mautic_error,
            transport=self.transport,
        )

    def _check(self, response: HTTPResponse) -> Dict[str, Any]:
        """Parsed body, raising VendorError for an errors payload."""
        body = response.try_json() or {}
        error = _first_error(body)
        if error and error.get("message"):
            raise VendorError(error["message"], self.slug, status_code=error.get("code"))
        return body

    def _authenticate(self, credentials: Credentials, test: bool = True) -> Dict[str, Any]:
        if not credentials.url:
            raise AuthError("Mautic URL is required", self.slug)
        if not test:
            return {}

        client = self._build_client(credentials)
        try:
            self._check(client.get("contacts", params={"limit": 1, "minimal": "true"}))
        except (AuthError, NotFoundError, VendorError) as e:
            if e.status_code == 404:
                raise NotFoundError(HINT_404, self.slug)
            if e.status_code == 403:
                raise AuthError(HINT_403, self.slug, status_code=403)
            raise
        return {}

    def contact_id_from_webhook(self, payload: Mapping[str, Any]) -> Optional[ContactId]:
        """Contact ID from a webhook body.

        Mautic posts ``{"mautic.lead_post_save_update": [{"lead": {"id": ...}}]}``;
        an explicit ``contact_id`` wins.
        """
        if payload.get("contact_id") is not None:
            return payload["contact_id"]
        events = payload.get(WEBHOOK_EVENT) or []
        if not isinstance(events, list) or not events or not isinstance(events[0], dict):
            return None
        lead = events[0].get("lead")
        return lead.get("id") if isinstance(lead, dict) else None

    # =========================================================================
    # Tags and fields
    # =========================================================================

    def _fetch_tags(self) -> Dict[str, str]:
        def fetch_page(offset: int, limit: int) -> List[Dict[str, Any]]:
            body = self._check(self.client.get("tags", params={"start": offset, "limit": limit}))
            return _records(body.get("tags"))

        return {tag["tag"]: tag["tag"] for tag in self.paginate(fetch_page)}

    def _fetch_fields(self) -> Dict[str, str]:
        def fetch_page(offset: int, limit: int) -> List[Dict[str, Any]]:
            body = self._check(
                self.client.get("fields/contact", params={"start": offset, "limit": limit})
            )
            return _records(body.get("fields"))

        return {
            field["alias"]: field["label"]
            for field in self.paginate(fetch_page)
            if field.get("alias")
        }

    def _resolve_tag_labels(self, tag_ids: List[str]) -> Dict[str, str]:
        return {tag_id: tag_id for tag_id in tag_ids}

    def _tag_associations(self, contact_id: ContactId) -> Dict[str, Any]:
        body = self._check(self.client.get(f"contacts/{contact_id}"))
        tags = (body.get("contact") or {}).get("tags") or []
        return {tag["tag"]: tag.get("id") for tag in tags}

    def _edit_tags(self, contact_id: ContactId, tags: List[str]) -> None:
        self._check(self.client.patch(f"contacts/{contact_id}/edit", json={"tags": tags}))

    def apply_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        wanted = _unique(str(tag) for tag in tags)
        if not wanted:
            return True
        applied = self._tag_associations(contact_id)
        missing = [tag for tag in wanted if tag not in applied]
        if missing:
            self._edit_tags(contact_id, missing)
        return True

    def remove_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        wanted = _unique(str(tag) for tag in tags)
        if not wanted:
            return True
        applied = self._tag_associations(contact_id)
        present = [tag for tag in wanted if tag in applied]
        if present:
            # A leading minus removes the tag
            self._edit_tags(contact_id, [f"-{tag}" for tag in present])
        return True

    # =========================================================================
    # Contacts
    # =========================================================================

    def _find_contact_id(self, email: str) -> Optional[ContactId]:
        body = self._check(
            self.client.get("contacts", params={"search": f"email:{email}", "minimal": "true"})
        )
        contacts = _records(body.get("contacts"))
        if not contacts:
            return None
        return contacts[0]["id"]

    def _create_contact(self, payload: Dict[str, Any]) -> ContactId:
        body = self._check(self.client.post("contacts/new", json=payload))
        return body["contact"]["id"]

    def _update_contact(self, contact_id: ContactId, payload: Dict[str, Any]) -> None:
        self._check(self.client.patch(f"contacts/{contact_id}/edit", json=payload))

    def _fetch_contact_record(self, contact_id: ContactId) -> Dict[str, Any]:
        body = self._check(self.client.get(f"contacts/{contact_id}"))
        return ((body.get("contact") or {}).get("fields") or {}).get("all") or {}

    def _fetch_tagged_page(self, tag_id: str, offset: int, limit: int) -> List[ContactId]:
        body = self._check(
            self.client.get(
                "contacts",
                params={
                    "search": f'tag:"{tag_id}"',
                    "start": offset,
                    "limit": limit,
                    "minimal": "true",
                },
            )
        )
        return [contact["id"] for contact in _records(body.get("contacts"))]
