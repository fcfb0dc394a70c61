"""ActiveCampaign adapter (API v3).

Uses an ``Api-Token`` header. Tags are applied through contactTag
association records; list memberships come from contactLists.

Custom fields are addressed as ``field[<id>]`` so they can live in the
same crm_field namespace as the standard contact attributes.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from crmsync.connectors.base import (
    ACTIVECAMPAIGN_POLICY,
    ApiKeyAuth,
    AuthError,
)
from crmsync.connectors.http_client import HTTPClient
from crmsync.crm.adapters.base import BaseCRMAdapter
from crmsync.crm.models import ContactId, Credentials

logger = logging.getLogger(__name__)

STANDARD_FIELDS: Dict[str, str] = {
    "email": "Email",
    "firstName": "First Name",
    "lastName": "Last Name",
    "phone": "Phone",
}

# Local field slugs matched to standard contact attributes after connecting
DEFAULT_FIELD_MAPPING: Dict[str, str] = {
    "user_email": "email",
    "first_name": "firstName",
    "last_name": "lastName",
    "phone_number": "phone",
}

_CUSTOM_FIELD = re.compile(r"^field\[(\d+)\]$")

# contactList status for an active subscription
SUBSCRIBED = "1"


def parse_activecampaign_error(body: Any) -> Optional[str]:
    """Extract the message from an ActiveCampaign error payload."""
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if errors:
        return errors[0].get("title") or errors[0].get("detail")
    return body.get("message")


def build_contact_body(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Split a flat crm_field payload into standard attributes and fieldValues."""
    contact: Dict[str, Any] = {}
    field_values = []
    for crm_field, value in payload.items():
        match = _CUSTOM_FIELD.match(crm_field)
        if match:
            field_values.append({"field": match.group(1), "value": value})
        else:
            contact[crm_field] = value
    if field_values:
        contact["fieldValues"] = field_values
    return {"contact": contact}


class ActiveCampaignAdapter(BaseCRMAdapter):
    """ActiveCampaign REST API adapter."""

    slug = "activecampaign"
    name = "ActiveCampaign"
    page_size = 100
    default_policy = ACTIVECAMPAIGN_POLICY

    def _build_client(self, credentials: Credentials) -> HTTPClient:
        return HTTPClient(
            auth=ApiKeyAuth(
                api_key=credentials.api_key or "",
                header_name="Api-Token",
                header_prefix="",
            ),
            policy=self.policy,
            base_url=f"{(credentials.url or '').rstrip('/')}/api/3",
            connector_name=self.slug,
            error_parser=parse_activecampaign_error,
            transport=self.transport,
        )

    def _authenticate(self, credentials: Credentials, test: bool = True) -> Dict[str, Any]:
        if not credentials.url or not credentials.api_key:
            raise AuthError("ActiveCampaign API URL and key are required", self.slug)
        if test:
            self._build_client(credentials).get("users/me")
        return {}

    def default_field_mapping(self) -> Dict[str, str]:
        return dict(DEFAULT_FIELD_MAPPING)

    def _get_page(self, path: str, key: str, offset: int, limit: int, **params: Any) -> List[Dict[str, Any]]:
        params.update({"offset": offset, "limit": limit})
        body = self.client.get(path, params=params).json() or {}
        return body.get(key) or []

    # =========================================================================
    # Tags, lists and fields
    # =========================================================================

    def _fetch_tags(self) -> Dict[str, str]:
        tags = self.paginate(
            lambda offset, limit: self._get_page("tags", "tags", offset, limit)
        )
        return {str(tag["id"]): tag["tag"] for tag in tags}

    def _fetch_fields(self) -> Dict[str, str]:
        custom = self.paginate(
            lambda offset, limit: self._get_page("fields", "fields", offset, limit)
        )
        fields = dict(STANDARD_FIELDS)
        fields.update({f"field[{field['id']}]": field["title"] for field in custom})
        return fields

    def _tag_associations(self, contact_id: ContactId) -> Dict[str, Any]:
        body = self.client.get(f"contacts/{contact_id}/contactTags").json() or {}
        return {str(item["tag"]): item["id"] for item in body.get("contactTags") or []}

    def _create_tag_association(self, tag_id: str, contact_id: ContactId) -> None:
        self.client.post(
            "contactTags",
            json={"contactTag": {"contact": str(contact_id), "tag": tag_id}},
        )

    def _delete_tag_association(self, association_id: Any) -> None:
        self.client.delete(f"contactTags/{association_id}")

    def get_lists(self, contact_id: ContactId) -> List[str]:
        body = self.client.get(f"contacts/{contact_id}/contactLists").json() or {}
        return [
            str(item["list"])
            for item in body.get("contactLists") or []
            if str(item.get("status")) == SUBSCRIBED
        ]

    # =========================================================================
    # Contacts
    # =========================================================================

    def _find_contact_id(self, email: str) -> Optional[ContactId]:
        body = self.client.get("contacts", params={"email": email}).json() or {}
        contacts = body.get("contacts") or []
        if not contacts:
            return None
        return contacts[0]["id"]

    def _create_contact(self, payload: Dict[str, Any]) -> ContactId:
        response = self.client.post("contacts", json=build_contact_body(payload))
        return response.json()["contact"]["id"]

    def _update_contact(self, contact_id: ContactId, payload: Dict[str, Any]) -> None:
        self.client.put(f"contacts/{contact_id}", json=build_contact_body(payload))

    def _fetch_contact_record(self, contact_id: ContactId) -> Dict[str, Any]:
        body = self.client.get(f"contacts/{contact_id}").json() or {}
        record = dict(body.get("contact") or {})
        for field_value in body.get("fieldValues") or []:
            record[f"field[{field_value['field']}]"] = field_value.get("value")
        return record

    def _fetch_tagged_page(self, tag_id: str, offset: int, limit: int) -> List[ContactId]:
        contacts = self._get_page("contacts", "contacts", offset, limit, tagid=tag_id)
        return [contact["id"] for contact in contacts]
