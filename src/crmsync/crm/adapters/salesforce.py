"""Salesforce adapter.

Authenticates with the OAuth 2.0 username-password flow and talks to the
REST API of the returned instance. Tags are Salesforce Chatter tags
(TagDefinition + <Object>Tag); orgs without tags report
"'TagDefinition' is not supported", which is treated as an empty tag set.

An expired access token (401) is refreshed once per request through the
HTTP client's reauthenticate hook.
"""

import logging
from typing import Any, Dict, List, Optional

from crmsync.connectors.base import (
    SALESFORCE_POLICY,
    AuthError,
    ConnectorError,
    OAuthTokenAuth,
    UnsupportedFeatureError,
    VendorError,
)
from crmsync.connectors.http_client import HTTPClient
from crmsync.crm.adapters.base import BaseCRMAdapter
from crmsync.crm.mapping import DateOnlyFieldMapper
from crmsync.crm.models import ContactId, Credentials

logger = logging.getLogger(__name__)

API_VERSION = "v58.0"
DATA_PATH = f"/services/data/{API_VERSION}"
DEFAULT_LOGIN_URL = "https://login.salesforce.com"

# Describe results that can't be mapped to user fields
SYSTEM_FIELDS = {"Id", "IsDeleted", "AccountId"}


def parse_salesforce_error(body: Any) -> Optional[str]:
    """Extract the message from a Salesforce error payload.

    REST errors come as ``[{"message": ..., "errorCode": ...}]``, OAuth
    errors as ``{"error": ..., "error_description": ...}``.
    """
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0].get("message")
    if isinstance(body, dict):
        return body.get("error_description") or body.get("message")
    return None


def soql_literal(value: Any) -> str:
    """Quote a value for use inside a SOQL string literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class SalesforceAdapter(BaseCRMAdapter):
    """Salesforce REST API adapter.

    Extra credential attributes:
        login_url: OAuth host (defaults to login.salesforce.com)
        object_type: sObject contacts are stored as (Contact or Lead)
        tag_type: Chatter tag visibility (Personal or Public)
    """

    slug = "salesforce"
    name = "Salesforce"
    default_policy = SALESFORCE_POLICY
    field_mapper_class = DateOnlyFieldMapper

    @property
    def object_type(self) -> str:
        return getattr(self.credentials, "object_type", None) or "Contact"

    @property
    def tag_object(self) -> str:
        return f"{self.object_type}Tag"

    # =========================================================================
    # Session
    # =========================================================================

    def _build_client(self, credentials: Credentials) -> HTTPClient:
        instance_url = (credentials.instance_url or "").rstrip("/")
        return HTTPClient(
            auth=OAuthTokenAuth(access_token=credentials.access_token or ""),
            policy=self.policy,
            base_url=f"{instance_url}{DATA_PATH}",
            connector_name=self.slug,
            error_parser=parse_salesforce_error,
            reauthenticate=self._reauthenticate,
            transport=self.transport,
        )

    def _authenticate(self, credentials: Credentials, test: bool = True) -> Dict[str, Any]:
        if not test and credentials.access_token and credentials.instance_url:
            return {}

        if not credentials.username or not credentials.password:
            raise AuthError("Salesforce username and password are required", self.slug)

        login_url = (getattr(credentials, "login_url", None) or DEFAULT_LOGIN_URL).rstrip("/")
        auth_client = HTTPClient(
            policy=self.policy,
            base_url=login_url,
            connector_name=self.slug,
            error_parser=parse_salesforce_error,
            transport=self.transport,
        )
        try:
            response = auth_client.post(
                "services/oauth2/token",
                data={
                    "grant_type": "password",
                    "client_id": credentials.client_id or "",
                    "client_secret": credentials.client_secret or "",
                    "username": credentials.username,
                    "password": credentials.password,
                },
            )
        except VendorError as e:
            # Bad credentials come back as 400 invalid_grant
            if e.status_code == 400:
                raise AuthError(e.message, self.slug, status_code=400)
            raise

        body = response.json() or {}
        if "error" in body:
            raise AuthError(body.get("error_description") or body["error"], self.slug)

        return {
            "access_token": body["access_token"],
            "instance_url": body["instance_url"],
        }

    def _reauthenticate(self) -> None:
        """Fetch a fresh access token and hand it to the live client."""
        session = self._authenticate(self.credentials, test=True)
        self.settings.update_credentials(self.slug, **session)
        self.params = dict(session)
        if self._client is not None and isinstance(self._client.auth, OAuthTokenAuth):
            self._client.auth.access_token = session["access_token"]

    # =========================================================================
    # Queries
    # =========================================================================

    def _query(self, soql: str, feature: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run a SOQL query and return all of its records.

        Large results arrive in batches; ``nextRecordsUrl`` is followed
        until the response reports ``done``.

        Args:
            soql: Query string
            feature: Capability the query depends on; an "is not supported"
                error is raised as UnsupportedFeatureError for it
        """
        try:
            body = self.client.get("query", params={"q": soql}).json() or {}
            records = list(body.get("records") or [])
            while not body.get("done", True) and body.get("nextRecordsUrl"):
                body = self.client.get(self._instance_url(body["nextRecordsUrl"])).json() or {}
                records.extend(body.get("records") or [])
        except ConnectorError as e:
            if feature and "is not supported" in e.message:
                raise UnsupportedFeatureError(feature, self.slug)
            raise
        return records

    def _instance_url(self, path: str) -> str:
        """Absolute URL for an instance-relative path such as nextRecordsUrl."""
        instance = self.client.base_url[: -len(DATA_PATH)]
        return f"{instance}{path}"

    # =========================================================================
    # Tags and fields
    # =========================================================================

    def _fetch_tags(self) -> Dict[str, str]:
        records = self._query("SELECT Id, Name FROM TagDefinition ORDER BY Id", feature="tags")
        return {record["Id"]: record["Name"] for record in records}

    def _fetch_fields(self) -> Dict[str, str]:
        response = self.client.get(f"sobjects/{self.object_type}/describe/")
        body = response.json() or {}
        return {
            field["name"]: field["label"]
            for field in body.get("fields", [])
            if field["name"] not in SYSTEM_FIELDS
        }

    def _tag_associations(self, contact_id: ContactId) -> Dict[str, Any]:
        records = self._query(
            f"SELECT Id, TagDefinitionId FROM {self.tag_object} "
            f"WHERE ItemId = {soql_literal(contact_id)}",
            feature="tags",
        )
        return {record["TagDefinitionId"]: record["Id"] for record in records}

    def _create_tag_association(self, tag_id: str, contact_id: ContactId) -> None:
        label = self.settings.available_tags.get(tag_id, tag_id)
        self.client.post(
            f"sobjects/{self.tag_object}/",
            json={
                "Type": getattr(self.credentials, "tag_type", None) or "Personal",
                "ItemId": contact_id,
                "Name": label,
            },
        )

    def _delete_tag_association(self, association_id: Any) -> None:
        self.client.delete(f"sobjects/{self.tag_object}/{association_id}")

    # =========================================================================
    # Contacts
    # =========================================================================

    def _find_contact_id(self, email: str) -> Optional[ContactId]:
        records = self._query(
            f"SELECT Id FROM {self.object_type} WHERE Email = {soql_literal(email)}"
        )
        if not records:
            return None
        return records[0]["Id"]

    def _create_contact(self, payload: Dict[str, Any]) -> ContactId:
        response = self.client.post(f"sobjects/{self.object_type}/", json=payload)
        return response.json()["id"]

    def _update_contact(self, contact_id: ContactId, payload: Dict[str, Any]) -> None:
        self.client.patch(f"sobjects/{self.object_type}/{contact_id}", json=payload)

    def _fetch_contact_record(self, contact_id: ContactId) -> Dict[str, Any]:
        response = self.client.get(f"sobjects/{self.object_type}/{contact_id}")
        return response.json() or {}

    def load_contacts(self, tag_id: str) -> List[ContactId]:
        """Tagged contact IDs. Salesforce batches the result itself, so no OFFSET paging."""
        records = self._query(
            f"SELECT ItemId FROM {self.tag_object} "
            f"WHERE TagDefinitionId = {soql_literal(tag_id)} ORDER BY ItemId",
            feature="tags",
        )
        return [record["ItemId"] for record in records]
