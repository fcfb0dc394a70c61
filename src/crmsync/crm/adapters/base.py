"""Base CRM adapter interface.

Defines the Protocol that all CRM adapters must implement, and a base
class that implements the vendor-independent parts of it once:

- Pagination: fetch fixed-size pages until a short or empty page
- Tag-cache self-heal: tags seen on a contact are merged into the
  available-tags cache
- Idempotent tag apply/remove on top of tag associations
- Field mapping for add/update and active-field extraction for load

Vendor adapters plug in by:
1. Subclassing BaseCRMAdapter and implementing its ``_`` hooks
2. Registering with CRMAdapterRegistry under their slug
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

import httpx

from crmsync.connectors.base import (
    DEFAULT_POLICY,
    ConnectorError,
    ConnectResult,
    NotFoundError,
    RequestPolicy,
    UnsupportedFeatureError,
)
from crmsync.connectors.http_client import HTTPClient
from crmsync.crm.mapping import FieldMapper
from crmsync.crm.models import ContactId, Credentials, FieldDefinition
from crmsync.settings import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


@runtime_checkable
class CRMAdapter(Protocol):
    """Protocol defining the CRM adapter interface.

    Every operation except connect() raises ConnectorError subclasses on
    failure. "Not found" and "no tags" are regular results (None, []).
    """

    slug: str

    def connect(
        self, credentials: Optional[Credentials] = None, test: bool = True
    ) -> ConnectResult:
        """Authenticate and cache session params. Never raises for auth/network failures."""
        ...

    def sync_tags(self) -> Dict[str, str]:
        """Complete replacement set of available tags (tag_id -> label)."""
        ...

    def sync_fields(self) -> Dict[str, str]:
        """CRM fields (crm_field -> label), sorted by label ascending."""
        ...

    def get_contact_id(self, email: str) -> Optional[ContactId]:
        """Contact ID for an email, or None when there is no such contact."""
        ...

    def get_tags(self, contact_id: ContactId) -> List[str]:
        """Tag IDs applied to a contact."""
        ...

    def apply_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        """Apply tags; already-applied tags are skipped."""
        ...

    def remove_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        """Remove tags; absent tags are skipped."""
        ...

    def add_contact(self, fields: Mapping[str, Any], apply_mapping: bool = True) -> ContactId:
        """Create a contact and return its ID."""
        ...

    def update_contact(
        self, contact_id: ContactId, fields: Mapping[str, Any], apply_mapping: bool = True
    ) -> bool:
        """Update a contact. An empty payload is a no-op success."""
        ...

    def load_contact(self, contact_id: ContactId) -> Dict[str, Any]:
        """Local values (local_key -> value) for every active field in the record."""
        ...

    def load_contacts(self, tag_id: str) -> List[ContactId]:
        """All contact IDs tagged with tag_id, across every page."""
        ...


def _unique(values: Iterable[Any]) -> List[Any]:
    """De-duplicate while keeping order."""
    return list(dict.fromkeys(values))


class BaseCRMAdapter(ABC):
    """Abstract base class for CRM adapters.

    Holds the settings store (credentials, caches, field table), the
    request policy and the cached session params. The HTTP client is built
    lazily from the stored credentials and rebuilt after connect().
    """

    slug: str = "base"
    name: str = "Base"
    page_size: int = DEFAULT_PAGE_SIZE
    default_policy: RequestPolicy = DEFAULT_POLICY
    field_mapper_class = FieldMapper

    def __init__(
        self,
        settings: SettingsStore,
        policy: Optional[RequestPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the adapter.

        Args:
            settings: Settings store holding credentials and caches
            policy: Request policy (defaults to the vendor's policy)
            transport: Optional httpx transport, used by tests
        """
        self.settings = settings
        self.policy = policy or self.default_policy
        self.transport = transport
        self.mapper = self.field_mapper_class()
        self.params: Optional[Dict[str, Any]] = None
        self._client: Optional[HTTPClient] = None

    # =========================================================================
    # Session
    # =========================================================================

    @property
    def credentials(self) -> Credentials:
        return self.settings.credentials(self.slug)

    @property
    def client(self) -> HTTPClient:
        if self._client is None:
            self._client = self._build_client(self.credentials)
        return self._client

    def connect(
        self, credentials: Optional[Credentials] = None, test: bool = True
    ) -> ConnectResult:
        """Authenticate against the CRM.

        Args:
            credentials: Credentials to use; stored credentials when None
            test: When False, skip the network round-trip where the vendor
                allows it (session params are still prepared)

        Returns:
            ConnectResult; failures carry the typed error and its message
        """
        credentials = credentials or self.credentials
        try:
            session = self._authenticate(credentials, test=test)
        except ConnectorError as e:
            logger.warning(f"{self.name}: connection failed: {e.message}")
            return ConnectResult.failed(e)

        stored = credentials.model_dump(exclude_none=True)
        stored.update(session)
        self.settings.set_credentials(self.slug, Credentials(**stored))

        self.params = dict(session)
        self._client = self._build_client(Credentials(**stored))
        logger.info(f"{self.name}: connected")
        return ConnectResult(success=True, message="Connected", session=dict(session))

    @abstractmethod
    def _build_client(self, credentials: Credentials) -> HTTPClient:
        """Create the HTTP client for a credential bundle."""

    @abstractmethod
    def _authenticate(self, credentials: Credentials, test: bool = True) -> Dict[str, Any]:
        """Verify credentials and return session params to cache.

        Raises:
            ConnectorError: On auth or transport failure
        """

    # =========================================================================
    # Field table and webhooks
    # =========================================================================

    def default_field_mapping(self) -> Dict[str, str]:
        """Standard local_key -> crm_field pairs for this vendor."""
        return {}

    def apply_default_fields(self) -> Dict[str, FieldDefinition]:
        """Fill unmapped local fields from default_field_mapping().

        Runs only once the connection is configured. Definitions that
        already name a crm_field are left alone.

        Returns:
            The definitions that were filled in, keyed by local_key
        """
        if not self.settings.get("connection_configured"):
            return {}
        defaults = self.default_field_mapping()
        fields = self.settings.contact_fields
        filled = {
            key: definition.model_copy(update={"crm_field": defaults[key]})
            for key, definition in fields.items()
            if key in defaults and not definition.crm_field
        }
        if filled:
            fields.update(filled)
            self.settings.set_contact_fields(fields)
            logger.info(f"{self.name}: mapped default fields {', '.join(sorted(filled))}")
        return filled

    def contact_id_from_webhook(self, payload: Mapping[str, Any]) -> Optional[ContactId]:
        """Contact ID named by an inbound webhook payload, if any."""
        return payload.get("contact_id")

    # =========================================================================
    # Pagination
    # =========================================================================

    def paginate(
        self,
        fetch_page: Callable[[int, int], List[Any]],
        page_size: Optional[int] = None,
    ) -> List[Any]:
        """Collect every item from an offset-paged endpoint.

        Keeps fetching while the previous page was full. Any error raised
        by fetch_page propagates; accumulated items are discarded.

        Args:
            fetch_page: Called as fetch_page(offset, limit)
            page_size: Items per page (defaults to the adapter's page_size)

        Returns:
            All items in page order
        """
        page_size = page_size or self.page_size
        items: List[Any] = []
        offset = 0
        while True:
            page = fetch_page(offset, page_size)
            items.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        return items

    # =========================================================================
    # Tags
    # =========================================================================

    def sync_tags(self) -> Dict[str, str]:
        """Available tags (tag_id -> label); {} when the CRM has no tags."""
        try:
            return self._fetch_tags()
        except UnsupportedFeatureError:
            logger.info(f"{self.name}: tags not supported, using an empty tag set")
            return {}

    def sync_fields(self) -> Dict[str, str]:
        fields = self._fetch_fields()
        return dict(sorted(fields.items(), key=lambda item: (item[1], item[0])))

    def get_tags(self, contact_id: ContactId) -> List[str]:
        try:
            associations = self._tag_associations(contact_id)
        except UnsupportedFeatureError:
            return []
        tag_ids = [str(tag_id) for tag_id in associations]
        self.heal_tag_cache(tag_ids)
        return tag_ids

    def get_lists(self, contact_id: ContactId) -> List[str]:
        """List memberships of a contact; vendors without lists use tags."""
        return self.get_tags(contact_id)

    def heal_tag_cache(self, tag_ids: Iterable[str]) -> Dict[str, str]:
        """Merge tags unknown to the available-tags cache into it.

        Returns:
            The newly added tags (tag_id -> label)
        """
        known = self.settings.available_tags
        unseen = [tag_id for tag_id in tag_ids if tag_id not in known]
        if not unseen:
            return {}
        labels = self._resolve_tag_labels(unseen)
        return self.settings.merge_available_tags(
            {tag_id: labels.get(tag_id, tag_id) for tag_id in unseen}
        )

    def _resolve_tag_labels(self, tag_ids: List[str]) -> Dict[str, str]:
        """Labels for tags missing from the cache; a full tag sync by default."""
        return self.sync_tags()

    def apply_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        wanted = _unique(str(tag) for tag in tags)
        if not wanted:
            return True
        applied = self._tag_associations(contact_id)
        for tag_id in wanted:
            if tag_id in applied:
                continue
            self._create_tag_association(tag_id, contact_id)
        return True

    def remove_tags(self, tags: Iterable[str], contact_id: ContactId) -> bool:
        wanted = _unique(str(tag) for tag in tags)
        if not wanted:
            return True
        applied = self._tag_associations(contact_id)
        for tag_id in wanted:
            association_id = applied.get(tag_id)
            if association_id is None:
                continue
            self._delete_tag_association(association_id)
        return True

    def _fetch_tags(self) -> Dict[str, str]:
        raise UnsupportedFeatureError("tags", self.slug)

    def _tag_associations(self, contact_id: ContactId) -> Dict[str, Any]:
        """Applied tags of a contact: tag_id -> vendor association ID."""
        raise UnsupportedFeatureError("tags", self.slug)

    def _create_tag_association(self, tag_id: str, contact_id: ContactId) -> None:
        raise UnsupportedFeatureError("tags", self.slug)

    def _delete_tag_association(self, association_id: Any) -> None:
        raise UnsupportedFeatureError("tags", self.slug)

    # =========================================================================
    # Contacts
    # =========================================================================

    def get_contact_id(self, email: str) -> Optional[ContactId]:
        try:
            return self._find_contact_id(email)
        except NotFoundError:
            return None

    def prepare_fields(self, fields: Mapping[str, Any], apply_mapping: bool = True) -> Dict[str, Any]:
        """Run local values through the field mapper when requested."""
        if apply_mapping:
            return self.mapper.map_meta_fields(fields, self.settings.contact_fields)
        return dict(fields)

    def add_contact(self, fields: Mapping[str, Any], apply_mapping: bool = True) -> ContactId:
        payload = self.prepare_fields(fields, apply_mapping)
        contact_id = self._create_contact(payload)
        logger.debug(f"{self.name}: created contact {contact_id}")
        return contact_id

    def update_contact(
        self, contact_id: ContactId, fields: Mapping[str, Any], apply_mapping: bool = True
    ) -> bool:
        payload = self.prepare_fields(fields, apply_mapping)
        if not payload:
            return True
        self._update_contact(contact_id, payload)
        return True

    def load_contact(self, contact_id: ContactId) -> Dict[str, Any]:
        record = self._fetch_contact_record(contact_id)
        return self.mapper.extract_active_fields(record, self.settings.contact_fields)

    def load_contacts(self, tag_id: str) -> List[ContactId]:
        return self.paginate(
            lambda offset, limit: self._fetch_tagged_page(tag_id, offset, limit)
        )

    @abstractmethod
    def _fetch_fields(self) -> Dict[str, str]:
        """CRM fields (crm_field -> label), unsorted."""

    @abstractmethod
    def _find_contact_id(self, email: str) -> Optional[ContactId]:
        """Contact ID for an email; None or NotFoundError when absent."""

    @abstractmethod
    def _create_contact(self, payload: Dict[str, Any]) -> ContactId:
        """Create a contact from a CRM payload."""

    @abstractmethod
    def _update_contact(self, contact_id: ContactId, payload: Dict[str, Any]) -> None:
        """Update a contact with a non-empty CRM payload."""

    @abstractmethod
    def _fetch_contact_record(self, contact_id: ContactId) -> Dict[str, Any]:
        """Flat crm_field -> value record for one contact."""

    def _fetch_tagged_page(self, tag_id: str, offset: int, limit: int) -> List[ContactId]:
        """One page of contact IDs carrying tag_id.

        Adapters that override load_contacts with cursor paging skip this hook.
        """
        raise NotImplementedError
