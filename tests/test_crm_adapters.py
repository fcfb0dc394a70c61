"""Tests for the vendor CRM adapters.

All HTTP traffic goes through httpx.MockTransport (see conftest.MockCRM).

Tests cover:
- connect() results for good and bad credentials
- Pagination (no gaps, no duplicates, any number of full pages)
- Tag sync, tag-cache self-heal, idempotent apply/remove
- Contact lookup, create, update (empty payload no-op), load
- Vendor error messages surfaced with the status line
- Default field mapping and webhook contact IDs
"""

import json

import httpx
import pytest

from crmsync.connectors.base import (
    AuthError,
    NotFoundError,
    UnsupportedFeatureError,
    VendorError,
)
from crmsync.crm.adapters import ActiveCampaignAdapter, MauticAdapter, SalesforceAdapter
from crmsync.crm.adapters.activecampaign import build_contact_body
from crmsync.crm.adapters.mautic import HINT_403, HINT_404, WEBHOOK_EVENT, parse_mautic_error
from crmsync.crm.adapters.salesforce import soql_literal
from crmsync.crm.models import Credentials, FieldDefinition

# =============================================================================
# Shared pagination behavior
# =============================================================================


class TestPagination:
    """Tests for BaseCRMAdapter.paginate."""

    @pytest.mark.parametrize("full_pages", [0, 1, 2, 5])
    @pytest.mark.parametrize("last_page", [0, 1, 7])
    def test_collects_every_item_once(self, settings, full_pages, last_page):
        """Result length is the sum of page sizes, with no gaps or duplicates."""
        page_size = 10
        total = full_pages * page_size + last_page
        items = list(range(total))
        offsets = []

        def fetch_page(offset, limit):
            offsets.append(offset)
            return items[offset : offset + limit]

        adapter = MauticAdapter(settings)
        result = adapter.paginate(fetch_page, page_size=page_size)

        assert result == items
        assert len(set(result)) == total
        assert offsets == [i * page_size for i in range(full_pages + 1)]

    def test_error_propagates(self, settings):
        """A failing page aborts pagination with the error."""

        def fetch_page(offset, limit):
            if offset:
                raise VendorError("page 2 failed", "test")
            return list(range(limit))

        with pytest.raises(VendorError):
            MauticAdapter(settings).paginate(fetch_page, page_size=5)


# =============================================================================
# Mautic
# =============================================================================


@pytest.fixture
def mautic(settings, mock_crm):
    settings.set("crm", "mautic")
    settings.set_credentials(
        "mautic",
        Credentials(url="https://m.example.com", username="admin", password="pw"),
    )
    return MauticAdapter(settings, transport=mock_crm.transport)


def _mautic_contact(contact_id=5, tags=(), fields=None):
    return {
        "contact": {
            "id": contact_id,
            "tags": [{"id": i, "tag": tag} for i, tag in enumerate(tags, 1)],
            "fields": {"all": fields or {}},
        }
    }


class TestMauticAdapter:
    """Tests for MauticAdapter."""

    def test_connect_success(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts", (200, {"total": 0, "contacts": {}}))
        result = mautic.connect()

        assert result
        assert result.error is None
        auth = mock_crm.requests[0].headers["authorization"]
        assert auth.startswith("Basic ")

    def test_connect_403_hint(self, mautic, mock_crm):
        """A 403 explains that the API must be enabled."""
        mock_crm.add("GET", "/api/contacts", (403, {"errors": [{"code": 403, "message": "x"}]}))
        result = mautic.connect()

        assert not result
        assert isinstance(result.error, AuthError)
        assert result.message == HINT_403

    def test_connect_404_hint(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts", (404, None))
        result = mautic.connect()

        assert not result
        assert isinstance(result.error, NotFoundError)
        assert result.message == HINT_404

    def test_connect_without_url(self, settings):
        result = MauticAdapter(settings).connect(Credentials(username="a", password="b"))
        assert not result
        assert isinstance(result.error, AuthError)

    def test_connect_without_test_skips_request(self, mautic, mock_crm):
        assert mautic.connect(test=False)
        assert mock_crm.requests == []

    def test_sync_tags_paginates(self, mautic, mock_crm):
        """Tags are collected across pages; tag IDs are the labels."""
        names = [f"tag{i}" for i in range(120)]

        def tags(request):
            start = int(request.url.params["start"])
            limit = int(request.url.params["limit"])
            page = {str(i): {"id": i, "tag": name} for i, name in enumerate(names[start : start + limit])}
            return httpx.Response(200, json={"total": len(names), "tags": page})

        mock_crm.add("GET", "/api/tags", tags)
        result = mautic.sync_tags()

        assert list(result) == names
        assert result["tag7"] == "tag7"
        assert len(mock_crm.calls("GET", "/api/tags")) == 3

    def test_sync_fields_sorted_by_label(self, mautic, mock_crm):
        mock_crm.add(
            "GET",
            "/api/fields/contact",
            (
                200,
                {
                    "fields": [
                        {"alias": "lastname", "label": "Last Name"},
                        {"alias": "email", "label": "Email"},
                        {"alias": "firstname", "label": "First Name"},
                    ]
                },
            ),
        )
        assert list(mautic.sync_fields().items()) == [
            ("email", "Email"),
            ("firstname", "First Name"),
            ("lastname", "Last Name"),
        ]

    def test_get_tags_heals_cache(self, mautic, mock_crm, settings):
        """Tags seen on a contact are merged into the available tags."""
        settings.set("available_tags", {"vip": "vip"})
        mock_crm.add("GET", "/api/contacts/5", (200, _mautic_contact(tags=["vip", "new"])))

        assert mautic.get_tags(5) == ["vip", "new"]
        assert settings.available_tags == {"vip": "vip", "new": "new"}

    def test_apply_tags_only_missing(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts/5", (200, _mautic_contact(tags=["vip"])))
        mock_crm.add("PATCH", "/api/contacts/5/edit", (200, _mautic_contact()))

        assert mautic.apply_tags(["vip", "lead"], 5)
        edits = mock_crm.calls("PATCH", "/api/contacts/5/edit")
        assert len(edits) == 1
        assert mock_crm.body(edits[0]) == {"tags": ["lead"]}

    def test_apply_applied_tags_is_noop(self, mautic, mock_crm):
        """Re-applying an applied tag sends no edit."""
        mock_crm.add("GET", "/api/contacts/5", (200, _mautic_contact(tags=["vip"])))
        assert mautic.apply_tags(["vip"], 5)
        assert mock_crm.calls("PATCH", "/api/contacts/5/edit") == []

    def test_remove_tags_uses_minus_prefix(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts/5", (200, _mautic_contact(tags=["vip", "lead"])))
        mock_crm.add("PATCH", "/api/contacts/5/edit", (200, _mautic_contact()))

        assert mautic.remove_tags(["vip", "absent"], 5)
        edits = mock_crm.calls("PATCH", "/api/contacts/5/edit")
        assert mock_crm.body(edits[0]) == {"tags": ["-vip"]}

    def test_errors_payload_with_200(self, mautic, mock_crm):
        """An errors payload is a VendorError even on a 200."""
        mock_crm.add(
            "GET",
            "/api/contacts/5",
            (200, {"errors": [{"code": 400, "message": "Something broke"}]}),
        )
        with pytest.raises(VendorError) as exc_info:
            mautic.get_tags(5)
        assert exc_info.value.message == "Something broke"

    def test_plain_string_errors_with_200(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts/5", (200, {"errors": ["Bad thing"]}))
        with pytest.raises(VendorError) as exc_info:
            mautic.get_tags(5)
        assert exc_info.value.message == "Bad thing"

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"errors": [{"code": 400, "message": "Nope"}]}, "Nope"),
            ({"errors": ["Bad thing"]}, "Bad thing"),
            ({"errors": "Bad thing"}, "Bad thing"),
            ({"errors": []}, None),
            ([{"message": "not a dict body"}], None),
            ("plain text", None),
        ],
    )
    def test_parse_mautic_error_shapes(self, body, expected):
        assert parse_mautic_error(body) == expected

    def test_webhook_contact_id(self, mautic):
        payload = {WEBHOOK_EVENT: [{"lead": {"id": 42, "fields": {}}}]}
        assert mautic.contact_id_from_webhook(payload) == 42

    def test_webhook_explicit_contact_id_wins(self, mautic):
        payload = {"contact_id": 7, WEBHOOK_EVENT: [{"lead": {"id": 42}}]}
        assert mautic.contact_id_from_webhook(payload) == 7

    @pytest.mark.parametrize(
        "payload",
        [{}, {"mautic.lead_post_delete": [{"lead": {"id": 42}}]}, {WEBHOOK_EVENT: []}, {WEBHOOK_EVENT: {"lead": 1}}],
    )
    def test_webhook_without_contact(self, mautic, payload):
        assert mautic.contact_id_from_webhook(payload) is None

    def test_vendor_message_with_status_line(self, mautic, mock_crm):
        mock_crm.add(
            "POST",
            "/api/contacts/new",
            (400, {"errors": [{"code": 400, "message": "email: invalid"}]}),
        )
        with pytest.raises(VendorError) as exc_info:
            mautic.add_contact({"first_name": "Ada"})
        assert exc_info.value.message == "400 Bad Request - email: invalid"

    def test_get_contact_id(self, mautic, mock_crm):
        def contacts(request):
            assert request.url.params["search"] == "email:ada@example.com"
            return httpx.Response(200, json={"total": 1, "contacts": {"12": {"id": 12}}})

        mock_crm.add("GET", "/api/contacts", contacts)
        assert mautic.get_contact_id("ada@example.com") == 12

    def test_get_contact_id_absent(self, mautic, mock_crm):
        mock_crm.add("GET", "/api/contacts", (200, {"total": 0, "contacts": []}))
        assert mautic.get_contact_id("nobody@example.com") is None

    def test_add_contact_maps_and_formats(self, mautic, mock_crm):
        mock_crm.add("POST", "/api/contacts/new", (201, {"contact": {"id": 33}}))

        contact_id = mautic.add_contact(
            {"first_name": "Ada", "birthday": 1700000000, "country": "US", "nickname": "ada"}
        )

        assert contact_id == 33
        body = mock_crm.body(mock_crm.calls("POST", "/api/contacts/new")[0])
        assert body == {"firstname": "Ada", "birthday": "2023-11-14", "country": "United States"}

    def test_update_with_empty_payload_is_noop(self, mautic, mock_crm):
        """Only inactive fields: success without a request."""
        assert mautic.update_contact(5, {"nickname": "ada"})
        assert mock_crm.requests == []

    def test_update_without_mapping(self, mautic, mock_crm):
        mock_crm.add("PATCH", "/api/contacts/5/edit", (200, _mautic_contact()))
        assert mautic.update_contact(5, {"custom_alias": "x"}, apply_mapping=False)
        body = mock_crm.body(mock_crm.calls("PATCH", "/api/contacts/5/edit")[0])
        assert body == {"custom_alias": "x"}

    def test_load_contact_active_fields_only(self, mautic, mock_crm):
        mock_crm.add(
            "GET",
            "/api/contacts/5",
            (
                200,
                _mautic_contact(
                    fields={"firstname": "Ada", "nickname": "ada", "country": None, "points": 3}
                ),
            ),
        )
        assert mautic.load_contact(5) == {"first_name": "Ada"}

    def test_load_contacts_paginates(self, mautic, mock_crm):
        ids = list(range(1, 101))

        def contacts(request):
            assert request.url.params["search"] == 'tag:"vip"'
            start = int(request.url.params["start"])
            limit = int(request.url.params["limit"])
            page = [{"id": i} for i in ids[start : start + limit]]
            return httpx.Response(200, json={"contacts": page})

        mock_crm.add("GET", "/api/contacts", contacts)
        assert mautic.load_contacts("vip") == ids
        # Two full pages of 50, then an empty one
        assert len(mock_crm.requests) == 3


# =============================================================================
# Salesforce
# =============================================================================

SF_DATA = "/services/data/v58.0"


@pytest.fixture
def salesforce_settings(settings):
    settings.set("crm", "salesforce")
    settings.set_credentials(
        "salesforce",
        Credentials(
            username="ada@example.com",
            password="pw",
            client_id="cid",
            client_secret="csecret",
            access_token="old-token",
            instance_url="https://na1.salesforce.com",
        ),
    )
    fields = settings.contact_fields
    fields["first_name"] = FieldDefinition(local_key="first_name", crm_field="FirstName", active=True)
    fields["birthday"] = FieldDefinition(
        local_key="birthday", crm_field="Birthdate", active=True, field_type="date"
    )
    fields["country"] = FieldDefinition(
        local_key="country", crm_field="MailingCountry", active=True, field_type="country"
    )
    settings.set_contact_fields(fields)
    return settings


@pytest.fixture
def salesforce(salesforce_settings, mock_crm):
    return SalesforceAdapter(salesforce_settings, transport=mock_crm.transport)


def _soql(routes):
    """Query handler answering by SOQL prefix."""

    def handler(request):
        q = request.url.params["q"]
        for prefix, response in routes.items():
            if q.startswith(prefix):
                status, body = response
                return httpx.Response(status, json=body)
        return httpx.Response(400, json=[{"message": f"unexpected query {q}"}])

    return handler


class TestSalesforceAdapter:
    """Tests for SalesforceAdapter."""

    def test_connect_stores_session(self, salesforce, mock_crm, salesforce_settings):
        def token(request):
            form = dict(httpx.QueryParams(request.content.decode()))
            assert form["grant_type"] == "password"
            assert form["client_id"] == "cid"
            return httpx.Response(
                200,
                json={"access_token": "new-token", "instance_url": "https://na2.salesforce.com"},
            )

        mock_crm.add("POST", "/services/oauth2/token", token)
        result = salesforce.connect()

        assert result
        assert result.session == {
            "access_token": "new-token",
            "instance_url": "https://na2.salesforce.com",
        }
        creds = salesforce_settings.credentials("salesforce")
        assert creds.access_token == "new-token"
        assert creds.instance_url == "https://na2.salesforce.com"
        assert salesforce.client.base_url == f"https://na2.salesforce.com{SF_DATA}"

    def test_connect_bad_credentials(self, salesforce, mock_crm):
        mock_crm.add(
            "POST",
            "/services/oauth2/token",
            (400, {"error": "invalid_grant", "error_description": "authentication failure"}),
        )
        result = salesforce.connect()

        assert not result
        assert isinstance(result.error, AuthError)
        assert result.message == "400 Bad Request - authentication failure"

    def test_connect_without_test_reuses_token(self, salesforce, mock_crm):
        assert salesforce.connect(test=False)
        assert mock_crm.requests == []

    def test_tags_not_supported_is_empty(self, salesforce, mock_crm):
        """Orgs without Chatter tags report an empty tag set."""
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            (
                400,
                [{"message": "sObject type 'TagDefinition' is not supported.", "errorCode": "INVALID_TYPE"}],
            ),
        )
        assert salesforce.sync_tags() == {}
        assert salesforce.get_tags("003A") == []

    def test_unsupported_tags_raise_on_apply(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            (400, [{"message": "sObject type 'ContactTag' is not supported."}]),
        )
        with pytest.raises(UnsupportedFeatureError):
            salesforce.apply_tags(["T1"], "003A")

    def test_sync_tags(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            _soql({"SELECT Id, Name FROM TagDefinition": (200, {"records": [
                {"Id": "T1", "Name": "VIP"},
                {"Id": "T2", "Name": "Lead"},
            ]})}),
        )
        assert salesforce.sync_tags() == {"T1": "VIP", "T2": "Lead"}

    def test_load_contacts_follows_next_records_url(self, salesforce, mock_crm):
        """Results past 2000 rows come from nextRecordsUrl, never OFFSET."""
        first = [{"ItemId": f"003{i:05d}"} for i in range(2000)]
        rest = [{"ItemId": f"003{i:05d}"} for i in range(2000, 2200)]

        def query(request):
            q = request.url.params["q"]
            assert "OFFSET" not in q
            assert q.startswith("SELECT ItemId FROM ContactTag WHERE TagDefinitionId = 'T1'")
            return httpx.Response(
                200,
                json={
                    "totalSize": 2200,
                    "done": False,
                    "nextRecordsUrl": f"{SF_DATA}/query/01gX-2000",
                    "records": first,
                },
            )

        mock_crm.add("GET", f"{SF_DATA}/query", query)
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query/01gX-2000",
            (200, {"totalSize": 2200, "done": True, "records": rest}),
        )

        result = salesforce.load_contacts("T1")

        assert result == [record["ItemId"] for record in first + rest]
        assert len(result) == len(set(result)) == 2200
        assert len(mock_crm.requests) == 2
        assert str(mock_crm.requests[1].url) == f"https://na1.salesforce.com{SF_DATA}/query/01gX-2000"

    def test_sync_tags_follows_next_records_url(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            (
                200,
                {
                    "done": False,
                    "nextRecordsUrl": f"{SF_DATA}/query/01gY-2000",
                    "records": [{"Id": "T1", "Name": "VIP"}],
                },
            ),
        )
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query/01gY-2000",
            (200, {"done": True, "records": [{"Id": "T2", "Name": "Lead"}]}),
        )
        assert salesforce.sync_tags() == {"T1": "VIP", "T2": "Lead"}

    def test_sync_fields_strips_system_fields(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/sobjects/Contact/describe/",
            (
                200,
                {
                    "fields": [
                        {"name": "Id", "label": "Contact ID"},
                        {"name": "LastName", "label": "Last Name"},
                        {"name": "IsDeleted", "label": "Deleted"},
                        {"name": "FirstName", "label": "First Name"},
                        {"name": "AccountId", "label": "Account ID"},
                    ]
                },
            ),
        )
        assert list(salesforce.sync_fields()) == ["FirstName", "LastName"]

    def test_401_reauthenticates_once(self, salesforce, mock_crm, salesforce_settings):
        """An expired token is refreshed and the request retried."""

        def query(request):
            if request.headers["authorization"] == "Bearer old-token":
                return httpx.Response(401, json=[{"message": "Session expired or invalid"}])
            return httpx.Response(200, json={"records": [{"Id": "003A"}]})

        mock_crm.add("GET", f"{SF_DATA}/query", query)
        mock_crm.add(
            "POST",
            "/services/oauth2/token",
            (200, {"access_token": "fresh-token", "instance_url": "https://na1.salesforce.com"}),
        )

        assert salesforce.get_contact_id("ada@example.com") == "003A"
        assert salesforce_settings.credentials("salesforce").access_token == "fresh-token"
        assert len(mock_crm.calls("POST", "/services/oauth2/token")) == 1

    def test_401_after_reauth_is_auth_error(self, salesforce, mock_crm):
        mock_crm.add("GET", f"{SF_DATA}/query", (401, [{"message": "Session expired or invalid"}]))
        mock_crm.add(
            "POST",
            "/services/oauth2/token",
            (200, {"access_token": "fresh-token", "instance_url": "https://na1.salesforce.com"}),
        )
        with pytest.raises(AuthError) as exc_info:
            salesforce.get_contact_id("ada@example.com")
        assert exc_info.value.message == "401 Unauthorized - Session expired or invalid"

    def test_get_contact_id_absent(self, salesforce, mock_crm):
        mock_crm.add("GET", f"{SF_DATA}/query", (200, {"records": []}))
        assert salesforce.get_contact_id("nobody@example.com") is None

    def test_get_contact_id_quotes_email(self, salesforce, mock_crm):
        seen = []

        def query(request):
            seen.append(request.url.params["q"])
            return httpx.Response(200, json={"records": []})

        mock_crm.add("GET", f"{SF_DATA}/query", query)
        salesforce.get_contact_id("o'hara@example.com")
        assert seen == ["SELECT Id FROM Contact WHERE Email = 'o\\'hara@example.com'"]

    def test_update_contact_formats_dates_only(self, salesforce, mock_crm):
        mock_crm.add("PATCH", f"{SF_DATA}/sobjects/Contact/003A", (204, None))

        assert salesforce.update_contact("003A", {"birthday": 1700000000, "country": "US"})
        body = mock_crm.body(mock_crm.calls("PATCH", f"{SF_DATA}/sobjects/Contact/003A")[0])
        assert body == {"Birthdate": "2023-11-14", "MailingCountry": "US"}

    def test_add_contact(self, salesforce, mock_crm):
        mock_crm.add("POST", f"{SF_DATA}/sobjects/Contact/", (201, {"id": "003B", "success": True}))
        assert salesforce.add_contact({"first_name": "Ada"}) == "003B"

    def test_lead_object_type(self, salesforce_settings, mock_crm):
        salesforce_settings.update_credentials("salesforce", object_type="Lead")
        adapter = SalesforceAdapter(salesforce_settings, transport=mock_crm.transport)
        mock_crm.add("POST", f"{SF_DATA}/sobjects/Lead/", (201, {"id": "00QA"}))

        assert adapter.tag_object == "LeadTag"
        assert adapter.add_contact({"first_name": "Ada"}) == "00QA"

    def test_load_contact(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/sobjects/Contact/003A",
            (200, {"Id": "003A", "FirstName": "Ada", "Birthdate": None, "Email": "ada@example.com"}),
        )
        assert salesforce.load_contact("003A") == {"first_name": "Ada"}

    def test_apply_tags_creates_missing_associations(self, salesforce, mock_crm, salesforce_settings):
        salesforce_settings.set("available_tags", {"T1": "VIP", "T2": "Lead"})
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            _soql({"SELECT Id, TagDefinitionId FROM ContactTag": (200, {"records": [
                {"Id": "A1", "TagDefinitionId": "T1"},
            ]})}),
        )
        mock_crm.add("POST", f"{SF_DATA}/sobjects/ContactTag/", (201, {"id": "A2"}))

        assert salesforce.apply_tags(["T1", "T2"], "003A")
        posts = mock_crm.calls("POST", f"{SF_DATA}/sobjects/ContactTag/")
        assert len(posts) == 1
        assert mock_crm.body(posts[0]) == {"Type": "Personal", "ItemId": "003A", "Name": "Lead"}

    def test_remove_tags_deletes_associations(self, salesforce, mock_crm):
        mock_crm.add(
            "GET",
            f"{SF_DATA}/query",
            _soql({"SELECT Id, TagDefinitionId FROM ContactTag": (200, {"records": [
                {"Id": "A1", "TagDefinitionId": "T1"},
            ]})}),
        )
        mock_crm.add("DELETE", f"{SF_DATA}/sobjects/ContactTag/A1", (204, None))

        assert salesforce.remove_tags(["T1", "T9"], "003A")
        assert len(mock_crm.calls("DELETE", f"{SF_DATA}/sobjects/ContactTag/A1")) == 1
        assert len([r for r in mock_crm.requests if r.method == "DELETE"]) == 1

    def test_soql_literal(self):
        assert soql_literal("a'b\\c") == "'a\\'b\\\\c'"


# =============================================================================
# ActiveCampaign
# =============================================================================

AC = "/api/3"


@pytest.fixture
def activecampaign(settings, mock_crm):
    settings.set("crm", "activecampaign")
    settings.set_credentials(
        "activecampaign",
        Credentials(url="https://acct.api-us1.com", api_key="ac-key"),
    )
    return ActiveCampaignAdapter(settings, transport=mock_crm.transport)


class FakeContactTags:
    """Stateful contactTags endpoint for one contact."""

    def __init__(self, contact_id, tags):
        self.contact_id = str(contact_id)
        self.associations = {str(tag): str(100 + i) for i, tag in enumerate(tags)}
        self._next_id = 500

    @property
    def tags(self):
        return set(self.associations)

    def install(self, mock_crm):
        mock_crm.add("GET", f"{AC}/contacts/{self.contact_id}/contactTags", self.list)
        mock_crm.add("POST", f"{AC}/contactTags", self.create)
        for tag, association_id in list(self.associations.items()):
            mock_crm.add("DELETE", f"{AC}/contactTags/{association_id}", self.delete)

    def list(self, request):
        items = [{"tag": tag, "id": aid, "contact": self.contact_id} for tag, aid in self.associations.items()]
        return httpx.Response(200, json={"contactTags": items})

    def create(self, request):
        payload = json.loads(request.content)["contactTag"]
        self._next_id += 1
        self.associations[str(payload["tag"])] = str(self._next_id)
        return httpx.Response(201, json={"contactTag": {"id": str(self._next_id)}})

    def delete(self, request):
        association_id = request.url.path.rsplit("/", 1)[-1]
        self.associations = {t: a for t, a in self.associations.items() if a != association_id}
        return httpx.Response(200, json={})


class TestActiveCampaignAdapter:
    """Tests for ActiveCampaignAdapter."""

    def test_connect_sends_api_token(self, activecampaign, mock_crm):
        mock_crm.add("GET", f"{AC}/users/me", (200, {"user": {"id": 1}}))
        assert activecampaign.connect()
        assert mock_crm.requests[0].headers["api-token"] == "ac-key"

    def test_connect_bad_key(self, activecampaign, mock_crm):
        mock_crm.add("GET", f"{AC}/users/me", (403, {"message": "No Result found for User"}))
        result = activecampaign.connect()

        assert not result
        assert isinstance(result.error, AuthError)
        assert result.message == "403 Forbidden - No Result found for User"

    def test_connect_requires_key(self, settings):
        result = ActiveCampaignAdapter(settings).connect(Credentials(url="https://acct.api-us1.com"))
        assert not result

    def test_sync_tags(self, activecampaign, mock_crm):
        mock_crm.add(
            "GET",
            f"{AC}/tags",
            (200, {"tags": [{"id": "1", "tag": "VIP"}, {"id": 2, "tag": "Lead"}]}),
        )
        assert activecampaign.sync_tags() == {"1": "VIP", "2": "Lead"}

    def test_sync_fields_include_standard_and_custom(self, activecampaign, mock_crm):
        mock_crm.add("GET", f"{AC}/fields", (200, {"fields": [{"id": "3", "title": "Birthday"}]}))
        fields = activecampaign.sync_fields()

        assert fields["email"] == "Email"
        assert fields["field[3]"] == "Birthday"
        assert list(fields.values()) == sorted(fields.values())

    def test_get_tags_heals_cache_from_tag_sync(self, activecampaign, mock_crm, settings):
        """Unknown tag IDs are labelled from a tag sync and merged in."""
        settings.set("available_tags", {"1": "VIP"})
        FakeContactTags(7, ["1", "2", "9"]).install(mock_crm)
        mock_crm.add("GET", f"{AC}/tags", (200, {"tags": [{"id": "1", "tag": "VIP"}, {"id": "2", "tag": "Lead"}]}))

        assert activecampaign.get_tags(7) == ["1", "2", "9"]
        assert settings.available_tags == {"1": "VIP", "2": "Lead", "9": "9"}

    def test_apply_then_remove_disjoint_sets(self, activecampaign, mock_crm):
        """Final tags are original | applied - removed."""
        fake = FakeContactTags(7, ["1", "2"])
        fake.install(mock_crm)
        original = set(fake.tags)

        activecampaign.apply_tags(["3", "4"], 7)
        activecampaign.remove_tags(["2", "5"], 7)

        assert fake.tags == (original | {"3", "4"}) - {"2", "5"}

    def test_apply_twice_is_idempotent(self, activecampaign, mock_crm):
        fake = FakeContactTags(7, ["1"])
        fake.install(mock_crm)

        activecampaign.apply_tags(["1", "2"], 7)
        after_once = set(fake.tags)
        activecampaign.apply_tags(["1", "2"], 7)

        assert fake.tags == after_once == {"1", "2"}
        assert len(mock_crm.calls("POST", f"{AC}/contactTags")) == 1

    def test_apply_stops_at_first_failure(self, activecampaign, mock_crm):
        """Tags posted before a failure stay applied; later ones are not tried."""
        fake = FakeContactTags(7, [])
        fake.install(mock_crm)
        posts = []

        def create(request):
            posts.append(request)
            if len(posts) == 2:
                return httpx.Response(422, json={"errors": [{"title": "boom"}]})
            return fake.create(request)

        mock_crm.add("POST", f"{AC}/contactTags", create)

        with pytest.raises(VendorError, match="boom") as exc_info:
            activecampaign.apply_tags(["1", "2", "3"], 7)

        assert exc_info.value.status_code == 422
        assert len(mock_crm.calls("POST", f"{AC}/contactTags")) == 2
        assert fake.tags == {"1"}

    def test_remove_stops_at_first_failure(self, activecampaign, mock_crm):
        fake = FakeContactTags(7, ["1", "2", "3"])
        fake.install(mock_crm)
        mock_crm.add(
            "DELETE",
            f"{AC}/contactTags/101",
            (500, {"errors": [{"title": "delete failed"}]}),
        )

        with pytest.raises(VendorError, match="delete failed"):
            activecampaign.remove_tags(["1", "2", "3"], 7)

        assert fake.tags == {"2", "3"}
        deletes = [r.url.path for r in mock_crm.requests if r.method == "DELETE"]
        assert deletes == [f"{AC}/contactTags/100", f"{AC}/contactTags/101"]

    def test_default_fields_fill_unmapped(self, activecampaign, settings):
        fields = settings.contact_fields
        fields["last_name"] = FieldDefinition(local_key="last_name", active=True)
        fields["phone_number"] = FieldDefinition(local_key="phone_number", crm_field="", active=False)
        settings.set_contact_fields(fields)
        settings.set("connection_configured", True)

        filled = activecampaign.apply_default_fields()

        assert sorted(filled) == ["last_name", "phone_number"]
        stored = settings.contact_fields
        assert stored["last_name"].crm_field == "lastName"
        assert stored["last_name"].active is True
        assert stored["phone_number"].crm_field == "phone"
        # Already mapped
        assert stored["first_name"].crm_field == "firstname"

    def test_default_fields_wait_for_connection(self, activecampaign, settings):
        fields = settings.contact_fields
        fields["last_name"] = FieldDefinition(local_key="last_name", active=True)
        settings.set_contact_fields(fields)

        assert activecampaign.apply_default_fields() == {}
        assert settings.contact_fields["last_name"].crm_field is None

    def test_get_lists_active_only(self, activecampaign, mock_crm):
        mock_crm.add(
            "GET",
            f"{AC}/contacts/7/contactLists",
            (
                200,
                {
                    "contactLists": [
                        {"list": "1", "status": "1"},
                        {"list": "2", "status": "2"},
                        {"list": 3, "status": 1},
                    ]
                },
            ),
        )
        assert activecampaign.get_lists(7) == ["1", "3"]

    def test_get_contact_id(self, activecampaign, mock_crm):
        mock_crm.add("GET", f"{AC}/contacts", (200, {"contacts": [{"id": "7"}]}))
        assert activecampaign.get_contact_id("ada@example.com") == "7"
        assert mock_crm.requests[0].url.params["email"] == "ada@example.com"

    def test_add_contact_with_custom_field(self, activecampaign, mock_crm, settings):
        settings.set_contact_fields(
            {
                "email": FieldDefinition(local_key="email", crm_field="email", active=True),
                "birthday": FieldDefinition(
                    local_key="birthday", crm_field="field[3]", active=True, field_type="date"
                ),
            }
        )
        mock_crm.add("POST", f"{AC}/contacts", (201, {"contact": {"id": "8"}}))

        assert activecampaign.add_contact({"email": "ada@example.com", "birthday": 1700000000}) == "8"
        body = mock_crm.body(mock_crm.calls("POST", f"{AC}/contacts")[0])
        assert body == {
            "contact": {
                "email": "ada@example.com",
                "fieldValues": [{"field": "3", "value": "2023-11-14"}],
            }
        }

    def test_duplicate_contact_error(self, activecampaign, mock_crm):
        mock_crm.add(
            "POST",
            f"{AC}/contacts",
            (422, {"errors": [{"title": "Email address already exists in the system."}]}),
        )
        with pytest.raises(VendorError) as exc_info:
            activecampaign.add_contact({"first_name": "Ada"})
        assert exc_info.value.message.endswith(" - Email address already exists in the system.")

    def test_load_contact_flattens_field_values(self, activecampaign, mock_crm, settings):
        settings.set_contact_fields(
            {
                "first_name": FieldDefinition(local_key="first_name", crm_field="firstName", active=True),
                "birthday": FieldDefinition(local_key="birthday", crm_field="field[3]", active=True),
            }
        )
        mock_crm.add(
            "GET",
            f"{AC}/contacts/7",
            (
                200,
                {
                    "contact": {"id": "7", "firstName": "Ada"},
                    "fieldValues": [{"field": "3", "value": "1990-01-01"}],
                },
            ),
        )
        assert activecampaign.load_contact(7) == {"first_name": "Ada", "birthday": "1990-01-01"}

    def test_load_contacts_by_tag(self, activecampaign, mock_crm):
        def contacts(request):
            assert request.url.params["tagid"] == "4"
            offset = int(request.url.params["offset"])
            ids = range(1, 151)[offset : offset + 100]
            return httpx.Response(200, json={"contacts": [{"id": str(i)} for i in ids]})

        mock_crm.add("GET", f"{AC}/contacts", contacts)
        result = activecampaign.load_contacts("4")

        assert result == [str(i) for i in range(1, 151)]

    def test_build_contact_body_standard_only(self):
        assert build_contact_body({"email": "a@b.c"}) == {"contact": {"email": "a@b.c"}}
