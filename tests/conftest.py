"""Test configuration and fixtures."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple, Union

import httpx
import pytest

from crmsync.activity import ActivityLogger, LogStorage
from crmsync.crm.models import FieldDefinition
from crmsync.events import EventBus
from crmsync.settings import SettingsStore

RouteValue = Union[
    Tuple[int, Any],
    Callable[[httpx.Request], httpx.Response],
    List[Tuple[int, Any]],
]


class MockCRM:
    """Route table for httpx.MockTransport.

    Routes are keyed by (method, path). A value is either a (status, body)
    tuple, a list of such tuples served in order (the last one repeats), or
    a callable taking the request. Unrouted requests get a 404.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], RouteValue] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, value: RouteValue) -> None:
        self.routes[(method.upper(), path)] = value

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        value = self.routes.get((request.method, request.url.path))
        if value is None:
            return httpx.Response(404, json={"message": "no route"})
        if callable(value):
            return value(request)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        status, body = value
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def mock_crm() -> MockCRM:
    """Provide an empty route table."""
    return MockCRM()


@pytest.fixture
def contact_fields() -> Dict[str, FieldDefinition]:
    """Local field table shared by adapter and engine tests."""
    return {
        "first_name": FieldDefinition(
            local_key="first_name", crm_field="firstname", active=True
        ),
        "birthday": FieldDefinition(
            local_key="birthday", crm_field="birthday", active=True, field_type="date"
        ),
        "country": FieldDefinition(
            local_key="country", crm_field="country", active=True, field_type="country"
        ),
        "nickname": FieldDefinition(
            local_key="nickname", crm_field="nickname", active=False
        ),
    }


@pytest.fixture
def settings(contact_fields) -> SettingsStore:
    """In-memory settings store with a field table."""
    store = SettingsStore()
    store.set_contact_fields(contact_fields)
    return store


@pytest.fixture
def log_storage(tmp_path: Path) -> LogStorage:
    """Activity log database in a temporary directory."""
    return LogStorage(tmp_path / "activity.sqlite")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def activity_logger(settings, log_storage, bus) -> ActivityLogger:
    return ActivityLogger(settings, log_storage, bus=bus)
