"""HTTP client wrapper used by every CRM adapter.

Wraps httpx with RequestPolicy enforcement:
- Configurable timeouts (a timeout is a terminal TransportError)
- Error mapping to the ConnectorError hierarchy, with the vendor's own
  message appended to the HTTP status line when one can be extracted
- One-shot re-authentication: a 401 triggers a single reauth callback
  and a single retry of the original request

Tests inject an ``httpx.MockTransport`` through the ``transport`` argument.
"""

import json as json_module
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from .base import (
    AuthError,
    AuthStrategy,
    ConnectorError,
    NotFoundError,
    RequestPolicy,
    TimeoutError,
    TransportError,
    VendorError,
)

logger = logging.getLogger(__name__)

ErrorParser = Callable[[Any], Optional[str]]


@dataclass
class HTTPResponse:
    """Simplified HTTP response wrapper."""

    status_code: int
    headers: Dict[str, str]
    body: bytes
    reason: str = ""
    json_data: Optional[Any] = None
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        """Check if status code indicates success (2xx)."""
        return 200 <= self.status_code < 300

    @property
    def status_line(self) -> str:
        return f"{self.status_code} {self.reason}".strip()

    def json(self) -> Any:
        """Get JSON data (parsed body); None for an empty body."""
        if self.json_data is not None:
            return self.json_data
        if not self.body or not self.body.strip():
            return None
        self.json_data = json_module.loads(self.body)
        return self.json_data

    def try_json(self) -> Any:
        """Parsed body, or None when the body is not JSON."""
        try:
            return self.json()
        except ValueError:
            return None


class HTTPClient:
    """HTTP client with policy enforcement and single reauth-retry."""

    def __init__(
        self,
        auth: Optional[AuthStrategy] = None,
        policy: Optional[RequestPolicy] = None,
        base_url: str = "",
        connector_name: str = "http_client",
        error_parser: Optional[ErrorParser] = None,
        reauthenticate: Optional[Callable[[], None]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize HTTP client.

        Args:
            auth: Authentication strategy for requests
            policy: Request policy (timeouts, headers)
            base_url: Base URL for relative paths
            connector_name: Name used in raised errors
            error_parser: Extracts a vendor message from a parsed error body
            reauthenticate: Called once when a request gets a 401; it must
                refresh ``auth`` in place or raise AuthError
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.auth = auth
        self.policy = policy or RequestPolicy()
        self.base_url = base_url.rstrip("/")
        self.connector_name = connector_name
        self.error_parser = error_parser
        self.reauthenticate = reauthenticate
        self.transport = transport

    def _build_headers(self, extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Build request headers including auth and defaults."""
        headers = {"User-Agent": self.policy.user_agent, "Accept": "application/json"}
        headers.update(self.policy.default_headers)

        if self.auth:
            headers.update(self.auth.get_headers())

        if extra_headers:
            headers.update(extra_headers)

        return headers

    def _get_url(self, path: str) -> str:
        """Build full URL from path."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _vendor_message(self, response: HTTPResponse) -> Optional[str]:
        if self.error_parser is None:
            return None
        body = response.try_json()
        if body is None:
            return None
        try:
            return self.error_parser(body)
        except (KeyError, IndexError, TypeError, AttributeError):
            return None

    def map_error(self, response: HTTPResponse) -> ConnectorError:
        """Map a non-2xx response to the appropriate ConnectorError."""
        message = response.status_line
        vendor_message = self._vendor_message(response)
        if vendor_message:
            message = f"{message} - {vendor_message}"
        elif not message:
            message = f"HTTP error {response.status_code}"

        status_code = response.status_code
        if status_code in (401, 403):
            return AuthError(message, self.connector_name, status_code=status_code)
        if status_code == 404:
            return NotFoundError(message, self.connector_name)
        return VendorError(message, self.connector_name, status_code=status_code)

    def _execute_request(
        self,
        method: str,
        url: str,
        request_headers: Dict[str, str],
        timeout: httpx.Timeout,
        json: Optional[Any],
        data: Optional[Any],
        params: Optional[Dict[str, Any]],
    ) -> HTTPResponse:
        """Execute a single HTTP request."""
        start_time = time.monotonic()
        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.request(
                    method=method,
                    url=url,
                    json=json,
                    data=data,
                    params=params,
                    headers=request_headers,
                )
        except httpx.TimeoutException:
            raise TimeoutError(
                f"Request timed out after {self.policy.read_timeout}s",
                connector_name=self.connector_name,
                timeout_seconds=self.policy.read_timeout,
            )
        except httpx.ConnectError as e:
            raise TransportError(f"Failed to connect to {url}: {e}", self.connector_name)
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", self.connector_name)

        elapsed = time.monotonic() - start_time
        return HTTPResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            reason=response.reason_phrase,
            elapsed_seconds=elapsed,
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        raise_for_status: bool = True,
    ) -> HTTPResponse:
        """Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: URL path (relative to base_url) or absolute URL
            json: JSON body to send
            data: Form data to send
            params: Query parameters
            headers: Additional headers
            raise_for_status: Raise exception on non-2xx status

        Returns:
            HTTPResponse with status, headers, and body

        Raises:
            AuthError: On 401/403 (after the single reauth-retry, if enabled)
            NotFoundError: On 404
            VendorError: On any other non-2xx status
            TransportError: On timeout or connection failure
        """
        url = self._get_url(path)
        timeout = httpx.Timeout(
            self.policy.read_timeout,
            connect=self.policy.connect_timeout,
        )

        result = self._execute_request(
            method, url, self._build_headers(headers), timeout, json, data, params
        )

        if result.status_code == 401 and self.reauthenticate is not None:
            logger.info(f"{self.connector_name}: 401 on {method} {url}, re-authenticating once")
            self.reauthenticate()
            # Headers are rebuilt so the refreshed token is used
            result = self._execute_request(
                method, url, self._build_headers(headers), timeout, json, data, params
            )

        if raise_for_status and not result.ok:
            raise self.map_error(result)

        return result

    def get(self, path: str, **kwargs) -> HTTPResponse:
        """HTTP GET request."""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> HTTPResponse:
        """HTTP POST request."""
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> HTTPResponse:
        """HTTP PUT request."""
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs) -> HTTPResponse:
        """HTTP PATCH request."""
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs) -> HTTPResponse:
        """HTTP DELETE request."""
        return self.request("DELETE", path, **kwargs)
