"""Core connector abstractions.

Defines the transport-level building blocks shared by every CRM adapter:
- AuthStrategy: Authentication method abstraction (Basic, API key, OAuth token)
- RequestPolicy: Timeouts and default headers
- ConnectorError hierarchy: Typed exceptions

Error taxonomy:
- AuthError: bad or expired credentials (401/403)
- TransportError: network failure or timeout, terminal per call
- NotFoundError: expected negative result (404, no such contact)
- UnsupportedFeatureError: the vendor lacks a capability (e.g. tags)
- VendorError: the API returned a structured error payload
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# =============================================================================
# Authentication Strategies
# =============================================================================


@dataclass
class AuthStrategy:
    """Base authentication strategy (data holder)."""

    def get_headers(self) -> Dict[str, str]:
        """Get authentication headers for requests."""
        return {}


@dataclass
class ApiKeyAuth(AuthStrategy):
    """API key authentication.

    Typical usage: Authorization: Bearer <key> or Api-Token: <key>
    """

    api_key: str = ""
    header_name: str = "Authorization"
    header_prefix: str = "Bearer"

    def get_headers(self) -> Dict[str, str]:
        """Get authorization header."""
        if not self.api_key:
            return {}
        if self.header_prefix:
            return {self.header_name: f"{self.header_prefix} {self.api_key}"}
        return {self.header_name: self.api_key}


@dataclass
class OAuthTokenAuth(AuthStrategy):
    """OAuth bearer token obtained from a token endpoint.

    The token is mutable: adapters overwrite ``access_token`` after
    re-authenticating, and the next request picks it up.
    """

    access_token: str = ""
    token_type: str = "Bearer"

    def get_headers(self) -> Dict[str, str]:
        """Get authorization header."""
        if not self.access_token:
            return {}
        return {"Authorization": f"{self.token_type} {self.access_token}"}


@dataclass
class BasicAuth(AuthStrategy):
    """Basic authentication (username/password)."""

    username: str = ""
    password: str = ""

    def get_headers(self) -> Dict[str, str]:
        """Get Basic authorization header."""
        if not (self.username and self.password):
            return {}
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode("ascii")
        return {"Authorization": f"Basic {token}"}


# =============================================================================
# Request Policy
# =============================================================================


@dataclass
class RequestPolicy:
    """Policy for HTTP requests: timeouts and default headers.

    There are no automatic retries. A timeout is a terminal TransportError;
    the only retry is the single re-authentication retry on 401.
    """

    connect_timeout: float = 10.0  # seconds
    read_timeout: float = 30.0  # seconds

    user_agent: str = "crmsync/1.0"
    default_headers: Dict[str, str] = field(default_factory=dict)


# Observed vendor timeouts
DEFAULT_POLICY = RequestPolicy()

SALESFORCE_POLICY = RequestPolicy(read_timeout=240.0)

MAUTIC_POLICY = RequestPolicy(read_timeout=30.0)

ACTIVECAMPAIGN_POLICY = RequestPolicy(read_timeout=20.0)


# =============================================================================
# Error Hierarchy
# =============================================================================


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(
        self,
        message: str,
        connector_name: str = "",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.connector_name = connector_name
        self.details = details or {}
        self.status_code = status_code

    def __str__(self) -> str:
        if self.connector_name:
            return f"[{self.connector_name}] {self.message}"
        return self.message


class AuthError(ConnectorError):
    """Authentication failed (bad or expired credentials)."""

    pass


class TransportError(ConnectorError):
    """Network failure; terminal for the call that raised it."""

    pass


class TimeoutError(TransportError):
    """Request timed out."""

    def __init__(
        self,
        message: str = "Request timed out",
        connector_name: str = "",
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__(message, connector_name, {"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class NotFoundError(ConnectorError):
    """Requested resource not found."""

    def __init__(
        self,
        message: str = "Resource not found",
        connector_name: str = "",
        resource_type: str = "",
        resource_id: str = "",
        status_code: Optional[int] = 404,
    ):
        super().__init__(
            message,
            connector_name,
            {"resource_type": resource_type, "resource_id": resource_id},
            status_code=status_code,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class UnsupportedFeatureError(ConnectorError):
    """The vendor does not offer a capability (tags, lists, ...)."""

    def __init__(self, feature: str, connector_name: str = ""):
        super().__init__(f"Feature not supported: {feature}", connector_name, {"feature": feature})
        self.feature = feature


class VendorError(ConnectorError):
    """The vendor API returned an error payload."""

    pass


@dataclass
class ConnectResult:
    """Outcome of a connect() attempt.

    connect() reports expected auth/network failures here instead of raising.
    """

    success: bool
    error: Optional[ConnectorError] = None
    message: str = ""
    session: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def failed(cls, error: ConnectorError) -> "ConnectResult":
        return cls(success=False, error=error, message=error.message)
