"""Connector layer for CRM vendor HTTP APIs.

Key components:
- AuthStrategy: Authentication abstraction (BasicAuth, ApiKeyAuth, OAuthTokenAuth)
- RequestPolicy: Timeouts and default headers
- ConnectorError hierarchy: AuthError, TransportError, NotFoundError,
  UnsupportedFeatureError, VendorError
- HTTPClient: httpx wrapper with error mapping and single reauth-retry
"""

from .base import (
    ACTIVECAMPAIGN_POLICY,
    DEFAULT_POLICY,
    MAUTIC_POLICY,
    SALESFORCE_POLICY,
    ApiKeyAuth,
    AuthError,
    AuthStrategy,
    BasicAuth,
    ConnectorError,
    ConnectResult,
    NotFoundError,
    OAuthTokenAuth,
    RequestPolicy,
    TimeoutError,
    TransportError,
    UnsupportedFeatureError,
    VendorError,
)
from .http_client import HTTPClient, HTTPResponse

__all__ = [
    # Auth
    "AuthStrategy",
    "ApiKeyAuth",
    "OAuthTokenAuth",
    "BasicAuth",
    # Policy
    "RequestPolicy",
    "DEFAULT_POLICY",
    "SALESFORCE_POLICY",
    "MAUTIC_POLICY",
    "ACTIVECAMPAIGN_POLICY",
    # Errors
    "ConnectorError",
    "AuthError",
    "TransportError",
    "TimeoutError",
    "NotFoundError",
    "UnsupportedFeatureError",
    "VendorError",
    "ConnectResult",
    # HTTP client
    "HTTPClient",
    "HTTPResponse",
]
