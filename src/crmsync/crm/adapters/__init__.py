"""CRM Adapters module.

Provides the adapter interface (Protocol), the shared base class and the
vendor implementations (ActiveCampaign, Mautic, Salesforce).
CRMAdapterRegistry and CRMAdapterFactory select the active one by slug.
"""

from crmsync.crm.adapters.activecampaign import ActiveCampaignAdapter
from crmsync.crm.adapters.base import (
    BaseCRMAdapter,
    CRMAdapter,
)
from crmsync.crm.adapters.mautic import MauticAdapter
from crmsync.crm.adapters.salesforce import SalesforceAdapter


# Lazy import to avoid circular dependency
def __getattr__(name):
    """Lazy imports for registry components."""
    if name in ("CRMAdapterRegistry", "CRMAdapterFactory"):
        from crmsync.crm.registry import CRMAdapterFactory, CRMAdapterRegistry

        if name == "CRMAdapterRegistry":
            return CRMAdapterRegistry
        return CRMAdapterFactory
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "CRMAdapter",
    "BaseCRMAdapter",
    "ActiveCampaignAdapter",
    "MauticAdapter",
    "SalesforceAdapter",
    "CRMAdapterRegistry",
    "CRMAdapterFactory",
]
