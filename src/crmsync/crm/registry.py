"""CRM Adapter Registry and Factory.

Maps CRM slugs to adapter classes and creates the active adapter from
the settings store.

Usage:
    # Active CRM from settings (falls back to CRMSYNC_CRM)
    adapter = CRMAdapterFactory.from_settings(settings)

    # Or explicit slug
    adapter = CRMAdapterFactory.create("mautic", settings=settings)
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

if TYPE_CHECKING:
    from crmsync.crm.adapters.base import BaseCRMAdapter
    from crmsync.settings import SettingsStore

logger = logging.getLogger(__name__)


class CRMAdapterRegistryError(ValueError):
    """Error raised by the CRM adapter registry."""

    pass


class CRMAdapterRegistry:
    """Registry of available CRM adapters.

    Adapters register themselves at import time.
    New vendor adapters can be added by:
    1. Implementing BaseCRMAdapter
    2. Calling CRMAdapterRegistry.register("slug", AdapterClass)
    """

    _adapters: Dict[str, Type[BaseCRMAdapter]] = {}

    @classmethod
    def register(cls, name: str, adapter_class: Type[BaseCRMAdapter]) -> None:
        """Register an adapter class.

        Args:
            name: CRM slug (e.g., "mautic", "salesforce")
            adapter_class: Class implementing BaseCRMAdapter
        """
        cls._adapters[name.lower()] = adapter_class

    @classmethod
    def unregister(cls, name: str) -> None:
        """Unregister an adapter (mainly for testing)."""
        cls._adapters.pop(name.lower(), None)

    @classmethod
    def get(cls, name: str) -> Optional[Type[BaseCRMAdapter]]:
        """Get an adapter class by slug, or None if not found."""
        return cls._adapters.get(name.lower())

    @classmethod
    def list_adapters(cls) -> list[str]:
        """List all registered adapter slugs."""
        return sorted(cls._adapters.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        """Check if an adapter is registered."""
        return name.lower() in cls._adapters


class CRMAdapterFactory:
    """Factory for creating CRM adapter instances.

    Environment Variables:
        CRMSYNC_CRM: Adapter slug used when the settings store has none
    """

    @classmethod
    def from_settings(cls, settings: "SettingsStore", **kwargs: Any) -> "BaseCRMAdapter":
        """Create the adapter for the CRM selected in the settings store.

        Args:
            settings: Settings store (the "crm" key selects the adapter)
            **kwargs: Additional arguments passed to adapter constructor

        Returns:
            Configured adapter instance

        Raises:
            CRMAdapterRegistryError: If no CRM is configured or the slug is unknown
        """
        name = settings.crm or os.getenv("CRMSYNC_CRM")
        if not name:
            raise CRMAdapterRegistryError(
                "No active CRM configured. Set the 'crm' setting or CRMSYNC_CRM."
            )
        return cls.create(name, settings=settings, **kwargs)

    @classmethod
    def create(cls, name: str, settings: "SettingsStore", **kwargs: Any) -> "BaseCRMAdapter":
        """Create an adapter instance by slug.

        Raises:
            CRMAdapterRegistryError: If adapter not found
        """
        adapter_class = CRMAdapterRegistry.get(name)

        if adapter_class is None:
            available = CRMAdapterRegistry.list_adapters()
            raise CRMAdapterRegistryError(f"Unknown CRM adapter: '{name}'. Available: {available}")

        logger.debug(f"Creating CRM adapter '{name}'")
        return adapter_class(settings=settings, **kwargs)


# =============================================================================
# Auto-register built-in adapters on import
# =============================================================================


def _register_builtin_adapters() -> None:
    """Register built-in adapters."""
    from crmsync.crm.adapters.activecampaign import ActiveCampaignAdapter
    from crmsync.crm.adapters.mautic import MauticAdapter
    from crmsync.crm.adapters.salesforce import SalesforceAdapter

    CRMAdapterRegistry.register("activecampaign", ActiveCampaignAdapter)
    CRMAdapterRegistry.register("mautic", MauticAdapter)
    CRMAdapterRegistry.register("salesforce", SalesforceAdapter)


# Register on import
_register_builtin_adapters()
