"""CRM module for vendor-agnostic contact synchronization.

This module provides:
- Canonical CRM domain models (Contact, Tag, FieldDefinition, Credentials)
- Field mapping between local values and CRM formats
- CRM adapter interface (Protocol) and vendor adapters
- Adapter registry keyed by CRM slug
"""

from crmsync.crm.mapping import FieldMapper, format_field_value
from crmsync.crm.models import (
    Contact,
    ContactId,
    Credentials,
    FieldDefinition,
    FieldType,
    Tag,
)

__all__ = [
    "Contact",
    "ContactId",
    "Credentials",
    "FieldDefinition",
    "FieldType",
    "Tag",
    "FieldMapper",
    "format_field_value",
]
