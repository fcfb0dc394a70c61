"""Mapping layer: local field values <-> CRM field values.

Converts local user data into the payload a CRM expects and back:
- format_field_value: value formatting by field type (dates, countries, states)
- map_meta_fields: local values -> CRM payload for active field definitions
- extract_active_fields: CRM record -> local values for active field definitions

Everything here is pure: no settings lookups, no network. Callers pass the
field definitions in.
"""

import html
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from crmsync.crm.models import FieldDefinition, FieldType
from crmsync.crm.regions import COUNTRIES, STATES

_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")

DATE_TYPES = {FieldType.DATE.value, FieldType.DATEPICKER.value}


def _to_timestamp(value: Any) -> Optional[float]:
    """Interpret value as Unix epoch seconds, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMERIC.match(value.strip()):
        return float(value.strip())
    return None


def format_date(value: Any) -> Any:
    """Format a Unix timestamp as YYYY-MM-DD (UTC).

    Values that are not timestamps (already-formatted dates, empty strings)
    are returned unchanged.
    """
    timestamp = _to_timestamp(value)
    if timestamp is None:
        return value
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
    except (OverflowError, OSError, ValueError):
        return value


def clean_accents(value: str) -> str:
    """Decode HTML entities and strip accents (``S&atilde;o`` -> ``Sao``)."""
    decoded = html.unescape(value)
    normalized = unicodedata.normalize("NFKD", decoded)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def format_country(value: Any) -> Any:
    if isinstance(value, str) and value.upper() in COUNTRIES:
        return COUNTRIES[value.upper()]
    return value


def format_state(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value.upper() in STATES:
        return STATES[value.upper()]
    # Try and fix foreign characters before giving up
    cleaned = clean_accents(value)
    return STATES.get(cleaned.upper(), cleaned)


def format_field_value(value: Any, field_type: Optional[str]) -> Any:
    """Convert a local value into the representation the CRM expects.

    Unknown field types pass the value through unchanged.

    Args:
        value: Local field value
        field_type: FieldDefinition.field_type

    Returns:
        Formatted value
    """
    field_type = (field_type or "").lower()

    if field_type in DATE_TYPES:
        return format_date(value)
    if field_type == FieldType.COUNTRY.value:
        return format_country(value)
    if field_type == FieldType.STATE.value:
        return format_state(value)
    return value


class FieldMapper:
    """Maps local user data to CRM payloads using field definitions.

    Adapters may subclass this to add vendor formatting (e.g. Salesforce
    only needs date handling, Mautic also wants country/state names).
    """

    def format_field_value(self, value: Any, field_type: Optional[str]) -> Any:
        return format_field_value(value, field_type)

    def map_meta_fields(
        self,
        user_meta: Mapping[str, Any],
        contact_fields: Mapping[str, FieldDefinition],
    ) -> Dict[str, Any]:
        """Translate local values into a CRM payload.

        Only active definitions with a CRM field take part; values for
        unknown or inactive local keys are dropped.

        Args:
            user_meta: local_key -> value
            contact_fields: local_key -> FieldDefinition

        Returns:
            crm_field -> formatted value
        """
        payload: Dict[str, Any] = {}
        for local_key, value in user_meta.items():
            definition = contact_fields.get(local_key)
            if definition is None or not definition.active or not definition.crm_field:
                continue
            payload[definition.crm_field] = self.format_field_value(value, definition.field_type)
        return payload

    def extract_active_fields(
        self,
        crm_record: Mapping[str, Any],
        contact_fields: Mapping[str, FieldDefinition],
    ) -> Dict[str, Any]:
        """Pull local values out of a CRM record.

        Args:
            crm_record: crm_field -> value as returned by the CRM
            contact_fields: local_key -> FieldDefinition

        Returns:
            local_key -> value for every active definition present (non-null)
            in the record
        """
        user_meta: Dict[str, Any] = {}
        for local_key, definition in contact_fields.items():
            if not definition.active or not definition.crm_field:
                continue
            # null values count as absent
            if crm_record.get(definition.crm_field) is not None:
                user_meta[local_key] = crm_record[definition.crm_field]
        return user_meta


class DateOnlyFieldMapper(FieldMapper):
    """Formats dates but leaves countries and states as entered."""

    def format_field_value(self, value: Any, field_type: Optional[str]) -> Any:
        if (field_type or "").lower() in DATE_TYPES:
            return format_date(value)
        return value
