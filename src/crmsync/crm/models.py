"""Canonical CRM domain models (vendor-agnostic).

These models describe the records exchanged between the local user store
and whichever CRM adapter is active. Vendor identifiers (contact IDs,
tag IDs, field names) are kept opaque; only the adapters know their shape.
"""

from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# CRM-assigned identifiers are opaque: some vendors use integers, others strings
ContactId = Union[str, int]


class FieldType(str, Enum):
    """Known local field types that change how a value is formatted."""

    TEXT = "text"
    DATE = "date"
    DATEPICKER = "datepicker"
    COUNTRY = "country"
    STATE = "state"
    CHECKBOX = "checkbox"
    MULTISELECT = "multiselect"


class Tag(BaseModel):
    """A label that can be applied to a contact."""

    tag_id: str = Field(..., description="CRM-assigned identifier, unique per connection")
    label: str = Field(..., description="Display name")


class FieldDefinition(BaseModel):
    """Mapping between a local field slug and a CRM field.

    ``field_type`` is kept as a plain string so that types this package
    does not know about still round-trip; the mapper treats them as text.
    """

    local_key: str = Field(..., description="Local field slug (e.g. first_name)")
    crm_field: Optional[str] = Field(None, description="CRM field identifier")
    active: bool = Field(False, description="Whether the field takes part in syncs")
    field_type: str = Field(FieldType.TEXT.value, description="Value format")

    @field_validator("field_type", mode="before")
    @classmethod
    def normalize_field_type(cls, v: Any) -> str:
        """Accept FieldType members or free-form strings."""
        if isinstance(v, FieldType):
            return v.value
        if v is None or v == "":
            return FieldType.TEXT.value
        return str(v).lower()


class Contact(BaseModel):
    """External identity of a local user in the CRM."""

    contact_id: Optional[ContactId] = Field(None, description="CRM-assigned identifier")
    email: str = Field(..., description="Lookup key")
    fields: Dict[str, Any] = Field(default_factory=dict, description="local_key -> value")
    tags: Set[str] = Field(default_factory=set, description="Applied tag IDs")


class Credentials(BaseModel):
    """Per-CRM credential bundle (the Connection).

    Not every vendor uses every attribute: Mautic reads url/username/password,
    ActiveCampaign url/api_key, Salesforce username/password plus the OAuth
    client pair and caches access_token/instance_url after connecting.
    """

    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None
    instance_url: Optional[str] = None

    model_config = ConfigDict(extra="allow")
