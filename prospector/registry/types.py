"""Registry capture types and the portal capability interface."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

ENRICHMENT_FIELDS = (
    "business_name",
    "website",
    "address",
    "phone",
    "classification",
    "license_status",
)


class RegistryRecord(BaseModel):
    """Fields captured for one registry number by a dataset row or portal page."""

    registry_number: str
    contractor_name: str | None = None
    business_name: str | None = None
    website: str | None = None
    address: str | None = None
    phone: str | None = None
    classification: str | None = None
    license_status: str | None = None

    def has_enrichment(self) -> bool:
        return any(getattr(self, name) for name in ENRICHMENT_FIELDS)

    def is_empty(self) -> bool:
        return not self.contractor_name and not self.has_enrichment()


class RegistryPortal(Protocol):
    """Live registry lookup. Returns None when the portal yields nothing usable."""

    def search_url(self, registry_number: str) -> str: ...

    async def lookup(self, registry_number: str) -> RegistryRecord | None: ...
