"""Registry Lookup: resolves the canonical Entity for one input row.

Tiers, first hit wins:
1. Knowledge store record younger than the staleness threshold (no network)
2. Local registry dataset (number, then name)
3. Live registry portal
4. Whatever the caller supplied, preferring a stale cached record if one exists

Captures carrying more than a bare name are written back to the knowledge store.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from prospector.errors import RegistryNotFoundError
from prospector.knowledge.store import ContractorKnowledge, KnowledgeStore
from prospector.models import ContractorInput, Entity, EvidenceKind
from prospector.registry.dataset import RegistryDataset, number_key
from prospector.registry.types import RegistryPortal, RegistryRecord

logger = logging.getLogger(__name__)

_USABLE = re.compile(r"[A-Za-z0-9]")


class EvidenceSink(Protocol):
    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Any: ...


def _entity_from_record(
    record: RegistryRecord | ContractorKnowledge,
    registry_number: str,
    display_name: str,
    source: str,
    input: ContractorInput | None = None,
) -> Entity:
    fallback = input or ContractorInput(registry_number=registry_number, contractor_name=display_name)
    return Entity(
        registry_number=registry_number,
        contractor_name=record.contractor_name or display_name,
        business_name=record.business_name,
        address=record.address or (fallback.city if fallback.city else None),
        phone=record.phone or fallback.phone,
        classification=record.classification or fallback.classification,
        license_status=record.license_status or fallback.license_status,
        official_website=record.website or fallback.website,
        source=source,
    )


class RegistryLookup:
    """Cache, dataset, portal, then input. Raises only when nothing is buildable."""

    def __init__(
        self,
        store: KnowledgeStore,
        dataset: RegistryDataset | None = None,
        portal: RegistryPortal | None = None,
        registry_label: str = "Arizona ROC",
    ) -> None:
        self._store = store
        self._dataset = dataset
        self._portal = portal
        self._label = registry_label

    async def lookup(
        self,
        registry_number: str,
        display_name: str,
        input: ContractorInput | None = None,
        evidence: EvidenceSink | None = None,
    ) -> Entity:
        number = (registry_number or "").strip()
        name = (display_name or "").strip()
        usable_number = bool(_USABLE.search(number))

        cached = await self._store.get_contractor(number) if usable_number else None
        if cached is not None and self._store.is_fresh(cached):
            logger.info("registry_cache_hit", extra={"registry_number": number})
            entity = _entity_from_record(cached, number, name, "cache", input)
            self._attach(evidence, entity, "knowledge_store", url=None)
            return entity

        record, source, url = await self._capture(number if usable_number else "", name)
        if record is not None:
            entity = _entity_from_record(record, number or record.registry_number, name, source, input)
            # a name match under another number describes a different contractor
            matched_other = usable_number and bool(record.registry_number) and (
                number_key(record.registry_number) != number_key(number)
            )
            if matched_other:
                logger.info(
                    "registry_name_match_not_cached",
                    extra={"registry_number": number, "matched": record.registry_number},
                )
            elif record.has_enrichment():
                await self._store.upsert_contractor(
                    ContractorKnowledge(
                        registry_number=entity.registry_number,
                        contractor_name=entity.contractor_name,
                        business_name=record.business_name,
                        website=record.website,
                        address=record.address,
                        phone=record.phone,
                        classification=record.classification,
                        license_status=record.license_status,
                        source=source,
                    )
                )
            self._attach(evidence, entity, source, url=url)
            return entity

        if not usable_number or not name:
            raise RegistryNotFoundError(number)

        if cached is not None:
            logger.info("registry_stale_cache_used", extra={"registry_number": number})
            entity = _entity_from_record(cached, number, name, "stale_cache", input)
        else:
            entity = _entity_from_record(
                RegistryRecord(registry_number=number), number, name, "input", input
            )
        self._attach(evidence, entity, entity.source, url=None)
        return entity

    async def _capture(
        self, number: str, name: str
    ) -> tuple[RegistryRecord | None, str, str | None]:
        if self._dataset is not None and self._dataset.configured:
            record = self._dataset.find(number, name)
            if record is not None and not record.is_empty():
                logger.info("registry_dataset_hit", extra={"registry_number": number})
                return record, "dataset", None

        if self._portal is not None and number:
            record = await self._portal.lookup(number)
            if record is not None and not record.is_empty():
                return record, "portal", self._portal.search_url(number)

        return None, "", None

    def _attach(
        self, evidence: EvidenceSink | None, entity: Entity, source: str, url: str | None
    ) -> None:
        if evidence is None:
            return
        evidence.add_evidence(
            EvidenceKind.REGISTRY_RECORD,
            f"{self._label} ({source})",
            json.dumps(entity.model_dump(exclude={"id"}), ensure_ascii=False),
            url=url,
        )
