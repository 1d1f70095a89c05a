"""
Catalog Store: the immutable in-process medicine catalog.

The master catalog is assembled once from disjoint therapeutic-category
partitions by :func:`build_catalog_store`.  Any integrity problem (malformed
row, missing required text, duplicated id across partitions) is fatal at
build time; a store that exists is always consistent and is never mutated.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from functools import lru_cache
from typing import Any, Optional

from pydantic import ValidationError

from medkb.data.partitions import load_bundled_partitions
from medkb.models.medicine import MedicineRecord

logger = logging.getLogger(__name__)

REQUIRED_TEXT_FIELDS: tuple[str, ...] = (
    "generic_name",
    "brand_name",
    "manufacturer",
    "strength",
    "form",
    "therapeutic_class",
)

# Commonly dispensed medicines, in display order
POPULAR_MEDICINE_IDS: tuple[str, ...] = (
    "para-001",
    "ome-001",
    "met-001",
    "sal-001",
    "amlo-001",
    "amoxi-001",
    "cet-001",
    "aten-001",
    "azith-001",
    "ibu-001",
)


class CatalogIntegrityError(ValueError):
    """Raised when the bundled catalog cannot be served safely."""


def _coerce_record(partition: str, position: int, row: MedicineRecord | Mapping[str, Any]) -> MedicineRecord:
    if isinstance(row, MedicineRecord):
        record = row
    else:
        try:
            record = MedicineRecord.model_validate(row)
        except ValidationError as exc:
            row_id = row.get("id") if isinstance(row, Mapping) else None
            raise CatalogIntegrityError(
                f"Malformed record #{position} ({row_id!r}) in partition '{partition}': {exc}"
            ) from exc

    missing = [name for name in REQUIRED_TEXT_FIELDS if not getattr(record, name).strip()]
    if missing:
        raise CatalogIntegrityError(
            f"Record {record.id!r} in partition '{partition}' is missing required fields: {', '.join(missing)}"
        )
    return record


class CatalogStore:
    """Read-only view over the master catalog; safe for concurrent readers."""

    def __init__(self, records: tuple[MedicineRecord, ...], partitions: Mapping[str, tuple[str, ...]]) -> None:
        self._records = records
        self._by_id = {record.id: record for record in records}
        self._partitions = dict(partitions)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MedicineRecord]:
        return iter(self._records)

    def __contains__(self, medicine_id: object) -> bool:
        return medicine_id in self._by_id

    def all(self) -> tuple[MedicineRecord, ...]:
        return self._records

    def by_id(self, medicine_id: str) -> Optional[MedicineRecord]:
        return self._by_id.get(medicine_id)

    def by_therapeutic_class(self, therapeutic_class: str) -> list[MedicineRecord]:
        term = (therapeutic_class or "").strip().lower()
        if not term:
            return []
        return [record for record in self._records if term in record.therapeutic_class.lower()]

    def by_indication(self, indication: str) -> list[MedicineRecord]:
        term = (indication or "").strip().lower()
        if not term:
            return []
        return [
            record
            for record in self._records
            if any(term in item.lower() for item in record.indication)
            or any(term in item.lower() for item in record.indication_bn)
        ]

    def prescription_required(self) -> list[MedicineRecord]:
        return [record for record in self._records if record.prescription_required]

    def otc(self) -> list[MedicineRecord]:
        return [record for record in self._records if not record.prescription_required]

    def therapeutic_classes(self) -> list[str]:
        return sorted({record.therapeutic_class for record in self._records})

    def manufacturers(self) -> list[str]:
        return sorted({record.manufacturer for record in self._records})

    def popular(self, limit: int = 10) -> list[MedicineRecord]:
        selected = [self._by_id[medicine_id] for medicine_id in POPULAR_MEDICINE_IDS if medicine_id in self._by_id]
        return selected[: max(limit, 0)]

    @property
    def partition_names(self) -> tuple[str, ...]:
        return tuple(self._partitions)

    def partition(self, name: str) -> list[MedicineRecord]:
        return [self._by_id[medicine_id] for medicine_id in self._partitions.get(name, ())]


def build_catalog_store(
    partitions: Mapping[str, Iterable[MedicineRecord | Mapping[str, Any]]],
) -> CatalogStore:
    """
    Concatenate the category partitions, in mapping order, into one store.

    Raises CatalogIntegrityError on the first malformed row or on an id that
    appears twice (within a partition or across partitions).
    """
    records: list[MedicineRecord] = []
    owners: dict[str, str] = {}
    partition_ids: dict[str, tuple[str, ...]] = {}

    for name, rows in partitions.items():
        ids: list[str] = []
        for position, row in enumerate(rows):
            record = _coerce_record(name, position, row)
            owner = owners.get(record.id)
            if owner is not None:
                raise CatalogIntegrityError(
                    f"Duplicate medicine id {record.id!r}: found in partition '{name}' and '{owner}'"
                )
            owners[record.id] = name
            ids.append(record.id)
            records.append(record)
        partition_ids[name] = tuple(ids)

    logger.info("Catalog built: %s records across %s partitions", len(records), len(partition_ids))
    return CatalogStore(tuple(records), partition_ids)


@lru_cache
def get_catalog_store() -> CatalogStore:
    """Process-wide store built from the bundled JSON partitions."""
    try:
        partitions = load_bundled_partitions()
    except (OSError, ValueError) as exc:
        raise CatalogIntegrityError(f"Bundled catalog could not be read: {exc}") from exc
    return build_catalog_store(partitions)
