from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from medkb.models.medicine import MedicineRecord

MIN_QUERY_LENGTH = 2
DEFAULT_LIMIT = 10
logger = logging.getLogger(__name__)


def normalize_query(query: str | None) -> str:
    return (query or "").strip().lower()


def _searchable_fields(record: MedicineRecord) -> Iterator[str]:
    yield record.generic_name
    yield record.brand_name
    if record.generic_name_bn:
        yield record.generic_name_bn
    if record.brand_name_bn:
        yield record.brand_name_bn
    yield record.manufacturer
    yield record.therapeutic_class
    yield from record.indication
    yield from record.indication_bn
    yield from record.keywords_bn
    yield from record.alternatives


def matches(record: MedicineRecord, term: str) -> bool:
    """Plain substring predicate: "cillin" matches "Amoxicillin"."""
    return any(term in field.lower() for field in _searchable_fields(record) if field)


def is_exact_match(record: MedicineRecord, term: str) -> bool:
    return record.brand_name.lower() == term or record.generic_name.lower() == term


def search(records: Iterable[MedicineRecord], query: str | None, limit: int = DEFAULT_LIMIT) -> list[MedicineRecord]:
    """
    Filter *records* by substring over the bilingual text fields and rank them.

    Exact brand/generic matches come first; within each tier catalog order is
    kept (``sorted`` is stable).  Truncation happens after ranking so an exact
    match deep in the catalog is never cut off.
    """
    term = normalize_query(query)
    if len(term) < MIN_QUERY_LENGTH or limit <= 0:
        return []

    candidates = [record for record in records if matches(record, term)]
    ranked = sorted(candidates, key=lambda record: 0 if is_exact_match(record, term) else 1)
    logger.debug("Local search %r: %s candidates", term, len(candidates))
    return ranked[:limit]


def alternatives_for(records: Iterable[MedicineRecord], generic_name: str | None) -> list[MedicineRecord]:
    """Every record sharing *generic_name* (case-insensitive), in catalog order."""
    target = normalize_query(generic_name)
    if not target:
        return []
    return [record for record in records if record.generic_name.lower() == target]
