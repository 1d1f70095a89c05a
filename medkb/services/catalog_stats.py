from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Optional

import polars as pl
from pydantic import BaseModel, Field

from medkb.models.medicine import MedicineRecord
from medkb.services.catalog_store import CatalogStore
from medkb.services.remote_catalog import RemoteCatalogClient

logger = logging.getLogger(__name__)

# Remote holds at least this share of the local catalog to count as synced
SYNCED_THRESHOLD = 0.95


class ClassCount(BaseModel):
    therapeutic_class: str
    count: int


class CatalogSummary(BaseModel):
    total: int = 0
    therapeutic_classes: int = 0
    manufacturers: int = 0
    prescription_required: int = 0
    otc: int = 0
    by_class: list[ClassCount] = Field(default_factory=list)


class SyncStatusReport(BaseModel):
    local_total: int
    remote_total: int = 0
    remote_therapeutic_classes: int = 0
    remote_manufacturers: int = 0
    last_updated: Optional[datetime] = None
    is_synced: bool = False
    error: Optional[str] = None


def _records_frame(records: Iterable[MedicineRecord]) -> pl.DataFrame:
    return pl.DataFrame(
        [
            {
                "id": record.id,
                "therapeutic_class": record.therapeutic_class,
                "manufacturer": record.manufacturer,
                "prescription_required": record.prescription_required,
            }
            for record in records
        ],
        schema={
            "id": pl.Utf8,
            "therapeutic_class": pl.Utf8,
            "manufacturer": pl.Utf8,
            "prescription_required": pl.Boolean,
        },
    )


def summarize_records(records: Iterable[MedicineRecord]) -> CatalogSummary:
    """Catalog totals plus a per-class count table, largest class first."""
    frame = _records_frame(records)
    if frame.is_empty():
        return CatalogSummary()

    prescription = int(frame.get_column("prescription_required").sum())
    by_class = (
        frame.group_by("therapeutic_class")
        .agg(pl.len().alias("count"))
        .sort(["count", "therapeutic_class"], descending=[True, False])
    )
    return CatalogSummary(
        total=frame.height,
        therapeutic_classes=frame.get_column("therapeutic_class").n_unique(),
        manufacturers=frame.get_column("manufacturer").n_unique(),
        prescription_required=prescription,
        otc=frame.height - prescription,
        by_class=[ClassCount(**row) for row in by_class.to_dicts()],
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, datetime):
        try:
            value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _remote_frame(rows: list[Mapping[str, Any]]) -> pl.DataFrame:
    return pl.DataFrame(
        [
            {
                "id": str(row.get("id") or ""),
                "therapeutic_class": row.get("therapeutic_class"),
                "manufacturer": row.get("manufacturer"),
                "updated_at": _parse_timestamp(row.get("updated_at")),
            }
            for row in rows
        ],
        schema={
            "id": pl.Utf8,
            "therapeutic_class": pl.Utf8,
            "manufacturer": pl.Utf8,
            "updated_at": pl.Datetime(time_zone="UTC"),
        },
    )


async def get_sync_status(client: RemoteCatalogClient, store: CatalogStore) -> SyncStatusReport:
    local_total = len(store)
    result = await client.list_active()
    if not result.ok:
        logger.warning("Could not read remote sync status: %s", result.error)
        return SyncStatusReport(local_total=local_total, error=result.error)

    frame = _remote_frame(list(result.data or []))
    if frame.is_empty():
        return SyncStatusReport(local_total=local_total, is_synced=local_total == 0)

    remote_total = frame.height
    return SyncStatusReport(
        local_total=local_total,
        remote_total=remote_total,
        remote_therapeutic_classes=frame.get_column("therapeutic_class").drop_nulls().n_unique(),
        remote_manufacturers=frame.get_column("manufacturer").drop_nulls().n_unique(),
        last_updated=frame.get_column("updated_at").max(),
        is_synced=remote_total >= SYNCED_THRESHOLD * local_total,
    )
