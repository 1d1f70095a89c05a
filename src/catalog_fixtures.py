"""Shared builders and an in-memory remote store for the test modules."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from medkb.models.medicine import MedicineRecord
from medkb.services.catalog_store import CatalogStore, build_catalog_store
from medkb.services.remote_catalog import (
    RemoteCatalogClient,
    RemoteResult,
    SchemaValidation,
    SearchFilters,
    UpsertOutcome,
)


def make_record(medicine_id: str, generic_name: str = "Paracetamol", brand_name: Optional[str] = None, **overrides: Any) -> MedicineRecord:
    data: dict[str, Any] = {
        "id": medicine_id,
        "generic_name": generic_name,
        "brand_name": brand_name or medicine_id.title(),
        "manufacturer": "Square Pharmaceuticals",
        "strength": "500mg",
        "form": "Tablet",
        "therapeutic_class": "Analgesic",
        "price_range": {"min": 1.0, "max": 2.0},
    }
    data.update(overrides)
    return MedicineRecord.model_validate(data)


def make_store(*records: MedicineRecord, partition: str = "test") -> CatalogStore:
    return build_catalog_store({partition: list(records)})


def numbered_records(count: int) -> list[MedicineRecord]:
    return [make_record(f"med-{index:03d}", generic_name=f"Compound {index}") for index in range(count)]


class FakeRemoteCatalog(RemoteCatalogClient):
    """
    In-memory remote store.

    ``failures`` maps the first id of a batch to the number of upsert calls
    for that batch that must fail before it succeeds (``-1`` fails forever).
    """

    def __init__(
        self,
        failures: Optional[dict[str, int]] = None,
        search_rows: Optional[list[dict[str, Any]]] = None,
        search_error: Optional[str] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.failures = dict(failures or {})
        self.search_rows = search_rows
        self.search_error = search_error
        self.gate = gate
        self.rows: dict[str, dict[str, Any]] = {}
        self.upsert_calls: list[list[str]] = []
        self.search_calls: list[tuple[str, int]] = []
        self.list_error: Optional[str] = None
        # Ids the store silently drops on upsert
        self.unacknowledged: set[str] = set()
        self.schema_issues: list[str] = []
        self.closed = False

    async def search(self, query: str, limit: int = 10, offset: int = 0, filters: Optional[SearchFilters] = None) -> RemoteResult[list[dict[str, Any]]]:
        self.search_calls.append((query, limit))
        if self.search_error:
            return RemoteResult(error=self.search_error)
        if self.search_rows is not None:
            return RemoteResult(data=list(self.search_rows))
        term = query.lower()
        return RemoteResult(
            data=[row for row in self.rows.values() if term in row["generic_name"].lower() or term in row["brand_name"].lower()][:limit]
        )

    async def get_by_id(self, medicine_id: str) -> RemoteResult[dict[str, Any]]:
        if self.search_error:
            return RemoteResult(error=self.search_error)
        row = self.rows.get(medicine_id)
        if row is None:
            return RemoteResult(error="Medicine not found")
        return RemoteResult(data=dict(row))

    async def get_alternatives(self, generic_name: str) -> RemoteResult[list[dict[str, Any]]]:
        if self.search_error:
            return RemoteResult(error=self.search_error)
        return RemoteResult(data=[row for row in self.rows.values() if row["generic_name"].lower() == generic_name.lower()])

    async def check_interactions(self, medicine_ids: list[str]) -> RemoteResult[dict[str, Any]]:
        if self.search_error:
            return RemoteResult(error=self.search_error)
        return RemoteResult(data={"has_interactions": False, "interactions": [], "medicine_count": len(medicine_ids)})

    async def get_by_indication(self, indication: str) -> RemoteResult[list[dict[str, Any]]]:
        if self.search_error:
            return RemoteResult(error=self.search_error)
        term = indication.lower()
        return RemoteResult(data=[row for row in self.rows.values() if any(term in item.lower() for item in row["indication"])])

    async def upsert(self, rows: list[dict[str, Any]]) -> RemoteResult[UpsertOutcome]:
        ids = [row["id"] for row in rows]
        self.upsert_calls.append(ids)
        if self.gate is not None:
            await self.gate.wait()
        remaining = self.failures.get(ids[0], 0)
        if remaining != 0:
            self.failures[ids[0]] = remaining - 1 if remaining > 0 else remaining
            return RemoteResult(error="backend unavailable")
        missing = tuple(medicine_id for medicine_id in ids if medicine_id in self.unacknowledged)
        accepted = [row for row in rows if row["id"] not in self.unacknowledged]
        inserted = sum(1 for row in accepted if row["id"] not in self.rows)
        for row in accepted:
            self.rows[row["id"]] = dict(row)
        return RemoteResult(data=UpsertOutcome(inserted=inserted, updated=len(accepted) - inserted, missing=missing))

    async def list_active(self) -> RemoteResult[list[dict[str, Any]]]:
        if self.list_error:
            return RemoteResult(error=self.list_error)
        return RemoteResult(
            data=[
                {key: row.get(key) for key in ("id", "updated_at", "therapeutic_class", "manufacturer")}
                for row in self.rows.values()
                if row.get("is_active", True)
            ]
        )

    async def validate_schema(self) -> RemoteResult[SchemaValidation]:
        return RemoteResult(data=SchemaValidation(issues=list(self.schema_issues)))

    async def clear(self) -> RemoteResult[int]:
        deleted = len(self.rows)
        self.rows.clear()
        return RemoteResult(data=deleted)

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, first_id: str) -> int:
        return sum(1 for call in self.upsert_calls if call[0] == first_id)
