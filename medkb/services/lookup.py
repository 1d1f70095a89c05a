"""
Unified Lookup Facade.

Every read tries the remote store first and falls back to the bundled
catalog when the remote call fails.  The answer carries its provenance in
``LookupResult.source`` so callers can tell the paths apart, while the
records themselves always have the same ``MedicineRecord`` shape.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from medkb.models.medicine import MedicineRecord, SyncResult
from medkb.services import search as search_engine
from medkb.services.catalog_store import CatalogStore, get_catalog_store
from medkb.services.interactions import check_interactions as check_local_interactions
from medkb.services.remote_catalog import RemoteCatalogClient, RemoteResult, from_wire_record
from medkb.services.sync_orchestrator import CancellationToken, CatalogSyncOrchestrator, ProgressCallback

logger = logging.getLogger(__name__)


class LookupSource(str, Enum):
    REMOTE = "REMOTE"
    LOCAL = "LOCAL"
    EMPTY = "EMPTY"


class EmptyRemotePolicy(str, Enum):
    # An empty remote answer is treated like a failure and the local catalog is asked
    FALLBACK = "fallback"
    # An empty remote answer is returned as is
    TRUST = "trust"


EMPTY_REMOTE_POLICY = EmptyRemotePolicy(os.getenv("MEDKB_EMPTY_REMOTE_POLICY", "fallback").strip().lower())


class LookupResult(BaseModel):
    source: LookupSource
    records: tuple[MedicineRecord, ...] = ()

    model_config = {"frozen": True}

    @classmethod
    def empty(cls) -> "LookupResult":
        return cls(source=LookupSource.EMPTY)

    @classmethod
    def of(cls, source: LookupSource, records: Iterable[MedicineRecord]) -> "LookupResult":
        records = tuple(records)
        return cls(source=source if records else LookupSource.EMPTY, records=records)

    @property
    def first(self) -> Optional[MedicineRecord]:
        return self.records[0] if self.records else None

    def __len__(self) -> int:
        return len(self.records)


class InteractionResult(BaseModel):
    source: LookupSource
    report: dict[str, Any]


class MedicineLookupService:
    def __init__(
        self,
        client: RemoteCatalogClient,
        catalog_loader: Callable[[], CatalogStore] = get_catalog_store,
        *,
        empty_remote_policy: EmptyRemotePolicy = EMPTY_REMOTE_POLICY,
        orchestrator: Optional[CatalogSyncOrchestrator] = None,
    ) -> None:
        self._client = client
        self._catalog_loader = catalog_loader
        self._empty_remote_policy = empty_remote_policy
        self._orchestrator = orchestrator

    @property
    def empty_remote_policy(self) -> EmptyRemotePolicy:
        return self._empty_remote_policy

    @property
    def store(self) -> CatalogStore:
        return self._catalog_loader()

    @property
    def orchestrator(self) -> CatalogSyncOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = CatalogSyncOrchestrator(self._client, self._catalog_loader)
        return self._orchestrator

    async def _call_remote(self, operation: str, call: Callable[[], Awaitable[RemoteResult[Any]]]) -> RemoteResult[Any]:
        try:
            result = await call()
        except Exception as exc:  # noqa: BLE001
            result = RemoteResult(error=f"{type(exc).__name__}: {exc}")
        if not result.ok:
            logger.warning("Remote %s failed, using local catalog: %s", operation, result.error)
        return result

    def _to_records(self, rows: Iterable[dict[str, Any]], generic_name: Optional[str] = None) -> list[MedicineRecord]:
        records: list[MedicineRecord] = []
        for row in rows:
            try:
                records.append(from_wire_record(row, generic_name=generic_name))
            except (ValidationError, TypeError, AttributeError) as exc:
                logger.warning("Dropping malformed remote row %r: %s", row.get("id") if isinstance(row, dict) else row, exc)
        return records

    def _remote_list(self, operation: str, result: RemoteResult[Any], generic_name: Optional[str] = None) -> Optional[LookupResult]:
        """Remote answer to serve, or None when the local catalog must be asked."""
        if not result.ok:
            return None
        rows = list(result.data or [])
        records = self._to_records(rows, generic_name=generic_name)
        if records:
            return LookupResult.of(LookupSource.REMOTE, records)
        if rows:
            logger.warning("Remote %s returned no usable rows, using local catalog", operation)
            return None
        if self._empty_remote_policy is EmptyRemotePolicy.TRUST:
            return LookupResult.empty()
        logger.info("Remote %s returned nothing, using local catalog", operation)
        return None

    async def lookup(self, query: Optional[str], limit: int = search_engine.DEFAULT_LIMIT) -> LookupResult:
        term = search_engine.normalize_query(query)
        if len(term) < search_engine.MIN_QUERY_LENGTH or limit <= 0:
            return LookupResult.empty()

        remote = await self._call_remote("search", lambda: self._client.search(term, limit=limit))
        served = self._remote_list("search", remote)
        if served is not None:
            return LookupResult.of(served.source, served.records[:limit])
        return LookupResult.of(LookupSource.LOCAL, search_engine.search(self.store, term, limit))

    async def alternatives(self, generic_name: Optional[str]) -> LookupResult:
        name = (generic_name or "").strip()
        if not name:
            return LookupResult.empty()

        remote = await self._call_remote("alternatives", lambda: self._client.get_alternatives(name))
        served = self._remote_list("alternatives", remote, generic_name=name)
        if served is not None:
            return served
        return LookupResult.of(LookupSource.LOCAL, search_engine.alternatives_for(self.store, name))

    async def by_id(self, medicine_id: Optional[str]) -> LookupResult:
        medicine_id = (medicine_id or "").strip()
        if not medicine_id:
            return LookupResult.empty()

        remote = await self._call_remote("get_by_id", lambda: self._client.get_by_id(medicine_id))
        if remote.ok and remote.data:
            records = self._to_records([remote.data])
            if records:
                return LookupResult.of(LookupSource.REMOTE, records)
        local = self.store.by_id(medicine_id)
        return LookupResult.of(LookupSource.LOCAL, [local] if local is not None else [])

    async def by_indication(self, indication: Optional[str]) -> LookupResult:
        term = (indication or "").strip()
        if not term:
            return LookupResult.empty()

        remote = await self._call_remote("by_indication", lambda: self._client.get_by_indication(term))
        served = self._remote_list("by_indication", remote)
        if served is not None:
            return served
        return LookupResult.of(LookupSource.LOCAL, self.store.by_indication(term))

    async def check_interactions(self, medicine_ids: list[str]) -> InteractionResult:
        ids = [medicine_id for medicine_id in dict.fromkeys(medicine_ids) if medicine_id]
        if len(ids) >= 2:
            remote = await self._call_remote("check_interactions", lambda: self._client.check_interactions(ids))
            if remote.ok and remote.data is not None:
                return InteractionResult(source=LookupSource.REMOTE, report=remote.data)

        store = self.store
        records = [record for record in (store.by_id(medicine_id) for medicine_id in ids) if record is not None]
        report = check_local_interactions(records)
        return InteractionResult(source=LookupSource.LOCAL, report=report.model_dump(mode="json"))

    def popular(self, limit: int = 10) -> LookupResult:
        return LookupResult.of(LookupSource.LOCAL, self.store.popular(limit))

    async def sync_all(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        return await self.orchestrator.sync_all(progress_callback, cancel_token)
