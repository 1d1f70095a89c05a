"""
Remote Catalog Client: contract against the canonical medicine store.

Every operation reports ``RemoteResult(data, error)`` instead of raising, so
callers branch explicitly on failure.  The client holds no retry or cache
logic: write retries belong to the sync orchestrator, the read fallback
policy to the lookup service.

Two transforms live here as well:

- :func:`to_wire_record` flattens a ``MedicineRecord`` into the upsert row
  of ``medicine_knowledge_base`` (``price_min``/``price_max``, flattened
  pregnancy data, ``is_active`` and audit timestamps).
- :func:`from_wire_record` is the inverse, tolerant of the partial rows the
  stored functions return.
"""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

import aiohttp

from medkb.models.medicine import (
    LIST_FIELDS,
    REMOTE_CURRENCY,
    REMOTE_TABLE_NAME,
    MedicineRecord,
    PregnancyCategory,
)

T = TypeVar("T")
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
REMOTE_URL = os.getenv("MEDKB_REMOTE_URL", "http://localhost:54321")
REMOTE_API_KEY = os.getenv("MEDKB_REMOTE_API_KEY", "")
REMOTE_TABLE = os.getenv("MEDKB_REMOTE_TABLE", REMOTE_TABLE_NAME)
# Seconds; a timed-out request is reported like any other remote failure
REMOTE_TIMEOUT = float(os.getenv("MEDKB_REMOTE_TIMEOUT", "15"))

# Stored functions exposed by the backend
RPC_SEARCH = "search_medicine_knowledge_base"
RPC_DETAILS = "get_medicine_knowledge_details"
RPC_ALTERNATIVES = "get_alternative_brands"
RPC_INTERACTIONS = "check_drug_interactions"
RPC_BY_INDICATION = "get_medicines_by_indication"

# Cheap calls used to check that each stored function answers
SCHEMA_CHECKS: tuple[tuple[str, dict[str, Any]], ...] = (
    (RPC_SEARCH, {"search_query": "test", "limit_count": 1}),
    (RPC_DETAILS, {"medicine_id": ""}),
    (RPC_ALTERNATIVES, {"generic_name_param": ""}),
    (RPC_INTERACTIONS, {"medicine_ids": []}),
    (RPC_BY_INDICATION, {"indication_param": ""}),
)

_TEXT_FIELDS: tuple[str, ...] = (
    "id",
    "generic_name",
    "brand_name",
    "generic_name_bn",
    "brand_name_bn",
    "manufacturer",
    "manufacturer_bn",
    "strength",
    "form",
    "form_bn",
    "therapeutic_class",
    "therapeutic_class_bn",
    "common_dosage",
    "common_dosage_bn",
    "storage_instructions",
    "storage_instructions_bn",
)


@dataclass
class RemoteResult(Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UpsertOutcome:
    inserted: int = 0
    updated: int = 0
    # Ids sent but not acknowledged by the backend
    missing: tuple[str, ...] = ()


@dataclass
class SchemaValidation:
    issues: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues


@dataclass
class SearchFilters:
    therapeutic_class: Optional[str] = None
    prescription_required: Optional[bool] = None


class RemoteCatalogError(RuntimeError):
    """A remote call reported an error string."""


# ---------------------------------------------------------------------------
# Wire transforms
# ---------------------------------------------------------------------------


def to_wire_record(record: MedicineRecord, now: Optional[datetime] = None) -> dict[str, Any]:
    """Flatten *record* into the ``medicine_knowledge_base`` upsert row."""
    stamp = (now or datetime.now(tz=timezone.utc)).isoformat()
    pregnancy = record.pregnancy_lactation
    row: dict[str, Any] = {name: getattr(record, name) for name in _TEXT_FIELDS}
    row.update({name: list(getattr(record, name)) for name in LIST_FIELDS})
    row.update(
        {
            "price_min": record.price_range.min,
            "price_max": record.price_range.max,
            "currency": REMOTE_CURRENCY,
            "prescription_required": record.prescription_required,
            "pregnancy_category": pregnancy.pregnancy_category.value if pregnancy.pregnancy_category else None,
            "pregnancy_info": pregnancy.pregnancy_info,
            "pregnancy_info_bn": pregnancy.pregnancy_info_bn,
            "lactation_info": pregnancy.lactation_info,
            "lactation_info_bn": pregnancy.lactation_info_bn,
            "is_active": True,
            "created_at": stamp,
            "updated_at": stamp,
        }
    )
    return row


def _parse_price(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_category(value: Any) -> Optional[PregnancyCategory]:
    if not value:
        return None
    try:
        return PregnancyCategory(str(value).strip().upper())
    except ValueError:
        return None


def from_wire_record(row: dict[str, Any], generic_name: Optional[str] = None) -> MedicineRecord:
    """
    Rebuild a ``MedicineRecord`` from a remote row.

    Stored functions return column subsets (``get_alternative_brands`` omits
    ``generic_name``), so missing text defaults to blank, missing lists to
    empty, and *generic_name* fills the gap when the caller knows it.
    Raises pydantic ``ValidationError`` on rows that cannot form a record.
    """
    payload: dict[str, Any] = {name: row.get(name) for name in _TEXT_FIELDS if row.get(name) is not None}
    payload["id"] = str(row.get("id") or "")
    if generic_name and not payload.get("generic_name"):
        payload["generic_name"] = generic_name
    payload.setdefault("generic_name", "")
    payload.setdefault("brand_name", "")
    for name in LIST_FIELDS:
        payload[name] = row.get(name) or []
    price_min = _parse_price(row.get("price_min"))
    # A missing upper bound collapses the range onto the lower one
    price_max = _parse_price(row.get("price_max")) if row.get("price_max") is not None else price_min
    payload["price_range"] = {"min": price_min, "max": price_max}
    payload["prescription_required"] = bool(row.get("prescription_required") or False)
    payload["pregnancy_lactation"] = {
        "pregnancy_category": _parse_category(row.get("pregnancy_category")),
        "pregnancy_info": row.get("pregnancy_info") or "",
        "lactation_info": row.get("lactation_info") or "",
        "pregnancy_info_bn": row.get("pregnancy_info_bn"),
        "lactation_info_bn": row.get("lactation_info_bn"),
    }
    return MedicineRecord.model_validate(payload)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class RemoteCatalogClient(ABC):
    @abstractmethod
    async def search(
        self,
        query: str,
        limit: int = 10,
        offset: int = 0,
        filters: Optional[SearchFilters] = None,
    ) -> RemoteResult[list[dict[str, Any]]]: ...

    @abstractmethod
    async def get_by_id(self, medicine_id: str) -> RemoteResult[dict[str, Any]]: ...

    @abstractmethod
    async def get_alternatives(self, generic_name: str) -> RemoteResult[list[dict[str, Any]]]: ...

    @abstractmethod
    async def check_interactions(self, medicine_ids: list[str]) -> RemoteResult[dict[str, Any]]: ...

    @abstractmethod
    async def get_by_indication(self, indication: str) -> RemoteResult[list[dict[str, Any]]]: ...

    @abstractmethod
    async def upsert(self, rows: list[dict[str, Any]]) -> RemoteResult[UpsertOutcome]:
        """Insert-or-update keyed by ``id``; existing rows are overwritten."""

    @abstractmethod
    async def list_active(self) -> RemoteResult[list[dict[str, Any]]]:
        """Active rows with ``id, updated_at, therapeutic_class, manufacturer``."""

    @abstractmethod
    async def validate_schema(self) -> RemoteResult[SchemaValidation]:
        """Check the table and every stored function; problems land in ``issues``."""

    @abstractmethod
    async def clear(self) -> RemoteResult[int]:
        """Delete every row of the catalog table and report how many went."""

    async def close(self) -> None:
        return None


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


def schema_issue(target: str, error: Optional[str]) -> str:
    return f"{target} error: {error}"


class PostgrestCatalogClient(RemoteCatalogClient):
    """
    Client for a PostgREST (Supabase-style) deployment of the catalog.

    Stored functions are called through ``POST /rest/v1/rpc/<name>`` and the
    bulk upsert through ``POST /rest/v1/<table>?on_conflict=id`` with
    ``Prefer: resolution=merge-duplicates``.
    """

    def __init__(
        self,
        base_url: str = REMOTE_URL,
        api_key: str = REMOTE_API_KEY,
        table: str = REMOTE_TABLE,
        timeout: float = REMOTE_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._table = table
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> RemoteResult[Any]:
        url = f"{self._base_url}/rest/v1/{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, params=params, headers=headers
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        # ValueError covers a 2xx body that is not JSON (proxy error pages)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Remote catalog %s %s failed: %s", method, path, _error_text(exc))
            return RemoteResult(error=_error_text(exc))
        return RemoteResult(data=data)

    async def _post(
        self,
        path: str,
        payload: Any,
        params: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> RemoteResult[Any]:
        return await self._request("POST", path, payload, params=params, headers=headers)

    async def _rpc_rows(self, function: str, payload: dict[str, Any]) -> RemoteResult[list[dict[str, Any]]]:
        result = await self._post(f"rpc/{function}", payload)
        if not result.ok:
            return RemoteResult(error=result.error)
        return RemoteResult(data=list(result.data or []))

    async def search(
        self,
        query: str,
        limit: int = 10,
        offset: int = 0,
        filters: Optional[SearchFilters] = None,
    ) -> RemoteResult[list[dict[str, Any]]]:
        filters = filters or SearchFilters()
        return await self._rpc_rows(
            RPC_SEARCH,
            {
                "search_query": query or "",
                "limit_count": limit,
                "offset_count": offset,
                "therapeutic_class_filter": filters.therapeutic_class,
                "prescription_filter": filters.prescription_required,
            },
        )

    async def get_by_id(self, medicine_id: str) -> RemoteResult[dict[str, Any]]:
        result = await self._post(f"rpc/{RPC_DETAILS}", {"medicine_id": medicine_id})
        if not result.ok:
            return RemoteResult(error=result.error)
        data = result.data
        if not isinstance(data, dict) or not data or data.get("error"):
            message = data.get("error") if isinstance(data, dict) and data.get("error") else "Medicine not found"
            return RemoteResult(error=message)
        return RemoteResult(data=data)

    async def get_alternatives(self, generic_name: str) -> RemoteResult[list[dict[str, Any]]]:
        return await self._rpc_rows(RPC_ALTERNATIVES, {"generic_name_param": generic_name})

    async def check_interactions(self, medicine_ids: list[str]) -> RemoteResult[dict[str, Any]]:
        result = await self._post(f"rpc/{RPC_INTERACTIONS}", {"medicine_ids": list(medicine_ids)})
        if not result.ok:
            return RemoteResult(error=result.error)
        if isinstance(result.data, dict) and result.data.get("error"):
            return RemoteResult(error=str(result.data["error"]))
        return RemoteResult(data=result.data if isinstance(result.data, dict) else {"result": result.data})

    async def get_by_indication(self, indication: str) -> RemoteResult[list[dict[str, Any]]]:
        return await self._rpc_rows(RPC_BY_INDICATION, {"indication_param": indication})

    async def upsert(self, rows: list[dict[str, Any]]) -> RemoteResult[UpsertOutcome]:
        if not rows:
            return RemoteResult(data=UpsertOutcome())
        result = await self._post(
            self._table,
            rows,
            params={"on_conflict": "id", "select": "id"},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        if not result.ok:
            return RemoteResult(error=result.error)
        echoed = {str(row.get("id")) for row in result.data or [] if isinstance(row, dict)}
        missing = tuple(str(row["id"]) for row in rows if str(row["id"]) not in echoed)
        if missing:
            logger.warning("Upsert acknowledged %s of %s rows", len(rows) - len(missing), len(rows))
        # PostgREST does not tell inserts from updates; every acknowledged row counts as inserted
        return RemoteResult(data=UpsertOutcome(inserted=len(rows) - len(missing), missing=missing))

    async def list_active(self) -> RemoteResult[list[dict[str, Any]]]:
        params = {"select": "id,updated_at,therapeutic_class,manufacturer", "is_active": "eq.true"}
        result = await self._request("GET", self._table, params=params)
        if not result.ok:
            return RemoteResult(error=result.error)
        return RemoteResult(data=list(result.data or []))

    async def validate_schema(self) -> RemoteResult[SchemaValidation]:
        report = SchemaValidation()
        table = await self._request("GET", self._table, params={"select": "id", "limit": "1"})
        if not table.ok:
            report.issues.append(schema_issue("Table access", table.error))
        for function, payload in SCHEMA_CHECKS:
            answer = await self._post(f"rpc/{function}", payload)
            if not answer.ok:
                report.issues.append(schema_issue(f"Function {function}", answer.error))
        return RemoteResult(data=report)

    async def clear(self) -> RemoteResult[int]:
        result = await self._request(
            "DELETE",
            self._table,
            params={"id": "not.is.null", "select": "id"},
            headers={"Prefer": "return=representation"},
        )
        if not result.ok:
            return RemoteResult(error=result.error)
        deleted = len(result.data or [])
        logger.warning("Cleared %s rows from %s", deleted, self._table)
        return RemoteResult(data=deleted)
