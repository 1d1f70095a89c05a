from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, literal_column, select
from sqlalchemy import text as sa_text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medkb.models.medicine import MedicineKnowledgeBase
from medkb.services.remote_catalog import (
    RPC_ALTERNATIVES,
    RPC_BY_INDICATION,
    RPC_DETAILS,
    RPC_INTERACTIONS,
    RPC_SEARCH,
    SCHEMA_CHECKS,
    RemoteCatalogClient,
    RemoteResult,
    SchemaValidation,
    SearchFilters,
    UpsertOutcome,
    schema_issue,
)

logger = logging.getLogger(__name__)

_TABLE = MedicineKnowledgeBase.__table__
# Overwritten on conflict; created_at keeps the first insert's stamp
UPSERT_UPDATE_COLUMNS: tuple[str, ...] = tuple(
    column.name for column in _TABLE.columns if column.name not in {"id", "created_at"}
)
_TIMESTAMP_COLUMNS = ("created_at", "updated_at")
# text[] needs an explicit cast when bound from a Python list
_CHECK_ARGUMENTS = {RPC_INTERACTIONS: "CAST(:medicine_ids AS text[])"}


def _coerce_row(row: dict[str, Any]) -> dict[str, Any]:
    coerced = {key: value for key, value in row.items() if key in _TABLE.c}
    for name in _TIMESTAMP_COLUMNS:
        value = coerced.get(name)
        if isinstance(value, str):
            coerced[name] = datetime.fromisoformat(value)
    return coerced


def build_upsert_statement(rows: list[dict[str, Any]]):
    """
    INSERT … ON CONFLICT (id) DO UPDATE SET … for a batch of wire rows.

    ``RETURNING (xmax = 0)`` is true for freshly inserted tuples and false
    for rows rewritten by the conflict branch.
    """
    statement = pg_insert(MedicineKnowledgeBase).values([_coerce_row(row) for row in rows])
    return statement.on_conflict_do_update(
        index_elements=[_TABLE.c.id],
        set_={col: getattr(statement.excluded, col) for col in UPSERT_UPDATE_COLUMNS},
    ).returning(_TABLE.c.id, literal_column("(xmax = 0)").label("inserted"))


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _named_arguments(params: dict[str, Any]) -> str:
    return ", ".join(f"{name} => :{name}" for name in params)


class SqlCatalogClient(RemoteCatalogClient):
    """Remote contract served straight from PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _rows(self, function: str, arguments: str, params: dict[str, Any]) -> RemoteResult[list[dict[str, Any]]]:
        statement = sa_text(f"SELECT * FROM {function}({arguments})")
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement, params)
                rows = [dict(row) for row in result.mappings().all()]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SQL catalog call %s failed: %s", function, exc)
            return RemoteResult(error=_error_text(exc))
        return RemoteResult(data=rows)

    async def _scalar(self, function: str, arguments: str, params: dict[str, Any]) -> RemoteResult[Any]:
        statement = sa_text(f"SELECT {function}({arguments})")
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement, params)
                value = result.scalar()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SQL catalog call %s failed: %s", function, exc)
            return RemoteResult(error=_error_text(exc))
        return RemoteResult(data=value)

    async def search(
        self,
        query: str,
        limit: int = 10,
        offset: int = 0,
        filters: Optional[SearchFilters] = None,
    ) -> RemoteResult[list[dict[str, Any]]]:
        filters = filters or SearchFilters()
        return await self._rows(
            RPC_SEARCH,
            ":search_query, :limit_count, :offset_count, :therapeutic_class_filter, :prescription_filter",
            {
                "search_query": query or "",
                "limit_count": limit,
                "offset_count": offset,
                "therapeutic_class_filter": filters.therapeutic_class,
                "prescription_filter": filters.prescription_required,
            },
        )

    async def get_by_id(self, medicine_id: str) -> RemoteResult[dict[str, Any]]:
        result = await self._scalar(RPC_DETAILS, ":medicine_id", {"medicine_id": medicine_id})
        if not result.ok:
            return RemoteResult(error=result.error)
        data = result.data
        if not isinstance(data, dict) or not data:
            return RemoteResult(error="Medicine not found")
        if data.get("error"):
            return RemoteResult(error=str(data["error"]))
        return RemoteResult(data=data)

    async def get_alternatives(self, generic_name: str) -> RemoteResult[list[dict[str, Any]]]:
        return await self._rows(RPC_ALTERNATIVES, ":generic_name_param", {"generic_name_param": generic_name})

    async def check_interactions(self, medicine_ids: list[str]) -> RemoteResult[dict[str, Any]]:
        result = await self._scalar(
            RPC_INTERACTIONS, "CAST(:medicine_ids AS text[])", {"medicine_ids": list(medicine_ids)}
        )
        if not result.ok:
            return RemoteResult(error=result.error)
        data = result.data
        if isinstance(data, dict) and data.get("error"):
            return RemoteResult(error=str(data["error"]))
        return RemoteResult(data=data if isinstance(data, dict) else {"result": data})

    async def get_by_indication(self, indication: str) -> RemoteResult[list[dict[str, Any]]]:
        return await self._rows(RPC_BY_INDICATION, ":indication_param", {"indication_param": indication})

    async def upsert(self, rows: list[dict[str, Any]]) -> RemoteResult[UpsertOutcome]:
        if not rows:
            return RemoteResult(data=UpsertOutcome())
        try:
            async with self._session_factory() as session:
                result = await session.execute(build_upsert_statement(rows))
                flags = [bool(row.inserted) for row in result.all()]
                await session.commit()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SQL upsert of %s rows failed: %s", len(rows), exc)
            return RemoteResult(error=_error_text(exc))
        inserted = sum(flags)
        return RemoteResult(data=UpsertOutcome(inserted=inserted, updated=len(flags) - inserted))

    async def list_active(self) -> RemoteResult[list[dict[str, Any]]]:
        statement = select(
            _TABLE.c.id, _TABLE.c.updated_at, _TABLE.c.therapeutic_class, _TABLE.c.manufacturer
        ).where(_TABLE.c.is_active.is_(True))
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = [dict(row) for row in result.mappings().all()]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SQL active listing failed: %s", exc)
            return RemoteResult(error=_error_text(exc))
        return RemoteResult(data=rows)

    async def validate_schema(self) -> RemoteResult[SchemaValidation]:
        report = SchemaValidation()
        try:
            async with self._session_factory() as session:
                await session.execute(select(_TABLE.c.id).limit(1))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            report.issues.append(schema_issue("Table access", _error_text(exc)))
        for function, params in SCHEMA_CHECKS:
            answer = await self._rows(function, _CHECK_ARGUMENTS.get(function, _named_arguments(params)), params)
            if not answer.ok:
                report.issues.append(schema_issue(f"Function {function}", answer.error))
        return RemoteResult(data=report)

    async def clear(self) -> RemoteResult[int]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(MedicineKnowledgeBase))
                await session.commit()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("SQL catalog clear failed: %s", exc)
            return RemoteResult(error=_error_text(exc))
        deleted = max(result.rowcount or 0, 0)
        logger.warning("Cleared %s rows from %s", deleted, _TABLE.name)
        return RemoteResult(data=deleted)
