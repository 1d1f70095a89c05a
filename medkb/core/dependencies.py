import os
from functools import lru_cache
from typing import Any, Optional

from medkb.services.catalog_store import get_catalog_store
from medkb.services.lookup import EMPTY_REMOTE_POLICY, MedicineLookupService
from medkb.services.remote_catalog import PostgrestCatalogClient, RemoteCatalogClient
from medkb.services.sql_catalog import SqlCatalogClient
from medkb.services.sync_orchestrator import CatalogSyncOrchestrator

# "rest" talks to PostgREST over HTTP, "sql" straight to PostgreSQL
REMOTE_BACKEND = os.getenv("MEDKB_REMOTE_BACKEND", "rest").strip().lower()


def build_remote_client(backend: str = REMOTE_BACKEND, session_factory: Optional[Any] = None) -> RemoteCatalogClient:
    if backend == "sql":
        if session_factory is None:
            from medkb.core.db import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        return SqlCatalogClient(session_factory)
    if backend == "rest":
        return PostgrestCatalogClient()
    raise ValueError(f"Unknown MEDKB_REMOTE_BACKEND {backend!r}; expected 'rest' or 'sql'")


@lru_cache
def _remote_client() -> RemoteCatalogClient:
    return build_remote_client()


@lru_cache
def _orchestrator() -> CatalogSyncOrchestrator:
    return CatalogSyncOrchestrator(_remote_client(), get_catalog_store)


@lru_cache
def get_lookup_service() -> MedicineLookupService:
    return MedicineLookupService(
        _remote_client(),
        get_catalog_store,
        empty_remote_policy=EMPTY_REMOTE_POLICY,
        orchestrator=_orchestrator(),
    )


def get_remote_client() -> RemoteCatalogClient:
    return _remote_client()


def create_orchestrator(client: RemoteCatalogClient) -> CatalogSyncOrchestrator:
    """Orchestrator bound to *client*; used by worker tasks that own their client."""
    return CatalogSyncOrchestrator(client, get_catalog_store)
