import asyncio
import logging
import os
from typing import Any, Optional

from celery import Celery
from celery.schedules import crontab

from medkb.core.dependencies import REMOTE_BACKEND, build_remote_client, create_orchestrator
from medkb.models.medicine import SyncProgress

celery_app = Celery(
    "medkb_worker",
    broker=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1"),
)

# ---------------------------------------------------------------------------
# Celery Beat: weekly catalog push, Sunday 02:00 local time
# ---------------------------------------------------------------------------
celery_app.conf.beat_schedule = {
    "sync-medicine-catalog-weekly": {
        "task": "task_sync_catalog",
        "schedule": crontab(minute=0, hour=2, day_of_week=0),
    },
}
celery_app.conf.timezone = "Asia/Dhaka"
logger = logging.getLogger(__name__)


def _log_progress(progress: SyncProgress) -> None:
    logger.info(
        "Catalog sync %s%% (%s/%s): %s",
        progress.percentage, progress.current, progress.total, progress.status,
    )


async def _sync_catalog(backend: str) -> dict[str, Any]:
    task_engine = None
    session_factory: Optional[Any] = None
    if backend == "sql":
        from medkb.core.db import create_task_session_factory

        task_engine, session_factory = create_task_session_factory()
    client = build_remote_client(backend, session_factory=session_factory)
    try:
        result = await create_orchestrator(client).sync_all(progress_callback=_log_progress)
        return result.model_dump(mode="json")
    finally:
        await client.close()
        if task_engine is not None:
            await task_engine.dispose()


@celery_app.task(name="task_sync_catalog")
def task_sync_catalog(backend: Optional[str] = None) -> dict[str, Any]:
    try:
        return asyncio.run(_sync_catalog(backend or REMOTE_BACKEND))
    except Exception:  # noqa: BLE001
        logger.exception("Catalog sync task failed")
        raise
