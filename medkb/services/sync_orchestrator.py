"""
Sync Orchestrator: push the local catalog to the remote store.

Batches run strictly one after another, in catalog order.  A batch that
still fails after the retry policy is exhausted is recorded record by record
in the ``SyncResult`` and the run moves on; only an error outside the batch
loop (the catalog cannot be read, for instance) aborts the whole run.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from medkb.models.medicine import (
    MedicineRecord,
    SyncErrorDetail,
    SyncProgress,
    SyncResult,
    SyncState,
)
from medkb.services.catalog_store import CatalogStore, get_catalog_store
from medkb.services.remote_catalog import (
    REMOTE_TIMEOUT,
    RemoteCatalogClient,
    RemoteCatalogError,
    UpsertOutcome,
    to_wire_record,
)
from medkb.services.retry import RetryPolicy, SYNC_MAX_ATTEMPTS, describe_error

logger = logging.getLogger(__name__)

SYNC_BATCH_SIZE = int(os.getenv("MEDKB_SYNC_BATCH_SIZE", "50"))
# Seconds between two batches, to bound backend load
SYNC_INTER_BATCH_DELAY = float(os.getenv("MEDKB_SYNC_INTER_BATCH_DELAY", "0.1"))

BATCH_ERROR_CONTEXT = "Batch processing failed"
UNACKNOWLEDGED_ERROR = "Record not acknowledged by remote"
MAIN_ERROR_CONTEXT = "Main sync process"

ProgressCallback = Callable[[SyncProgress], Union[None, Awaitable[None]]]


class SyncAlreadyRunningError(RuntimeError):
    """Raised when ``sync_all`` is called while a run is in progress."""


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchOutcome:
    size: int
    inserted: int = 0
    updated: int = 0
    attempts: int = 0
    error_details: list[SyncErrorDetail] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return len(self.error_details)


def partition(records: Sequence[MedicineRecord], batch_size: int) -> list[Sequence[MedicineRecord]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [records[i : i + batch_size] for i in range(0, len(records), batch_size)]


def _percentage(current: int, total: int) -> int:
    # Rounds half up
    if not total:
        return 100
    return (200 * current + total) // (2 * total)


class CatalogSyncOrchestrator:
    """
    One-way synchronization of the Catalog Store into a ``RemoteCatalogClient``.

    Only one run may be active per orchestrator; a concurrent ``sync_all``
    raises ``SyncAlreadyRunningError`` instead of queueing.  ``sleep``,
    ``clock`` and ``now`` are injectable so tests run without real delays.
    """

    def __init__(
        self,
        client: RemoteCatalogClient,
        catalog_loader: Callable[[], CatalogStore] = get_catalog_store,
        *,
        batch_size: int = SYNC_BATCH_SIZE,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        retry_policy: Optional[RetryPolicy] = None,
        inter_batch_delay: float = SYNC_INTER_BATCH_DELAY,
        request_timeout: Optional[float] = REMOTE_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._client = client
        self._catalog_loader = catalog_loader
        self._batch_size = batch_size
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=max_attempts, sleep=sleep)
        self._inter_batch_delay = inter_batch_delay
        self._request_timeout = request_timeout
        self._sleep = sleep
        self._clock = clock
        self._now = now or (lambda: datetime.now(tz=timezone.utc))
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def _upsert_once(self, rows: list[dict[str, Any]]) -> UpsertOutcome:
        call = self._client.upsert(rows)
        if self._request_timeout is not None:
            result = await asyncio.wait_for(call, timeout=self._request_timeout)
        else:
            result = await call
        if not result.ok:
            raise RemoteCatalogError(result.error)
        return result.data or UpsertOutcome()

    async def _process_batch(self, batch: Sequence[MedicineRecord], number: int) -> BatchOutcome:
        stamp = self._now()
        rows = [to_wire_record(record, now=stamp) for record in batch]
        outcome = await self._retry_policy.run(
            lambda: self._upsert_once(rows),
            description=f"Upsert of batch {number}",
        )
        if outcome.succeeded:
            upserted = outcome.value or UpsertOutcome()
            return BatchOutcome(
                size=len(batch),
                inserted=upserted.inserted,
                updated=upserted.updated,
                attempts=outcome.attempts,
                error_details=[
                    SyncErrorDetail(id=medicine_id, error=UNACKNOWLEDGED_ERROR, context=BATCH_ERROR_CONTEXT)
                    for medicine_id in upserted.missing
                ],
            )

        message = describe_error(outcome.error) if outcome.error else "Unknown error"
        logger.error(
            "Batch %s failed after %s attempts (%s records): %s",
            number, outcome.attempts, len(batch), message,
        )
        return BatchOutcome(
            size=len(batch),
            attempts=outcome.attempts,
            error_details=[
                SyncErrorDetail(id=record.id, error=message, context=BATCH_ERROR_CONTEXT) for record in batch
            ],
        )

    async def _emit(self, progress_callback: Optional[ProgressCallback], progress: SyncProgress) -> None:
        if progress_callback is None:
            return
        try:
            maybe_awaitable = progress_callback(progress)
            if asyncio.iscoroutine(maybe_awaitable) or isinstance(maybe_awaitable, asyncio.Future):
                await maybe_awaitable
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress callback failed at %s/%s: %s", progress.current, progress.total, exc)

    def _elapsed_ms(self, started: float) -> int:
        return int(round((self._clock() - started) * 1000))

    async def sync_all(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        if self._state is SyncState.RUNNING:
            raise SyncAlreadyRunningError("A catalog sync is already running")
        self._state = SyncState.RUNNING
        started = self._clock()

        processed = inserted = updated = 0
        error_details: list[SyncErrorDetail] = []
        try:
            records = self._catalog_loader().all()
            total = len(records)
            batches = partition(records, self._batch_size)
            logger.info("Catalog sync started: %s records in %s batches", total, len(batches))

            for number, batch in enumerate(batches, start=1):
                if cancel_token is not None and cancel_token.cancelled:
                    logger.warning("Catalog sync cancelled before batch %s of %s", number, len(batches))
                    self._state = SyncState.FAILED
                    return SyncResult(
                        success=False,
                        total_processed=processed,
                        inserted=inserted,
                        updated=updated,
                        errors=len(error_details),
                        error_details=error_details or None,
                        duration_ms=self._elapsed_ms(started),
                        cancelled=True,
                    )

                outcome = await self._process_batch(batch, number)
                processed += outcome.size
                inserted += outcome.inserted
                updated += outcome.updated
                error_details.extend(outcome.error_details)

                logger.info(
                    "Batch %s of %s done: %s/%s records, %s errors so far",
                    number, len(batches), processed, total, len(error_details),
                )
                await self._emit(
                    progress_callback,
                    SyncProgress(
                        current=processed,
                        total=total,
                        percentage=_percentage(processed, total),
                        status=f"Processing batch {number} of {len(batches)}...",
                    ),
                )
                if number < len(batches) and self._inter_batch_delay > 0:
                    await self._sleep(self._inter_batch_delay)

        except asyncio.CancelledError:
            self._state = SyncState.FAILED
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Catalog sync aborted: %s", exc)
            self._state = SyncState.FAILED
            return SyncResult(
                success=False,
                total_processed=0,
                inserted=inserted,
                updated=updated,
                errors=len(error_details) + 1,
                error_details=[SyncErrorDetail(id=None, error=describe_error(exc), context=MAIN_ERROR_CONTEXT)],
                duration_ms=self._elapsed_ms(started),
            )

        result = SyncResult(
            success=not error_details,
            total_processed=processed,
            inserted=inserted,
            updated=updated,
            errors=len(error_details),
            error_details=error_details or None,
            duration_ms=self._elapsed_ms(started),
        )
        self._state = SyncState.COMPLETED if result.success else SyncState.FAILED
        logger.info(
            "Catalog sync finished in %sms: %s processed, %s inserted, %s updated, %s errors",
            result.duration_ms, result.total_processed, result.inserted, result.updated, result.errors,
        )
        return result
