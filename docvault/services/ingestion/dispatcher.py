"""Scheduling of ingestion runs: inline or through a worker queue.

Both modes call the same :meth:`IngestionPipeline.process`.

* **inline** -- the caller awaits the run and sees the terminal status.
* **queued** -- document ids go onto an :class:`IngestionQueue` served by
  a fixed pool of worker tasks; the caller gets ``pending`` back at once.

A run that raises out of the pipeline (the pipeline itself reports
ordinary failures through the document status) is redelivered up to
``max_attempts`` times, then dropped with an ``ingestion_dead_lettered``
log event.  Both modes report which documents they currently hold
(:meth:`IngestionDispatcher.is_scheduled`), so that
:class:`~docvault.services.ingestion.reclaimer.LeaseReclaimer` only picks up
``pending`` documents nobody holds and ``processing`` documents whose lease
lapsed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from docvault.models.documents import DocumentStatus
from docvault.models.ingestion import IngestionOutcome
from docvault.utils.errors import ConfigurationError, NotFoundError

if TYPE_CHECKING:
    from docvault.services.ingestion.pipeline import IngestionPipeline

logger = structlog.get_logger(logger_name=__name__)

INGESTION_MODES = ("inline", "queued")


@dataclass
class _QueueItem:
    document_id: str
    attempt: int = 1


class IngestionQueue:
    """``asyncio.Queue``-backed worker pool for pipeline runs.

    Parameters
    ----------
    pipeline:
        The pipeline each worker runs.
    max_attempts:
        Deliveries per document before it is dead-lettered.
    """

    def __init__(self, pipeline: IngestionPipeline, max_attempts: int = 3) -> None:
        self._pipeline = pipeline
        self._max_attempts = max(1, max_attempts)
        self._queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._dead_letters: list[str] = []
        self._scheduled: set[str] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def dead_letters(self) -> list[str]:
        """Ids of documents that exhausted their delivery attempts."""
        return list(self._dead_letters)

    def is_scheduled(self, document_id: str) -> bool:
        """Whether *document_id* is waiting in the queue or being processed."""
        return document_id in self._scheduled

    def start(self, workers: int = 2) -> None:
        """Spawn *workers* consumer tasks on the running loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingestion-worker-{i}")
            for i in range(max(1, workers))
        ]
        logger.info("ingestion_queue_started", workers=len(self._workers))

    async def enqueue(self, document_id: str) -> None:
        self._scheduled.add(document_id)
        await self._queue.put(_QueueItem(document_id=document_id))
        logger.debug("ingestion_enqueued", document_id=document_id, depth=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every enqueued document (and redelivery) has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers and drop queued items.

        Dropped documents stay ``pending`` until a reclaimer sweep
        dispatches them again.
        """
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        abandoned = sorted(self._scheduled)
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._scheduled.clear()
        logger.info("ingestion_queue_stopped", abandoned=len(abandoned), document_ids=abandoned or None)

    async def _worker(self, worker_id: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                if not await self._run(item, worker_id):
                    self._scheduled.discard(item.document_id)
            finally:
                self._queue.task_done()

    async def _run(self, item: _QueueItem, worker_id: int) -> bool:
        """Process one delivery; return ``True`` if it was put back on the queue."""
        try:
            outcome = await self._pipeline.process(item.document_id)
        except NotFoundError:
            logger.warning("ingestion_document_gone", document_id=item.document_id)
            return False
        except Exception as exc:
            if item.attempt < self._max_attempts:
                logger.warning(
                    "ingestion_redelivered",
                    document_id=item.document_id,
                    attempt=item.attempt,
                    error=str(exc),
                )
                await self._queue.put(_QueueItem(item.document_id, item.attempt + 1))
                return True
            self._dead_letters.append(item.document_id)
            logger.error(
                "ingestion_dead_lettered",
                document_id=item.document_id,
                attempts=item.attempt,
                error=str(exc),
            )
            return False
        logger.debug(
            "ingestion_worker_done",
            worker=worker_id,
            document_id=item.document_id,
            status=outcome.status.value,
        )
        return False


class IngestionDispatcher:
    """Hands new or reclaimed documents to the pipeline.

    Parameters
    ----------
    pipeline:
        Used directly in inline mode.
    mode:
        ``"inline"`` or ``"queued"``.
    queue:
        Required in queued mode.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        mode: str = "inline",
        queue: IngestionQueue | None = None,
    ) -> None:
        if mode not in INGESTION_MODES:
            raise ConfigurationError(f"Unknown ingestion mode {mode!r}; expected one of {INGESTION_MODES}")
        if mode == "queued" and queue is None:
            raise ConfigurationError("Queued ingestion mode needs an IngestionQueue")
        self._pipeline = pipeline
        self._mode = mode
        self._queue = queue
        self._in_flight: set[str] = set()

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def queue(self) -> IngestionQueue | None:
        return self._queue

    async def dispatch(self, document_id: str) -> IngestionOutcome:
        """Schedule one run.

        Inline mode returns the terminal outcome; queued mode returns a
        ``pending`` outcome immediately.
        """
        if self._mode == "queued" and self._queue is not None:
            await self._queue.enqueue(document_id)
            return IngestionOutcome(document_id=document_id, status=DocumentStatus.PENDING)
        self._in_flight.add(document_id)
        try:
            return await self._pipeline.process(document_id)
        finally:
            self._in_flight.discard(document_id)

    def is_scheduled(self, document_id: str) -> bool:
        """Whether this process currently holds *document_id* for ingestion."""
        if self._queue is not None and self._queue.is_scheduled(document_id):
            return True
        return document_id in self._in_flight
