"""Recovery of documents whose ingestion never finished.

A pipeline run holds a lease on its document and renews it after every
chunk window.  If the process dies mid-run the lease lapses; a sweep
moves such documents back to ``pending`` and dispatches them again.

Documents can also be stranded in ``pending``: queued but dropped when
the worker queue stopped, or inserted by a process that died before
dispatching.  Once such a document has sat untouched for the grace
period and this process does not hold it, the sweep dispatches it too.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from docvault.utils.errors import DocVaultError

if TYPE_CHECKING:
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.services.ingestion.dispatcher import IngestionDispatcher

logger = structlog.get_logger(logger_name=__name__)


class LeaseReclaimer:
    """Re-dispatches documents stuck in ``processing`` or ``pending``.

    Parameters
    ----------
    metadata_store:
        Source of expired leases and stale pending rows.
    dispatcher:
        Runs the reclaimed documents; also asked which documents it
        already holds.
    pending_grace_seconds:
        How long a ``pending`` document may sit unchanged before it counts
        as stranded.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        dispatcher: IngestionDispatcher,
        pending_grace_seconds: int = 120,
    ) -> None:
        self._store = metadata_store
        self._dispatcher = dispatcher
        self._pending_grace_seconds = max(0, pending_grace_seconds)

    async def sweep(self) -> list[str]:
        """Run one reclamation pass.

        Returns
        -------
        list[str]
            Ids of the documents that were reclaimed and re-dispatched,
            expired leases first.
        """
        expired = await self._store.reclaim_expired_leases()
        stranded = [
            document_id
            for document_id in await self._store.find_stale_pending(self._pending_grace_seconds)
            if document_id not in expired and not self._dispatcher.is_scheduled(document_id)
        ]
        reclaimed = [*expired, *stranded]

        for document_id in reclaimed:
            try:
                await self._dispatcher.dispatch(document_id)
            except DocVaultError as exc:
                logger.error("reclaim_dispatch_failed", document_id=document_id, error=str(exc))
        if stranded:
            logger.warning("stranded_pending_redispatched", count=len(stranded), document_ids=stranded)
        if reclaimed:
            logger.info("lease_sweep_complete", reclaimed=len(reclaimed))
        return reclaimed

    async def run_forever(self, interval_seconds: float = 60.0) -> None:
        """Sweep every *interval_seconds* until cancelled."""
        logger.info("lease_reclaimer_started", interval_seconds=interval_seconds)
        while True:
            try:
                await self.sweep()
            except DocVaultError as exc:
                logger.error("lease_sweep_failed", error=str(exc))
            await asyncio.sleep(interval_seconds)
