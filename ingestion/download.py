"""
Download stage: page through a Magento collection into the unit store.

This module provides resumable downloading with:
- Idempotent skip of entities already present in the store
- Enrichment with dependent resources before an entity is persisted
- Per-entity failure isolation (recorded, never aborts the page)
- Immediate re-issue of a page after a transient failure
- Fatal abort on authentication and other non-transient page errors,
  with the cursor left in place
- A checkpoint saved after every page and on every exit path
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from pydantic import ValidationError

from core.config import Settings
from core.exceptions import (
    AuthenticationError,
    DataShapeError,
    ExportException,
    RateLimitError,
    RetryableError,
)
from ingestion.checkpoint import CheckpointStore, summarize_errors
from ingestion.sources import EntitySource
from ingestion.store import DurableUnitStore, unit_name
from models.checkpoint import DownloadCheckpoint
from models.unit import DurableUnit

logger = logging.getLogger(__name__)


class DownloadStage:
    """
    Sequential, checkpointed download of one collection.

    Termination:
    - A page comes back empty, or
    - ``page * page_size >= total_expected`` where the total is taken from
      page 1 and trusted for the rest of the run (and across resumes)
    """

    def __init__(
        self,
        settings: Settings,
        source: EntitySource,
        store: DurableUnitStore,
        checkpoints: CheckpointStore[DownloadCheckpoint],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.source = source
        self.store = store
        self.checkpoints = checkpoints
        self.page_size = settings.PAGE_SIZE
        self.max_page_retries = settings.MAX_PAGE_RETRIES
        self._sleep = sleep

    def _initial_checkpoint(self, resume: bool, force: bool) -> Tuple[DownloadCheckpoint, bool]:
        """Checkpoint to work with, and whether the stage is already done."""
        checkpoint = self.checkpoints.load() if resume else None

        if checkpoint is not None and checkpoint.completed:
            if not force:
                return checkpoint, True
            checkpoint = None

        if checkpoint is None:
            return DownloadCheckpoint(kind=self.source.kind), False

        logger.info(
            f"Resuming download after page {checkpoint.last_cursor} "
            f"({checkpoint.processed_count}/{checkpoint.total_expected} downloaded)"
        )
        return checkpoint, False

    async def run(self, resume: bool = False, force: bool = False) -> DownloadCheckpoint:
        """
        Download every page that the checkpoint does not cover yet.

        Args:
            resume: Continue from the saved checkpoint instead of page 1
            force: Start over even if the saved checkpoint is completed

        Returns:
            The final checkpoint

        Raises:
            AuthenticationError: The API rejected the credentials (fatal)
            RetryableError: A page kept failing after ``MAX_PAGE_RETRIES``
            ExportException: A page failed with a non-transient error
        """
        kind = self.source.kind.value
        self.store.ensure()

        checkpoint, done = self._initial_checkpoint(resume, force)
        if done:
            logger.info("Download already completed. Use --force to re-download.")
            return checkpoint

        page = checkpoint.last_cursor + 1
        retries = 0
        logger.info(f"Starting {kind} download from page {page}...")

        try:
            while True:
                try:
                    result = await self.source.fetch_page(page, self.page_size)
                except AuthenticationError as e:
                    checkpoint.record_error(f"page {page}", e.message)
                    logger.error("Authentication/permission error. Stopping download.")
                    raise
                except RetryableError as e:
                    checkpoint.record_error(f"page {page}", e.message)
                    retries += 1
                    if retries > self.max_page_retries:
                        logger.error(
                            f"Page {page} failed {retries} times, giving up. "
                            f"Run again with --resume to continue from this page."
                        )
                        raise
                    logger.warning(
                        f"Error fetching page {page}: {e.message}. "
                        f"Retrying current page ({retries}/{self.max_page_retries})"
                    )
                    if isinstance(e, RateLimitError) and e.retry_after:
                        await self._sleep(e.retry_after)
                    continue
                except ExportException as e:
                    checkpoint.record_error(f"page {page}", e.message)
                    logger.error(
                        f"Page {page} failed and cannot be retried: {e.message}. "
                        f"Run again with --resume to continue from this page."
                    )
                    raise

                retries = 0

                if not result.items:
                    logger.info(f"No more {kind} to download")
                    checkpoint.mark_completed()
                    break

                if page == 1:
                    checkpoint.total_expected = result.total_count
                    logger.info(f"Total {kind} to download: {checkpoint.total_expected}")

                downloaded, skipped = await self._store_page(result.items, checkpoint)

                checkpoint.last_cursor = page
                checkpoint.processed_count += downloaded
                self.checkpoints.save(checkpoint)

                logger.info(f"Page {page}: downloaded {downloaded}, skipped {skipped} {kind}")
                logger.info(
                    f"Progress: {checkpoint.processed_count}/{checkpoint.total_expected} "
                    f"{kind} ({checkpoint.progress}%)"
                )

                if page * self.page_size >= checkpoint.total_expected:
                    checkpoint.mark_completed()
                    break

                page += 1
        finally:
            self.checkpoints.save(checkpoint)

        logger.info(
            f"Download completed: {checkpoint.processed_count} {kind} in "
            f"{self.store.directory}, {len(checkpoint.errors)} errors"
        )
        summarize_errors(checkpoint, logger)
        return checkpoint

    async def _store_page(
        self,
        records: List[Dict[str, Any]],
        checkpoint: DownloadCheckpoint
    ) -> Tuple[int, int]:
        """Persist the records of one page; returns (downloaded, skipped)."""
        downloaded = 0
        skipped = 0

        for record in records:
            entity_id = self.source.entity_id(record)
            name = unit_name(entity_id)
            try:
                if not entity_id:
                    raise DataShapeError(
                        f"Record has no {self.source.id_field}",
                        context={"record_keys": sorted(record)[:20]}
                    )

                # Already downloaded by an earlier (possibly interrupted) run
                if self.store.exists(name):
                    skipped += 1
                    continue

                entity = self.source.validate(record)
                logger.debug(f"Downloading {self.source.kind.value[:-1]} {entity.label}...")

                for warning in await self.source.enrich(entity):
                    checkpoint.record_warning(name, warning)

                self.store.put(name, DurableUnit.wrap(self.source.kind, entity))
                downloaded += 1

            except (ExportException, ValidationError, OSError) as e:
                message = e.message if isinstance(e, ExportException) else str(e)
                logger.error(f"Error downloading {name}: {message}")
                checkpoint.record_error(name, message)

        return downloaded, skipped
