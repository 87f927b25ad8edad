"""
Export pipeline - wires the store, checkpoints and stages for one collection.

Download always runs to completion (or is interrupted and resumed) before
processing starts. Both stages share one cache directory per collection
and must not run concurrently against it.
"""

import logging
from typing import Any, Dict, Optional

from core.config import Settings
from ingestion.checkpoint import (
    DOWNLOAD_CHECKPOINT_FILE,
    PROCESS_CHECKPOINT_FILE,
    CheckpointStore,
)
from ingestion.client import MagentoClient
from ingestion.download import DownloadStage
from ingestion.process import ProcessStage
from ingestion.sources import build_source
from ingestion.store import DurableUnitStore
from models.base import EntityKind
from models.checkpoint import DownloadCheckpoint, ProcessCheckpoint

logger = logging.getLogger(__name__)


class ExportPipeline:
    """
    Two-phase export orchestrator.

    Responsibilities:
    - Build the per-collection cache layout
    - Run the download stage against the Magento API
    - Run the process stage against the cache only
    - Report status and clean the cache up
    """

    def __init__(
        self,
        settings: Settings,
        kind: EntityKind = EntityKind.ORDERS,
        client: Optional[MagentoClient] = None
    ):
        self.settings = settings
        self.kind = EntityKind(kind)
        self.cache_dir = settings.cache_dir(self.kind.value)
        self.store = DurableUnitStore(self.cache_dir)
        self.download_checkpoints = CheckpointStore(
            self.cache_dir / DOWNLOAD_CHECKPOINT_FILE, DownloadCheckpoint
        )
        self.process_checkpoints = CheckpointStore(
            self.cache_dir / PROCESS_CHECKPOINT_FILE, ProcessCheckpoint
        )
        self._client = client

    async def download(self, resume: bool = False, force: bool = False) -> DownloadCheckpoint:
        client = self._client or MagentoClient(self.settings)
        try:
            source = build_source(self.kind, client, created_from=self.settings.CREATED_FROM)
            stage = DownloadStage(self.settings, source, self.store, self.download_checkpoints)
            return await stage.run(resume=resume, force=force)
        finally:
            # Only close clients this pipeline created
            if self._client is None:
                await client.aclose()

    def process(
        self,
        resume: bool = False,
        output_filename: Optional[str] = None,
        keep_files: bool = False,
        force: bool = False
    ) -> ProcessCheckpoint:
        source = build_source(self.kind, None)
        stage = ProcessStage(self.settings, source, self.store, self.process_checkpoints)
        return stage.run(
            resume=resume,
            output_filename=output_filename,
            keep_files=keep_files,
            force=force,
        )

    async def export(
        self,
        resume: bool = False,
        output_filename: Optional[str] = None,
        keep_files: bool = False
    ) -> ProcessCheckpoint:
        """Download then process in one go."""
        download = await self.download(resume=resume)
        if not download.completed:
            logger.warning("Download did not complete; processing what is cached")
        return self.process(
            resume=resume,
            output_filename=output_filename,
            keep_files=keep_files,
        )

    def status(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "cache_dir": str(self.cache_dir),
            "cached_units": len(self.store.list()),
            "download": self.download_checkpoints.load(),
            "process": self.process_checkpoints.load(),
        }

    def cleanup(self) -> int:
        """Delete every cached unit and both checkpoints; returns units deleted."""
        units = self.store.list()
        logger.info(f"Cleaning up {len(units)} cache files...")

        deleted = sum(1 for name in units if self.store.delete(name))
        self.download_checkpoints.remove()
        self.process_checkpoints.remove()

        if deleted < len(units):
            logger.warning(f"{len(units) - deleted} cache files could not be deleted")
        logger.info("Cache cleanup completed")
        return deleted
