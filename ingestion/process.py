"""
Process stage: turn stored units into CSV rows, offline.

Units are consumed in the store's sorted order. Each unit is written to the
sink before it is deleted, and the checkpoint is saved every
``CHECKPOINT_INTERVAL`` units and on every exit path.

Known gap: a hard kill after a unit was deleted but before the next
periodic save loses that unit's checkpoint update. The row is already in
the CSV, so nothing is lost, but ``processed_count`` undercounts.
"""

import bisect
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from core.config import Settings
from core.exceptions import (
    CacheNotFoundError,
    ExportException,
    NoUnitsFoundError,
)
from ingestion.checkpoint import CheckpointStore, summarize_errors
from ingestion.sink import CsvOutputSink
from ingestion.sources import EntitySource
from ingestion.store import DurableUnitStore
from models.checkpoint import ProcessCheckpoint

logger = logging.getLogger(__name__)


def remaining_units(units: List[str], last_cursor: Optional[str]) -> List[str]:
    """
    Units sorting after ``last_cursor`` in the sorted ``units``.

    The cursor does not have to be listed any more (its unit was consumed
    and deleted); units before it whose delete failed stay skipped.
    """
    if last_cursor is None:
        return list(units)
    return units[bisect.bisect_right(units, last_cursor):]


class ProcessStage:
    """Consumes the unit store into one CSV file per run."""

    def __init__(
        self,
        settings: Settings,
        source: EntitySource,
        store: DurableUnitStore,
        checkpoints: CheckpointStore[ProcessCheckpoint]
    ):
        self.source = source
        self.store = store
        self.checkpoints = checkpoints
        self.export_dir = Path(settings.EXPORT_DIR)
        self.checkpoint_interval = max(1, settings.CHECKPOINT_INTERVAL)

    def default_output_name(self) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{self.source.kind.value}_export_{timestamp}.csv"

    def _output_path(self, filename: Optional[str]) -> Path:
        path = Path(filename or self.default_output_name())
        if not path.is_absolute() and path.parent == Path("."):
            path = self.export_dir / path
        return path

    def _prepare(
        self,
        resume: bool,
        force: bool,
        output_filename: Optional[str]
    ) -> Tuple[ProcessCheckpoint, List[str], bool]:
        """Checkpoint to work with, units to process and whether this is a resume."""
        if not self.store.is_available():
            raise CacheNotFoundError(
                "Cache directory not found. Download first.",
                context={"path": str(self.store.directory)}
            )

        existing = self.checkpoints.load()
        if resume and existing is not None and existing.completed and not force:
            logger.info("Processing already completed. Use --force to re-process.")
            return existing, [], False

        units = self.store.list()
        if not units:
            if existing is not None and existing.completed:
                logger.info("No cached units left and processing already completed")
                return existing, [], False
            raise NoUnitsFoundError(
                "No cached unit files found. Download first.",
                context={"path": str(self.store.directory)}
            )

        logger.info(f"Found {len(units)} cached unit files")

        if resume and existing is not None and not existing.completed:
            logger.info(
                f"Resuming from {existing.processed_count}/{existing.total_expected} "
                f"units processed (last: {existing.last_cursor})"
            )
            if output_filename and not existing.output_file:
                existing.output_file = str(self._output_path(output_filename))
            return existing, remaining_units(units, existing.last_cursor), True

        checkpoint = ProcessCheckpoint(
            kind=self.source.kind,
            total_expected=len(units),
            output_file=str(self._output_path(output_filename)),
        )
        return checkpoint, units, False

    def run(
        self,
        resume: bool = False,
        output_filename: Optional[str] = None,
        keep_files: bool = False,
        force: bool = False
    ) -> ProcessCheckpoint:
        """
        Process every remaining unit into the output CSV.

        Args:
            resume: Continue after the saved cursor, appending to the same file
            output_filename: Output file name (relative names go in EXPORT_DIR)
            keep_files: Keep units after they are written instead of deleting
            force: Re-process even if the saved checkpoint is completed

        Returns:
            The final checkpoint

        Raises:
            CacheNotFoundError: The cache directory does not exist
            NoUnitsFoundError: There is nothing to process
            OutputError: The CSV file cannot be written
        """
        checkpoint, units, resuming = self._prepare(resume, force, output_filename)
        if checkpoint.completed:
            return checkpoint

        if checkpoint.output_file is None:
            checkpoint.output_file = str(self._output_path(output_filename))
        append = resuming and checkpoint.processed_count > 0

        logger.info(f"Output file: {checkpoint.output_file}")
        logger.info(f"Starting processing{' (resuming)' if resuming else ''}...")

        try:
            with CsvOutputSink(Path(checkpoint.output_file), self.source.columns, append=append) as sink:
                for name in units:
                    if not self._process_unit(name, sink, checkpoint, keep_files):
                        continue

                    if checkpoint.processed_count % self.checkpoint_interval == 0:
                        self.checkpoints.save(checkpoint)
                        logger.info(
                            f"Progress: {checkpoint.processed_count}/{checkpoint.total_expected} "
                            f"units ({checkpoint.progress}%) - {checkpoint.total_lines} lines generated"
                        )

            checkpoint.mark_completed()
        finally:
            self.checkpoints.save(checkpoint)

        logger.info(
            f"Processing completed: {checkpoint.processed_count} units, "
            f"{checkpoint.total_lines} lines -> {checkpoint.output_file} "
            f"(cache files {'preserved' if keep_files else 'deleted'})"
        )
        summarize_errors(checkpoint, logger)
        return checkpoint

    def _process_unit(
        self,
        name: str,
        sink: CsvOutputSink,
        checkpoint: ProcessCheckpoint,
        keep_files: bool
    ) -> bool:
        """Load, format and write one unit; False when it was skipped."""
        try:
            unit = self.store.get(name)
            entity = unit.entity()
            rows = self.source.format(entity)
        except Exception as e:
            message = e.message if isinstance(e, ExportException) else str(e)
            logger.error(f"Error processing {name}: {message}")
            checkpoint.record_error(name, message)
            return False

        # Sink failures are not per-unit problems; let them stop the run
        sink.append(rows)

        checkpoint.processed_count += 1
        checkpoint.total_lines += len(rows)
        checkpoint.last_cursor = name
        logger.debug(f"Processed {name} ({len(rows)} lines)")

        if not keep_files and not self.store.delete(name):
            checkpoint.record_warning(name, "Could not delete consumed unit; left for cleanup")

        return True
