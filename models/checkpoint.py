from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.base import EntityKind, ErrorLevel, StageName, utcnow


class ErrorRecord(BaseModel):
    """One non-fatal problem recorded during a stage run"""
    key: str
    message: str
    level: ErrorLevel = ErrorLevel.ERROR
    timestamp: datetime = Field(default_factory=utcnow)


class StageCheckpoint(BaseModel):
    """
    Persisted progress of one stage.

    Purpose:
    - Resume a stage from its cursor after a crash or restart
    - Count units created (download) or consumed (process), cumulatively
      across resumed runs
    - Keep every non-fatal error for the end-of-run summary

    Design:
    - One JSON file per stage in the cache directory
    - ``completed`` is only set once the stage ran out of work
    """

    stage: StageName
    kind: EntityKind = EntityKind.ORDERS

    total_expected: int = 0
    processed_count: int = 0

    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    completed: bool = False

    errors: List[ErrorRecord] = Field(default_factory=list)

    def record_error(
        self,
        key: str,
        message: str,
        level: ErrorLevel = ErrorLevel.ERROR
    ) -> ErrorRecord:
        record = ErrorRecord(key=key, message=message, level=level)
        self.errors.append(record)
        return record

    def record_warning(self, key: str, message: str) -> ErrorRecord:
        return self.record_error(key, message, level=ErrorLevel.WARNING)

    def mark_completed(self):
        if self.completed:
            return
        self.completed = True
        self.completed_at = utcnow()

    @property
    def progress(self) -> float:
        """Percentage of ``total_expected`` done, 0 when the total is unknown"""
        if not self.total_expected:
            return 0.0
        return round(self.processed_count / self.total_expected * 100, 1)


class DownloadCheckpoint(StageCheckpoint):
    """Cursor is the last fully handled page (1-based, 0 before the first)"""
    stage: StageName = StageName.DOWNLOAD
    last_cursor: int = 0


class ProcessCheckpoint(StageCheckpoint):
    """Cursor is the name of the last consumed unit"""
    stage: StageName = StageName.PROCESS
    last_cursor: Optional[str] = None
    total_lines: int = 0
    output_file: Optional[str] = None
