"""
Append-only CSV writer with a fixed column schema
"""

import logging
from pathlib import Path
from typing import IO, Iterable, List, Optional

import pandas as pd

from core.exceptions import OutputError
from models.rows import Column, FormattedRow

logger = logging.getLogger(__name__)


def _render(value) -> str:
    if value is None:
        return ""
    return str(value)


class CsvOutputSink:
    """
    CSV output opened once per run and reused for every write.

    Ensures:
    - Columns are always written in schema order under their titles
    - The header row appears exactly once per file
    - Every append is flushed, so an interrupted run leaves a valid file
    """

    def __init__(self, path: Path, columns: List[Column], append: bool = False):
        self.path = Path(path)
        self.columns = list(columns)
        self.append_mode = append
        self.rows_written = 0
        self._handle: Optional[IO[str]] = None

    @property
    def titles(self) -> List[str]:
        return [column.title for column in self.columns]

    def open(self) -> "CsvOutputSink":
        has_content = self.path.exists() and self.path.stat().st_size > 0
        reuse = self.append_mode and has_content
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "a" if reuse else "w", newline="", encoding="utf-8")
            if reuse:
                logger.info(f"Appending to existing file: {self.path}")
            else:
                logger.info(f"Creating new file: {self.path}")
                pd.DataFrame(columns=self.titles).to_csv(self._handle, index=False)
                self._handle.flush()
        except OSError as e:
            raise OutputError(
                "Could not open output file",
                context={"path": str(self.path)},
                original_exception=e
            )
        return self

    def append(self, rows: Iterable[FormattedRow]) -> int:
        """Write ``rows``; keys outside the schema are ignored."""
        if self._handle is None:
            raise OutputError("Output file is not open", context={"path": str(self.path)})

        records = [[_render(row.get(column.key)) for column in self.columns] for row in rows]
        if not records:
            return 0

        try:
            frame = pd.DataFrame(records, columns=self.titles)
            frame.to_csv(self._handle, header=False, index=False)
            self._handle.flush()
        except OSError as e:
            raise OutputError(
                "Could not write to output file",
                context={"path": str(self.path), "rows": len(records)},
                original_exception=e
            )

        self.rows_written += len(records)
        return len(records)

    def close(self):
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "CsvOutputSink":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
