"""
File-backed checkpoint persistence for the download and process stages
"""

import json
import logging
from pathlib import Path
from typing import Generic, Optional, Type, TypeVar

from pydantic import ValidationError

from core.exceptions import CheckpointError
from ingestion.store import atomic_write_text
from models.checkpoint import StageCheckpoint

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=StageCheckpoint)

DOWNLOAD_CHECKPOINT_FILE = "download-checkpoint.json"
PROCESS_CHECKPOINT_FILE = "process-checkpoint.json"

MAX_ERRORS_SHOWN = 5


class CheckpointStore(Generic[C]):
    """
    Loads and atomically saves one stage's checkpoint.

    Only the owning stage mutates the checkpoint; it is saved after each
    page (download), every K units (process) and on every exit path.
    """

    def __init__(self, path: Path, model: Type[C]):
        self.path = Path(path)
        self.model = model

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[C]:
        """Saved checkpoint, or ``None`` when there is none yet."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointError(
                "Could not read checkpoint",
                context={"path": str(self.path), "operation": "load"},
                original_exception=e
            )

        try:
            return self.model.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise CheckpointError(
                "Checkpoint file is corrupt",
                context={"path": str(self.path), "operation": "load"},
                original_exception=e
            )

    def save(self, checkpoint: C):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.path, checkpoint.model_dump_json(indent=2))
        except OSError as e:
            raise CheckpointError(
                "Could not save checkpoint",
                context={"path": str(self.path), "operation": "save"},
                original_exception=e
            )

    def remove(self) -> bool:
        try:
            self.path.unlink()
            return True
        except FileNotFoundError:
            return False


def summarize_errors(checkpoint: StageCheckpoint, log: logging.Logger = logger):
    """Log the error count and the first few entries of a checkpoint."""
    errors = checkpoint.errors
    if not errors:
        return

    log.warning(f"{len(errors)} errors occurred during {checkpoint.stage.value}:")
    for record in errors[:MAX_ERRORS_SHOWN]:
        log.warning(f"   - [{record.level.value}] {record.key}: {record.message}")
    if len(errors) > MAX_ERRORS_SHOWN:
        log.warning(f"   ... and {len(errors) - MAX_ERRORS_SHOWN} more errors")
