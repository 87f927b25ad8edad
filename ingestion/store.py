"""
Directory-backed store of durable units, one JSON file per entity.

Layout::

    <cache_dir>/unit-<entity_id>.json
    <cache_dir>/download-checkpoint.json
    <cache_dir>/process-checkpoint.json

Writes go to a hidden temporary file that is renamed over the target, so a
crash never leaves a half-written unit visible to ``exists`` or ``list``.
The store assumes a single process works on a cache directory at a time.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from core.exceptions import DataShapeError, StoreError, UnitNotFoundError
from models.unit import DurableUnit

logger = logging.getLogger(__name__)

UNIT_PREFIX = "unit-"
UNIT_SUFFIX = ".json"


def unit_name(entity_id: Union[int, str]) -> str:
    """Deterministic unit name for an entity identifier"""
    return f"{UNIT_PREFIX}{entity_id}"


def atomic_write_text(path: Path, text: str):
    """Write ``text`` to ``path`` through a temp file and ``os.replace``."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class DurableUnitStore:
    """
    Idempotent per-entity persistence between the two stages.

    Ownership:
    - The download stage creates and overwrites units
    - The process stage reads and deletes them
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}{UNIT_SUFFIX}"

    def ensure(self):
        """Create the cache directory if needed"""
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Cache directory ready: {self.directory}")

    def is_available(self) -> bool:
        return self.directory.is_dir()

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def put(self, name: str, unit: DurableUnit):
        """Store ``unit`` under ``name``, replacing any previous version."""
        path = self._path(name)
        try:
            atomic_write_text(path, unit.model_dump_json(indent=2))
        except OSError as e:
            raise StoreError(
                f"Could not write unit {name}",
                context={"unit": name, "path": str(path)},
                original_exception=e
            )

    def get(self, name: str) -> DurableUnit:
        """
        Load a unit.

        Raises:
            UnitNotFoundError: The unit file does not exist
            StoreError: The file exists but cannot be read
            DataShapeError: The file is not a valid unit document
        """
        path = self._path(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise UnitNotFoundError(
                f"Unit {name} not found",
                context={"unit": name, "path": str(path)},
                original_exception=e
            )
        except OSError as e:
            raise StoreError(
                f"Could not read unit {name}",
                context={"unit": name, "path": str(path)},
                original_exception=e
            )

        try:
            return DurableUnit.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise DataShapeError(
                f"Unit {name} is not a valid document",
                context={"unit": name, "path": str(path)},
                original_exception=e
            )

    def list(self) -> List[str]:
        """Unit names in lexicographic order."""
        if not self.is_available():
            return []
        names = [
            entry.name[:-len(UNIT_SUFFIX)]
            for entry in self.directory.iterdir()
            if entry.name.startswith(UNIT_PREFIX) and entry.name.endswith(UNIT_SUFFIX)
        ]
        return sorted(names)

    def delete(self, name: str) -> bool:
        """
        Remove a unit. Failures are logged and reported as ``False`` so the
        unit stays behind for a later cleanup pass.
        """
        try:
            self._path(name).unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete unit {name}: {e}")
            return False
