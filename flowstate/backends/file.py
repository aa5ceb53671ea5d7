"""Filesystem persistence backend.

Each workflow id maps to one JSON file in a directory. Writes go to a
temporary file that is then renamed over the target, so a crash mid-write
never leaves a truncated snapshot behind.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from flowstate.interrupts import WorkflowInterrupt
from flowstate.utils.config import get_persistence_dir
from flowstate.utils.errors import InterruptNotFoundError, PersistenceError, SerializationError

logger = logging.getLogger(__name__)


class FilePersistence:
    """File-based interrupt persistence.

    Example:
        >>> persistence = FilePersistence("/var/lib/flows")
        >>> await persistence.save("order-42", interrupt)
        >>> sorted(os.listdir("/var/lib/flows"))
        ['workflow_order-42.json']
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        prefix: str = "workflow_",
        suffix: str = ".json",
    ):
        """Initialize file backend.

        Args:
            directory: Directory for snapshot files (FLOWSTATE_PERSISTENCE_DIR
                or ``.flowstate`` if omitted). Created on first save.
            prefix: File name prefix
            suffix: File name suffix
        """
        self.directory = Path(directory) if directory is not None else get_persistence_dir()
        self.prefix = prefix
        self.suffix = suffix

    def _path(self, workflow_id: str) -> Path:
        if (
            not workflow_id
            or "/" in workflow_id
            or "\\" in workflow_id
            or workflow_id in (".", "..")
            or "\x00" in workflow_id
        ):
            raise PersistenceError(f"Invalid workflow id for file persistence: {workflow_id!r}")
        return self.directory / f"{self.prefix}{workflow_id}{self.suffix}"

    def _write(self, path: Path, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, path)

    def _read(self, path: Path) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    async def save(self, workflow_id: str, interrupt: WorkflowInterrupt) -> None:
        path = self._path(workflow_id)
        payload = json.dumps(interrupt.to_dict(), indent=2)
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to save workflow {workflow_id}: {e}") from e
        logger.debug("Saved interrupt for %s to %s", workflow_id, path)

    async def load(self, workflow_id: str) -> WorkflowInterrupt:
        path = self._path(workflow_id)
        try:
            payload = await asyncio.to_thread(self._read, path)
        except FileNotFoundError:
            raise InterruptNotFoundError(workflow_id)
        except OSError as e:
            raise PersistenceError(f"Failed to load workflow {workflow_id}: {e}") from e

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Corrupt snapshot for workflow {workflow_id}: {e}") from e
        return WorkflowInterrupt.from_dict(data)

    async def delete(self, workflow_id: str) -> None:
        path = self._path(workflow_id)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete workflow {workflow_id}: {e}") from e

    async def exists(self, workflow_id: str) -> bool:
        return await asyncio.to_thread(self._path(workflow_id).exists)

    async def list_workflows(self) -> List[str]:
        if not self.directory.exists():
            return []
        pattern = f"{self.prefix}*{self.suffix}"
        names = await asyncio.to_thread(lambda: sorted(p.name for p in self.directory.glob(pattern)))
        return [name[len(self.prefix) : len(name) - len(self.suffix)] for name in names]

    def __repr__(self) -> str:
        return f"FilePersistence(directory='{self.directory}')"
