"""File-backed state store: one JSON file per document.

Writes go to a temporary file in the same directory and are moved into
place with an atomic rename, so a crash never leaves a half-written
document behind.
"""

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Any

import structlog

from keyrelay.domain.interfaces.state_store import StateStore, StateStoreError

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileStateStore(StateStore):
    """StateStore persisting each document as ``<directory>/<name>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._write_lock = asyncio.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, name: str) -> Path:
        return self._directory / f"{_UNSAFE_CHARS.sub('_', name)}.json"

    def _read(self, path: Path) -> Any | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, value: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(f".json.tmp.{os.getpid()}")
        tmp_path.write_text(json.dumps(value, indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

    async def get_document(self, name: str) -> Any | None:
        path = self.path_for(name)
        try:
            return await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            raise StateStoreError(f"Failed to read document {name} from {path}: {e}") from e

    async def put_document(self, name: str, value: Any) -> None:
        path = self.path_for(name)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write, path, value)
            except (OSError, TypeError, ValueError) as e:
                raise StateStoreError(f"Failed to write document {name} to {path}: {e}") from e
        logger.debug("document_saved", document=name, path=str(path))

    async def delete_document(self, name: str) -> None:
        path = self.path_for(name)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise StateStoreError(f"Failed to delete document {name}: {e}") from e
