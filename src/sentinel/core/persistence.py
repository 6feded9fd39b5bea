"""Durable JSON documents, one file per component.

Each store serializes its own writes behind an asyncio lock and replaces
the target atomically, so the file on disk always holds the last fully
written snapshot.
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from src.sentinel.core.errors import PersistenceError


class JsonStateStore:
    """Load/save a single JSON document."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None

    async def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None when absent or unreadable."""
        async with self._lock:
            try:
                return await asyncio.to_thread(self._read)
            except PersistenceError as e:
                self.last_error = e.message
                logger.warning(f"⚠️  Failed to load state from {self.path}: {e.message}")
                return None

    async def save(self, document: Dict[str, Any]) -> bool:
        """Write the document. Failures are logged, never raised."""
        async with self._lock:
            try:
                await asyncio.to_thread(self._write, document)
                self.last_error = None
                return True
            except PersistenceError as e:
                self.last_error = e.message
                logger.warning(f"⚠️  Failed to save state to {self.path}: {e.message}")
                return False

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(str(e), {"path": str(self.path)}) from e
        if not isinstance(data, dict):
            raise PersistenceError("State document is not a JSON object", {"path": str(self.path)})
        return data

    def _write(self, document: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise PersistenceError(str(e), {"path": str(self.path)}) from e
