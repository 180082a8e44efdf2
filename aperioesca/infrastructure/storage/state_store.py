"""
Key/value state stores for quota, circuit-breaker, meal and device records.

Every save overwrites the whole record for its key.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog

from aperioesca.domain.shared.errors import StateStoreError

logger = structlog.get_logger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class InMemoryStateStore:
    """In-memory implementation of IStateStore.

    Records are JSON round-tripped so callers never share mutable state
    with the store. Suitable for tests and stub mode.
    """

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._records.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def save(self, key: str, record: Dict[str, Any]) -> None:
        try:
            self._records[key] = json.dumps(record)
        except (TypeError, ValueError) as exc:
            raise StateStoreError(f"Record for '{key}' is not JSON serializable") from exc

    async def delete(self, key: str) -> None:
        self._records.pop(key, None)


class JsonFileStateStore:
    """
    File-backed IStateStore: one ``<key>.json`` file per key.

    Writes go to a temp file in the same directory followed by an atomic
    ``os.replace``. Blocking file I/O runs in a worker thread.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StateStoreError(f"Unsupported state key: {key!r}")
        return self.directory / f"{key}.json"

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._load_sync, self._path(key))

    async def save(self, key: str, record: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._save_sync, self._path(key), record)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    @staticmethod
    def _load_sync(path: Path) -> Optional[Dict[str, Any]]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StateStoreError(f"Cannot read {path.name}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateStoreError(f"Corrupt state file {path.name}") from exc
        if not isinstance(data, dict):
            raise StateStoreError(f"State file {path.name} does not hold an object")
        return data

    @staticmethod
    def _save_sync(path: Path, record: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(record, indent=2, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise StateStoreError(f"Record for {path.name} is not JSON serializable") from exc
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StateStoreError(f"Cannot write {path.name}: {exc}") from exc
        logger.debug("State saved", key=path.stem, path=str(path))
