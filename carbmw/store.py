"""Persistence of token records between process restarts."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict

_LOGGER = logging.getLogger(__name__)

Record = Dict[str, Any]


class TokenStore:
    """Key-value capability holding one mutable record per account.

    ``async_with_record`` hands ``callback`` the record stored under ``key``
    (an empty dict on first run); whatever the callback changes is persisted.
    """

    async def async_with_record(self, key: str, callback: Callable[[Record], None]) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    """Store that only lives as long as the process."""

    def __init__(self, initial: Dict[str, Record] | None = None) -> None:
        self._data: Dict[str, Record] = {
            key: dict(value) for key, value in (initial or {}).items()
        }

    async def async_with_record(self, key: str, callback: Callable[[Record], None]) -> None:
        record = self._data.setdefault(key, {})
        callback(record)

    def snapshot(self, key: str) -> Record:
        return dict(self._data.get(key, {}))


class JsonFileTokenStore(TokenStore):
    """Store all account records in a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _load(self) -> Dict[str, Record]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            _LOGGER.warning("Token file %s is not valid JSON; starting empty", self._path)
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning("Token file %s has unexpected layout; starting empty", self._path)
            return {}
        return data

    def _save(self, data: Dict[str, Record]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        tmp_path.replace(self._path)

    async def async_with_record(self, key: str, callback: Callable[[Record], None]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            record = data.get(key)
            if not isinstance(record, dict):
                record = {}
            before = dict(record)
            callback(record)
            if record == before and key in data:
                return
            data[key] = record
            await asyncio.to_thread(self._save, data)
