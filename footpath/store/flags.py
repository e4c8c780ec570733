"""Process-local boolean flags ("has visited", "was tracking")."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict

from ..config import FLAGS_FILE
from ..errors import FlagStoreError

_LOGGER = logging.getLogger(__name__)


class MemoryFlagStore:
    """Flags kept for the lifetime of the process only."""

    def __init__(self, initial: Dict[str, bool] | None = None) -> None:
        self._values: Dict[str, bool] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, name: str, default: bool = False) -> bool:
        with self._lock:
            return self._values.get(name, default)

    def set(self, name: str, value: bool) -> None:
        with self._lock:
            self._values[name] = bool(value)


class JsonFlagStore:
    """Flags persisted to a small JSON file.

    Writes go to a temporary file that then replaces the target, so a crash
    mid-write never leaves a truncated file behind. A missing file reads as
    all defaults; a corrupt one is logged and treated the same way.
    """

    def __init__(self, path: str | Path = FLAGS_FILE) -> None:
        candidate = Path(path)
        self._path = candidate if candidate.is_absolute() else Path.cwd() / candidate
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, name: str, default: bool = False) -> bool:
        with self._lock:
            value = self._read().get(name)
        if isinstance(value, bool):
            return value
        return default

    def set(self, name: str, value: bool) -> None:
        with self._lock:
            values = self._read()
            values[name] = bool(value)
            self._write(values)

    def _read(self) -> Dict[str, object]:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            _LOGGER.warning("Ignoring unreadable flag file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            _LOGGER.warning("Ignoring flag file %s with unexpected layout", self._path)
            return {}
        return payload

    def _write(self, values: Dict[str, object]) -> None:
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(values, handle, ensure_ascii=True, indent=2, sort_keys=True)
            temp_path.replace(self._path)
        except OSError as exc:
            message = f"Failed writing flag file {self._path}: {exc}"
            raise FlagStoreError(message) from exc


__all__ = ["JsonFlagStore", "MemoryFlagStore"]
