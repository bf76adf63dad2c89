"""Synchronous scalar key/value settings backed by one JSON file.

Nothing here raises: a read, parse or write failure is logged and the caller
gets the default back. The in-memory map stays authoritative for the rest of
the run, so a failed write only costs durability.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from logging_utils import log_event


class SimpleKV:
    def __init__(self, path: Optional[Path]):
        self.path = Path(path) if path is not None else None
        self._values: Optional[dict[str, str]] = None
        self._lock = Lock()

    def _load(self) -> dict[str, str]:
        if self._values is not None:
            return self._values
        values: dict[str, str] = {}
        if self.path is not None and self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    values = {str(k): v for k, v in data.items() if isinstance(v, str)}
                else:
                    log_event("WARN", "SimpleKV", "Ignoring non-object settings file", path=self.path)
            except (OSError, ValueError) as e:
                log_event("WARN", "SimpleKV", "Could not read settings, starting empty",
                          path=self.path, error=e)
        self._values = values
        return values

    def _write(self) -> bool:
        if self.path is None:
            return True
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
            return True
        except OSError as e:
            log_event("WARN", "SimpleKV", "Could not write settings", path=self.path, error=e)
            return False

    # -- strings -----------------------------------------------------------

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._load().get(key, default)

    def set_string(self, key: str, value: str) -> bool:
        with self._lock:
            self._load()[key] = str(value)
            return self._write()

    def remove(self, key: str) -> bool:
        with self._lock:
            values = self._load()
            if key not in values:
                return True
            del values[key]
            return self._write()

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._load()

    # -- typed helpers -----------------------------------------------------

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get_string(key)
        if raw is None:
            return default
        return raw == "true"

    def set_bool(self, key: str, value: bool) -> bool:
        return self.set_string(key, "true" if value else "false")

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_string(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            log_event("WARN", "SimpleKV", "Stored JSON is unreadable, using default", key=key, error=e)
            return default

    def set_json(self, key: str, value: Any) -> bool:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            log_event("WARN", "SimpleKV", "Value is not JSON serialisable", key=key, error=e)
            return False
        return self.set_string(key, payload)
