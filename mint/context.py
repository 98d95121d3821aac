"""Application context: single source of truth for runtime paths and config.

Every service and router receives this object instead of individual path
strings.  Properties always return the *current* value, so changing the
meetings storage path at runtime propagates to every consumer without
re-constructing services.
"""

from __future__ import annotations

import json
import logging
import os
import threading


class AppContext:
    """Holds runtime directory paths and access to ``config.json``."""

    def __init__(
        self,
        *,
        cwd: str,
        data_dir: str,
        config_path: str,
        storage_path: str | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._cwd = cwd
        self._data_dir = data_dir
        self._config_path = config_path
        self._storage_path = storage_path
        self._logger = logging.getLogger("mint.context")

    # ── data / storage (hot-swappable) ─────────────────────────────────

    @property
    def data_dir(self) -> str:
        with self._lock:
            return self._data_dir

    @property
    def storage_path(self) -> str:
        """Folder holding one sub-folder per meeting."""
        with self._lock:
            return self._storage_path or os.path.join(self._data_dir, "meetings")

    @storage_path.setter
    def storage_path(self, value: str) -> None:
        with self._lock:
            self._storage_path = value

    # ── Config ─────────────────────────────────────────────────────────

    @property
    def config_path(self) -> str:
        return self._config_path

    def read_config(self) -> dict:
        """Read config.json, returning an empty dict if it does not exist."""
        if not os.path.exists(self._config_path):
            return {}
        try:
            with open(self._config_path, "r", encoding="utf-8") as config_file:
                data = json.load(config_file)
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("Failed to read config %s: %s", self._config_path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def write_config(self, data: dict) -> None:
        os.makedirs(os.path.dirname(self._config_path), exist_ok=True)
        temp_path = f"{self._config_path}.tmp"
        with open(temp_path, "w", encoding="utf-8") as config_file:
            json.dump(data, config_file, indent=2)
        os.replace(temp_path, self._config_path)

    def update_config(self, section: str, values: dict) -> dict:
        data = self.read_config()
        merged = dict(data.get(section, {}))
        merged.update(values)
        data[section] = merged
        self.write_config(data)
        return merged

    # ── Logs (stay in cwd, not in data_dir) ────────────────────────────

    @property
    def logs_dir(self) -> str:
        return os.path.join(self._cwd, "logs")

    # ── Helpers ────────────────────────────────────────────────────────

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.data_dir, self.storage_path, self.logs_dir):
            os.makedirs(d, exist_ok=True)
