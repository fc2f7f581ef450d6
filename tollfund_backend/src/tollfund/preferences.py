from __future__ import annotations

import json
import os
from threading import RLock
from typing import Any, Dict

import structlog

logger = structlog.get_logger(__name__)


class PreferencesFile:
    """
    Process-wide flags kept in a small JSON file next to, not inside, the main store.

    A missing or unreadable file reads as "nothing set".
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = RLock()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("preferences_unreadable", path=self._path, error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self._path)

    # PUBLIC_INTERFACE
    def welcome_shown(self) -> bool:
        with self._lock:
            return bool(self._load().get("welcome_shown", False))

    # PUBLIC_INTERFACE
    def set_welcome_shown(self, shown: bool = True) -> None:
        with self._lock:
            data = self._load()
            data["welcome_shown"] = bool(shown)
            self._write(data)
