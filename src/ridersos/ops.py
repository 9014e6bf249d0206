"""Operational utilities for RidersOS."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

_LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class StructuredLogger:
    """Write JSON lines log entries and mirror them to the ``ridersos`` logger."""

    def __init__(self, *, path: Path | None = None, name: str = "ridersos", max_entries: int = 1000) -> None:
        self.path = path
        self._logger = logging.getLogger(name)
        self._entries: list[dict] = []
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event_type,
            **{key: _jsonable(value) for key, value in fields.items()},
        }
        line = json.dumps(entry, sort_keys=True)
        with self._lock:
            self._entries.append(entry)
            del self._entries[: -self._max_entries]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        self._logger.log(_LEVELS.get(level, logging.INFO), line)
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def tail(self, limit: int = 50, *, event: str | None = None) -> tuple[dict, ...]:
        with self._lock:
            entries = list(self._entries)
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:])


__all__ = ["StructuredLogger"]
