"""Operational utilities: structured logging and store failure surfacing."""

from __future__ import annotations

import functools
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from .exceptions import StoreError

LEVELS: Dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}

F = TypeVar("F", bound=Callable[..., Any])


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | str | None = None, level: str = "info", keep: int = 1000) -> None:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")
        self.path = Path(path) if path else None
        self.level = level
        self._keep = keep
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> Optional[dict]:
        if LEVELS.get(level, 0) < LEVELS[self.level]:
            return None
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event_type,
            **fields,
        }
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._keep:
                del self._entries[: len(self._entries) - self._keep]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def error(self, event_type: str, **fields: object) -> Optional[dict]:
        return self.log(event_type, level="error", **fields)

    def tail(self, limit: int = 50, *, event: str | None = None) -> tuple[dict, ...]:
        with self._lock:
            entries = [e for e in self._entries if event is None or e["event"] == event]
        return tuple(entries[-limit:])


def surface_store_failures(method: F) -> F:
    """Log :class:`StoreError` raised by a workflow method, then re-raise it.

    The decorated method's instance must expose a ``_logger`` attribute.
    """

    @functools.wraps(method)
    def wrapper(self, *args: Any, **kwargs: Any) -> Any:
        try:
            return method(self, *args, **kwargs)
        except StoreError as exc:
            self._logger.error(
                "store_failure",
                operation=f"{type(self).__name__}.{method.__name__}",
                reason=exc.reason,
                cause=repr(exc.__cause__) if exc.__cause__ else None,
            )
            raise

    return wrapper  # type: ignore[return-value]


__all__ = ["LEVELS", "StructuredLogger", "surface_store_failures"]
