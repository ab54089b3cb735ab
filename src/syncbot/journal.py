"""JSON-lines journal of every event a sync manager emits."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from src.common.logging import get_json_file_logger
from src.syncbot.events import EventEmitter


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class EventJournal:
    """Appends ``{"event": ..., "args": [...], "bot_id": ...}`` lines to *path*.

    Usage::

        journal = EventJournal(results_dir / "events.jsonl")
        journal.attach(manager, bot_id=manager.identity.bot_id)
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._log = get_json_file_logger(path)
        self._bot_id: str | None = None

    def attach(self, emitter: EventEmitter, *, bot_id: str | None = None) -> EventJournal:
        self._bot_id = bot_id
        emitter.on_any(self.record)
        return self

    def record(self, event: str, *args: Any) -> None:
        fields: dict[str, Any] = {"args": [_jsonable(a) for a in args]}
        if self._bot_id is not None:
            fields["bot_id"] = self._bot_id
        if event == "error":
            self._log.warning(event, **fields)
        else:
            self._log.info(event, **fields)
