"""Sync state enum and peer record model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.syncbot.config import Identity, SyncConfig


class SyncState(str, Enum):
    """Lifecycle state of a :class:`~src.syncbot.manager.SyncManager`.

    ``idle`` is both the initial state and the state after ``stop()``.
    ``deploying`` is also the terminal success state; only ``start()``
    leaves it (or ``error``).
    """

    IDLE = "idle"
    SEARCHING = "searching"
    CONNECTED = "connected"
    LISTENING = "listening"
    DEPLOYING = "deploying"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PeerRecord:
    """Parsed ping response from the coordination service."""

    internal_code: int
    bot_id: str
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, obj: Any) -> PeerRecord | None:
        """Build a record from a decoded JSON body, or ``None`` if it has the wrong shape."""
        if not isinstance(obj, dict):
            return None
        code = obj.get("internalCode")
        bot_id = obj.get("botId")
        # bool is an int subclass; ``true`` is not a pairing code
        if not isinstance(code, int) or isinstance(code, bool):
            return None
        if not isinstance(bot_id, str):
            return None
        extra = {k: v for k, v in obj.items() if k not in ("internalCode", "botId")}
        return cls(internal_code=code, bot_id=bot_id, extra=extra)

    def matches(self, identity: Identity, config: SyncConfig) -> bool:
        """A twin shares our pairing code but is never ourselves."""
        return self.internal_code == config.internal_code and self.bot_id != identity.bot_id
