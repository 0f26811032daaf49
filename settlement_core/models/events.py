"""Outbound notification events."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, Field

from settlement_core.models.signal import Signal


class EventType(str, Enum):
    NEW_SIGNAL = "new_signal"
    POSITION_CLOSED = "position_closed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalEvent(BaseModel):
    """A state change of one signal, as delivered to subscribers."""

    type: EventType
    signal: Signal
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def for_signal(cls, signal: Signal) -> "SignalEvent":
        """Build the event matching the signal's current state."""
        event_type = EventType.NEW_SIGNAL if signal.is_open else EventType.POSITION_CLOSED
        return cls(type=event_type, signal=signal)

    def payload(self) -> dict[str, Any]:
        """Canonical ``{type, signal, timestamp}`` webhook payload."""
        return {
            "type": self.type.value,
            "signal": self.signal.to_state().model_dump(mode="json"),
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.payload())
