"""First-seen deduplication of result rows against persisted trigger state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StateEntry:
    identity: str
    timestamp: str
    first_seen: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.first_seen

    def to_payload(self) -> dict[str, str]:
        return {
            "identity": self.identity,
            "timestamp": self.timestamp,
            "first_seen": self.first_seen.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StateEntry":
        first_seen = datetime.fromisoformat(str(payload["first_seen"]))
        if first_seen.tzinfo is None:
            first_seen = first_seen.replace(tzinfo=timezone.utc)
        return cls(
            identity=str(payload["identity"]),
            timestamp=str(payload.get("timestamp", "")),
            first_seen=first_seen,
        )


@dataclass(slots=True)
class TriggerState:
    """Everything one trigger remembers between polling cycles."""

    entries: dict[str, StateEntry] = field(default_factory=dict)

    def __contains__(self, identity: str) -> bool:
        return identity in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def prune(self, ttl: timedelta, now: datetime) -> int:
        """Drop entries first seen more than ``ttl`` ago and return how many went."""

        expired = [key for key, entry in self.entries.items() if entry.age(now) > ttl]
        for key in expired:
            del self.entries[key]
        return len(expired)

    def to_payload(self) -> dict[str, Any]:
        return {"entries": [entry.to_payload() for entry in self.entries.values()]}

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "TriggerState":
        if not payload:
            return cls()
        entries = (StateEntry.from_payload(item) for item in payload.get("entries", []))
        return cls(entries={entry.identity: entry for entry in entries})


@dataclass(slots=True)
class Decision:
    fire: bool
    entry: StateEntry
    state: TriggerState


class Deduplicator:
    """Fire once per identity until its state entry expires.

    ``first_seen`` is never refreshed, so the TTL is anchored to the first
    observation: a row that keeps coming back verbatim is suppressed until its
    entry ages out, after which it fires again.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def evaluate(self, state: TriggerState, identity: str, timestamp: str) -> Decision:
        existing = state.entries.get(identity)
        if existing is not None:
            return Decision(fire=False, entry=existing, state=state)
        entry = StateEntry(identity=identity, timestamp=timestamp, first_seen=self.clock())
        state.entries[identity] = entry
        return Decision(fire=True, entry=entry, state=state)


__all__ = ["Decision", "Deduplicator", "StateEntry", "TriggerState", "utcnow"]
