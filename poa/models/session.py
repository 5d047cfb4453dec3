"""
Attention Session Model

A session tracks one identity working on one task. Heartbeats are kept in
an append-only ledger in the order they were received.
"""
import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def normalize_identity(identity: str) -> str:
    return identity.lower()


class SessionState(str, Enum):
    ACTIVE = "active"
    FINALIZED_ACCEPTED = "finalized_accepted"
    FINALIZED_REJECTED = "finalized_rejected"
    FINALIZED_ERROR = "finalized_error"


@dataclass(frozen=True)
class Heartbeat:
    # Client clocks are untrusted; received_at is always server time.
    timestamp: int
    received_at: int

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "receivedAt": self.received_at}


class HeartbeatLedger:
    """Append-only log of heartbeats for a single session."""

    def __init__(self, heartbeats=None):
        self._entries: List[Heartbeat] = list(heartbeats or [])

    def append(self, timestamp: int, received_at: int) -> int:
        """Record a heartbeat and return the new total count."""
        self._entries.append(Heartbeat(timestamp=timestamp, received_at=received_at))
        return len(self._entries)

    def timestamps(self) -> List[int]:
        return [hb.timestamp for hb in self._entries]

    def to_list(self) -> List[dict]:
        return [hb.to_dict() for hb in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Heartbeat]:
        return iter(self._entries)

    def __getitem__(self, index) -> Heartbeat:
        return self._entries[index]

    def __repr__(self):
        return f"HeartbeatLedger(count={len(self._entries)})"


@dataclass
class AttentionSession:
    """
    One attention-tracking session.

    ``ended`` flips once and never back. ``ended_at`` and ``duration`` are
    only set when it does. ``bot_score`` and ``accepted`` are recorded after
    the bot check; an ended session without them finished in error.
    """

    session_id: str
    identity: str
    task_id: str
    started_at: int
    heartbeats: HeartbeatLedger = field(default_factory=HeartbeatLedger)
    ended: bool = False
    ended_at: Optional[int] = None
    duration: Optional[int] = None
    bot_score: Optional[float] = None
    accepted: Optional[bool] = None

    @property
    def state(self) -> SessionState:
        if not self.ended:
            return SessionState.ACTIVE
        if self.accepted is None:
            return SessionState.FINALIZED_ERROR
        if self.accepted:
            return SessionState.FINALIZED_ACCEPTED
        return SessionState.FINALIZED_REJECTED

    @property
    def heartbeat_count(self) -> int:
        return len(self.heartbeats)

    def owned_by(self, identity: str) -> bool:
        return self.identity == normalize_identity(identity)

    def elapsed(self, now: int) -> int:
        """Milliseconds since start, frozen at the end time once ended."""
        end = self.ended_at if self.ended else now
        return end - self.started_at

    def snapshot(self) -> "AttentionSession":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "userAddress": self.identity,
            "taskId": self.task_id,
            "startedAt": self.started_at,
            "heartbeats": self.heartbeats.to_list(),
            "ended": self.ended,
            "endedAt": self.ended_at,
            "duration": self.duration,
            "botScore": self.bot_score,
            "state": self.state.value,
        }
