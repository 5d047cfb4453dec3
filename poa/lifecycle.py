"""
Attention Session Lifecycle

Drives sessions through start -> heartbeat -> finish and decides whether a
finished session earns a proof.

State machine:
    ACTIVE -> FINALIZED_ACCEPTED | FINALIZED_REJECTED | FINALIZED_ERROR

Finish checks duration before committing the terminal flag, so an early
finish leaves the session ACTIVE and the client can retry later. The bot
check runs exactly once, at commit time.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from poa.config import AttentionConfig
from poa.errors import BotLikeRejected, DurationTooShort, IdentityMismatch, InvalidSessionState
from poa.inference.bot_classifier import BotClassifier
from poa.models.session import AttentionSession
from poa.models.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartResult:
    session_id: str
    started_at: int

    def to_dict(self) -> dict:
        return {"sessionId": self.session_id, "startedAt": self.started_at}


@dataclass(frozen=True)
class HeartbeatResult:
    heartbeat_count: int
    timestamp: int

    def to_dict(self) -> dict:
        return {"heartbeatCount": self.heartbeat_count, "timestamp": self.timestamp}


@dataclass(frozen=True)
class ProofRecord:
    """Everything proof issuance needs about an accepted session."""

    identity: str
    task_id: str
    started_at: int
    ended_at: int
    duration: int
    heartbeats: List[dict]
    bot_score: float

    @property
    def heartbeat_count(self) -> int:
        return len(self.heartbeats)

    @classmethod
    def from_session(cls, session: AttentionSession, bot_score: float) -> "ProofRecord":
        return cls(
            identity=session.identity,
            task_id=session.task_id,
            started_at=session.started_at,
            ended_at=session.ended_at,
            duration=session.duration,
            heartbeats=session.heartbeats.to_list(),
            bot_score=bot_score,
        )

    def to_dict(self) -> dict:
        return {
            "userAddress": self.identity,
            "taskId": self.task_id,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "duration": self.duration,
            "heartbeatCount": self.heartbeat_count,
            "heartbeats": list(self.heartbeats),
            "botScore": self.bot_score,
        }


@dataclass(frozen=True)
class FinishResult:
    session_id: str
    duration: int
    heartbeat_count: int
    bot_score: float
    accepted: bool
    penalties: Dict[str, float] = field(default_factory=dict)
    proof: Optional[ProofRecord] = None

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "duration": self.duration,
            "heartbeatCount": self.heartbeat_count,
            "botScore": self.bot_score,
            "accepted": self.accepted,
            "penalties": dict(self.penalties),
        }


class AttentionLifecycle:
    """
    Orchestrates session transitions on top of a ``SessionStore``.

    The store is injected and owned by the caller.
    """

    def __init__(
        self,
        store: SessionStore,
        classifier: Optional[BotClassifier] = None,
        min_duration_ms: int = 10_000,
    ):
        self.store = store
        self.classifier = classifier or BotClassifier(min_duration_ms=min_duration_ms)
        self.min_duration_ms = min_duration_ms

    @classmethod
    def from_config(cls, store: SessionStore, config: AttentionConfig) -> "AttentionLifecycle":
        return cls(
            store,
            classifier=BotClassifier.from_config(config),
            min_duration_ms=config.min_attention_ms,
        )

    def start(self, identity: str, task_id: str) -> StartResult:
        session_id = self.store.create(identity, task_id)
        session = self.store.get(session_id)
        logger.info("Session started: %s for user %s, task %s", session_id, session.identity, task_id)
        return StartResult(session_id=session_id, started_at=session.started_at)

    def heartbeat(self, session_id: str, identity: str, timestamp: Optional[int] = None) -> HeartbeatResult:
        with self.store.locked():
            session = self._checkout(session_id, identity)
            count = self.store.append_heartbeat(session_id, timestamp)
            recorded = session.heartbeats[-1].timestamp
        logger.debug("Heartbeat received for session %s (%d total)", session_id, count)
        return HeartbeatResult(heartbeat_count=count, timestamp=recorded)

    def finish(self, session_id: str, identity: str) -> FinishResult:
        """
        End a session and decide whether it earns a proof.

        Raises:
            SessionNotFound: unknown session.
            InvalidSessionState: session already ended.
            IdentityMismatch: caller does not own the session.
            DurationTooShort: not enough time has passed; session stays active.
            BotLikeRejected: session ended but scored as bot-like.
        """
        with self.store.locked():
            session = self._checkout(session_id, identity)

            duration = self.store.now() - session.started_at
            if duration < self.min_duration_ms:
                raise DurationTooShort(session_id, duration, self.min_duration_ms)

            snapshot = self.store.finalize(session_id)
            # From here on the session is terminal. If scoring blows up it
            # stays in FINALIZED_ERROR.
            verdict = self.classifier.evaluate(snapshot, snapshot.ended_at)
            accepted = not self.classifier.is_bot(verdict.score)
            self.store.record_verdict(session_id, verdict.score, accepted)

        result = FinishResult(
            session_id=session_id,
            duration=snapshot.duration,
            heartbeat_count=snapshot.heartbeat_count,
            bot_score=verdict.score,
            accepted=accepted,
            penalties=verdict.penalties,
            proof=ProofRecord.from_session(snapshot, verdict.score) if accepted else None,
        )

        if not accepted:
            logger.warning(
                "Session %s rejected as bot-like (score %.2f, penalties %s)",
                session_id, verdict.score, sorted(verdict.penalties),
            )
            raise BotLikeRejected(session_id, result)

        logger.info(
            "Session %s accepted: %dms, %d heartbeats, bot score %.2f",
            session_id, result.duration, result.heartbeat_count, result.bot_score,
        )
        return result

    def preview(self, session_id: str):
        """Snapshot and current bot score for a session, without changing it."""
        snapshot = self.store.get(session_id)
        return snapshot, self.classifier.evaluate(snapshot, self.store.now())

    def _checkout(self, session_id: str, identity: str) -> AttentionSession:
        # Order matters: existence, then terminal state, then ownership
        session = self.store.checkout(session_id)
        if session.ended:
            raise InvalidSessionState(session_id)
        if not session.owned_by(identity):
            raise IdentityMismatch(session_id)
        return session
