"""
Session Store

In-memory registry of attention sessions with TTL-based cleanup.

All mutation happens under a single process-wide lock. Records are small
and operations never block on I/O, so one coarse lock is enough.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from poa.errors import InvalidSessionState, SessionNotFound
from poa.models.session import AttentionSession, now_ms, normalize_identity

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Owns every live session record.

    Callers get deep-copied snapshots from ``get``. Code that needs the live
    record (the lifecycle manager during finish) must hold ``locked()`` and
    use ``checkout``.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._sessions: Dict[str, AttentionSession] = {}
        self._lock = threading.RLock()
        self._clock = clock or now_ms

    def now(self) -> int:
        return self._clock()

    @contextmanager
    def locked(self) -> Iterator["SessionStore"]:
        with self._lock:
            yield self

    def create(self, identity: str, task_id: str) -> str:
        """Register a new session and return its id."""
        session_id = str(uuid.uuid4())
        session = AttentionSession(
            session_id=session_id,
            identity=normalize_identity(identity),
            task_id=task_id,
            started_at=self.now(),
        )
        with self._lock:
            self._sessions[session_id] = session
        return session_id

    def checkout(self, session_id: str) -> AttentionSession:
        """Live record for ``session_id``. Only valid while holding ``locked()``."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            return session

    def get(self, session_id: str) -> AttentionSession:
        with self._lock:
            return self.checkout(session_id).snapshot()

    def append_heartbeat(self, session_id: str, client_timestamp: Optional[int] = None) -> int:
        """
        Append a heartbeat to an active session.

        Args:
            session_id: Target session.
            client_timestamp: Client-asserted time in ms. Server time is used
                when absent.

        Returns:
            The new heartbeat count.
        """
        with self._lock:
            session = self.checkout(session_id)
            if session.ended:
                raise InvalidSessionState(session_id)
            received_at = self.now()
            timestamp = received_at if client_timestamp is None else client_timestamp
            return session.heartbeats.append(timestamp, received_at)

    def finalize(self, session_id: str) -> AttentionSession:
        """Mark a session ended and return a snapshot. Fails if already ended."""
        with self._lock:
            session = self.checkout(session_id)
            if session.ended:
                raise InvalidSessionState(session_id)
            ended_at = self.now()
            session.ended = True
            session.ended_at = ended_at
            session.duration = ended_at - session.started_at
            return session.snapshot()

    def record_verdict(self, session_id: str, bot_score: float, accepted: bool) -> None:
        """Attach the bot verdict to an ended session. Allowed once."""
        with self._lock:
            session = self.checkout(session_id)
            if not session.ended or session.accepted is not None:
                raise InvalidSessionState(session_id)
            session.bot_score = bot_score
            session.accepted = accepted

    def sweep(self, max_age_ms: int) -> int:
        """Remove sessions created more than ``max_age_ms`` ago, ended or not."""
        with self._lock:
            now = self.now()
            expired = [
                sid for sid, session in self._sessions.items()
                if now - session.started_at > max_age_ms
            ]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            logger.info("Cleaned up %d old sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id) -> bool:
        with self._lock:
            return session_id in self._sessions


class SessionSweeper:
    """
    Background thread that periodically sweeps expired sessions.

    The owner starts it at process start and calls ``stop`` on shutdown.
    """

    def __init__(self, store: SessionStore, retention_ms: int, interval_ms: int):
        self.store = store
        self.retention_ms = retention_ms
        self.interval_ms = interval_ms
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "SessionSweeper":
        if self.running:
            return self
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()
        logger.info(
            "Session sweeper started (every %dms, retention %dms)",
            self.interval_ms, self.retention_ms,
        )
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        return self.store.sweep(self.retention_ms)

    def _run(self):
        while not self._stop_event.wait(self.interval_ms / 1000.0):
            try:
                self.run_once()
            except Exception:
                # Keep the maintenance loop alive; the next pass retries.
                logger.exception("Session sweep failed")
