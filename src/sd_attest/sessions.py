"""
Pending verification and data-request sessions.

A session lives from the moment a relying party opens a request until the
holder's callback consumes it, or until the periodic sweep evicts it once it
is older than the TTL. ``nonce`` and ``state`` are single-use values the
wallet echoes back; ``state`` is compared verbatim on callback.

By default the sweep is the only expiry mechanism, so a session stays usable
for up to one sweep interval past its TTL. ``strict_expiry=True`` also makes
lookups reject sessions that are past the TTL but not yet swept.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sd_attest.errors import InvalidState, SessionNotFound

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 5 * 60
SWEEP_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class VerificationSession:
    request_id: str
    holder_id: str
    nonce: str
    state: str
    created_at: float


@dataclass(frozen=True)
class DataRequestSession(VerificationSession):
    credential_type: str = ""
    required_fields: tuple[str, ...] = field(default_factory=tuple)
    purpose: str = ""
    requester_domain: str = ""


@dataclass(frozen=True)
class DataRequestConfig:
    """What a relying party asks a holder to disclose."""

    credential_type: str
    required_fields: Sequence[str]
    purpose: str
    requester_domain: str
    holder_id: str = ""


def _new_id() -> str:
    return str(uuid.uuid4())


class SessionStore:
    """Thread-safe map of pending sessions with a TTL sweeper."""

    def __init__(
        self,
        ttl: float = SESSION_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        strict_expiry: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self.strict_expiry = strict_expiry
        self.clock = clock
        self._sessions: dict[str, VerificationSession] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __enter__(self) -> SessionStore:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def open(self, holder_id: str) -> VerificationSession:
        """Open a verification session for a holder."""
        session = VerificationSession(
            request_id=_new_id(),
            holder_id=holder_id,
            nonce=_new_id(),
            state=_new_id(),
            created_at=self.clock(),
        )
        return self._insert(session)

    def open_data_request(self, config: DataRequestConfig) -> DataRequestSession:
        """Open a data-request session."""
        session = DataRequestSession(
            request_id=_new_id(),
            holder_id=config.holder_id,
            nonce=_new_id(),
            state=_new_id(),
            created_at=self.clock(),
            credential_type=config.credential_type,
            required_fields=tuple(config.required_fields),
            purpose=config.purpose,
            requester_domain=config.requester_domain,
        )
        return self._insert(session)

    def _insert(self, session):
        with self._lock:
            self._sessions[session.request_id] = session
        return session

    def get(self, request_id: str) -> VerificationSession | None:
        """Return the live session for ``request_id``, or None."""
        with self._lock:
            session = self._sessions.get(request_id)
        if session is not None and self.strict_expiry and self._is_expired(session, self.clock()):
            return None
        return session

    def require(self, request_id: str) -> VerificationSession:
        """Like ``get`` but raises for a missing or expired session.

        Raises:
            SessionNotFound: If there is no live session for ``request_id``.
        """
        session = self.get(request_id)
        if session is None:
            raise SessionNotFound("Invalid or expired request")
        return session

    def consume(self, request_id: str) -> None:
        """Discard a session. Consuming an unknown id is a no-op."""
        with self._lock:
            self._sessions.pop(request_id, None)

    @staticmethod
    def check_state(session: VerificationSession, state: object) -> None:
        """Raises InvalidState unless ``state`` equals the session's state."""
        if state != session.state:
            raise InvalidState("Invalid state parameter")

    def _is_expired(self, session: VerificationSession, now: float) -> bool:
        return now - session.created_at > self.ttl

    def sweep(self) -> int:
        """Evict sessions older than the TTL. Returns how many were evicted."""
        now = self.clock()
        with self._lock:
            expired = [
                request_id
                for request_id, session in self._sessions.items()
                if self._is_expired(session, now)
            ]
            for request_id in expired:
                del self._sessions[request_id]
        if expired:
            logger.debug("Swept %d expired session(s)", len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the background sweeper thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stopped.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="session-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=self.sweep_interval)
            self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stopped.wait(self.sweep_interval):
            self.sweep()
