import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from browserwarden.core.errors import SessionExists, SessionNotFound, PageNotFound, ShuttingDown
from browserwarden.core.state import SessionKind
from browserwarden.sessions.handles import ResourceHandle
from browserwarden.sessions.page_logging import PageLogSink

Clock = Callable[[], float]


@dataclass
class Session:
    """One live automation process and its bookkeeping."""

    session_id: str
    kind: SessionKind
    handle: ResourceHandle
    created_at: float
    last_activity: float
    sequence: int
    created_wall: datetime = field(default_factory=datetime.now)
    pages: Dict[str, Any] = field(default_factory=dict)
    log_sinks: Dict[str, PageLogSink] = field(default_factory=dict)

    def close_log_sinks(self) -> None:
        for sink in self.log_sinks.values():
            sink.close()
        self.log_sinks.clear()


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session handed to the eviction policies."""

    session_id: str
    kind: SessionKind
    created_at: float
    last_activity: float
    sequence: int

    @classmethod
    def of(cls, session: Session) -> "SessionSnapshot":
        return cls(
            session_id=session.session_id,
            kind=session.kind,
            created_at=session.created_at,
            last_activity=session.last_activity,
            sequence=session.sequence,
        )


class CreationOrder:
    """
    Creation stamps shared by every registry of one manager.

    Timestamps strictly increase even when the clock has not moved, and the
    sequence number orders sessions across kinds.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or time.monotonic
        self._sequence = 0
        self._last: Optional[float] = None

    def next(self) -> Tuple[float, int]:
        now = self.clock()
        # A re-created id must always look newer than its predecessor.
        if self._last is not None and now <= self._last:
            now = self._last + 1e-6
        self._last = now
        self._sequence += 1
        return now, self._sequence


class SessionRegistry:
    """
    Concurrency-safe map of session id to Session for one kind of handle.

    Every method holds the lock only for in-memory bookkeeping; callers
    perform slow external work (launch, close) outside of it.
    """

    def __init__(self, kind: SessionKind = SessionKind.BROWSER, clock: Optional[Clock] = None,
                 order: Optional[CreationOrder] = None):
        self.kind = kind
        self.clock = clock or time.monotonic
        self.order = order or CreationOrder(self.clock)
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def closed(self) -> bool:
        return self._closed

    def ids(self) -> List[str]:
        return list(self._sessions)

    async def create(self, session_id: str, handle: ResourceHandle,
                     pages: Optional[Dict[str, Any]] = None) -> Session:
        async with self._lock:
            if self._closed:
                raise ShuttingDown()
            if session_id in self._sessions:
                raise SessionExists(session_id, self.kind.label)
            now, sequence = self.order.next()
            session = Session(
                session_id=session_id,
                kind=self.kind,
                handle=handle,
                created_at=now,
                last_activity=now,
                sequence=sequence,
                pages=dict(pages or {}),
            )
            self._sessions[session_id] = session
            return session

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id, self.kind.label)
            return session

    async def get_page(self, session_id: str, page_id: str) -> Any:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id, self.kind.label)
            page = session.pages.get(page_id)
            if page is None:
                raise PageNotFound(session_id, page_id)
            return page

    async def add_page(self, session_id: str, page_id: str, page: Any,
                       sink: Optional[PageLogSink] = None) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id, self.kind.label)
            session.pages[page_id] = page
            if sink is not None:
                previous = session.log_sinks.pop(page_id, None)
                if previous is not None:
                    previous.close()
                session.log_sinks[page_id] = sink

    async def touch(self, session_id: str) -> bool:
        """Refresh last activity. Unknown ids are ignored."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.last_activity = self.clock()
            return True

    async def remove(self, session_id: str) -> Session:
        """Detach a session; only one caller can ever receive it."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFound(session_id, self.kind.label)
            return session

    async def remove_all(self, close: bool = False) -> List[Session]:
        """Detach every session. With close, later create() calls are refused."""
        async with self._lock:
            if close:
                self._closed = True
            sessions = list(self._sessions.values())
            self._sessions.clear()
            return sessions

    async def snapshot(self) -> List[SessionSnapshot]:
        async with self._lock:
            return [SessionSnapshot.of(s) for s in self._sessions.values()]
