"""Pool of live, tenant-isolated browser sessions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Callable

from sm_automation.browser.engine import BrowserHandle, Launcher, PlaywrightEngine
from sm_automation.core.config import Config
from sm_automation.core.exceptions import ResourceUnavailableError, ValidationError
from sm_automation.models.results import isoformat_utc, utcnow
from sm_automation.models.tenants import PARTITION_PREFIX, get_tenant

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_SESSION_TTL = timedelta(hours=4)


class SessionState(str, Enum):
    """Lifecycle state of a pooled session."""

    ACTIVE = "active"  # Leased by a caller
    IDLE = "idle"  # Alive, available for reuse
    CLOSING = "closing"  # Being torn down; still blocks a new launch
    CLOSED = "closed"  # Gone; never reused

    @property
    def is_live(self) -> bool:
        return self != SessionState.CLOSED


@dataclass
class Session:
    """A tenant's exclusively owned browser context.

    Attributes:
        tenant_key: Canonical tenant key
        handle: Launched context, owned by the pool
        partition: Storage partition id (unique among live sessions)
        created_at: When the context was launched
        last_used_at: Refreshed on every acquisition and release
        state: Lifecycle state
    """

    tenant_key: str
    handle: BrowserHandle
    partition: str
    created_at: datetime
    last_used_at: datetime
    state: SessionState = SessionState.IDLE
    lease: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    leased: bool = field(default=False, repr=False)

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_used_at

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        return {
            "tenant_key": self.tenant_key,
            "partition": self.partition,
            "state": self.state.value,
            "created_at": isoformat_utc(self.created_at),
            "last_used_at": isoformat_utc(self.last_used_at),
            "idle_seconds": round(self.idle_for(now).total_seconds(), 1),
        }

    def __str__(self) -> str:
        return f"Session({self.tenant_key}, state={self.state.value})"


def canonical_key(key: str) -> str:
    """Map store keys and window keys of the same tenant onto one pool key."""
    try:
        return get_tenant(key).key
    except ValidationError:
        normalized = (key or "").strip().lower()
        if not normalized:
            raise
        return normalized


def default_partition(key: str) -> str:
    try:
        return get_tenant(key).partition
    except ValidationError:
        return f"{PARTITION_PREFIX}{key}"


class SessionPool:
    """Maps tenant keys to live browser sessions.

    Guarantees at most one live session per tenant key. Concurrent acquirers
    of the same key are serialized by a per-key lock, so exactly one context
    is launched; different keys proceed independently. A session is leased
    exclusively: a second acquirer waits until the first releases it.

    Sessions idle for longer than the TTL are closed by a sweep that runs at
    the start of every acquisition. Leased sessions are never swept.

    Example:
        >>> pool = SessionPool(PlaywrightEngine(config), ttl=timedelta(hours=4))
        >>> async with pool.lease("allerton") as session:
        ...     page = await session.handle.new_page()
        >>> await pool.close_all()
    """

    def __init__(
        self,
        launcher: Launcher,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Clock = utcnow,
        partition_for: Callable[[str], str] = default_partition,
    ) -> None:
        """Initialize the pool.

        Args:
            launcher: Launches isolated contexts
            ttl: Idle time after which a session is evicted
            clock: Returns the current time (injected for tests)
            partition_for: Maps a canonical tenant key to its partition id
        """
        if ttl.total_seconds() <= 0:
            raise ValueError("Session TTL must be positive")
        self.launcher = launcher
        self.ttl = ttl
        self._clock = clock
        self._partition_for = partition_for
        self._sessions: dict[str, Session] = {}
        self._closing: dict[str, asyncio.Event] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_users: dict[str, int] = {}
        self._evictions: set[asyncio.Task] = set()
        self._pool_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config, launcher: Launcher | None = None) -> SessionPool:
        return cls(
            launcher=launcher or PlaywrightEngine(config),
            ttl=timedelta(seconds=config.session_ttl_seconds),
        )

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            self._discard_key_lock(key)

    def _discard_key_lock(self, key: str) -> None:
        """Drop a key's lock once no caller or session uses it."""
        if self._key_users.get(key, 0) or key in self._sessions or key in self._closing:
            return
        self._key_locks.pop(key, None)
        self._key_users.pop(key, None)

    def get(self, key: str) -> Session | None:
        """Return the live session for a key without leasing it."""
        session = self._sessions.get(canonical_key(key))
        if session is None or not session.state.is_live:
            return None
        return session

    def __len__(self) -> int:
        return sum(1 for s in self._sessions.values() if s.state.is_live)

    def describe(self) -> list[dict[str, Any]]:
        """State rows for every tracked session."""
        now = self._clock()
        return [s.to_dict(now) for s in sorted(self._sessions.values(), key=lambda s: s.tenant_key)]

    async def acquire(self, key: str) -> Session:
        """Lease the tenant's session, launching a context if needed.

        Args:
            key: Tenant key (store key or window key)

        Returns:
            The session, in state ACTIVE

        Raises:
            ResourceUnavailableError: If a new context cannot be launched
        """
        key = canonical_key(key)
        await self.evict_expired(wait=False)

        async with self._key_lock(key):
            while True:
                closing = self._closing.get(key)
                if closing is not None:
                    logger.debug(f"Waiting for {key} session to finish closing")
                    await closing.wait()
                    continue

                session = self._sessions.get(key)
                if session is None:
                    session = await self._launch(key)
                else:
                    logger.debug(f"Reusing {session}")

                await session.lease.acquire()
                if session.state in (SessionState.CLOSING, SessionState.CLOSED):
                    # Closed while we waited for the lease
                    session.lease.release()
                    continue

                session.leased = True
                session.state = SessionState.ACTIVE
                session.last_used_at = self._clock()
                return session

    def release(self, key: str) -> bool:
        """Return a leased session to IDLE. Does not close it.

        Releasing a session that is not leased is a no-op.

        Returns:
            True if a lease was released
        """
        session = self._sessions.get(canonical_key(key))
        if session is None:
            return False
        return self._release_session(session)

    def _release_session(self, session: Session) -> bool:
        if not session.leased:
            return False
        session.leased = False
        if session.state == SessionState.ACTIVE:
            session.state = SessionState.IDLE
            session.last_used_at = self._clock()
        session.lease.release()
        return True

    @asynccontextmanager
    async def lease(self, key: str) -> AsyncIterator[Session]:
        """Acquire a session and release it on every exit path."""
        session = await self.acquire(key)
        try:
            yield session
        finally:
            self._release_session(session)

    async def _launch(self, key: str) -> Session:
        partition = self._partition_for(key)
        self._check_partition(key, partition)

        try:
            handle = await self.launcher.launch(key, partition)
        except Exception as e:
            logger.error(f"Failed to launch context for {key}: {e}")
            raise ResourceUnavailableError(
                f"Could not start an automation context for {key}",
                tenant_key=key,
                details={"error": type(e).__name__},
            ) from e

        now = self._clock()
        session = Session(
            tenant_key=key,
            handle=handle,
            partition=partition,
            created_at=now,
            last_used_at=now,
        )
        async with self._pool_lock:
            try:
                self._check_partition(key, partition)
            except ResourceUnavailableError:
                await handle.close()
                raise
            self._sessions[key] = session
        logger.info(f"Created {session} (partition={partition})")
        return session

    def _check_partition(self, key: str, partition: str) -> None:
        for other in self._sessions.values():
            if other.tenant_key != key and other.state.is_live and other.partition == partition:
                raise ResourceUnavailableError(
                    f"Partition {partition} is already used by {other.tenant_key}",
                    tenant_key=key,
                )

    async def _close_session(self, session: Session) -> None:
        try:
            await session.handle.close()
        except Exception as e:
            logger.warning(f"Error closing {session}: {e}")
        finally:
            session.state = SessionState.CLOSED
            logger.info(f"Closed session for {session.tenant_key}")

    def _begin_close(self, session: Session) -> asyncio.Event:
        """Mark a session CLOSING. Caller holds the pool lock."""
        session.state = SessionState.CLOSING
        event = asyncio.Event()
        self._closing[session.tenant_key] = event
        return event

    async def _finish_close(self, session: Session, event: asyncio.Event, wait_for_lease: bool) -> None:
        try:
            if wait_for_lease:
                async with session.lease:
                    await self._close_session(session)
            else:
                await self._close_session(session)
        finally:
            async with self._pool_lock:
                if self._sessions.get(session.tenant_key) is session:
                    del self._sessions[session.tenant_key]
                if self._closing.get(session.tenant_key) is event:
                    del self._closing[session.tenant_key]
                self._discard_key_lock(session.tenant_key)
            event.set()

    async def close(self, key: str) -> bool:
        """Close a tenant's session, waiting for its current lease to end.

        Returns:
            True if a live session was closed
        """
        key = canonical_key(key)
        async with self._pool_lock:
            session = self._sessions.get(key)
            if session is None or session.state in (SessionState.CLOSING, SessionState.CLOSED):
                return False
            event = self._begin_close(session)
        await self._finish_close(session, event, wait_for_lease=True)
        return True

    async def evict_expired(self, now: datetime | None = None, wait: bool = True) -> list[str]:
        """Close idle sessions older than the TTL.

        Expired sessions are marked CLOSING at once and torn down
        concurrently. With ``wait=False`` the teardown runs in the
        background, so a caller acquiring another key is not held up;
        an acquire of an evicted key still waits for its teardown.

        Args:
            now: Reference time (defaults to the pool clock)
            wait: Wait for the teardown to finish

        Returns:
            Keys of the evicted sessions
        """
        now = now or self._clock()
        async with self._pool_lock:
            expired = [
                s for s in self._sessions.values()
                if s.state == SessionState.IDLE
                and not s.lease.locked()
                and s.idle_for(now) > self.ttl
            ]
            pending = [(s, self._begin_close(s)) for s in expired]

        closes = []
        for session, event in pending:
            logger.info(f"Evicting {session} (idle {session.idle_for(now)})")
            closes.append(self._finish_close(session, event, wait_for_lease=True))
        if wait:
            await asyncio.gather(*closes)
        else:
            for close in closes:
                task = asyncio.get_running_loop().create_task(close)
                self._evictions.add(task)
                task.add_done_callback(self._evictions.discard)
        return [s.tenant_key for s, _ in pending]

    async def close_all(self) -> None:
        """Close every session and shut the launcher down.

        Individual close errors are logged and do not stop the others.
        """
        async with self._pool_lock:
            in_progress = list(self._closing.values())
            pending = [
                (s, self._begin_close(s))
                for s in list(self._sessions.values())
                if s.state in (SessionState.ACTIVE, SessionState.IDLE)
            ]

        results = await asyncio.gather(
            *(self._finish_close(s, e, wait_for_lease=False) for s, e in pending),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Error during pool shutdown: {result}")
        for event in in_progress:
            await event.wait()

        try:
            await self.launcher.shutdown()
        except Exception as e:
            logger.warning(f"Error shutting down launcher: {e}")
        logger.info("Session pool closed")

    async def __aenter__(self) -> SessionPool:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
