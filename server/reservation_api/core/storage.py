"""Transactional storage handle with per-key serialization."""

import asyncio
import logging
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .exceptions import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
EXCLUSION_VIOLATION_SQLSTATE = "23P01"


def sqlstate_of(exc: DBAPIError) -> Optional[str]:
    """Extract the SQLSTATE code from a wrapped driver error, if any."""
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


class LockTimeoutError(ConflictError):
    """Exception when a serialization lock cannot be acquired in time."""

    def __init__(self, key: str, timeout: float):
        super().__init__(
            detail=f"Timed out after {timeout}s waiting for '{key}'"
        )
        self.problem_details.update({
            "code": "LOCK_TIMEOUT",
            "retryable": True,
        })


class Storage:
    """
    Explicit storage handle injected into the services.

    ``transaction(*keys)`` opens a session, serializes it against every other
    transaction holding any of ``keys`` and commits on success. Keys are held
    until the commit or rollback finishes. Serialization is two-layered: an
    ``asyncio.Lock`` per key owned by this instance, and on PostgreSQL a
    transaction-scoped advisory lock so that several worker processes sharing
    one database also serialize.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
    ):
        self._session_factory = session_factory
        self._lock_timeout = lock_timeout_seconds
        self._retry_attempts = max(1, retry_attempts)
        self._local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _local_lock(self, key: str) -> asyncio.Lock:
        lock = self._local_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[key] = lock
        return lock

    @asynccontextmanager
    async def _hold(self, key: str) -> AsyncIterator[None]:
        lock = self._local_lock(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._lock_timeout)
        except asyncio.TimeoutError:
            logger.warning("Lock wait timed out", extra={"lock_key": key, "timeout": self._lock_timeout})
            raise LockTimeoutError(key, self._lock_timeout)
        try:
            yield
        finally:
            lock.release()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Plain session for advisory, read-only queries."""
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self, *lock_keys: str) -> AsyncIterator[AsyncSession]:
        """
        Run a unit of work atomically with respect to ``lock_keys``.

        Args:
            lock_keys: Names of the resources to serialize on, e.g. ``vehicle:<id>``

        Yields:
            AsyncSession: Session whose changes are committed on normal exit
        """
        keys = sorted(set(lock_keys))
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self._hold(key))

            session = await stack.enter_async_context(self._session_factory())
            try:
                await self._advisory_lock(session, keys)
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def run(self, operation: Callable[[AsyncSession], Awaitable[T]], *lock_keys: str) -> T:
        """
        Execute ``operation`` inside ``transaction(*lock_keys)``.

        Transactions aborted by transient storage conflicts (serialization
        failures, deadlocks, lock timeouts) are retried a bounded number of times.
        """
        for attempt in range(1, self._retry_attempts + 1):
            try:
                async with self.transaction(*lock_keys) as session:
                    return await operation(session)
            except DBAPIError as e:
                code = sqlstate_of(e)
                if code not in TRANSIENT_SQLSTATES or attempt == self._retry_attempts:
                    raise
                logger.warning(
                    "Retrying transaction after transient storage conflict",
                    extra={"sqlstate": code, "attempt": attempt, "lock_keys": list(lock_keys)},
                )
        raise RuntimeError("unreachable")

    @staticmethod
    async def _advisory_lock(session: AsyncSession, keys: list[str]) -> None:
        # Advisory locks are released automatically at transaction end
        bind = session.bind
        if bind is None or bind.dialect.name != "postgresql":
            return
        for key in keys:
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
                {"lock_key": key},
            )


async def unique_value(session: AsyncSession, column: Any, generate: Callable[[], str]) -> str:
    """Draw values from ``generate`` until one is not yet present in ``column``."""
    while True:
        candidate = generate()
        existing = await session.execute(select(column).where(column == candidate))
        if existing.first() is None:
            return candidate
