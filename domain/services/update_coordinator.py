"""Serializes profile updates per ``candidate_id:trigger_key``.

For any key at most one owner runs the build at a time. Callers that arrive
while the owner is running join it and await the same future, bounded by
the join timeout. Once the owner succeeds, its result is cached for the
idempotency window, so repeating the trigger returns the cached result.

The lock map and the result cache belong to one coordinator instance and
are touched only by synchronous code on the event loop. That makes each
check-then-insert in ``acquire_or_join`` atomic.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from app.settings import settings
from domain.errors import TransientInfraError, WaitTimeoutError, is_transient

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class UpdateLock:
    future: asyncio.Future
    started_at: float


@dataclass
class CachedResult:
    result: Any
    created_at: float


@dataclass
class Acquisition:
    key: str
    is_new_owner: bool
    future: asyncio.Future
    lock: Optional[UpdateLock] = None
    cached: bool = False


def update_key(candidate_id: str, trigger_key: str) -> str:
    return f"{candidate_id}:{trigger_key}"


def _consume_exception(fut: asyncio.Future) -> None:
    # keeps asyncio from logging "exception was never retrieved" when nobody joined
    if not fut.cancelled():
        fut.exception()


class UpdateCoordinator:
    def __init__(self, *, idempotency_window: Optional[float] = None,
                 join_timeout: Optional[float] = None, max_lock_age: Optional[float] = None,
                 sweep_interval: Optional[float] = None, failure_cooldown: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.idempotency_window = (
            settings.PROFILE_IDEMPOTENCY_WINDOW_SECONDS if idempotency_window is None else idempotency_window)
        self.join_timeout = settings.PROFILE_JOIN_TIMEOUT_SECONDS if join_timeout is None else join_timeout
        self.max_lock_age = settings.PROFILE_LOCK_MAX_AGE_SECONDS if max_lock_age is None else max_lock_age
        self.sweep_interval = (
            settings.PROFILE_LOCK_SWEEP_INTERVAL_SECONDS if sweep_interval is None else sweep_interval)
        self.failure_cooldown = (
            settings.PROFILE_FAILURE_COOLDOWN_SECONDS if failure_cooldown is None else failure_cooldown)
        self._clock = clock
        self._locks: Dict[str, UpdateLock] = {}
        self._cache: Dict[str, CachedResult] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # lifecycle

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.info(
                f"Update coordinator started (sweep every {self.sweep_interval}s, "
                f"max lock age {self.max_lock_age}s)"
            )

    async def stop(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Update coordinator stopped")

    async def __aenter__(self) -> "UpdateCoordinator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def has_lock(self, key: str) -> bool:
        return key in self._locks

    # coordination

    def acquire_or_join(self, key: str) -> Acquisition:
        """Return a cached result, join the in-flight owner, or become the owner."""
        now = self._clock()
        cached = self._cache.get(key)
        if cached is not None:
            if now - cached.created_at < self.idempotency_window:
                fut = asyncio.get_running_loop().create_future()
                fut.set_result(cached.result)
                logger.info(f"[{key}] returning cached result")
                return Acquisition(key=key, is_new_owner=False, future=fut, cached=True)
            del self._cache[key]

        lock = self._locks.get(key)
        if lock is not None:
            logger.info(f"[{key}] update in flight for {now - lock.started_at:.1f}s; joining")
            return Acquisition(key=key, is_new_owner=False, future=lock.future, lock=lock)

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_exception)
        lock = UpdateLock(future=fut, started_at=now)
        self._locks[key] = lock
        logger.info(f"[{key}] acquired update lock")
        return Acquisition(key=key, is_new_owner=True, future=fut, lock=lock)

    async def run(self, key: str, operation: Callable[[], Awaitable[R]]) -> R:
        acquisition = self.acquire_or_join(key)
        if not acquisition.is_new_owner:
            return await self.wait(acquisition)

        lock = acquisition.lock
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._fail(key, lock, TransientInfraError(f"Update {key} was cancelled"))
            raise
        except Exception as exc:
            self._fail(key, lock, exc)
            raise
        self._succeed(key, lock, result)
        return result

    async def wait(self, acquisition: Acquisition):
        """Await an owner's future without ever cancelling the owner itself."""
        if acquisition.future.done():
            return acquisition.future.result()
        try:
            return await asyncio.wait_for(asyncio.shield(acquisition.future), timeout=self.join_timeout)
        except asyncio.TimeoutError:
            key = acquisition.key
            if self._locks.get(key) is acquisition.lock:
                self._release(key, acquisition.lock, reason="join timeout, possible deadlock")
            logger.warning(f"[{key}] gave up waiting after {self.join_timeout}s")
            raise WaitTimeoutError(key, self.join_timeout) from None

    def _succeed(self, key: str, lock: UpdateLock, result) -> None:
        self._cache[key] = CachedResult(result=result, created_at=self._clock())
        self._release(key, lock, reason="completed")
        if not lock.future.done():
            lock.future.set_result(result)

    def _fail(self, key: str, lock: UpdateLock, exc: BaseException) -> None:
        if not lock.future.done():
            lock.future.set_exception(exc)
        if is_transient(exc):
            logger.warning(f"[{key}] update failed with transient error; releasing lock: {exc}")
            self._release(key, lock, reason="transient failure")
            return
        logger.error(
            f"[{key}] update failed with persistent error; holding lock for "
            f"{self.failure_cooldown}s: {exc}"
        )
        asyncio.get_running_loop().call_later(
            self.failure_cooldown, self._release, key, lock, "failure cooldown elapsed")

    def _release(self, key: str, lock: UpdateLock, reason: str = "") -> None:
        # a later owner may already hold this key; only remove our own entry
        if self._locks.get(key) is lock:
            del self._locks[key]
            logger.info(f"[{key}] released update lock ({reason})")

    # housekeeping

    def sweep(self) -> int:
        """Force-delete locks older than the maximum age and expired cache entries."""
        now = self._clock()
        evicted = 0
        for key, lock in list(self._locks.items()):
            age = now - lock.started_at
            if age > self.max_lock_age:
                logger.warning(f"[{key}] force-evicting stale update lock after {age:.1f}s")
                self._release(key, lock, reason="stale")
                evicted += 1
        for key, cached in list(self._cache.items()):
            if now - cached.created_at >= self.idempotency_window:
                del self._cache[key]
        return evicted

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Update lock sweep failed")
