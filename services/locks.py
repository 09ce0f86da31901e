"""Per-key mutual exclusion for negotiation rounds and message batches.

A round reads the conversation log to count prior rounds and then appends to
it, so two rounds for the same supplier must never interleave. Outreach and
follow-up batches decide who to message from the same log and are
serialised per project for the same reason. When Redis is configured the
lock is shared across processes, otherwise it is held in an in-process
registry.
"""

from __future__ import annotations

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import redis

from config.settings import settings

logger = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
# Entries disappear once no caller holds or waits on the lock.
_LOCAL_LOCKS: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def _local_lock(key: str) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


def negotiation_lock_key(project_id: str, supplier_id: str) -> str:
    return f"sourcing:negotiation:{project_id}:{supplier_id}"


def project_lock_key(project_id: str, operation: str) -> str:
    return f"sourcing:{operation}:{project_id}"


class RedisConnector:
    """Connects to the configured Redis URL at most once per URL.

    An unreachable server is remembered as ``None`` so later lock
    acquisitions fall back to local locks without another round trip.
    """

    def __init__(
        self,
        url_source: Optional[Callable[[], Optional[str]]] = None,
        client_factory: Optional[Callable[[str], "redis.Redis"]] = None,
    ) -> None:
        self._url_source = url_source or (lambda: settings.redis_url)
        self._client_factory = client_factory or redis.from_url
        self._guard = threading.Lock()
        self._resolved_url: Optional[str] = None
        self._client: Optional["redis.Redis"] = None

    def __call__(self) -> Optional["redis.Redis"]:
        url = self._url_source()
        if not url:
            return None
        with self._guard:
            if url == self._resolved_url:
                return self._client

        client: Optional["redis.Redis"]
        try:
            client = self._client_factory(url)
            client.ping()
        except redis.RedisError as exc:
            logger.warning("Redis unavailable at %s, using in-process locks: %s", url, exc)
            client = None

        with self._guard:
            self._resolved_url = url
            self._client = client
        return client


redis_connection = RedisConnector()


class KeyedLock:
    """Factory for context-managed locks keyed by string."""

    def __init__(
        self,
        *,
        redis_factory: Optional[Callable[[], object]] = None,
        timeout_seconds: Optional[int] = None,
    ) -> None:
        self._redis_factory = redis_factory or redis_connection
        self.timeout_seconds = timeout_seconds or settings.negotiation_lock_timeout_seconds

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        client = self._redis_factory()
        if client is None:
            lock = _local_lock(key)
            with lock:
                yield
            return

        redis_lock = client.lock(
            key,
            timeout=self.timeout_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        acquired = redis_lock.acquire()
        if not acquired:
            raise TimeoutError(f"Timed out waiting for lock {key}")
        logger.debug("Acquired redis lock %s", key)
        try:
            yield
        finally:
            redis_lock.release()


def reset_local_locks() -> None:
    """Drop all in-process locks (tests only)."""

    with _REGISTRY_LOCK:
        _LOCAL_LOCKS.clear()
