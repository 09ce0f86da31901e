import gc
import logging
import os
import sys
import threading

import pytest
import redis

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services import db
from services import locks
from services.locks import (
    KeyedLock,
    RedisConnector,
    negotiation_lock_key,
    project_lock_key,
    reset_local_locks,
)
from utils.logging_setup import LOG_FORMAT, configure_logging


class FakeRedisLock:
    def __init__(self, acquired):
        self.acquired = acquired
        self.released = False

    def acquire(self):
        return self.acquired

    def release(self):
        self.released = True


class FakeRedis:
    def __init__(self, acquired=True):
        self.handle = FakeRedisLock(acquired)
        self.calls = []

    def lock(self, key, timeout=None, blocking_timeout=None):
        self.calls.append((key, timeout, blocking_timeout))
        return self.handle


def test_redis_lock_is_released_after_the_block():
    client = FakeRedis()
    lock = KeyedLock(redis_factory=lambda: client, timeout_seconds=5)

    with lock.hold(negotiation_lock_key("p1", "s1")):
        assert not client.handle.released

    assert client.calls == [("sourcing:negotiation:p1:s1", 5, 5)]
    assert client.handle.released


def test_redis_lock_timeout_raises():
    lock = KeyedLock(redis_factory=lambda: FakeRedis(acquired=False), timeout_seconds=1)
    with pytest.raises(TimeoutError):
        with lock.hold("busy"):
            pass


def test_local_locks_serialise_the_same_key():
    reset_local_locks()
    lock = KeyedLock(redis_factory=lambda: None)
    order = []
    entered = threading.Event()
    release = threading.Event()

    def first():
        with lock.hold("k"):
            entered.set()
            release.wait(2)
            order.append("first")

    def second():
        entered.wait(2)
        with lock.hold("k"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    entered.wait(2)
    release.set()
    for thread in threads:
        thread.join(2)

    assert order == ["first", "second"]


def test_local_lock_registry_drops_released_keys():
    reset_local_locks()
    lock = KeyedLock(redis_factory=lambda: None)

    with lock.hold(negotiation_lock_key("p1", "s1")):
        assert "sourcing:negotiation:p1:s1" in locks._LOCAL_LOCKS

    gc.collect()
    assert "sourcing:negotiation:p1:s1" not in locks._LOCAL_LOCKS


def test_project_lock_key_names_the_operation():
    assert project_lock_key("p1", "followup") == "sourcing:followup:p1"
    assert project_lock_key("p1", "outreach") != project_lock_key("p1", "followup")


class FlakyClient:
    def __init__(self, reachable):
        self.reachable = reachable

    def ping(self):
        if not self.reachable:
            raise redis.ConnectionError("connection refused")
        return True


def test_unreachable_redis_is_only_tried_once():
    attempts = []

    def factory(url):
        attempts.append(url)
        return FlakyClient(reachable=False)

    connector = RedisConnector(url_source=lambda: "redis://cache:6379/0", client_factory=factory)

    assert connector() is None
    assert connector() is None
    assert attempts == ["redis://cache:6379/0"]


def test_redis_connection_is_cached_and_follows_url_changes():
    url = {"value": "redis://one:6379/0"}
    attempts = []

    def factory(target):
        attempts.append(target)
        return FlakyClient(reachable=True)

    connector = RedisConnector(url_source=lambda: url["value"], client_factory=factory)

    first = connector()
    assert connector() is first

    url["value"] = "redis://two:6379/0"
    second = connector()
    assert second is not first
    assert attempts == ["redis://one:6379/0", "redis://two:6379/0"]


def test_missing_redis_url_skips_connection():
    connector = RedisConnector(url_source=lambda: None, client_factory=lambda url: pytest.fail("connected"))
    assert connector() is None


def test_database_configured_follows_environment(monkeypatch):
    for name in ("PGHOST", "PGDATABASE", "PGUSER", "PGPASSWORD", "PGPORT", "PGSSLMODE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(db.settings, "db_host", None)
    assert not db.database_configured()

    monkeypatch.setenv("PGHOST", "db.internal")
    monkeypatch.setenv("PGDATABASE", "sourcing")
    assert db.database_configured()
    assert db._pg_dsn().startswith("host=db.internal port=")
    assert "dbname=sourcing" in db._pg_dsn()


def test_configure_logging_sets_level_and_format(tmp_path):
    log_file = tmp_path / "logs" / "sourcewise.log"
    configure_logging("debug", log_file=str(log_file))

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    assert all(handler.formatter._fmt == LOG_FORMAT for handler in root.handlers)

    configure_logging(logging.WARNING)
    assert logging.getLogger().level == logging.WARNING
