import threading
import time

import psycopg2
import pytest

from conftest import TEST_CONFIG, FakeBackend
from db import errors
from db.connection import ConnectionManager, health_check


class RecordingRunner:
    """Stands in for MigrationRunner; counts how often migrations run."""

    calls = 0
    fail_with = None
    delay = 0.0

    def __init__(self, database, scripts_dir=None):
        self.database = database

    def apply_pending(self):
        type(self).calls += 1
        time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return []


@pytest.fixture
def runner():
    class Runner(RecordingRunner):
        pass
    return Runner


def _manager(backend, runner, **kwargs):
    return ConnectionManager(
        config=TEST_CONFIG,
        pool_factory=lambda config: backend.pool,
        runner_factory=runner,
        **kwargs,
    )


def test_first_call_initializes_and_migrates(backend, runner):
    manager = _manager(backend, runner)
    database = manager.get_connection()
    assert database.pool is backend.pool
    assert runner.calls == 1
    assert manager.healthy


def test_later_calls_reuse_the_handle(backend, runner):
    manager = _manager(backend, runner)
    first = manager.get_connection()
    assert manager.get_connection() is first
    assert runner.calls == 1


def test_concurrent_first_calls_share_one_initialization(backend, runner):
    runner.delay = 0.05
    manager = _manager(backend, runner)
    results = []

    threads = [threading.Thread(target=lambda: results.append(manager.get_connection())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert runner.calls == 1
    assert len({id(db) for db in results}) == 1


def test_failed_initialization_is_cached(backend, runner):
    runner.fail_with = errors.MigrationError("0002_todos.sql failed")
    manager = _manager(backend, runner)

    with pytest.raises(errors.MigrationError) as first:
        manager.get_connection()
    runner.fail_with = None
    with pytest.raises(errors.MigrationError) as second:
        manager.get_connection()

    assert second.value is first.value
    assert runner.calls == 1
    assert backend.pool.closed
    assert manager.last_error is first.value


def test_reset_clears_cached_failure(backend, runner):
    runner.fail_with = errors.MigrationError("boom")
    manager = _manager(backend, runner)
    with pytest.raises(errors.MigrationError):
        manager.get_connection()

    runner.fail_with = None
    manager.reset()

    assert manager.get_connection() is not None
    assert runner.calls == 2


def test_reconnect_replaces_the_handle(backend, runner):
    manager = _manager(backend, runner)
    first = manager.get_connection()
    second = manager.reconnect()
    assert second is not first
    assert runner.calls == 2


def test_missing_configuration_is_cached(runner):
    manager = ConnectionManager(env={}, runner_factory=runner)
    with pytest.raises(errors.ConfigurationError):
        manager.get_connection()
    with pytest.raises(errors.ConfigurationError):
        manager.get_connection()
    assert runner.calls == 0


def test_unhealthy_database_fails_initialization(backend, runner):
    backend.on("SELECT 1", psycopg2.OperationalError("no route to host"))
    manager = _manager(backend, runner)
    with pytest.raises(errors.ConnectionError):
        manager.get_connection()


def test_migrations_can_be_skipped(backend, runner):
    manager = _manager(backend, runner, migrate=False)
    manager.get_connection()
    assert runner.calls == 0


def test_status_never_raises(runner):
    status = ConnectionManager(env={}, runner_factory=runner).status()
    assert status.healthy is False
    assert status.to_dict()["error"].startswith("Missing required database")


def test_health_check(backend):
    assert health_check(backend.database) is True
    broken = FakeBackend().on("SELECT 1", psycopg2.OperationalError("down"))
    assert health_check(broken.database) is False


def test_unexpected_runner_error_is_wrapped_and_cached(backend, runner):
    runner.fail_with = OSError("permission denied: 0002_todos.sql")
    manager = _manager(backend, runner)

    with pytest.raises(errors.ConnectionError) as first:
        manager.get_connection()
    runner.fail_with = None
    with pytest.raises(errors.ConnectionError) as second:
        manager.get_connection()

    assert second.value is first.value
    assert isinstance(first.value.original, OSError)
    assert runner.calls == 1
    assert backend.pool.closed
    assert not manager.healthy


def test_unreadable_script_closes_the_pool(backend, tmp_path):
    (tmp_path / "0001_bad.sql").write_bytes(b"\xff")
    backend.on("to_regclass", [{"ledger": None}])
    manager = ConnectionManager(
        config=TEST_CONFIG,
        scripts_dir=tmp_path,
        pool_factory=lambda config: backend.pool,
    )

    with pytest.raises(errors.MigrationError):
        manager.get_connection()

    assert backend.pool.closed
    assert isinstance(manager.last_error, errors.MigrationError)
