"""End-to-end checks against a real PostgreSQL server.

Set TEST_DATABASE_URL to a disposable database to run them; every table
is dropped before each test.
"""

import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

from db.connection import ConnectionManager, resolve_config
from db.migrations import migration_status, verify_schema
from repositories.auth_repo import SessionRepository
from repositories.todo_repo import TodoRepository
from repositories.user_repo import UserRepository
from services.todo_service import TodoService

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set"),
]

_TABLES = ("todos", "verifications", "accounts", "sessions", "users", "schema_migrations")


def _drop_all(database):
    with database.transaction() as cur:
        cur.execute(f"DROP TABLE IF EXISTS {', '.join(_TABLES)} CASCADE;")


@pytest.fixture
def manager():
    config = resolve_config({"DATABASE_URL": TEST_DATABASE_URL, "DB_POOL_MAX": "5"})
    cleaner = ConnectionManager(config=config, migrate=False)
    _drop_all(cleaner.get_connection())
    cleaner.reset()

    mgr = ConnectionManager(config=config)
    yield mgr
    mgr.reset()


@pytest.fixture
def database(manager):
    return manager.get_connection()


@pytest.fixture
def user(database):
    return UserRepository(database).create({"email": "u1@example.com", "name": "User One"})


def test_migrations_are_idempotent(manager, database):
    status = migration_status(database)
    assert status.pending == []
    assert status.applied == ["0001_auth_tables.sql", "0002_todos.sql"]

    manager.reset()
    manager.get_connection()
    assert migration_status(manager.get_connection()).applied == status.applied


def test_live_schema_matches_descriptors(database):
    assert verify_schema(database) == []


def test_buy_milk_scenario(database, user):
    todos = TodoRepository(database)

    created = todos.create(user.id, {"title": "Buy milk"})
    assert created.completed is False
    assert created.priority == "medium"

    toggled = todos.toggle_completion(created.id, user.id)
    assert toggled.completed is True
    assert toggled.updated_at >= created.updated_at

    stats = todos.stats(user.id)
    assert (stats.total, stats.completed, stats.pending, stats.completion_rate) == (1, 1, 0, 100)

    deleted = todos.delete(created.id, user.id)
    assert deleted.id == created.id
    assert deleted.title == "Buy milk"
    assert todos.get_by_id(created.id, user.id) is None
    assert todos.delete(created.id, user.id) is None


def test_two_toggles_restore_the_original_state(database, user):
    todos = TodoRepository(database)
    created = todos.create(user.id, {"title": "Water plants"})

    first = todos.toggle_completion(created.id, user.id)
    second = todos.toggle_completion(created.id, user.id)

    assert first.completed is not created.completed
    assert second.completed is created.completed
    assert todos.get_by_id(created.id, user.id).completed is created.completed
    assert second.updated_at >= first.updated_at


def test_other_users_cannot_see_or_touch_todos(database, user):
    todos = TodoRepository(database)
    other = UserRepository(database).create({"email": "u2@example.com"})
    todo = todos.create(user.id, {"title": "private"})

    assert todos.get_by_id(todo.id, other.id) is None
    assert todos.update(todo.id, other.id, {"title": "hijacked"}) is None
    assert todos.toggle_completion(todo.id, other.id) is None
    assert todos.delete(todo.id, other.id) is None
    assert todos.list_by_user(other.id) == []
    assert todos.get_by_id(todo.id, user.id).title == "private"


def test_deleting_a_user_cascades(database, user):
    TodoRepository(database).create(user.id, {"title": "one"})
    SessionRepository(database).create(user.id, "tok-1", datetime.now(timezone.utc) + timedelta(days=1))

    UserRepository(database).delete(user.id)

    with database.transaction() as cur:
        cur.execute("SELECT (SELECT COUNT(*) FROM todos) AS todos, (SELECT COUNT(*) FROM sessions) AS sessions;")
        counts = cur.fetchone()
    assert counts == {"todos": 0, "sessions": 0}


def test_todo_for_unknown_user_is_rejected(database):
    result = TodoService(database).create_todo("no-such-user", {"title": "orphan"})
    assert result.status_code == 400
    assert result.error.kind == "foreign_key"


def test_concurrent_toggles_are_not_lost(database, user):
    todos = TodoRepository(database)
    todo = todos.create(user.id, {"title": "flip"})

    threads = [threading.Thread(target=todos.toggle_completion, args=(todo.id, user.id)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert todos.get_by_id(todo.id, user.id).completed is False


def test_list_order_and_pagination(database, user):
    todos = TodoRepository(database)
    for i in range(5):
        todos.create(user.id, {"title": f"t{i}"})

    page = todos.list_by_user(user.id, limit=2, offset=1)
    full = todos.list_by_user(user.id)
    assert [t.id for t in page] == [t.id for t in full[1:3]]
    assert [t.created_at for t in full] == sorted((t.created_at for t in full), reverse=True)


def test_external_identity_sync_updates_in_place(database):
    users = UserRepository(database)
    first = users.upsert_from_external_identity("gh|7", {"email": "dev@example.com", "name": "Dev"})
    second = users.upsert_from_external_identity("gh|7", {"email": "dev@example.com", "name": "Dev Renamed"})
    assert second.id == first.id
    assert second.name == "Dev Renamed"
