import asyncio

import pytest

from dbscope.adapters import AdapterExecutionError, ConnectionConfig, SQLiteAdapter
from dbscope.core import IntegerField, Model, StringField
from dbscope.dialects import IsolationLevel
from dbscope.persistence import (
    ConcurrencyConflictError,
    EntityLookupError,
    EntityState,
    Session,
    SessionClosedError,
    TransactionError,
)


class User(Model):
    name = StringField(nullable=False, concurrency_check=True)
    age = IntegerField(default=0)


class CourseUser(Model):
    course_id = IntegerField(primary_key=True)
    user_id = IntegerField(primary_key=True)
    grade = StringField()


def open_session(tmp_path, name: str = "session.db") -> Session:
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / name}")
    session = Session(SQLiteAdapter(), connection_config=config)
    session.create_tables(User, CourseUser)
    return session


def test_session_add_and_save_inserts_row(tmp_path):
    session = open_session(tmp_path)
    user = User(name="Alice", age=30)
    session.add(user)
    assert session.entry(user).state is EntityState.ADDED

    assert session.save_changes() == 1

    row = session.execute('SELECT name, age FROM "user"').fetchone()
    assert row["name"] == "Alice"
    assert row["age"] == 30
    assert user.id is not None
    assert session.entry(user).state is EntityState.UNCHANGED
    session.close()


def test_session_identity_map_returns_same_instance(tmp_path):
    session = open_session(tmp_path)
    session.execute('INSERT INTO "user" (name, age) VALUES (?, ?)', ("Bob", 25))

    first = session.get(User, id=1)
    second = session.get(User, id=1)
    assert first is second
    assert first.name == "Bob"
    assert session.query(User, name="Bob")[0] is first
    session.close()


def test_session_updates_dirty_instances(tmp_path):
    session = open_session(tmp_path)
    session.execute('INSERT INTO "user" (name, age) VALUES (?, ?)', ("Dana", 22))
    user = session.get(User, id=1)
    user.age = 23

    assert session.entry(user).state is EntityState.UNCHANGED
    assert [e.state for e in session.entries()] == [EntityState.MODIFIED]
    assert session.save_changes() == 1

    age = session.execute('SELECT age FROM "user" WHERE id = 1').fetchone()[0]
    assert age == 23
    session.close()


def test_session_remove_deletes_row(tmp_path):
    session = open_session(tmp_path)
    session.execute('INSERT INTO "user" (name, age) VALUES (?, ?)', ("Chris", 40))
    user = session.get(User, id=1)
    session.remove(user)
    assert session.save_changes() == 1

    remaining = session.execute('SELECT COUNT(*) FROM "user"').fetchone()[0]
    assert remaining == 0
    assert user not in session.change_tracker
    session.close()


def test_removing_added_instance_just_forgets_it(tmp_path):
    session = open_session(tmp_path)
    user = User(name="Eve")
    session.add(user)
    session.remove(user)
    assert session.save_changes() == 0
    session.close()


def test_auto_detect_changes_disabled_skips_implicit_updates(tmp_path):
    session = open_session(tmp_path)
    session.execute('INSERT INTO "user" (name, age) VALUES (?, ?)', ("Finn", 50))
    session.auto_detect_changes = False
    user = session.get(User, id=1)
    user.age = 51

    assert session.save_changes() == 0
    session.detect_changes()
    assert session.save_changes() == 1
    session.close()


def test_composite_key_get_and_update(tmp_path):
    session = open_session(tmp_path)
    session.add_all(
        [
            CourseUser(course_id=1, user_id=1, grade="B"),
            CourseUser(course_id=1, user_id=2, grade="C"),
        ]
    )
    session.save_changes()

    enrolment = session.get(CourseUser, course_id=1, user_id=2)
    assert enrolment.grade == "C"
    enrolment.grade = "A"
    session.save_changes()

    grades = session.execute('SELECT grade FROM "course_user" ORDER BY user_id').fetchall()
    assert [row["grade"] for row in grades] == ["B", "A"]
    with pytest.raises(ValueError):
        session.get(CourseUser, course_id=1)
    session.close()


def test_single_requires_exactly_one_match(tmp_path):
    session = open_session(tmp_path)
    session.add_all([User(name="Gil"), User(name="Gil")])
    session.save_changes()
    with pytest.raises(EntityLookupError):
        session.single(User, name="Gil")
    with pytest.raises(EntityLookupError):
        session.single(User, name="Nobody")
    session.close()


def test_concurrency_conflict_then_retry_with_database_values(tmp_path):
    session = open_session(tmp_path)
    other = open_session(tmp_path)
    session.add(User(name="Test User"))
    session.save_changes()

    user = session.get(User, id=1)
    competing = other.get(User, id=1)
    competing.name = "Other name"
    other.save_changes()

    user.name = "New name"
    with pytest.raises(ConcurrencyConflictError) as excinfo:
        session.save_changes()
    assert [entry.instance for entry in excinfo.value.entries] == [user]

    for entry in excinfo.value.entries:
        entry.original_values.update(entry.get_database_values())
    assert session.save_changes() == 1

    other.reload(competing)
    assert competing.name == "New name"
    session.close()
    other.close()


def test_failed_insert_resets_generated_key(tmp_path):
    session = open_session(tmp_path)
    first = User(name="Hal")
    session.add(first)
    session.add(CourseUser(course_id=1, user_id=1))
    session.save_changes()

    fresh = User(name="Ivy")
    duplicate = CourseUser(course_id=1, user_id=1)
    session.add(fresh)
    session.add(duplicate)
    with pytest.raises(AdapterExecutionError):
        session.save_changes()
    assert fresh.id is None
    assert session.execute('SELECT COUNT(*) FROM "user"').fetchone()[0] == 1
    session.close()


def test_reload_overwrites_in_place(tmp_path):
    session = open_session(tmp_path)
    other = open_session(tmp_path)
    session.add(User(name="Jo", age=1))
    session.save_changes()
    user = session.get(User, id=1)

    other.execute('UPDATE "user" SET age = 2 WHERE id = 1')
    session.reload(user)
    assert user.age == 2
    assert session.entry(user).state is EntityState.UNCHANGED
    session.close()
    other.close()


def test_explicit_transaction_defers_commit(tmp_path):
    session = open_session(tmp_path)
    other = open_session(tmp_path)

    transaction = session.begin_transaction(IsolationLevel.READ_COMMITTED)
    session.add(User(name="Kim"))
    session.save_changes()
    with pytest.raises(TransactionError):
        session.begin_transaction()
    transaction.rollback()

    assert session.current_transaction is None
    assert other.execute('SELECT COUNT(*) FROM "user"').fetchone()[0] == 0
    with pytest.raises(TransactionError):
        transaction.commit()

    with session.begin_transaction():
        session.add(User(name="Lou"))
        session.save_changes()
    assert other.execute('SELECT COUNT(*) FROM "user"').fetchone()[0] == 1
    session.close()
    other.close()


def test_failed_save_inside_transaction_undoes_only_its_own_writes(tmp_path):
    session = open_session(tmp_path)
    session.add(CourseUser(course_id=1, user_id=1))
    session.save_changes()

    with session.begin_transaction():
        kept = User(name="Pam")
        session.add(kept)
        session.save_changes()

        fresh = User(name="Quin")
        duplicate = CourseUser(course_id=1, user_id=1)
        session.add(fresh)
        session.add(duplicate)
        with pytest.raises(AdapterExecutionError):
            session.save_changes()
        assert fresh.id is None
        assert session.current_transaction is not None

        session.remove(duplicate)
        session.save_changes()

    names = [row["name"] for row in session.execute('SELECT name FROM "user" ORDER BY id').fetchall()]
    assert names == ["Pam", "Quin"]
    assert kept.id == 1
    session.close()


def test_attach_tracks_instance_as_unchanged(tmp_path):
    session = open_session(tmp_path)
    session.execute('INSERT INTO "user" (name, age) VALUES (?, ?)', ("Rae", 3))
    user = User(id=1, name="Rae", age=3)

    entry = session.attach(user)
    assert entry.state is EntityState.UNCHANGED
    assert session.get(User, id=1) is user

    user.age = 4
    assert session.save_changes() == 1
    assert session.execute('SELECT age FROM "user" WHERE id = 1').fetchone()["age"] == 4
    session.close()



def test_closed_session_rejects_work(tmp_path):
    session = open_session(tmp_path)
    session.close()
    session.close()
    assert session.closed
    with pytest.raises(SessionClosedError):
        session.add(User(name="Max"))


@pytest.mark.asyncio
async def test_save_changes_async_persists(tmp_path):
    session = open_session(tmp_path)
    session.add(User(name="Ned"))
    assert await session.save_changes_async() == 1

    user = session.get(User, id=1)
    session.execute('UPDATE "user" SET age = 9 WHERE id = 1')
    await session.reload_async(user)
    assert user.age == 9
    session.close()


@pytest.mark.asyncio
async def test_save_changes_async_honours_cancel_event(tmp_path):
    session = open_session(tmp_path)
    session.add(User(name="Oda"))
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(asyncio.CancelledError):
        await session.save_changes_async(cancel)
    assert session.execute('SELECT COUNT(*) FROM "user"').fetchone()[0] == 0
    session.close()


@pytest.mark.asyncio
async def test_save_changes_async_inside_transaction_rolls_back_to_savepoint(tmp_path):
    session = open_session(tmp_path)
    session.add(CourseUser(course_id=2, user_id=2))
    session.save_changes()

    with session.begin_transaction():
        fresh = User(name="Sid")
        session.add(fresh)
        session.add(CourseUser(course_id=2, user_id=2))
        with pytest.raises(AdapterExecutionError):
            await session.save_changes_async()
        assert fresh.id is None
        assert session.execute('SELECT COUNT(*) FROM "user"').fetchone()[0] == 0
    session.close()
