import pytest

from dbscope.adapters import ConnectionConfig
from dbscope.persistence import Session
from dbscope.scoping import RegisteredSessionFactory, SessionScopeFactory, ambient_scope
from scoping_models import Course, CourseUser, ReportingSession, User, UserSession


@pytest.fixture
def db_config(tmp_path):
    config = ConnectionConfig(url=f"sqlite:///{tmp_path / 'scopes.db'}", timeout=1.0)
    with Session(connection_config=config) as session:
        session.create_tables(User, Course, CourseUser)
        session.add_all(
            [
                User(name="Test User"),
                User(name="Second User"),
                Course(title="Algebra"),
                CourseUser(course_id=1, user_id=1, grade="B"),
                CourseUser(course_id=1, user_id=2, grade="C"),
            ]
        )
        session.save_changes()
    return config


@pytest.fixture
def session_factory(db_config):
    factory = RegisteredSessionFactory()
    factory.register_session_type(UserSession, lambda: UserSession(connection_config=db_config))
    factory.register_session_type(ReportingSession, lambda: ReportingSession(connection_config=db_config))
    return factory


@pytest.fixture
def scope_factory(session_factory):
    return SessionScopeFactory(session_factory)


@pytest.fixture
def read_db(db_config):
    """Independent session used to observe what was actually persisted."""
    session = Session(connection_config=db_config)
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_ambient_scope():
    yield
    ambient_scope.clear()
