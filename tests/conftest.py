import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generator, Iterator

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the repository root is on sys.path so tests can import the mentalspace package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ.setdefault('ENVIRONMENT', 'development')
os.environ.setdefault('JWT_SECRET', 'test-jwt-secret')
os.environ.setdefault('MENTALSPACE_ENCRYPTION_KEY', 'test-encryption-key')
os.environ.setdefault('MENTALSPACE_DATA_DIR', tempfile.mkdtemp(prefix='mentalspace-tests-'))
os.environ.setdefault('MENTALSPACE_AUTO_MIGRATE', '0')

from mentalspace.client.audit import AuditEmitter, FailedAuditQueue  # noqa: E402
from mentalspace.encryption import Encryptor  # noqa: E402
from mentalspace.storage import MemoryStorage  # noqa: E402

TEST_PASSWORD = 'Passw0rd!'


@dataclass
class DatabaseContext:
    """Holds state for the ephemeral in-memory SQLite database."""

    engine: sa.engine.Engine
    session_factory: sessionmaker

    def make_session(self) -> Session:
        return self.session_factory()


@pytest.fixture(scope='function')
def in_memory_db() -> Iterator[DatabaseContext]:
    """Provide an isolated in-memory SQLite database for each test."""

    from mentalspace import main
    from mentalspace.db import enable_sqlite_savepoints, get_session
    from mentalspace.db.models import Base

    engine = sa.create_engine(
        'sqlite+pysqlite:///:memory:',
        future=True,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    def _session_dependency() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    main.app.dependency_overrides[get_session] = _session_dependency
    try:
        yield DatabaseContext(engine=engine, session_factory=session_factory)
    finally:
        main.app.dependency_overrides.pop(get_session, None)
        engine.dispose()


@pytest.fixture(scope='function')
def db_session(in_memory_db: DatabaseContext) -> Iterator[Session]:
    session = in_memory_db.make_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope='function')
def api_client(in_memory_db: DatabaseContext) -> Iterator[TestClient]:
    """Yield a FastAPI test client bound to the in-memory database."""

    from mentalspace import main

    with TestClient(main.app) as client:
        yield client


@pytest.fixture(scope='function')
def make_user(in_memory_db: DatabaseContext) -> Callable[..., Dict[str, object]]:
    """Return a factory creating a staff account and a bearer token for it."""

    from mentalspace import auth

    def _make(role: str = 'clinician', email: str | None = None) -> Dict[str, object]:
        email = email or f'{role}-{os.urandom(4).hex()}@example.com'
        session = in_memory_db.make_session()
        try:
            user = auth.register_user(session, email, TEST_PASSWORD, role, first_name='Test', last_name=role.title())
            session.commit()
            token = auth.create_access_token(user)
            return {
                'id': user.id,
                'email': user.email,
                'role': role,
                'token': token,
                'headers': {'Authorization': f'Bearer {token}'},
            }
        finally:
            session.close()

    return _make


@pytest.fixture
def admin(make_user):
    return make_user('admin')


@pytest.fixture
def clinician(make_user):
    return make_user('clinician')


@pytest.fixture
def supervisor(make_user):
    return make_user('supervisor')


@pytest.fixture
def encryptor() -> Encryptor:
    return Encryptor('unit-test-key')


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


class FrozenClock:
    """Manually advanced clock for session and draft tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


class RecordingTransport:
    """Audit transport that records payloads and can be switched offline."""

    def __init__(self) -> None:
        self.sent = []
        self.queries = []
        self.offline = False

    def send(self, payload):
        if self.offline:
            raise ConnectionError('audit endpoint unreachable')
        self.sent.append(dict(payload))
        return {'success': True}

    def query(self, params):
        self.queries.append(dict(params))
        return {'success': True, 'data': []}

    def actions(self):
        return [payload['action'] for payload in self.sent]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def audit(transport, storage, clock) -> AuditEmitter:
    return AuditEmitter(transport, FailedAuditQueue(storage), clock=clock, user_agent='pytest')
