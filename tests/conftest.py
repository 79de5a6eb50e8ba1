"""
Shared test fixtures.

- `clock`: controllable UTC clock injected into the session stores
- `memory_store` / `sql_store`: the two session store backends; `store`
  runs a test against both
- `users` / `directory`: a small user directory with bcrypt hashes
- `app` / `client`: the FastAPI app wired to in-memory collaborators

Async tests are plain `async def` functions; the `pytest_pyfunc_call`
hook below runs each one in a fresh event loop, so fixtures stay
synchronous.  SQL tests use a SQLite file in tmp_path with NullPool so
no connection outlives the loop that opened it.

Environment variables must be set before any backoffice import: the
module-level app in backoffice.main reads settings at import time.
"""

import asyncio
import inspect
import os
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from backoffice.core.config import Settings  # noqa: E402
from backoffice.core.database import build_session_factory  # noqa: E402
from backoffice.core.security import hash_password  # noqa: E402
from backoffice.main import create_app  # noqa: E402
from backoffice.models import Base  # noqa: E402
from backoffice.services.audit_service import RecordingAuditSink  # noqa: E402
from backoffice.services.credential_service import UserRecord  # noqa: E402
from backoffice.services.memory_session_store import MemorySessionStore  # noqa: E402
from backoffice.services.session_service import SqlSessionStore  # noqa: E402

PASSWORD = "Correct-Horse-42"


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


class StaticUserDirectory:
    """User directory over a fixed list, matched case-insensitively like the SQL one."""

    def __init__(self, users: list[UserRecord]) -> None:
        self._by_email = {u.email.lower(): u for u in users}
        self.lookups: list[str] = []

    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None:
        self.lookups.append(identifier)
        return self._by_email.get(identifier.lower())


class RefusingSessionFactory:
    """Stands in for an async_sessionmaker whose database cannot be reached."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    async def __aexit__(self, *exc_info):
        return False


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store(clock):
    return MemorySessionStore(ttl=timedelta(hours=24), max_sessions_per_user=5, clock=clock)


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}", poolclass=NullPool)

    async def _create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create_schema())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def unreachable_factory():
    return RefusingSessionFactory()


@pytest.fixture
def session_factory(sql_engine):
    return build_session_factory(sql_engine)


@pytest.fixture
def sql_store(session_factory, clock):
    return SqlSessionStore(session_factory, ttl=timedelta(hours=24), max_sessions_per_user=5, clock=clock)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def users(password_hash):
    return {
        role: UserRecord(
            id=uuid.uuid4(),
            email=f"{role}@training.example",
            role=role,
            password_hash=password_hash,
        )
        for role in ("admin", "trainer", "instructor")
    }


@pytest.fixture
def directory(users):
    return StaticUserDirectory(list(users.values()))


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SESSION_COOKIE_SECURE=False,
        SESSION_TTL_SECONDS=86400,
        MAX_SESSIONS_PER_USER=5,
    )


@pytest.fixture
def app(settings, memory_store, directory, audit_sink):
    return create_app(
        settings,
        session_store=memory_store,
        user_directory=directory,
        audit_sink=audit_sink,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def make_directory():
    return StaticUserDirectory


@pytest.fixture
def login_as(client):
    """Log in through the API; returns the CSRF token from the response body."""

    def _login(email: str, password: str = PASSWORD) -> str:
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["csrf_token"]

    return _login
