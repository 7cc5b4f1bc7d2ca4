import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timegate.db.base import Base
import timegate.db.all_models  # noqa: F401


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        async with session.begin():
            yield session


@pytest.fixture
def make_user(db):
    from timegate.core.rbac.principal import Principal
    from timegate.core.rbac.schemas import UserCreate
    from timegate.core.rbac.service import create_user

    async def _make(email: str, system_role=None) -> Principal:
        user = await create_user(db, UserCreate(email=email, system_role=system_role))
        return Principal.from_user(user)
    return _make


@pytest.fixture
async def owner(make_user):
    return await make_user("owner@timegate.io")


@pytest.fixture
async def project(db, owner):
    from timegate.core.projects.schemas import ProjectCreate
    from timegate.core.projects.service import create_project
    return await create_project(db, owner, ProjectCreate(name="Website relaunch"))


@pytest.fixture
def add_member(db, owner, project, make_user):
    """Create a user and give them a role on the project."""
    from timegate.core.rbac.permissions import ProjectRole
    from timegate.core.rbac.service import add_member as _add

    async def _make(email: str, role: ProjectRole):
        principal = await make_user(email)
        await _add(db, owner, project.id, principal.id, role)
        return principal
    return _make


@pytest.fixture
def make_entry(db, project):
    from datetime import date
    from timegate.core.entries.schemas import TimeEntryCreate
    from timegate.core.entries.service import create_entry

    async def _make(principal, hours: float = 2.0, title: str = "Design review"):
        return await create_entry(db, principal, TimeEntryCreate(
            project_id=project.id, title=title, hours=hours, work_date=date(2026, 3, 2),
        ))
    return _make
