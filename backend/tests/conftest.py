"""
Pytest fixtures for the SiteStock test suite.

Provides:
- A temporary SQLite database per test (aiosqlite). Transactions start with
  BEGIN IMMEDIATE so concurrent sessions serialize the way row locks do on
  PostgreSQL, and SAVEPOINTs behave.
- Tenant, users, project and stock item rows
- A recording notification sink in place of Celery
"""
import os
import tempfile

# Settings are read once and cached; point them at throwaway resources first.
_DB_DIR = tempfile.mkdtemp(prefix="sitestock-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/import.db"
os.environ["REDIS_URL"] = ""
os.environ["NOTIFICATION_SINK_URL"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret"

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sitestock.db.base import Base
from sitestock.db.transaction import commit_and_dispatch
from sitestock.models import Project, ProjectMember, StockItem, Tenant, User
from sitestock.services.ledger_service import LedgerService
from sitestock.services.notification_service import NotificationSink, set_notification_sink
from sitestock.services.stock_item_service import StockItemService


class RecordingSink(NotificationSink):
    """Keeps every emitted event for assertions."""

    def __init__(self):
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/sitestock.db",
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself (see _on_begin)
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sink():
    recording = RecordingSink()
    set_notification_sink(recording)
    yield recording
    set_notification_sink(None)


@pytest.fixture
async def tenant(db):
    t = Tenant(name="Acme Construction", slug=f"acme-{uuid4().hex[:8]}")
    db.add(t)
    await db.commit()
    return t


@pytest.fixture
async def other_tenant(db):
    t = Tenant(name="Other Builders", slug=f"other-{uuid4().hex[:8]}")
    db.add(t)
    await db.commit()
    return t


async def _user(db, tenant, role, email):
    u = User(tenant_id=tenant.id, email=email, full_name=email.split("@")[0], role=role)
    db.add(u)
    await db.commit()
    return u


@pytest.fixture
async def site_user(db, tenant):
    return await _user(db, tenant, "SITE", "foreman@acme.test")


@pytest.fixture
async def warehouse_user(db, tenant):
    return await _user(db, tenant, "WAREHOUSE", "storekeeper@acme.test")


@pytest.fixture
async def finance_user(db, tenant):
    return await _user(db, tenant, "FINANCIAL", "buyer@acme.test")


@pytest.fixture
async def project(db, tenant):
    p = Project(tenant_id=tenant.id, name="Riverside Tower")
    db.add(p)
    await db.commit()
    return p


@pytest.fixture
async def second_project(db, tenant):
    p = Project(tenant_id=tenant.id, name="Harbour Bridge")
    db.add(p)
    await db.commit()
    return p


@pytest.fixture
async def foreign_project(db, other_tenant):
    p = Project(tenant_id=other_tenant.id, name="Someone Else's Site")
    db.add(p)
    await db.commit()
    return p


@pytest.fixture
async def membership(db, foreign_project, site_user):
    m = ProjectMember(project_id=foreign_project.id, user_id=site_user.id)
    db.add(m)
    await db.commit()
    return m


@pytest.fixture
async def cement(db, tenant) -> StockItem:
    """Empty item: min_quantity=10, average_price=0."""
    item = await StockItemService.create_item(db, tenant.id, "Cement CP-II 50kg", unit="bag", min_quantity=Decimal("10"))
    await db.commit()
    return item


@pytest.fixture
async def stocked_cement(db, tenant, cement, warehouse_user) -> StockItem:
    """cement after an ENTRY of 100 @ 5."""
    await LedgerService.record_movement(
        db, tenant.id, cement.id, "ENTRY", Decimal("100"),
        unit_price=Decimal("5"), actor_id=warehouse_user.id,
    )
    await commit_and_dispatch(db)
    item = await LedgerService.get_item(db, tenant.id, cement.id)
    # End the read so other connections can take the write lock
    await db.commit()
    return item
