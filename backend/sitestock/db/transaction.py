"""SiteStock — Unit-of-work helpers.

Service operations run inside `atomic(db)` (a SAVEPOINT) and queue their
side-effect events (notifications, KPI cache invalidations) on the session.
They leave the process only after the outer transaction commits, via
`commit_and_dispatch(db)`.
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "sitestock.pending_events"
PENDING_KPI_KEY = "sitestock.pending_kpi_invalidations"


def pending_events(db: AsyncSession) -> list[Any]:
    return db.info.setdefault(PENDING_EVENTS_KEY, [])


def queue_kpi_invalidation(db: AsyncSession, tenant_id: UUID) -> None:
    """Mark a tenant's KPI cache stale once the transaction commits."""
    db.info.setdefault(PENDING_KPI_KEY, set()).add(tenant_id)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """All writes inside commit or roll back together; events queued inside are dropped on failure."""
    queue = pending_events(db)
    mark = len(queue)
    try:
        async with db.begin_nested():
            yield db
    except BaseException:
        del queue[mark:]
        raise


def discard_pending(db: AsyncSession) -> None:
    db.info.pop(PENDING_KPI_KEY, None)
    dropped = db.info.pop(PENDING_EVENTS_KEY, None)
    if dropped:
        logger.debug("Discarded %d queued event(s) after rollback", len(dropped))


async def commit_and_dispatch(db: AsyncSession) -> None:
    """Commit the session, then invalidate stale KPI caches and hand queued events to the notification sink."""
    from sitestock.services.ledger_service import LedgerService
    from sitestock.services.notification_service import dispatch

    try:
        await db.commit()
    except Exception:
        discard_pending(db)
        raise
    for tenant_id in db.info.pop(PENDING_KPI_KEY, set()):
        await LedgerService.invalidate_kpis(tenant_id)
    events = db.info.pop(PENDING_EVENTS_KEY, [])
    if events:
        dispatch(events)


@event.listens_for(Session, "after_soft_rollback")
def _drop_events_on_rollback(session: Session, previous_transaction) -> None:
    # Savepoint rollbacks are handled by atomic(); only the outermost rollback clears the queue.
    if previous_transaction.parent is None:
        discard_pending(session)
