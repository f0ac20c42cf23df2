"""SiteStock — AuditService: traceability rows for workflow state transitions."""
import logging
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.models.audit import AuditLog

logger = logging.getLogger(__name__)

# ── Audit action constants ────────────────────────────────────────────────────
ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"


def snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance as JSON-safe data."""
    mapper = sa_inspect(obj).mapper
    return jsonable_encoder({attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


async def log_audit(
    db: AsyncSession,
    tenant_id: UUID,
    actor_id: UUID | None,
    action: str,
    model: str,
    entity_id: UUID,
    before: dict | None = None,
    after: dict | None = None,
) -> None:
    """Write an audit log entry inside the caller's transaction. Never raises."""
    try:
        db.add(AuditLog(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            model=model,
            entity_id=entity_id,
            before=before,
            after=after,
        ))
        # No flush here: the row is committed atomically with the transition it describes.
    except Exception as exc:
        logger.error("Audit log write failed: %s", exc, exc_info=True)
